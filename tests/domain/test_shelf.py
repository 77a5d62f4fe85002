"""Tests for shelf layout geometry (domain/shelf.py)."""

import pytest

from inventory_kernel.domain.shelf import ShelfLayout, ShelfPosition, validate_location
from inventory_kernel.exceptions import InvalidLocationError, InvalidShelfLayoutError


class TestShelfLayout:

    def test_capacity_and_channels(self):
        layout = ShelfLayout("A", floors=2, slots_per_floor=3)
        assert layout.capacity == 6
        assert layout.channels() == ("1", "2", "3", "4", "5", "6")

    @pytest.mark.parametrize("channel, floor, slot", [
        ("1", 1, 1),
        ("3", 1, 3),
        ("4", 2, 1),
        ("6", 2, 3),
    ])
    def test_position_of(self, channel, floor, slot):
        layout = ShelfLayout("A", floors=2, slots_per_floor=3)
        assert layout.position_of(channel) == ShelfPosition(floor, slot)

    @pytest.mark.parametrize("channel", ["0", "7", "x", "", None, "-1"])
    def test_contains_rejects_outside(self, channel):
        assert not ShelfLayout("A", 2, 3).contains(channel)

    def test_position_outside_rack(self):
        with pytest.raises(InvalidLocationError):
            ShelfLayout("A", 2, 3).position_of("7")

    @pytest.mark.parametrize("zone, floors, slots", [
        ("", 1, 1),
        ("A", 0, 1),
        ("A", 1, 0),
        ("A", True, 1),
        ("A", 1.5, 1),
        ("Z" * 51, 1, 1),
    ])
    def test_invalid_dimensions(self, zone, floors, slots):
        with pytest.raises(InvalidShelfLayoutError):
            ShelfLayout(zone, floors, slots)


class TestValidateLocation:

    def test_inside(self):
        validate_location("A", "2", ShelfLayout("A", 1, 2))

    def test_no_layout(self):
        with pytest.raises(InvalidLocationError):
            validate_location("A", "1", None)

    def test_layout_of_other_zone(self):
        with pytest.raises(InvalidLocationError):
            validate_location("A", "1", ShelfLayout("B", 1, 2))

    def test_outside(self):
        with pytest.raises(InvalidLocationError) as exc_info:
            validate_location("A", "3", ShelfLayout("A", 1, 2))
        assert exc_info.value.code == "INVALID_LOCATION"
