"""
Shelf layout geometry for a storage zone.

A zone is a rack of ``floors`` x ``slots_per_floor`` channels numbered
"1".."N" left-to-right, bottom floor first.  Receipts name a channel as a
string; this module maps it back to a (floor, slot) grid position and checks
that it lies inside the zone.
"""

from __future__ import annotations

from dataclasses import dataclass

from inventory_kernel.exceptions import InvalidLocationError, InvalidShelfLayoutError

# shelf_layouts.zone column width.
MAX_ZONE_LENGTH = 50


@dataclass(frozen=True, slots=True)
class ShelfPosition:
    floor: int
    slot: int


@dataclass(frozen=True, slots=True)
class ShelfLayout:
    """
    Dimensions of one zone's rack.

    Guarantees:
        - floors >= 1 and slots_per_floor >= 1 (InvalidShelfLayoutError otherwise).
        - ``channels()`` is "1".."capacity" in order.
    """

    zone: str
    floors: int
    slots_per_floor: int

    def __post_init__(self) -> None:
        if not self.zone or not self.zone.strip():
            raise InvalidShelfLayoutError(self.zone, "zone must not be blank")
        if len(self.zone) > MAX_ZONE_LENGTH:
            raise InvalidShelfLayoutError(
                self.zone, f"zone must be at most {MAX_ZONE_LENGTH} characters"
            )
        if isinstance(self.floors, bool) or not isinstance(self.floors, int) or self.floors < 1:
            raise InvalidShelfLayoutError(self.zone, f"floors must be >= 1, got {self.floors!r}")
        if (
            isinstance(self.slots_per_floor, bool)
            or not isinstance(self.slots_per_floor, int)
            or self.slots_per_floor < 1
        ):
            raise InvalidShelfLayoutError(
                self.zone, f"slots_per_floor must be >= 1, got {self.slots_per_floor!r}"
            )

    @property
    def capacity(self) -> int:
        return self.floors * self.slots_per_floor

    def channels(self) -> tuple[str, ...]:
        return tuple(str(n) for n in range(1, self.capacity + 1))

    def contains(self, channel: str | None) -> bool:
        number = _channel_number(channel)
        return number is not None and 1 <= number <= self.capacity

    def position_of(self, channel: str) -> ShelfPosition:
        """Grid position of ``channel``; raises InvalidLocationError if outside the rack."""
        if not self.contains(channel):
            raise InvalidLocationError(
                self.zone, channel, f"channel outside 1..{self.capacity}"
            )
        number = _channel_number(channel)
        assert number is not None
        return ShelfPosition(
            floor=(number - 1) // self.slots_per_floor + 1,
            slot=(number - 1) % self.slots_per_floor + 1,
        )


def _channel_number(channel: str | None) -> int | None:
    if channel is None:
        return None
    text = str(channel).strip()
    if not text.isdigit():
        return None
    return int(text)


def validate_location(zone: str, channel: str, layout: ShelfLayout | None) -> None:
    """
    Check that (zone, channel) names a real slot.

    Raises:
        InvalidLocationError: no layout for the zone, or channel out of range.
    """
    if layout is None:
        raise InvalidLocationError(zone, channel, "zone has no shelf layout")
    if layout.zone != zone:
        raise InvalidLocationError(zone, channel, f"layout belongs to zone {layout.zone}")
    if not layout.contains(channel):
        raise InvalidLocationError(
            zone, channel, f"channel outside 1..{layout.capacity}"
        )
