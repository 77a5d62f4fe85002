"""
Inventory Kernel

An append-only warehouse movement ledger with:
- Receipts, consumption, borrow/return/loss movements
- Per-(item, zone, channel) balances folded from the ledger
- Per-borrow outstanding quantities and OPEN -> CLOSED status
- Write-time validation guarded against stale snapshots
"""

__version__ = "0.1.0"
