"""
Costing Kernel

Persistence, typed errors, logging and read-side selectors for the
inventory costing system:
- FIFO receipt layers and moving-average cost snapshots
- Append-only COGS allocation ledger
- Idempotent, all-or-nothing postings
"""

__version__ = "0.1.0"
