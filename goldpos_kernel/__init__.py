"""
Gold Ownership Kernel

Persistence, domain records and shared infrastructure for the gold
ownership and cost accounting engine:
- Partial ownership rows with an append-only movement ledger
- Supplier gold debt and merchant raw gold balances with a transfer ledger
- Purchase cost lots with an issuance trail
- Typed errors, structured logging, optimistic concurrency
"""

__version__ = "0.1.0"
