"""
Fund Ledger Engine

Moves money between the admin fund and per-project funds with:
- Atomic fund transfers under row locks
- Non-negative balances validated before mutation
- Idempotent expense classification into a ledger
- Installment tracking for deferred payments
"""

__version__ = "0.1.0"
