"""
Hotel Kernel - accounting core of the hotel finance system.

Double-entry ledger with:
- Fixed-point Money and injectable clocks
- Chart of accounts with cached, reconcilable balances
- Draft -> Posted -> Reversed journal lifecycle
- Append-only ledger records with per-account running balances
"""

__version__ = "0.1.0"
