"""
Mill Stock Ledger
Paddy stock reconciliation and opening balances for a rice mill
"""

__version__ = "1.0.0"
