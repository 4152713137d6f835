"""
finledger - Source Package

A personal-finance ledger: accounts, income/expense transactions and a
stock portfolio per user, over a hosted document store.

DESIGN PRINCIPLES:
1. A transaction and its balance adjustment are written as one unit
2. Fail early, fail visibly
3. No silent corrections
4. Every mutation must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "finledger Team"
