"""
Lending Ledger

A personal lending ledger: borrowers, the loans extended to each, and a
monthly interest-collection schedule per loan. All amounts use Decimal.
"""

__version__ = "1.0.0"
