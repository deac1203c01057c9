"""
Contract Ledger Engine

Reconstructs the payment, interest and penalty state of loan contracts from
the tagged event log kept in each contract's annotation field, and computes
the next state for payments, amortizations, renegotiations and penalties.
All financial math uses Decimal.
"""

__version__ = "1.0.0"
