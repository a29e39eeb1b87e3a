"""
Lending Core

Loan lifecycle engine for a small lender: due-date scheduling under
calendar constraints, five amortization models, an installment ledger
with payment/fine/reversal semantics and per-creditor cash flow.
"""

__version__ = "1.0.0"
