"""
Loanbook

Loan back office core: customer records, loan origination, installment
scheduling and payment application with Decimal math throughout.
"""

__version__ = "1.0.0"
