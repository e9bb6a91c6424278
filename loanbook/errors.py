"""
Error Taxonomy Module

Exceptions raised by the loan ledger and surfaced unchanged to the calling
layer. Nothing in the core retries on these; the loan manager only retries
ConflictError at the persistence boundary.
"""


class LoanbookError(Exception):
    """Base class for all loanbook errors"""


class ValidationError(LoanbookError, ValueError):
    """Malformed or policy-violating input (bad amounts, invalid enums, missing fields)"""


class NotFoundError(LoanbookError, LookupError):
    """Referenced loan, customer or installment does not exist"""


class ConflictError(LoanbookError):
    """Stored aggregate changed since it was loaded (stale version)"""
