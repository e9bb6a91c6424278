"""
Loan Status Module

Single recompute pass for every derived field on a loan, plus the explicit
operator transitions. "today" is always passed in by the caller.

Installment transitions: pending -> partial -> paid, pending -> overdue once
the due date is past, overdue -> partial/paid on a late payment.
Loan transitions: active <-> overdue on the final due date, any -> completed
when fully paid, completed -> active if a shortfall reappears; defaulted is
left only by completion or an explicit operator change.
"""

from datetime import date

from .errors import ValidationError
from .models import Installment, InstallmentStatus, Loan, LoanStatus
from .money import ZERO


def derive_installment_status(installment: Installment, today: date) -> InstallmentStatus:
    if installment.paid_amount >= installment.installment_amount:
        return InstallmentStatus.PAID
    if installment.paid_amount > ZERO:
        return InstallmentStatus.PARTIAL
    if installment.due_date < today:
        return InstallmentStatus.OVERDUE
    return InstallmentStatus.PENDING


def derive_loan_status(loan: Loan, today: date) -> LoanStatus:
    if loan.paid_amount >= loan.total_amount:
        return LoanStatus.COMPLETED

    status = loan.status
    if status == LoanStatus.COMPLETED:
        status = LoanStatus.ACTIVE

    past_due = loan.due_date is not None and loan.due_date < today
    if status == LoanStatus.ACTIVE and past_due:
        return LoanStatus.OVERDUE
    if status == LoanStatus.OVERDUE and not past_due:
        return LoanStatus.ACTIVE
    return status


def refresh_loan(loan: Loan, today: date) -> Loan:
    """
    Recompute all derived state on the loan in place.

    Idempotent: running it twice with the same "today" and no mutation in
    between changes nothing.
    """
    for installment in loan.installments:
        installment.status = derive_installment_status(installment, today)
        if installment.status == InstallmentStatus.PAID and not installment.paid_date:
            installment.paid_date = today

    if loan.installments:
        loan.due_date = loan.installments[-1].due_date
        loan.installment_amount = loan.installments[0].installment_amount

    loan.paid_amount = sum((i.paid_amount for i in loan.installments), ZERO)
    loan.remaining_amount = loan.total_amount - loan.paid_amount
    loan.status = derive_loan_status(loan, today)
    return loan


ALLOWED_TRANSITIONS = {
    LoanStatus.ACTIVE: {LoanStatus.DEFAULTED},
    LoanStatus.OVERDUE: {LoanStatus.DEFAULTED, LoanStatus.ACTIVE},
    LoanStatus.DEFAULTED: {LoanStatus.ACTIVE},
    LoanStatus.COMPLETED: set(),
}


def transition_loan_status(loan: Loan, new_status: LoanStatus, today: date) -> Loan:
    """
    Apply an operator status change, then re-derive.

    Completion is never set by hand; it follows from payments. Returning a
    loan to active re-derives overdue if its due date has passed.

    Raises:
        ValidationError: If the transition is not allowed
    """
    if new_status == loan.status:
        return refresh_loan(loan, today)
    if new_status not in ALLOWED_TRANSITIONS[loan.status]:
        raise ValidationError(
            f"Cannot change loan status from {loan.status.value} to {new_status.value}"
        )
    loan.status = new_status
    return refresh_loan(loan, today)
