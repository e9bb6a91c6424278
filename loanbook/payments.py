"""
Payment Ledger Module

Applies payments to a loan held in memory: single-installment payments, bulk
payments walked across consecutive installments, and the deprecated
untargeted whole-loan payment. Persistence is the caller's job (LoanManager).

Every applied payment appends to the loan's payment history and ends with the
derivation pass, so loan totals and statuses never drift from the schedule.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
import uuid

from .errors import LoanbookError, ValidationError
from .models import Installment, InstallmentStatus, Loan, LoanStatus, PaymentMethod, PaymentRecord, parse_date, parse_enum
from .money import ZERO, parse_amount
from .status import refresh_loan
from .logging_config import get_logger, log_action


@dataclass
class LoanSnapshot:
    """Aggregate figures returned alongside payment results"""
    loan_id: str
    total_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    completion_percentage: int
    status: LoanStatus

    @classmethod
    def from_loan(cls, loan: Loan) -> 'LoanSnapshot':
        return cls(
            loan_id=loan.id,
            total_amount=loan.total_amount,
            paid_amount=loan.paid_amount,
            remaining_amount=loan.remaining_amount,
            completion_percentage=loan.completion_percentage,
            status=loan.status,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'loan_id': self.loan_id,
            'total_amount': str(self.total_amount),
            'paid_amount': str(self.paid_amount),
            'remaining_amount': str(self.remaining_amount),
            'completion_percentage': self.completion_percentage,
            'status': self.status.value,
        }


@dataclass
class InstallmentPaymentResult:
    installment: Installment
    loan: LoanSnapshot
    payment_id: str


@dataclass
class AppliedPayment:
    installment_number: int
    amount_applied: Decimal
    status: InstallmentStatus


@dataclass
class BulkPaymentResult:
    payments_applied: List[AppliedPayment]
    total_applied: Decimal
    remaining_amount: Decimal       # Part of the bulk amount that was not applied
    loan: LoanSnapshot
    error: Optional[str] = None     # Why the walk stopped early, if it did

    def to_dict(self) -> Dict[str, Any]:
        return {
            'payments_applied': [
                {
                    'installment_number': p.installment_number,
                    'amount_applied': str(p.amount_applied),
                    'status': p.status.value,
                }
                for p in self.payments_applied
            ],
            'total_applied': str(self.total_applied),
            'remaining_amount': str(self.remaining_amount),
            'loan': self.loan.to_dict(),
            'error': self.error,
        }


class PaymentLedger:
    """
    Applies payments against a loan's installments
    """

    def __init__(self, clock: Callable[[], date] = date.today,
                 legacy_payments_enabled: bool = True):
        self.clock = clock
        self.legacy_payments_enabled = legacy_payments_enabled
        self.logger = get_logger("loanbook.payments")

    def pay_installment(
        self,
        loan: Loan,
        installment_number: int,
        amount: Any,
        notes: str = "",
        paid_date: Optional[Any] = None,
        method: Any = PaymentMethod.CASH
    ) -> InstallmentPaymentResult:
        """
        Pay towards one installment

        Args:
            loan: Loan to mutate
            installment_number: 1-based installment number
            amount: Payment amount, must not exceed what is still due
            notes: Stored on the installment and in the history entry
            paid_date: Payment date (defaults to today)
            method: Payment method

        Returns:
            InstallmentPaymentResult

        Raises:
            NotFoundError: If the installment does not exist
            ValidationError: If amount <= 0 or more than is due
        """
        installment = loan.get_installment(installment_number)
        amount = parse_amount(amount)
        method = parse_enum(PaymentMethod, method, "payment method")
        today = self.clock()
        payment_date = parse_date(paid_date, "paid_date") if paid_date else today

        if amount <= ZERO:
            raise ValidationError("Payment amount must be greater than 0")
        if amount > installment.amount_due:
            raise ValidationError(
                f"Payment amount {amount} exceeds remaining installment amount {installment.amount_due}"
            )

        installment.paid_amount += amount
        installment.notes = notes or ""
        if installment.paid_amount >= installment.installment_amount:
            installment.status = InstallmentStatus.PAID
            installment.paid_date = payment_date
        else:
            installment.status = InstallmentStatus.PARTIAL

        record = PaymentRecord(
            id=str(uuid.uuid4()),
            date=payment_date,
            amount=amount,
            method=method,
            notes=f"Payment for installment {installment_number}. {notes or ''}".strip(),
            installment_number=installment_number,
        )
        loan.payment_history.append(record)
        refresh_loan(loan, today)

        log_action(
            self.logger, "info",
            f"Payment of {amount} applied to installment {installment_number}",
            action="installment.pay", resource="loan", loan_id=loan.id,
            extra={"installment_number": installment_number, "amount": str(amount),
                   "installment_status": installment.status.value,
                   "loan_status": loan.status.value}
        )

        return InstallmentPaymentResult(
            installment=installment,
            loan=LoanSnapshot.from_loan(loan),
            payment_id=record.id,
        )

    def pay_bulk(
        self,
        loan: Loan,
        total_amount: Any,
        notes: str = "",
        start_from_installment: Optional[int] = None,
        method: Any = PaymentMethod.CASH
    ) -> BulkPaymentResult:
        """
        Spread one payment across consecutive installments

        Starts at start_from_installment, or at the next-due installment, and
        walks up by installment number skipping paid slots, paying
        min(remaining, amount due) on each. A failing installment stops the
        walk; what was already applied stays applied.

        Raises:
            ValidationError: If total_amount <= 0
            NotFoundError: If start_from_installment does not exist
        """
        bulk_amount = parse_amount(total_amount, "total_amount")
        if bulk_amount <= ZERO:
            raise ValidationError("Total amount must be greater than 0")

        if start_from_installment is not None:
            start = loan.get_installment(start_from_installment).installment_number
        else:
            next_due = loan.next_due_installment
            start = next_due.installment_number if next_due else 1

        remaining = bulk_amount
        applied: List[AppliedPayment] = []
        error = None
        bulk_notes = f"{notes or ''} (Bulk payment)".strip()

        for installment in loan.installments[start - 1:]:
            if remaining <= ZERO:
                break
            if installment.status == InstallmentStatus.PAID:
                continue

            payment_amount = min(remaining, installment.amount_due)
            if payment_amount <= ZERO:
                continue

            try:
                result = self.pay_installment(
                    loan, installment.installment_number, payment_amount,
                    notes=bulk_notes, method=method
                )
            except LoanbookError as e:
                error = str(e)
                self.logger.warning(
                    "Bulk payment stopped at installment %s: %s",
                    installment.installment_number, e,
                    extra={"action": "installment.bulk_pay", "loan_id": loan.id},
                )
                break

            applied.append(AppliedPayment(
                installment_number=installment.installment_number,
                amount_applied=payment_amount,
                status=result.installment.status,
            ))
            remaining -= payment_amount

        total_applied = bulk_amount - remaining
        log_action(
            self.logger, "info",
            f"Bulk payment of {total_applied} applied to {len(applied)} installments",
            action="installment.bulk_pay", resource="loan", loan_id=loan.id,
            extra={"requested": str(bulk_amount), "unapplied": str(remaining)}
        )

        return BulkPaymentResult(
            payments_applied=applied,
            total_applied=total_applied,
            remaining_amount=remaining,
            loan=LoanSnapshot.from_loan(loan),
            error=error,
        )

    def add_legacy_payment(
        self,
        loan: Loan,
        amount: Any,
        method: Any = PaymentMethod.CASH,
        notes: Optional[str] = None
    ) -> PaymentRecord:
        """
        Record an untargeted whole-loan payment (deprecated, migration only)

        The entry goes into the payment history without touching any
        installment, and shows up in loan.unallocated_amount. Loan totals stay
        derived from the installments.

        Raises:
            ValidationError: If disabled, amount <= 0, or amount exceeds what is
                still owed after earlier unallocated payments
        """
        if not self.legacy_payments_enabled:
            raise ValidationError("Untargeted loan payments are disabled; pay an installment instead")

        amount = parse_amount(amount)
        method = parse_enum(PaymentMethod, method, "payment method")
        if amount <= ZERO:
            raise ValidationError("Payment amount must be greater than 0")
        outstanding = loan.remaining_amount - loan.unallocated_amount
        if amount > outstanding:
            raise ValidationError("Payment amount cannot exceed remaining amount")

        today = self.clock()
        record = PaymentRecord(
            id=str(uuid.uuid4()),
            date=today,
            amount=amount,
            method=method,
            notes=notes or "",
        )
        loan.payment_history.append(record)
        refresh_loan(loan, today)

        log_action(
            self.logger, "warning",
            f"Untargeted payment of {amount} recorded without installment allocation",
            action="loan.legacy_payment", resource="loan", loan_id=loan.id,
            extra={"amount": str(amount), "method": method.value}
        )
        return record
