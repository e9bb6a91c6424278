"""
Loan Management Module

Loan lifecycle orchestration: creation with schedule generation, edits with
recalculation, payments, status changes and the overdue sweep.

Every mutation loads the aggregate, changes it in memory, runs the derivation
pass and writes the whole document back with a compare-and-swap on its
version. A concurrent writer makes the save fail with ConflictError; the
manager reloads and retries a bounded number of times.
"""

from decimal import Decimal
from datetime import datetime, date, timezone
from typing import Any, Callable, Dict, List, Optional, TypeVar

from .errors import ConflictError, NotFoundError, ValidationError
from .models import (
    Installment, Loan, LoanStatus, PaymentFrequency, PaymentMethod, PaymentRecord,
    parse_date, parse_duration, parse_enum, validate_terms
)
from .money import ZERO, parse_amount, to_decimal
from .schedule import generate_installments
from .recalculation import recalculate
from .status import refresh_loan, transition_loan_status
from .payments import BulkPaymentResult, InstallmentPaymentResult, PaymentLedger
from .customers import CustomerManager
from .storage import StorageInterface
from .config import get_config, LoanbookConfig
from .logging_config import get_logger, log_action


T = TypeVar('T')


class LoanManager:
    """
    Manages loans from creation through repayment
    """

    def __init__(
        self,
        storage: StorageInterface,
        customer_manager: CustomerManager,
        clock: Optional[Callable[[], date]] = None,
        config: Optional[LoanbookConfig] = None
    ):
        self.storage = storage
        self.customer_manager = customer_manager
        self.clock = clock or date.today
        self.config = config or get_config()

        self.loans_table = "loans"
        self.max_retries = self.config.max_conflict_retries
        self.ledger = PaymentLedger(
            clock=self.clock,
            legacy_payments_enabled=self.config.legacy_payments_enabled
        )
        self.logger = get_logger("loanbook.loans")

    @property
    def limits(self) -> Dict[str, Decimal]:
        return {
            'min_principal': Decimal(self.config.min_principal),
            'max_principal': Decimal(self.config.max_principal),
            'max_interest_rate': Decimal(self.config.max_interest_rate),
        }

    def create_loan(
        self,
        customer_id: str,
        principal: Any,
        payment_frequency: Any,
        duration: Any,
        interest_rate: Any = None,
        issue_date: Optional[Any] = None,
        additional_charges: Any = 0,
        notes: str = ""
    ) -> Loan:
        """
        Create a loan and generate its installment schedule

        Args:
            customer_id: Borrower customer code
            principal: Amount lent
            payment_frequency: daily, weekly or monthly
            duration: Number of installments
            interest_rate: Flat percentage of the principal (required)
            issue_date: Start date (defaults to today)
            additional_charges: Flat fees added to the total
            notes: Free text

        Returns:
            Persisted Loan

        Raises:
            ValidationError: If any term is invalid
            NotFoundError: If the customer does not exist
        """
        if interest_rate is None or isinstance(interest_rate, bool):
            raise ValidationError("Interest rate is required and must be a number")
        try:
            rate = to_decimal(interest_rate, "interest_rate")
        except ValidationError:
            raise ValidationError("Interest rate is required and must be a number")

        amount = parse_amount(principal, "amount")
        charges = parse_amount(additional_charges if additional_charges is not None else 0,
                               "additional_charges")
        frequency = parse_enum(PaymentFrequency, payment_frequency, "payment frequency")
        installments_count = parse_duration(duration)
        today = self.clock()
        start = parse_date(issue_date, "issue_date") if issue_date else today
        notes = (notes or "").strip()
        if len(notes) > self.config.loan_notes_max_length:
            raise ValidationError(
                f"Notes cannot exceed {self.config.loan_notes_max_length} characters"
            )
        validate_terms(amount, rate, charges, installments_count, **self.limits)

        self.customer_manager.require_customer(customer_id)

        # Only a loan that passed validation consumes a code; the counter
        # and the insert commit together
        with self.storage.atomic():
            sequence = self.storage.next_sequence("loan_id")
            now = datetime.now(timezone.utc)
            loan = Loan(
                id=f"{self.config.loan_id_prefix}-{sequence:0{self.config.id_padding}d}",
                created_at=now,
                updated_at=now,
                customer_id=customer_id,
                principal=amount,
                interest_rate=rate,
                additional_charges=charges,
                payment_frequency=frequency,
                duration=installments_count,
                issue_date=start,
                notes=notes,
            )
            loan.installments = generate_installments(
                amount, rate, charges, frequency, installments_count, start
            )
            refresh_loan(loan, today)
            loan.version = self.storage.save_versioned(self.loans_table, loan.id, loan.to_dict(), 0)

        log_action(
            self.logger, "info", f"Created loan {loan.id}",
            action="loan.create", resource="loan", loan_id=loan.id, customer_id=customer_id,
            extra={
                "principal": str(amount),
                "interest_rate": str(rate),
                "total_amount": str(loan.total_amount),
                "payment_frequency": frequency.value,
                "duration": installments_count,
            }
        )
        return loan

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        """Get loan by ID"""
        data = self.storage.load(self.loans_table, loan_id)
        if data:
            return Loan.from_dict(data)
        return None

    def require_loan(self, loan_id: str) -> Loan:
        """
        Get loan by ID

        Raises:
            NotFoundError: If the loan does not exist
        """
        loan = self.get_loan(loan_id)
        if not loan:
            raise NotFoundError(f"Loan {loan_id} not found")
        return loan

    def list_loans(self, status: Optional[Any] = None,
                   customer_id: Optional[str] = None) -> List[Loan]:
        """List loans, optionally filtered by status and customer"""
        filters: Dict[str, Any] = {}
        if status is not None:
            filters['status'] = parse_enum(LoanStatus, status, "loan status").value
        if customer_id:
            filters['customer_id'] = customer_id
        loans = [Loan.from_dict(data) for data in self.storage.find(self.loans_table, filters)]
        return sorted(loans, key=lambda loan: loan.id)

    def update_loan(self, loan_id: str, **changes: Any) -> Loan:
        """
        Edit loan terms and recalculate the schedule

        Raises:
            NotFoundError: If the loan or a new customer does not exist
            ValidationError: If the edit is invalid
            ConflictError: If concurrent writers kept winning
        """
        new_customer = changes.get("customer_id")
        if new_customer:
            self.customer_manager.require_customer(new_customer)

        def apply(loan: Loan, today: date) -> Loan:
            return recalculate(
                loan, changes, today,
                allow_truncation=self.config.allow_duration_truncation,
                limits=self.limits,
                notes_max_length=self.config.loan_notes_max_length
            )

        loan = self._mutate(loan_id, apply)
        log_action(
            self.logger, "info", f"Updated loan {loan_id}",
            action="loan.update", resource="loan", loan_id=loan_id,
            extra={"fields": sorted(changes), "total_amount": str(loan.total_amount)}
        )
        return loan

    def delete_loan(self, loan_id: str) -> None:
        """
        Delete a loan that has no payments

        Raises:
            NotFoundError: If the loan does not exist
            ValidationError: If any payment has been recorded
        """
        loan = self.require_loan(loan_id)
        if loan.payment_history or any(i.paid_amount > ZERO for i in loan.installments):
            raise ValidationError(f"Loan {loan_id} has recorded payments and cannot be deleted")

        self.storage.delete(self.loans_table, loan_id)
        log_action(
            self.logger, "info", f"Deleted loan {loan_id}",
            action="loan.delete", resource="loan", loan_id=loan_id,
            customer_id=loan.customer_id
        )

    def set_loan_status(self, loan_id: str, status: Any) -> Loan:
        """
        Apply an operator status change (e.g. mark defaulted)

        Raises:
            ValidationError: If the transition is not allowed
        """
        new_status = parse_enum(LoanStatus, status, "loan status")

        def apply(loan: Loan, today: date) -> Loan:
            return transition_loan_status(loan, new_status, today)

        loan = self._mutate(loan_id, apply)
        log_action(
            self.logger, "info", f"Loan {loan_id} status set to {loan.status.value}",
            action="loan.status", resource="loan", loan_id=loan_id,
            extra={"requested": new_status.value}
        )
        return loan

    def pay_installment(
        self,
        loan_id: str,
        installment_number: int,
        amount: Any,
        notes: str = "",
        paid_date: Optional[Any] = None,
        method: Any = PaymentMethod.CASH
    ) -> InstallmentPaymentResult:
        """Pay towards one installment and persist the loan"""
        notes = self._check_installment_notes(notes)
        return self._mutate(
            loan_id,
            lambda loan, today: self.ledger.pay_installment(
                loan, installment_number, amount, notes=notes, paid_date=paid_date, method=method
            )
        )

    def pay_bulk(
        self,
        loan_id: str,
        total_amount: Any,
        notes: str = "",
        start_from_installment: Optional[int] = None,
        method: Any = PaymentMethod.CASH
    ) -> BulkPaymentResult:
        """Spread a payment over consecutive installments and persist the loan"""
        notes = self._check_installment_notes(notes)
        return self._mutate(
            loan_id,
            lambda loan, today: self.ledger.pay_bulk(
                loan, total_amount, notes=notes,
                start_from_installment=start_from_installment, method=method
            )
        )

    def add_legacy_payment(
        self,
        loan_id: str,
        amount: Any,
        method: Any = PaymentMethod.CASH,
        notes: Optional[str] = None
    ) -> Loan:
        """Record an untargeted whole-loan payment and return the updated loan"""
        def apply(loan: Loan, today: date) -> Loan:
            self.ledger.add_legacy_payment(loan, amount, method=method, notes=notes)
            return loan

        return self._mutate(loan_id, apply)

    def update_installment(
        self,
        loan_id: str,
        installment_number: int,
        notes: Optional[str] = None,
        due_date: Optional[Any] = None,
        paid_date: Optional[Any] = None
    ) -> Installment:
        """
        Edit an installment's notes, due date or paid date

        Raises:
            NotFoundError: If the loan or installment does not exist
            ValidationError: If a due date leaves its neighbours' range, or a
                paid date is set on a slot without payments
        """
        if notes is not None:
            notes = self._check_installment_notes(notes)
        new_due = parse_date(due_date, "due_date") if due_date is not None else None
        new_paid = parse_date(paid_date, "paid_date") if paid_date is not None else None

        def apply(loan: Loan, today: date) -> Installment:
            installment = loan.get_installment(installment_number)

            if new_due is not None:
                index = installment_number - 1
                previous = loan.installments[index - 1] if index > 0 else None
                following = loan.installments[index + 1] if index + 1 < len(loan.installments) else None
                if previous and new_due <= previous.due_date:
                    raise ValidationError(
                        f"Due date must be after installment {previous.installment_number} "
                        f"({previous.due_date.isoformat()})"
                    )
                if following and new_due >= following.due_date:
                    raise ValidationError(
                        f"Due date must be before installment {following.installment_number} "
                        f"({following.due_date.isoformat()})"
                    )
                if not previous and new_due <= loan.issue_date:
                    raise ValidationError("Due date must be after the issue date")

            if new_paid is not None and installment.paid_amount <= ZERO:
                raise ValidationError("Paid date can only be set on an installment with payments")

            if notes is not None:
                installment.notes = notes
            if new_due is not None:
                installment.due_date = new_due
            if new_paid is not None:
                installment.paid_date = new_paid
            return installment

        installment = self._mutate(loan_id, apply)
        log_action(
            self.logger, "info", f"Updated installment {installment_number} of loan {loan_id}",
            action="installment.update", resource="loan", loan_id=loan_id,
            extra={"installment_number": installment_number}
        )
        return installment

    def process_overdue_loans(self) -> Dict[str, int]:
        """
        Re-derive statuses for every open loan and save the ones that changed

        Returns:
            Counts of loans checked, updated, newly overdue and lost to conflicts
        """
        results = {"loans_checked": 0, "loans_updated": 0, "marked_overdue": 0, "conflicts": 0}
        today = self.clock()

        for data in self.storage.load_all(self.loans_table):
            loan = Loan.from_dict(data)
            if loan.status == LoanStatus.COMPLETED:
                continue
            results["loans_checked"] += 1

            before = loan.to_dict()
            previous_status = loan.status
            refresh_loan(loan, today)
            if loan.to_dict() == before:
                continue

            loan.updated_at = datetime.now(timezone.utc)
            try:
                loan.version = self.storage.save_versioned(
                    self.loans_table, loan.id, loan.to_dict(), data.get('version', 0)
                )
            except ConflictError:
                # Another writer saved this loan and already re-derived it
                results["conflicts"] += 1
                self.logger.warning(
                    "Overdue sweep skipped loan %s after a concurrent update", loan.id,
                    extra={"action": "loan.overdue_sweep", "loan_id": loan.id}
                )
                continue

            results["loans_updated"] += 1
            if loan.status == LoanStatus.OVERDUE and previous_status != LoanStatus.OVERDUE:
                results["marked_overdue"] += 1

        log_action(
            self.logger, "info", "Overdue sweep finished",
            action="loan.overdue_sweep", resource="loan", extra=results
        )
        return results

    def get_payment_history(self, loan_id: str) -> List[PaymentRecord]:
        return list(self.require_loan(loan_id).payment_history)

    def _check_installment_notes(self, notes: Optional[str]) -> str:
        notes = (notes or "").strip()
        if len(notes) > self.config.installment_notes_max_length:
            raise ValidationError(
                f"Notes cannot exceed {self.config.installment_notes_max_length} characters"
            )
        return notes

    def _mutate(self, loan_id: str, mutation: Callable[[Loan, date], T]) -> T:
        """
        Load, mutate, derive and save a loan with optimistic concurrency.

        The mutation may raise to abort; nothing is saved in that case.
        """
        for attempt in range(self.max_retries + 1):
            loan = self.require_loan(loan_id)
            expected_version = loan.version
            today = self.clock()

            result = mutation(loan, today)
            refresh_loan(loan, today)
            loan.updated_at = datetime.now(timezone.utc)

            try:
                loan.version = self.storage.save_versioned(
                    self.loans_table, loan.id, loan.to_dict(), expected_version
                )
                return result
            except ConflictError:
                self.logger.warning(
                    "Version conflict saving loan %s (attempt %s of %s)",
                    loan_id, attempt + 1, self.max_retries + 1,
                    extra={"action": "loan.conflict", "loan_id": loan_id}
                )

        raise ConflictError(
            f"Loan {loan_id} was modified concurrently; gave up after {self.max_retries + 1} attempts"
        )
