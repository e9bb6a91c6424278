"""
Test suite for loan recalculation on edits
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone, date

from loanbook.errors import ValidationError
from loanbook.models import InstallmentStatus, Loan, LoanStatus, PaymentFrequency, PaymentRecord
from loanbook.recalculation import normalize_changes, recalculate
from loanbook.schedule import generate_installments
from loanbook.status import refresh_loan


TODAY = date(2024, 2, 20)


def make_loan(duration=3):
    now = datetime.now(timezone.utc)
    loan = Loan(
        id="LON-0001",
        created_at=now,
        updated_at=now,
        customer_id="CUS-0001",
        principal=Decimal('1000'),
        interest_rate=Decimal('10'),
        payment_frequency=PaymentFrequency.MONTHLY,
        duration=duration,
        issue_date=date(2024, 1, 15),
    )
    loan.installments = generate_installments(
        loan.principal, loan.interest_rate, loan.additional_charges,
        loan.payment_frequency, loan.duration, loan.issue_date
    )
    return refresh_loan(loan, TODAY)


def pay(loan, number, amount):
    installment = loan.installments[number - 1]
    installment.paid_amount += Decimal(amount)
    loan.payment_history.append(PaymentRecord(
        id=f"p{number}", date=TODAY, amount=Decimal(amount), installment_number=number
    ))
    refresh_loan(loan, TODAY)


class TestNormalizeChanges:
    """Test edit value coercion"""

    def test_coerces_values(self):
        """Test raw strings become typed values"""
        normalized = normalize_changes({
            "principal": "1500.555",
            "payment_frequency": "weekly",
            "duration": "6",
            "issue_date": "2024-03-01",
        })
        assert normalized["principal"] == Decimal('1500.56')
        assert normalized["payment_frequency"] == PaymentFrequency.WEEKLY
        assert normalized["duration"] == 6
        assert normalized["issue_date"] == date(2024, 3, 1)

    def test_unknown_field_rejected(self):
        """Test derived fields cannot be edited directly"""
        with pytest.raises(ValidationError):
            normalize_changes({"paid_amount": "10"})

    def test_bad_duration_rejected(self):
        """Test non-integer durations are rejected"""
        with pytest.raises(ValidationError):
            normalize_changes({"duration": "2.5"})
        with pytest.raises(ValidationError):
            normalize_changes({"duration": 0})

    def test_notes_length(self):
        """Test overlong notes are rejected"""
        with pytest.raises(ValidationError):
            normalize_changes({"notes": "x" * 1001})


class TestScheduleRebuild:
    """Test edits to frequency, duration or issue date"""

    def test_extend_duration_after_payment(self):
        """Test duration 3 -> 5 with slot 1 paid"""
        loan = make_loan()
        pay(loan, 1, '367')

        recalculate(loan, {"duration": 5}, TODAY)

        assert loan.duration == 5
        assert len(loan.installments) == 5
        assert [i.installment_amount for i in loan.installments] == [
            Decimal('367.00'), Decimal('184.00'), Decimal('184.00'),
            Decimal('184.00'), Decimal('181.00')
        ]
        assert loan.installments[0].status == InstallmentStatus.PAID
        assert loan.installments[3].paid_amount == 0
        assert loan.installments[4].status == InstallmentStatus.PENDING
        assert loan.paid_amount == Decimal('367.00')
        assert loan.remaining_amount == Decimal('733.00')
        assert loan.due_date == date(2024, 6, 15)

    def test_change_issue_date_moves_due_dates(self):
        """Test a new issue date shifts every due date"""
        loan = make_loan()
        recalculate(loan, {"issue_date": "2024-02-01"}, TODAY)
        assert [i.due_date for i in loan.installments] == [
            date(2024, 3, 1), date(2024, 4, 1), date(2024, 5, 1)
        ]

    def test_truncation_allowed_logs_and_drops(self):
        """Test shortening below a paid slot when allowed"""
        loan = make_loan()
        pay(loan, 3, '100')

        recalculate(loan, {"duration": 2}, TODAY)

        assert len(loan.installments) == 2
        assert loan.paid_amount == 0
        assert len(loan.payment_history) == 1

    def test_truncation_refused_when_disabled(self):
        """Test shortening below a paid slot can be refused"""
        loan = make_loan()
        pay(loan, 3, '100')
        before = loan.to_dict()

        with pytest.raises(ValidationError):
            recalculate(loan, {"duration": 2}, TODAY, allow_truncation=False)
        assert loan.to_dict() == before


class TestAmountResplit:
    """Test edits to principal, rate or charges"""

    def test_rate_change_keeps_dates(self):
        """Test a new rate re-splits amounts only"""
        loan = make_loan()
        dates = [i.due_date for i in loan.installments]

        recalculate(loan, {"interest_rate": "20"}, TODAY)

        assert loan.total_amount == Decimal('1200.00')
        assert [i.installment_amount for i in loan.installments] == [
            Decimal('400.00'), Decimal('400.00'), Decimal('400.00')
        ]
        assert [i.due_date for i in loan.installments] == dates

    def test_principal_increase_keeps_payment(self):
        """Test a paid slot keeps its payment after a principal change"""
        loan = make_loan()
        pay(loan, 1, '367')

        recalculate(loan, {"principal": "2000"}, TODAY)

        assert loan.total_amount == Decimal('2200.00')
        assert loan.installments[0].paid_amount == Decimal('367.00')
        assert loan.installments[0].status == InstallmentStatus.PARTIAL
        assert sum(i.installment_amount for i in loan.installments) == Decimal('2200.00')

    def test_total_below_paid_rejected(self):
        """Test an edit cannot push the total under what was paid"""
        loan = make_loan()
        pay(loan, 1, '367')
        pay(loan, 2, '367')
        before = loan.to_dict()

        with pytest.raises(ValidationError):
            recalculate(loan, {"principal": "500"}, TODAY)
        assert loan.to_dict() == before

    def test_decrease_locks_paid_slot(self):
        """Test a lower total keeps overpaid slots at their paid amount"""
        loan = make_loan()
        pay(loan, 1, '367')

        recalculate(loan, {"principal": "800", "interest_rate": "0"}, TODAY)

        assert [i.installment_amount for i in loan.installments] == [
            Decimal('367.00'), Decimal('217.00'), Decimal('216.00')
        ]
        assert loan.installments[0].status == InstallmentStatus.PAID

    def test_limits_enforced(self):
        """Test principal limits apply to edits"""
        loan = make_loan()
        with pytest.raises(ValidationError):
            recalculate(loan, {"principal": "50"}, TODAY, limits={"min_principal": Decimal('100')})

    def test_due_date_edit_ignored(self):
        """Test an explicit due date is re-derived from the schedule"""
        loan = make_loan()
        recalculate(loan, {"due_date": "2030-01-01"}, TODAY)
        assert loan.due_date == date(2024, 4, 15)

    def test_notes_only_edit(self):
        """Test editing notes leaves the schedule untouched"""
        loan = make_loan()
        amounts = [i.installment_amount for i in loan.installments]
        recalculate(loan, {"notes": "  restructured  "}, TODAY)
        assert loan.notes == "restructured"
        assert [i.installment_amount for i in loan.installments] == amounts
        assert loan.status == LoanStatus.ACTIVE
