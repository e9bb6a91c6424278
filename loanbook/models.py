"""
Loan Domain Model Module

The Loan aggregate with its owned installment schedule and append-only
payment history. Installments live in a list indexed by installment_number - 1;
numbering is dense and never changes after generation.
"""

from decimal import Decimal
from datetime import datetime, date
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum

from .errors import NotFoundError, ValidationError
from .money import ZERO, quantize_cents
from .storage import StorageRecord


class PaymentFrequency(Enum):
    """Installment frequency options"""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "active"          # Repayment in progress
    COMPLETED = "completed"    # paid_amount >= total_amount
    OVERDUE = "overdue"        # Final due date passed without full payment
    DEFAULTED = "defaulted"    # Set explicitly by an operator


class InstallmentStatus(Enum):
    """Installment states"""
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"


class PaymentMethod(Enum):
    """How a payment was received"""
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CHECK = "check"
    ONLINE = "online"


def parse_enum(enum_type, value: Any, field_name: str):
    """Coerce a raw value to an enum member, raising ValidationError"""
    if isinstance(value, enum_type):
        return value
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValidationError(f"Invalid {field_name} {value!r}; expected one of: {allowed}")


def parse_date(value: Any, field_name: str) -> date:
    """Coerce a date, datetime or ISO string to a date"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            pass
    raise ValidationError(f"{field_name} must be an ISO date (YYYY-MM-DD), got {value!r}")


def parse_duration(value: Any) -> int:
    """Coerce a whole number of installments (int or digit string), at least 1"""
    if isinstance(value, int) and not isinstance(value, bool):
        duration = value
    elif isinstance(value, str) and value.strip().isdigit():
        duration = int(value.strip())
    else:
        raise ValidationError(f"Duration must be a whole number, got {value!r}")
    if duration < 1:
        raise ValidationError("Duration must be at least 1")
    return duration


def _optional_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


@dataclass
class Installment:
    """One scheduled slot of the loan's total amount"""
    installment_number: int
    installment_amount: Decimal
    due_date: date
    paid_amount: Decimal = ZERO
    paid_date: Optional[date] = None
    status: InstallmentStatus = InstallmentStatus.PENDING
    notes: str = ""

    @property
    def amount_due(self) -> Decimal:
        """Amount still owed on this slot"""
        return max(ZERO, self.installment_amount - self.paid_amount)

    @property
    def is_paid(self) -> bool:
        return self.paid_amount >= self.installment_amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            'installment_number': self.installment_number,
            'installment_amount': str(self.installment_amount),
            'due_date': self.due_date.isoformat(),
            'paid_amount': str(self.paid_amount),
            'paid_date': self.paid_date.isoformat() if self.paid_date else None,
            'status': self.status.value,
            'notes': self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Installment':
        return cls(
            installment_number=data['installment_number'],
            installment_amount=Decimal(data['installment_amount']),
            due_date=date.fromisoformat(data['due_date']),
            paid_amount=Decimal(data.get('paid_amount', '0')),
            paid_date=_optional_date(data.get('paid_date')),
            status=InstallmentStatus(data.get('status', 'pending')),
            notes=data.get('notes') or "",
        )


@dataclass
class PaymentRecord:
    """Entry in the loan's append-only payment history"""
    id: str
    date: date
    amount: Decimal
    method: PaymentMethod = PaymentMethod.CASH
    notes: str = ""
    installment_number: Optional[int] = None  # None for untargeted legacy payments

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'date': self.date.isoformat(),
            'amount': str(self.amount),
            'method': self.method.value,
            'notes': self.notes,
            'installment_number': self.installment_number,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PaymentRecord':
        return cls(
            id=data['id'],
            date=date.fromisoformat(data['date']),
            amount=Decimal(data['amount']),
            method=PaymentMethod(data.get('method', 'cash')),
            notes=data.get('notes') or "",
            installment_number=data.get('installment_number'),
        )


def compute_total_amount(principal: Decimal, interest_rate: Decimal,
                         additional_charges: Decimal) -> Decimal:
    """principal + principal * interest_rate / 100 + additional_charges, in cents"""
    interest_amount = principal * interest_rate / Decimal('100')
    return quantize_cents(principal + interest_amount + additional_charges)


def validate_terms(principal: Decimal, interest_rate: Decimal, additional_charges: Decimal,
                   duration: int, min_principal: Decimal = Decimal('1'),
                   max_principal: Decimal = Decimal('10000000'),
                   max_interest_rate: Decimal = Decimal('100')) -> None:
    """
    Validate loan terms

    Raises:
        ValidationError: If any term is out of range
    """
    if principal < min_principal:
        raise ValidationError(f"Amount must be at least {min_principal}")
    if principal > max_principal:
        raise ValidationError(f"Amount cannot exceed {max_principal}")
    if interest_rate < ZERO:
        raise ValidationError("Interest rate cannot be negative")
    if interest_rate > max_interest_rate:
        raise ValidationError(f"Interest rate cannot exceed {max_interest_rate}%")
    if additional_charges < ZERO:
        raise ValidationError("Additional charges cannot be negative")
    if isinstance(duration, bool) or not isinstance(duration, int) or duration < 1:
        raise ValidationError("Duration must be a whole number of at least 1")


@dataclass
class Loan(StorageRecord):
    """
    Loan aggregate: terms, derived totals, installment schedule and payment history.

    Derived fields (total/paid/remaining amounts, due_date, statuses) are kept
    consistent by loanbook.status.refresh_loan, never updated piecemeal.
    """
    customer_id: str
    principal: Decimal
    payment_frequency: PaymentFrequency
    duration: int
    issue_date: date
    interest_rate: Decimal = ZERO
    additional_charges: Decimal = ZERO
    notes: str = ""
    status: LoanStatus = LoanStatus.ACTIVE

    # Derived figures
    total_amount: Decimal = ZERO
    paid_amount: Decimal = ZERO
    remaining_amount: Decimal = ZERO
    installment_amount: Decimal = ZERO
    due_date: Optional[date] = None

    installments: List[Installment] = field(default_factory=list)
    payment_history: List[PaymentRecord] = field(default_factory=list)
    version: int = 0

    def __post_init__(self):
        if self.duration < 1:
            raise ValidationError("Duration must be at least 1")
        self.total_amount = compute_total_amount(
            self.principal, self.interest_rate, self.additional_charges
        )

    @property
    def interest_amount(self) -> Decimal:
        return quantize_cents(self.principal * self.interest_rate / Decimal('100'))

    @property
    def completion_percentage(self) -> int:
        """Rounded share of the total already paid"""
        if self.total_amount <= ZERO:
            return 0
        return int((self.paid_amount / self.total_amount * 100).to_integral_value())

    @property
    def next_due_installment(self) -> Optional[Installment]:
        """Lowest-numbered installment that is not fully paid"""
        for installment in self.installments:
            if installment.status != InstallmentStatus.PAID:
                return installment
        return None

    @property
    def overdue_installments(self) -> List[Installment]:
        return [i for i in self.installments if i.status == InstallmentStatus.OVERDUE]

    @property
    def paid_installments_count(self) -> int:
        return sum(1 for i in self.installments if i.status == InstallmentStatus.PAID)

    @property
    def unallocated_amount(self) -> Decimal:
        """Legacy payments recorded against the loan but not against any installment"""
        return sum(
            (p.amount for p in self.payment_history if p.installment_number is None),
            ZERO
        )

    def days_remaining(self, today: date) -> Optional[int]:
        if not self.due_date:
            return None
        return (self.due_date - today).days

    def get_installment(self, installment_number: int) -> Installment:
        """
        Look up an installment by number

        Raises:
            NotFoundError: If the loan has no such installment
        """
        if (isinstance(installment_number, bool) or not isinstance(installment_number, int)
                or not 1 <= installment_number <= len(self.installments)):
            raise NotFoundError(f"Installment {installment_number} not found on loan {self.id}")
        return self.installments[installment_number - 1]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'customer_id': self.customer_id,
            'principal': str(self.principal),
            'interest_rate': str(self.interest_rate),
            'additional_charges': str(self.additional_charges),
            'payment_frequency': self.payment_frequency.value,
            'duration': self.duration,
            'issue_date': self.issue_date.isoformat(),
            'due_date': self.due_date.isoformat() if self.due_date else None,
            'notes': self.notes,
            'status': self.status.value,
            'total_amount': str(self.total_amount),
            'paid_amount': str(self.paid_amount),
            'remaining_amount': str(self.remaining_amount),
            'installment_amount': str(self.installment_amount),
            'installments': [i.to_dict() for i in self.installments],
            'payment_history': [p.to_dict() for p in self.payment_history],
            'version': self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        loan = cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            customer_id=data['customer_id'],
            principal=Decimal(data['principal']),
            interest_rate=Decimal(data.get('interest_rate', '0')),
            additional_charges=Decimal(data.get('additional_charges', '0')),
            payment_frequency=PaymentFrequency(data['payment_frequency']),
            duration=data['duration'],
            issue_date=date.fromisoformat(data['issue_date']),
            notes=data.get('notes') or "",
            status=LoanStatus(data.get('status', 'active')),
            installments=[Installment.from_dict(i) for i in data.get('installments', [])],
            payment_history=[PaymentRecord.from_dict(p) for p in data.get('payment_history', [])],
            version=data.get('version', 0),
        )
        loan.paid_amount = Decimal(data.get('paid_amount', '0'))
        loan.remaining_amount = Decimal(data.get('remaining_amount', str(loan.total_amount)))
        loan.installment_amount = Decimal(data.get('installment_amount', '0'))
        loan.due_date = _optional_date(data.get('due_date'))
        return loan
