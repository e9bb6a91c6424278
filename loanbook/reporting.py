"""
Loan Reporting Module

Read-only views over the loan book: repayment schedule with progress,
paginated installment listings, portfolio statistics, and the overdue and
upcoming installment worklists used by collectors.

Statuses are re-derived against today's date on a copy of each loan before
reporting, so the views are correct even between overdue sweeps. Nothing here
writes to storage.
"""

from decimal import Decimal
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional
import math

from .errors import ValidationError
from .models import Installment, InstallmentStatus, Loan, LoanStatus, parse_enum
from .money import ZERO
from .status import refresh_loan
from .loans import LoanManager
from .customers import CustomerManager
from .logging_config import get_logger


SORTABLE_FIELDS = ("installment_number", "due_date", "installment_amount", "paid_amount", "status")


def _money(value: Decimal) -> str:
    return str(value)


def _pagination(total: int, page: int, limit: int) -> Dict[str, Any]:
    return {
        'current_page': page,
        'total_pages': math.ceil(total / limit) if total else 0,
        'total_count': total,
        'has_next': page * limit < total,
        'has_prev': page > 1,
    }


def _check_page(page: int, limit: int) -> None:
    if page < 1:
        raise ValidationError("Page must be at least 1")
    if not 1 <= limit <= 500:
        raise ValidationError("Limit must be between 1 and 500")


class LoanReporting:
    """
    Builds reporting views for loans and installments
    """

    def __init__(
        self,
        loan_manager: LoanManager,
        customer_manager: CustomerManager,
        clock: Optional[Callable[[], date]] = None
    ):
        self.loan_manager = loan_manager
        self.customer_manager = customer_manager
        self.clock = clock or loan_manager.clock
        self.logger = get_logger("loanbook.reporting")

    def _current(self, loan: Loan, today: date) -> Loan:
        return refresh_loan(loan, today)

    def _customer_name(self, customer_id: str, cache: Dict[str, Optional[str]]) -> Optional[str]:
        if customer_id not in cache:
            customer = self.customer_manager.get_customer(customer_id)
            cache[customer_id] = customer.full_name if customer else None
        return cache[customer_id]

    def get_schedule(self, loan_id: str) -> Dict[str, Any]:
        """
        Repayment schedule for one loan with progress figures

        Raises:
            NotFoundError: If the loan does not exist
        """
        today = self.clock()
        loan = self._current(self.loan_manager.require_loan(loan_id), today)
        next_due = loan.next_due_installment

        schedule = [
            {
                'installment_number': i.installment_number,
                'amount': _money(i.installment_amount),
                'due_date': i.due_date.isoformat(),
                'status': i.status.value,
                'paid_date': i.paid_date.isoformat() if i.paid_date else None,
                'paid_amount': _money(i.paid_amount),
            }
            for i in loan.installments
        ]

        self.logger.debug("Built schedule for loan %s", loan.id, extra={"loan_id": loan.id})
        return {
            'loan_id': loan.id,
            'loan_details': {
                'principal': _money(loan.principal),
                'interest_rate': str(loan.interest_rate),
                'additional_charges': _money(loan.additional_charges),
                'total_amount': _money(loan.total_amount),
                'payment_frequency': loan.payment_frequency.value,
                'duration': loan.duration,
                'installment_amount': _money(loan.installment_amount),
                'issue_date': loan.issue_date.isoformat(),
                'due_date': loan.due_date.isoformat() if loan.due_date else None,
                'status': loan.status.value,
            },
            'schedule': schedule,
            'progress': {
                'completion_percentage': loan.completion_percentage,
                'paid_installments': loan.paid_installments_count,
                'remaining_installments': len(loan.installments) - loan.paid_installments_count,
                'next_due_date': next_due.due_date.isoformat() if next_due else None,
                'days_remaining': loan.days_remaining(today),
            },
        }

    def list_installments(
        self,
        loan_id: str,
        status: Optional[Any] = None,
        sort_by: str = "installment_number",
        descending: bool = False,
        page: int = 1,
        limit: int = 50
    ) -> Dict[str, Any]:
        """
        Paginated installment listing with a per-status summary

        The summary always covers the whole schedule, not just the page.
        """
        _check_page(page, limit)
        if sort_by not in SORTABLE_FIELDS:
            raise ValidationError(f"Cannot sort by {sort_by}; expected one of: {', '.join(SORTABLE_FIELDS)}")

        loan = self._current(self.loan_manager.require_loan(loan_id), self.clock())
        installments = loan.installments
        if status is not None:
            wanted = parse_enum(InstallmentStatus, status, "installment status")
            installments = [i for i in installments if i.status == wanted]

        def sort_key(installment: Installment):
            value = getattr(installment, sort_by)
            return value.value if sort_by == "status" else value

        installments = sorted(installments, key=sort_key, reverse=descending)
        start = (page - 1) * limit
        page_items = installments[start:start + limit]

        def total_for(wanted: InstallmentStatus, attribute: str) -> Decimal:
            return sum(
                (getattr(i, attribute) for i in loan.installments if i.status == wanted), ZERO
            )

        summary = {
            'total_paid': _money(total_for(InstallmentStatus.PAID, 'paid_amount')),
            'total_pending': _money(total_for(InstallmentStatus.PENDING, 'installment_amount')),
        }
        for member in InstallmentStatus:
            summary[f'{member.value}_count'] = sum(1 for i in loan.installments if i.status == member)

        return {
            'loan_id': loan.id,
            'total_installments': len(loan.installments),
            'installments': [i.to_dict() for i in page_items],
            'summary': summary,
            'pagination': _pagination(len(installments), page, limit),
        }

    def get_loan_stats(self) -> Dict[str, Any]:
        """Portfolio counts per status and outstanding balance"""
        today = self.clock()
        loans = [self._current(loan, today) for loan in self.loan_manager.list_loans()]

        counts = {member.value: 0 for member in LoanStatus}
        for loan in loans:
            counts[loan.status.value] += 1

        outstanding = sum(
            (loan.remaining_amount for loan in loans
             if loan.status in (LoanStatus.ACTIVE, LoanStatus.OVERDUE)),
            ZERO
        )
        return {
            'total_loans': len(loans),
            'active_loans': counts['active'],
            'completed_loans': counts['completed'],
            'overdue_loans': counts['overdue'],
            'defaulted_loans': counts['defaulted'],
            'total_principal': _money(sum((loan.principal for loan in loans), ZERO)),
            'total_outstanding': _money(outstanding),
        }

    def get_overdue_installments(
        self,
        customer_id: Optional[str] = None,
        min_days_overdue: Optional[int] = None,
        page: int = 1,
        limit: int = 20
    ) -> Dict[str, Any]:
        """Overdue installments across loans, oldest due date first"""
        _check_page(page, limit)
        today = self.clock()
        names: Dict[str, Optional[str]] = {}
        rows: List[Dict[str, Any]] = []

        for loan in self.loan_manager.list_loans(customer_id=customer_id):
            loan = self._current(loan, today)
            for installment in loan.overdue_installments:
                days_overdue = (today - installment.due_date).days
                if min_days_overdue is not None and days_overdue < min_days_overdue:
                    continue
                rows.append({
                    'loan_id': loan.id,
                    'customer_id': loan.customer_id,
                    'customer_name': self._customer_name(loan.customer_id, names),
                    'installment_number': installment.installment_number,
                    'due_date': installment.due_date,
                    'installment_amount': installment.installment_amount,
                    'paid_amount': installment.paid_amount,
                    'amount_due': installment.amount_due,
                    'days_overdue': days_overdue,
                })

        rows.sort(key=lambda row: (row['due_date'], row['loan_id'], row['installment_number']))
        total_amount = sum((row['amount_due'] for row in rows), ZERO)
        average_days = round(sum(row['days_overdue'] for row in rows) / len(rows), 1) if rows else 0

        start = (page - 1) * limit
        return {
            'installments': [self._serialize_row(row) for row in rows[start:start + limit]],
            'summary': {
                'total_overdue_amount': _money(total_amount),
                'total_overdue_count': len(rows),
                'affected_loans_count': len({row['loan_id'] for row in rows}),
                'average_days_overdue': average_days,
            },
            'pagination': _pagination(len(rows), page, limit),
        }

    def get_upcoming_installments(self, days: int = 7,
                                  customer_id: Optional[str] = None) -> Dict[str, Any]:
        """Pending or partial installments due within the next `days` days"""
        if days < 0:
            raise ValidationError("Days must not be negative")
        today = self.clock()
        window_end = today + timedelta(days=days)
        names: Dict[str, Optional[str]] = {}
        rows: List[Dict[str, Any]] = []

        for loan in self.loan_manager.list_loans(customer_id=customer_id):
            loan = self._current(loan, today)
            for installment in loan.installments:
                if installment.status not in (InstallmentStatus.PENDING, InstallmentStatus.PARTIAL):
                    continue
                if not today <= installment.due_date <= window_end:
                    continue
                rows.append({
                    'loan_id': loan.id,
                    'customer_id': loan.customer_id,
                    'customer_name': self._customer_name(loan.customer_id, names),
                    'installment_number': installment.installment_number,
                    'due_date': installment.due_date,
                    'installment_amount': installment.installment_amount,
                    'paid_amount': installment.paid_amount,
                    'amount_due': installment.amount_due,
                    'days_until_due': (installment.due_date - today).days,
                })

        rows.sort(key=lambda row: (row['due_date'], row['loan_id'], row['installment_number']))
        return {
            'installments': [self._serialize_row(row) for row in rows],
            'summary': {
                'total_upcoming_amount': _money(sum((row['amount_due'] for row in rows), ZERO)),
                'total_upcoming_count': len(rows),
                'due_today_count': sum(1 for row in rows if row['days_until_due'] == 0),
                'due_tomorrow_count': sum(1 for row in rows if row['days_until_due'] == 1),
                'due_this_week_count': sum(1 for row in rows if row['days_until_due'] <= 7),
            },
        }

    @staticmethod
    def _serialize_row(row: Dict[str, Any]) -> Dict[str, Any]:
        result = dict(row)
        result['due_date'] = row['due_date'].isoformat()
        for key in ('installment_amount', 'paid_amount', 'amount_due'):
            result[key] = _money(row[key])
        return result
