"""
Loan, installment and payment endpoints
"""

from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends

from .system import LoanbookSystem, get_loanbook_system, http_error
from .schemas import (
    BulkPaymentRequest, CreateLoanRequest, InstallmentPaymentRequest, LegacyPaymentRequest,
    LoanStatusRequest, UpdateInstallmentRequest, UpdateLoanRequest
)
from ..errors import LoanbookError
from ..models import Loan


router = APIRouter()


def loan_response(loan: Loan, system: LoanbookSystem) -> Dict[str, Any]:
    data = loan.to_dict()
    next_due = loan.next_due_installment
    data.update({
        "interest_amount": str(loan.interest_amount),
        "completion_percentage": loan.completion_percentage,
        "paid_installments_count": loan.paid_installments_count,
        "unallocated_amount": str(loan.unallocated_amount),
        "next_due_installment": next_due.to_dict() if next_due else None,
        "days_remaining": loan.days_remaining(system.clock()),
    })
    return data


@router.post("", status_code=201)
async def create_loan(
    request: CreateLoanRequest,
    system: LoanbookSystem = Depends(get_loanbook_system)
):
    """Create a loan with its installment schedule"""
    try:
        loan = system.loan_manager.create_loan(
            customer_id=request.customer_id,
            principal=request.principal,
            payment_frequency=request.payment_frequency,
            duration=request.duration,
            interest_rate=request.interest_rate,
            issue_date=request.issue_date,
            additional_charges=request.additional_charges,
            notes=request.notes or ""
        )
    except LoanbookError as e:
        raise http_error(e)

    return {
        "loan_id": loan.id,
        "loan": loan_response(loan, system),
        "message": "Loan created successfully"
    }


@router.get("")
async def list_loans(
    status: Optional[str] = None,
    customer_id: Optional[str] = None,
    system: LoanbookSystem = Depends(get_loanbook_system)
):
    """List loans filtered by status and customer"""
    try:
        loans = system.loan_manager.list_loans(status=status, customer_id=customer_id)
    except LoanbookError as e:
        raise http_error(e)
    return {"loans": [loan_response(loan, system) for loan in loans], "count": len(loans)}


@router.get("/stats")
async def get_loan_stats(system: LoanbookSystem = Depends(get_loanbook_system)):
    """Portfolio statistics"""
    return system.reporting.get_loan_stats()


@router.get("/installments/overdue")
async def get_overdue_installments(
    customer_id: Optional[str] = None,
    days_overdue: Optional[int] = None,
    page: int = 1,
    limit: int = 20,
    system: LoanbookSystem = Depends(get_loanbook_system)
):
    """Overdue installments across all loans"""
    try:
        return system.reporting.get_overdue_installments(
            customer_id=customer_id, min_days_overdue=days_overdue, page=page, limit=limit
        )
    except LoanbookError as e:
        raise http_error(e)


@router.get("/installments/upcoming")
async def get_upcoming_installments(
    days: int = 7,
    customer_id: Optional[str] = None,
    system: LoanbookSystem = Depends(get_loanbook_system)
):
    """Installments falling due in the next few days"""
    try:
        return system.reporting.get_upcoming_installments(days=days, customer_id=customer_id)
    except LoanbookError as e:
        raise http_error(e)


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    system: LoanbookSystem = Depends(get_loanbook_system)
):
    """Get loan details"""
    try:
        loan = system.loan_manager.require_loan(loan_id)
    except LoanbookError as e:
        raise http_error(e)
    return loan_response(loan, system)


@router.put("/{loan_id}")
async def update_loan(
    loan_id: str,
    request: UpdateLoanRequest,
    system: LoanbookSystem = Depends(get_loanbook_system)
):
    """Edit loan terms; the schedule is recalculated"""
    try:
        loan = system.loan_manager.update_loan(loan_id, **request.model_dump(exclude_none=True))
    except LoanbookError as e:
        raise http_error(e)
    return loan_response(loan, system)


@router.delete("/{loan_id}")
async def delete_loan(
    loan_id: str,
    system: LoanbookSystem = Depends(get_loanbook_system)
):
    """Delete a loan without payments"""
    try:
        system.loan_manager.delete_loan(loan_id)
    except LoanbookError as e:
        raise http_error(e)
    return {"message": "Loan deleted successfully"}


@router.put("/{loan_id}/status")
async def set_loan_status(
    loan_id: str,
    request: LoanStatusRequest,
    system: LoanbookSystem = Depends(get_loanbook_system)
):
    """Change loan status (e.g. mark defaulted)"""
    try:
        loan = system.loan_manager.set_loan_status(loan_id, request.status)
    except LoanbookError as e:
        raise http_error(e)
    return loan_response(loan, system)


@router.get("/{loan_id}/schedule")
async def get_loan_schedule(
    loan_id: str,
    system: LoanbookSystem = Depends(get_loanbook_system)
):
    """Repayment schedule with progress"""
    try:
        return system.reporting.get_schedule(loan_id)
    except LoanbookError as e:
        raise http_error(e)


@router.get("/{loan_id}/installments")
async def list_installments(
    loan_id: str,
    status: Optional[str] = None,
    sort_by: str = "installment_number",
    sort_order: str = "asc",
    page: int = 1,
    limit: int = 50,
    system: LoanbookSystem = Depends(get_loanbook_system)
):
    """Paginated installments with summary"""
    try:
        return system.reporting.list_installments(
            loan_id, status=status, sort_by=sort_by,
            descending=sort_order == "desc", page=page, limit=limit
        )
    except LoanbookError as e:
        raise http_error(e)


@router.post("/{loan_id}/installments/bulk-payment")
async def bulk_payment(
    loan_id: str,
    request: BulkPaymentRequest,
    system: LoanbookSystem = Depends(get_loanbook_system)
):
    """Spread one payment over consecutive installments"""
    try:
        result = system.loan_manager.pay_bulk(
            loan_id,
            request.total_amount,
            notes=request.notes or "",
            start_from_installment=request.start_from_installment,
            method=request.payment_method
        )
    except LoanbookError as e:
        raise http_error(e)
    return result.to_dict()


@router.put("/{loan_id}/installments/{installment_number}")
async def update_installment(
    loan_id: str,
    installment_number: int,
    request: UpdateInstallmentRequest,
    system: LoanbookSystem = Depends(get_loanbook_system)
):
    """Edit an installment's notes, due date or paid date"""
    try:
        installment = system.loan_manager.update_installment(
            loan_id, installment_number,
            notes=request.notes, due_date=request.due_date, paid_date=request.paid_date
        )
    except LoanbookError as e:
        raise http_error(e)
    return installment.to_dict()


@router.post("/{loan_id}/installments/{installment_number}/payment")
async def pay_installment(
    loan_id: str,
    installment_number: int,
    request: InstallmentPaymentRequest,
    system: LoanbookSystem = Depends(get_loanbook_system)
):
    """Pay towards one installment"""
    try:
        result = system.loan_manager.pay_installment(
            loan_id, installment_number, request.amount,
            notes=request.notes or "",
            paid_date=request.paid_date,
            method=request.payment_method
        )
    except LoanbookError as e:
        raise http_error(e)

    return {
        "payment_id": result.payment_id,
        "installment": result.installment.to_dict(),
        "loan": result.loan.to_dict(),
        "message": f"Payment recorded for installment {installment_number}"
    }


@router.post("/{loan_id}/payments")
async def add_legacy_payment(
    loan_id: str,
    request: LegacyPaymentRequest,
    system: LoanbookSystem = Depends(get_loanbook_system)
):
    """Record an untargeted payment against the whole loan (deprecated)"""
    try:
        loan = system.loan_manager.add_legacy_payment(
            loan_id, request.amount, method=request.payment_method, notes=request.notes
        )
    except LoanbookError as e:
        raise http_error(e)
    return loan_response(loan, system)
