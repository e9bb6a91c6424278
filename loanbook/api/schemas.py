"""
Pydantic schemas for API requests

Amounts and rates are accepted as decimal strings (numbers also work) and are
parsed by the ledger, so malformed values surface as 400 responses.
"""

from typing import Any, Optional
from pydantic import BaseModel, Field


# Customer schemas
class CreateCustomerRequest(BaseModel):
    full_name: str
    nic: str
    phone: str
    email: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None


class UpdateCustomerRequest(BaseModel):
    full_name: Optional[str] = None
    nic: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None
    is_active: Optional[bool] = None


# Loan schemas
class CreateLoanRequest(BaseModel):
    customer_id: str
    principal: Any = Field(..., description="Amount lent, decimal string")
    payment_frequency: str = Field(..., description="daily, weekly or monthly")
    duration: Any = Field(..., description="Number of installments")
    interest_rate: Any = Field(None, description="Flat percentage of the principal")
    issue_date: Optional[str] = None  # ISO date string, defaults to today
    additional_charges: Any = Field("0", description="Flat fees, decimal string")
    notes: Optional[str] = ""


class UpdateLoanRequest(BaseModel):
    customer_id: Optional[str] = None
    principal: Any = None
    interest_rate: Any = None
    payment_frequency: Optional[str] = None
    duration: Any = None
    issue_date: Optional[str] = None
    due_date: Optional[str] = None  # Accepted, but always re-derived from the schedule
    additional_charges: Any = None
    notes: Optional[str] = None


class LoanStatusRequest(BaseModel):
    status: str


class InstallmentPaymentRequest(BaseModel):
    amount: Any = Field(..., description="Decimal string")
    notes: Optional[str] = ""
    paid_date: Optional[str] = None
    payment_method: str = "cash"


class BulkPaymentRequest(BaseModel):
    total_amount: Any = Field(..., description="Decimal string")
    notes: Optional[str] = ""
    start_from_installment: Optional[int] = None
    payment_method: str = "cash"


class LegacyPaymentRequest(BaseModel):
    amount: Any = Field(..., description="Decimal string")
    payment_method: str = "cash"
    notes: Optional[str] = None


class UpdateInstallmentRequest(BaseModel):
    notes: Optional[str] = None
    due_date: Optional[str] = None
    paid_date: Optional[str] = None
