"""
Customer endpoints
"""

from fastapi import APIRouter, Depends, status

from .system import LoanbookSystem, get_loanbook_system, http_error
from .schemas import CreateCustomerRequest, UpdateCustomerRequest
from ..errors import LoanbookError


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_customer(
    request: CreateCustomerRequest,
    system: LoanbookSystem = Depends(get_loanbook_system)
):
    """Register a new customer"""
    try:
        customer = system.customer_manager.create_customer(
            full_name=request.full_name,
            nic=request.nic,
            phone=request.phone,
            email=request.email,
            address=request.address,
            notes=request.notes
        )
    except LoanbookError as e:
        raise http_error(e)

    return {
        "customer_id": customer.id,
        "customer": customer.to_dict(),
        "message": "Customer created successfully"
    }


@router.get("")
async def list_customers(
    active_only: bool = False,
    system: LoanbookSystem = Depends(get_loanbook_system)
):
    """List customers"""
    customers = system.customer_manager.list_customers(active_only=active_only)
    return {"customers": [c.to_dict() for c in customers], "count": len(customers)}


@router.get("/{customer_id}")
async def get_customer(
    customer_id: str,
    system: LoanbookSystem = Depends(get_loanbook_system)
):
    """Get customer details"""
    try:
        return system.customer_manager.require_customer(customer_id).to_dict()
    except LoanbookError as e:
        raise http_error(e)


@router.put("/{customer_id}")
async def update_customer(
    customer_id: str,
    request: UpdateCustomerRequest,
    system: LoanbookSystem = Depends(get_loanbook_system)
):
    """Update customer details"""
    try:
        customer = system.customer_manager.update_customer(
            customer_id, **request.model_dump(exclude_none=True)
        )
    except LoanbookError as e:
        raise http_error(e)
    return customer.to_dict()


@router.delete("/{customer_id}")
async def delete_customer(
    customer_id: str,
    system: LoanbookSystem = Depends(get_loanbook_system)
):
    """Delete a customer without loans"""
    try:
        system.customer_manager.delete_customer(customer_id)
    except LoanbookError as e:
        raise http_error(e)
    return {"message": "Customer deleted successfully"}
