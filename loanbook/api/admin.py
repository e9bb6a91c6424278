"""
Admin endpoints (scheduled maintenance)
"""

from typing import Any, Dict
from fastapi import APIRouter, Depends

from .system import LoanbookSystem, get_loanbook_system


router = APIRouter()


@router.post("/overdue-sweep")
async def run_overdue_sweep(system: LoanbookSystem = Depends(get_loanbook_system)) -> Dict[str, Any]:
    """Re-derive loan statuses; meant to be called once a day by a scheduler"""
    results = system.loan_manager.process_overdue_loans()
    return {"results": results, "message": "Overdue sweep completed"}
