"""
Loanbook system wiring and FastAPI dependencies
"""

from datetime import date
from typing import Callable, Optional

from fastapi import HTTPException

from ..errors import ConflictError, LoanbookError, NotFoundError, ValidationError
from ..storage import StorageInterface, create_storage
from ..customers import CustomerManager
from ..loans import LoanManager
from ..reporting import LoanReporting
from ..config import get_config, LoanbookConfig


class LoanbookSystem:
    """Loan back office with all components initialized"""

    def __init__(
        self,
        storage: Optional[StorageInterface] = None,
        config: Optional[LoanbookConfig] = None,
        clock: Optional[Callable[[], date]] = None
    ):
        self.config = config or get_config()
        self.storage = storage or create_storage(
            self.config.storage_backend, self.config.database_path
        )
        self.clock = clock or date.today

        self.customer_manager = CustomerManager(self.storage, self.config)
        self.loan_manager = LoanManager(
            self.storage, self.customer_manager, clock=self.clock, config=self.config
        )
        self.reporting = LoanReporting(self.loan_manager, self.customer_manager, clock=self.clock)

    def close(self) -> None:
        self.storage.close()


# Global system instance, built on first request
loanbook_system: Optional[LoanbookSystem] = None


def get_loanbook_system() -> LoanbookSystem:
    global loanbook_system
    if loanbook_system is None:
        loanbook_system = LoanbookSystem()
    return loanbook_system


def http_error(error: LoanbookError) -> HTTPException:
    """Map a domain error to the HTTP status the API reports"""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, ConflictError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, ValidationError):
        return HTTPException(status_code=400, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))
