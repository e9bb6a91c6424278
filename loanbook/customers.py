"""
Customer Management Module

Borrower records referenced by loans. Customers get human-readable codes
(CUS-0001, CUS-0002, ...) from a persistent sequence counter in the store.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import re

from .errors import NotFoundError, ValidationError
from .storage import StorageInterface, StorageRecord
from .config import get_config, LoanbookConfig
from .logging_config import get_logger, log_action


NIC_PATTERN = re.compile(r'^\d{9}[VX]$|^\d{12}$')
PHONE_PATTERN = re.compile(r'^\+?[\d\s\-()]{10,15}$')
EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


@dataclass
class Customer(StorageRecord):
    """
    Customer profile
    """
    full_name: str
    nic: str                        # National identity card number
    phone: str
    email: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None
    is_active: bool = True

    def __post_init__(self):
        self.full_name = (self.full_name or "").strip()
        if not self.full_name:
            raise ValidationError("Full name is required")
        if len(self.full_name) > 100:
            raise ValidationError("Full name cannot exceed 100 characters")

        self.nic = (self.nic or "").strip().upper()
        if not NIC_PATTERN.match(self.nic):
            raise ValidationError("Please provide a valid NIC number")

        self.phone = (self.phone or "").strip()
        if not PHONE_PATTERN.match(self.phone):
            raise ValidationError("Please provide a valid phone number")

        if self.email and not EMAIL_PATTERN.match(self.email):
            raise ValidationError("Invalid email format")

        if self.address and len(self.address) > 500:
            raise ValidationError("Address cannot exceed 500 characters")


class CustomerManager:
    """
    Manages customer records
    """

    UPDATABLE_FIELDS = ("full_name", "nic", "phone", "email", "address", "notes", "is_active")

    def __init__(self, storage: StorageInterface, config: Optional[LoanbookConfig] = None):
        self.storage = storage
        self.config = config or get_config()
        self.table_name = "customers"
        self.loans_table = "loans"
        self.logger = get_logger("loanbook.customers")

    def create_customer(
        self,
        full_name: str,
        nic: str,
        phone: str,
        email: Optional[str] = None,
        address: Optional[str] = None,
        notes: Optional[str] = None
    ) -> Customer:
        """
        Create a new customer

        Raises:
            ValidationError: On invalid fields or a NIC that is already registered
        """
        now = datetime.now(timezone.utc)

        # Validate before consuming a sequence number
        customer = Customer(
            id="", created_at=now, updated_at=now,
            full_name=full_name, nic=nic, phone=phone,
            email=email, address=address, notes=notes
        )
        self._ensure_unique_nic(customer.nic)

        with self.storage.atomic():
            sequence = self.storage.next_sequence("customer_id")
            customer.id = f"{self.config.customer_id_prefix}-{sequence:0{self.config.id_padding}d}"
            self.storage.save(self.table_name, customer.id, customer.to_dict())

        log_action(
            self.logger, "info", f"Created customer {customer.id}",
            action="customer.create", resource="customer", customer_id=customer.id
        )
        return customer

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        """Get customer by ID"""
        data = self.storage.load(self.table_name, customer_id)
        if data:
            return Customer.from_dict(data)
        return None

    def require_customer(self, customer_id: str) -> Customer:
        """
        Get customer by ID

        Raises:
            NotFoundError: If the customer does not exist
        """
        customer = self.get_customer(customer_id)
        if not customer:
            raise NotFoundError(f"Customer {customer_id} not found")
        return customer

    def list_customers(self, active_only: bool = False) -> List[Customer]:
        customers = [Customer.from_dict(data) for data in self.storage.load_all(self.table_name)]
        if active_only:
            customers = [c for c in customers if c.is_active]
        return sorted(customers, key=lambda c: c.id)

    def update_customer(self, customer_id: str, **updates: Any) -> Customer:
        """
        Update customer fields

        Raises:
            NotFoundError: If the customer does not exist
            ValidationError: On unknown fields or invalid values
        """
        customer = self.require_customer(customer_id)

        unknown = sorted(set(updates) - set(self.UPDATABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(unknown)}")

        data = customer.to_dict()
        data.update({k: v for k, v in updates.items() if v is not None})
        data['updated_at'] = datetime.now(timezone.utc).isoformat()
        updated = Customer.from_dict(data)

        if updated.nic != customer.nic:
            self._ensure_unique_nic(updated.nic)

        self.storage.save(self.table_name, updated.id, updated.to_dict())
        log_action(
            self.logger, "info", f"Updated customer {customer_id}",
            action="customer.update", resource="customer", customer_id=customer_id,
            extra={"fields": sorted(updates)}
        )
        return updated

    def delete_customer(self, customer_id: str) -> None:
        """
        Delete a customer that has no loans

        Raises:
            NotFoundError: If the customer does not exist
            ValidationError: If loans still reference the customer
        """
        self.require_customer(customer_id)
        if self.storage.find(self.loans_table, {"customer_id": customer_id}):
            raise ValidationError(f"Customer {customer_id} has loans and cannot be deleted")

        self.storage.delete(self.table_name, customer_id)
        log_action(
            self.logger, "info", f"Deleted customer {customer_id}",
            action="customer.delete", resource="customer", customer_id=customer_id
        )

    def _ensure_unique_nic(self, nic: str) -> None:
        if self.storage.find(self.table_name, {"nic": nic}):
            raise ValidationError(f"A customer with NIC {nic} already exists")

    def to_response(self, customer: Customer) -> Dict[str, Any]:
        return customer.to_dict()
