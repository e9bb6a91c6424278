"""
Test suite for customer management
"""

import pytest

from loanbook.config import LoanbookConfig
from loanbook.customers import Customer, CustomerManager
from loanbook.errors import NotFoundError, ValidationError
from loanbook.loans import LoanManager
from loanbook.storage import InMemoryStorage


class TestCustomerManager:
    """Test customer CRUD"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.manager = CustomerManager(self.storage, LoanbookConfig())

    def test_create_customer(self):
        """Test customer codes and normalization"""
        customer = self.manager.create_customer(
            full_name="  Nimal Perera ", nic="901234567v", phone="077 123 4567",
            email="nimal@example.com", address="12 Galle Road, Colombo"
        )

        assert customer.id == "CUS-0001"
        assert customer.full_name == "Nimal Perera"
        assert customer.nic == "901234567V"
        assert customer.is_active
        assert self.manager.get_customer("CUS-0001").email == "nimal@example.com"

    def test_codes_increment(self):
        """Test each customer gets the next code"""
        self.manager.create_customer(full_name="A One", nic="901234567V", phone="0771234567")
        second = self.manager.create_customer(full_name="B Two", nic="901234568X", phone="0771234568")
        assert second.id == "CUS-0002"

    @pytest.mark.parametrize("fields", [
        {"full_name": "", "nic": "901234567V", "phone": "0771234567"},
        {"full_name": "A", "nic": "12345", "phone": "0771234567"},
        {"full_name": "A", "nic": "901234567Z", "phone": "0771234567"},
        {"full_name": "A", "nic": "901234567V", "phone": "12ab"},
        {"full_name": "A", "nic": "901234567V", "phone": "0771234567", "email": "not-an-email"},
    ])
    def test_invalid_customer(self, fields):
        """Test field validation"""
        with pytest.raises(ValidationError):
            self.manager.create_customer(**fields)
        assert self.storage.load_all("customers") == []

    def test_duplicate_nic(self):
        """Test NIC numbers are unique"""
        self.manager.create_customer(full_name="A One", nic="901234567V", phone="0771234567")
        with pytest.raises(ValidationError):
            self.manager.create_customer(full_name="A Two", nic="901234567v", phone="0771234568")

    def test_update_customer(self):
        """Test updating contact details"""
        customer = self.manager.create_customer(full_name="A One", nic="901234567V", phone="0771234567")
        updated = self.manager.update_customer(customer.id, phone="0719876543", is_active=False)

        assert updated.phone == "0719876543"
        assert not updated.is_active
        assert self.manager.list_customers(active_only=True) == []
        with pytest.raises(ValidationError):
            self.manager.update_customer(customer.id, phone="bad")
        with pytest.raises(ValidationError):
            self.manager.update_customer(customer.id, id="CUS-0100")

    def test_missing_customer(self):
        """Test lookups of unknown customers"""
        assert self.manager.get_customer("CUS-0404") is None
        with pytest.raises(NotFoundError):
            self.manager.require_customer("CUS-0404")
        with pytest.raises(NotFoundError):
            self.manager.delete_customer("CUS-0404")

    def test_delete_customer_with_loans_refused(self):
        """Test customers with loans are kept"""
        customer = self.manager.create_customer(full_name="A One", nic="901234567V", phone="0771234567")
        loans = LoanManager(self.storage, self.manager, config=LoanbookConfig())
        loans.create_loan(
            customer_id=customer.id, principal="500", payment_frequency="weekly",
            duration=2, interest_rate="0"
        )

        with pytest.raises(ValidationError):
            self.manager.delete_customer(customer.id)

    def test_delete_customer(self):
        """Test deleting a customer without loans"""
        customer = self.manager.create_customer(full_name="A One", nic="901234567V", phone="0771234567")
        self.manager.delete_customer(customer.id)
        assert self.manager.get_customer(customer.id) is None

    def test_round_trip(self):
        """Test the stored document rebuilds the same customer"""
        customer = self.manager.create_customer(full_name="A One", nic="199012345678", phone="0771234567")
        assert Customer.from_dict(customer.to_dict()) == customer
