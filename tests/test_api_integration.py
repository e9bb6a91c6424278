"""
Integration tests for the Loanbook API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from datetime import date
from fastapi.testclient import TestClient

from loanbook.api import create_app
from loanbook.api.system import LoanbookSystem, get_loanbook_system
from loanbook.config import LoanbookConfig
from loanbook.storage import InMemoryStorage


@pytest.fixture
def client():
    """Create a test client backed by in-memory storage and a fixed date"""
    system = LoanbookSystem(
        storage=InMemoryStorage(),
        config=LoanbookConfig(),
        clock=lambda: date(2024, 1, 15)
    )
    app = create_app()
    app.dependency_overrides[get_loanbook_system] = lambda: system
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def customer_id(client):
    r = client.post("/customers", json={
        "full_name": "Nimal Perera",
        "nic": "901234567V",
        "phone": "0771234567"
    })
    assert r.status_code == 201
    return r.json()["customer_id"]


@pytest.fixture
def loan_id(client, customer_id):
    r = client.post("/loans", json={
        "customer_id": customer_id,
        "principal": "1000",
        "payment_frequency": "monthly",
        "duration": 3,
        "interest_rate": "10"
    })
    assert r.status_code == 201
    return r.json()["loan_id"]


class TestHealthEndpoints:
    """Test basic health and root endpoints"""

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        assert "loans" in r.json()["endpoints"]


class TestCustomerFlow:
    """End-to-end customer management tests"""

    def test_create_and_get(self, client, customer_id):
        assert customer_id == "CUS-0001"
        r = client.get(f"/customers/{customer_id}")
        assert r.status_code == 200
        assert r.json()["full_name"] == "Nimal Perera"

    def test_invalid_customer(self, client):
        r = client.post("/customers", json={"full_name": "X", "nic": "bad", "phone": "0771234567"})
        assert r.status_code == 400

    def test_update_list_delete(self, client, customer_id):
        r = client.put(f"/customers/{customer_id}", json={"email": "nimal@example.com"})
        assert r.status_code == 200
        assert r.json()["email"] == "nimal@example.com"

        assert client.get("/customers").json()["count"] == 1
        assert client.delete(f"/customers/{customer_id}").status_code == 200
        assert client.get(f"/customers/{customer_id}").status_code == 404


class TestLoanFlow:
    """End-to-end loan and payment tests"""

    def test_create_loan(self, client, loan_id):
        r = client.get(f"/loans/{loan_id}")
        assert r.status_code == 200
        data = r.json()
        assert data["id"] == "LON-0001"
        assert data["total_amount"] == "1100.00"
        assert [i["installment_amount"] for i in data["installments"]] == ["367.00", "367.00", "366.00"]
        assert data["next_due_installment"]["installment_number"] == 1
        assert data["days_remaining"] == 91

    def test_missing_interest_rate(self, client, customer_id):
        r = client.post("/loans", json={
            "customer_id": customer_id,
            "principal": "1000",
            "payment_frequency": "monthly",
            "duration": 3
        })
        assert r.status_code == 400
        assert "Interest rate is required" in r.json()["detail"]

    def test_unknown_customer(self, client):
        r = client.post("/loans", json={
            "customer_id": "CUS-0404",
            "principal": "1000",
            "payment_frequency": "monthly",
            "duration": 3,
            "interest_rate": "10"
        })
        assert r.status_code == 404

    def test_pay_installment(self, client, loan_id):
        r = client.post(f"/loans/{loan_id}/installments/1/payment", json={"amount": "367", "notes": "Jan"})
        assert r.status_code == 200
        data = r.json()
        assert data["installment"]["status"] == "paid"
        assert data["loan"]["paid_amount"] == "367.00"
        assert data["loan"]["completion_percentage"] == 33

    def test_overpayment_rejected(self, client, loan_id):
        r = client.post(f"/loans/{loan_id}/installments/1/payment", json={"amount": "500"})
        assert r.status_code == 400

    def test_out_of_range_amount(self, client, loan_id):
        r = client.post(f"/loans/{loan_id}/installments/1/payment", json={"amount": "1e30"})
        assert r.status_code == 400
        assert "out of range" in r.json()["detail"]

    def test_missing_installment(self, client, loan_id):
        r = client.post(f"/loans/{loan_id}/installments/7/payment", json={"amount": "5"})
        assert r.status_code == 404

    def test_bulk_payment(self, client, loan_id):
        r = client.post(f"/loans/{loan_id}/installments/bulk-payment",
                        json={"total_amount": "1100", "notes": "settled"})
        assert r.status_code == 200
        data = r.json()
        assert data["total_applied"] == "1100.00"
        assert len(data["payments_applied"]) == 3
        assert data["loan"]["status"] == "completed"

    def test_update_loan(self, client, loan_id):
        client.post(f"/loans/{loan_id}/installments/1/payment", json={"amount": "367"})
        r = client.put(f"/loans/{loan_id}", json={"duration": 5})
        assert r.status_code == 200
        assert [i["installment_amount"] for i in r.json()["installments"]] == [
            "367.00", "184.00", "184.00", "184.00", "181.00"
        ]

    def test_status_and_filters(self, client, loan_id):
        r = client.put(f"/loans/{loan_id}/status", json={"status": "defaulted"})
        assert r.status_code == 200
        assert client.get("/loans", params={"status": "defaulted"}).json()["count"] == 1
        assert client.get("/loans", params={"status": "active"}).json()["count"] == 0

        r = client.put(f"/loans/{loan_id}/status", json={"status": "completed"})
        assert r.status_code == 400

    def test_legacy_payment(self, client, loan_id):
        r = client.post(f"/loans/{loan_id}/payments", json={"amount": "100", "payment_method": "cash"})
        assert r.status_code == 200
        assert r.json()["unallocated_amount"] == "100.00"

    def test_installment_views(self, client, loan_id):
        r = client.get(f"/loans/{loan_id}/schedule")
        assert r.status_code == 200
        assert r.json()["progress"]["remaining_installments"] == 3

        r = client.get(f"/loans/{loan_id}/installments", params={"sort_order": "desc", "limit": 1})
        assert r.status_code == 200
        assert r.json()["installments"][0]["installment_number"] == 3

        r = client.put(f"/loans/{loan_id}/installments/2", json={"notes": "call first"})
        assert r.status_code == 200
        assert r.json()["notes"] == "call first"

    def test_portfolio_views(self, client, loan_id):
        stats = client.get("/loans/stats").json()
        assert stats["total_loans"] == 1
        assert stats["total_outstanding"] == "1100.00"

        assert client.get("/loans/installments/overdue").json()["summary"]["total_overdue_count"] == 0
        upcoming = client.get("/loans/installments/upcoming", params={"days": 31}).json()
        assert upcoming["summary"]["total_upcoming_count"] == 1

    def test_delete_loan(self, client, loan_id):
        assert client.delete(f"/loans/{loan_id}").status_code == 200
        assert client.get(f"/loans/{loan_id}").status_code == 404

    def test_overdue_sweep(self, client, loan_id):
        r = client.post("/admin/overdue-sweep")
        assert r.status_code == 200
        assert r.json()["results"]["loans_checked"] == 1
