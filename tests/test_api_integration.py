"""
Integration tests for the Contract Ledger API
Tests end-to-end requests using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

from contract_ledger.api import create_app


@pytest.fixture
def client():
    """Create a test client for the API"""
    return TestClient(create_app())


def contract_payload(**overrides):
    payload = {
        "id": "contract-1",
        "principal_amount": "300",
        "interest_rate": "0",
        "payment_type": "installment",
        "installment_count": 3,
        "installment_due_dates": ["2024-01-10", "2024-02-10", "2024-03-10"],
        "due_date": "2024-03-10",
        "outstanding_balance": "300",
        "total_paid": "0",
        "annotation": "",
    }
    payload.update(overrides)
    return payload


class TestHealthEndpoints:
    """Test basic health endpoint"""

    def test_health(self, client):
        """Test health endpoint"""
        r = client.get("/health")
        assert r.status_code == 200
        data = r.json()
        assert data["status"] == "healthy"


class TestProjectionEndpoints:
    """Read-only ledger endpoints"""

    def test_projection(self, client):
        """Test projecting a contract with one paid installment"""
        r = client.post("/ledger/projection", json={
            "contract": contract_payload(annotation="[PARTIAL_PAID:0:100]"),
            "today": "2024-02-15",
        })
        assert r.status_code == 200
        data = r.json()
        assert data["paid_count"] == 1
        assert data["first_unpaid_index"] == 1
        assert data["installments"][0]["status"] == "paid"
        assert data["installments"][1]["status"] == "overdue"
        assert data["is_overdue"] is True

    def test_status(self, client):
        """Test the display status"""
        r = client.post("/ledger/status", json={"contract": contract_payload(), "today": "2024-02-15"})
        assert r.status_code == 200
        data = r.json()
        assert data["is_overdue"] is True
        assert data["total_per_installment"] == "100.00"
        assert [item["index"] for item in data["overdue_installments"]] == [0, 1]

    def test_penalty(self, client):
        """Test the computed cumulative penalty"""
        r = client.post("/ledger/penalty", json={
            "contract": contract_payload(
                annotation="[OVERDUE_CONFIG:percentage:1]",
                installment_due_dates=["2024-01-10", "2024-01-12", "2024-03-10"],
            ),
            "today": "2024-01-15",
        })
        assert r.status_code == 200
        data = r.json()
        assert data["total_penalty"] == "8.00"
        assert data["overdue_config"] == {"kind": "percentage", "value": "1"}

    def test_invalid_contract(self, client):
        """Test invalid contract terms are a bad request"""
        r = client.post("/ledger/projection", json={
            "contract": contract_payload(installment_count=0)
        })
        assert r.status_code == 400


class TestMutationEndpoints:
    """Ledger mutation endpoints"""

    def test_payment(self, client):
        """Test registering a payment"""
        r = client.post("/ledger/payments", json={
            "contract": contract_payload(),
            "amount": "150",
            "payment_date": "2024-01-10",
        })
        assert r.status_code == 200
        data = r.json()
        assert data["next_outstanding_balance"] == "150.00"
        assert data["next_total_paid"] == "150.00"
        assert data["payment_record"]["installment_indices"] == [0, 1]
        assert "[PARTIAL_PAID:0:100.00]" in data["contract"]["annotation"]
        assert data["contract"]["id"] == "contract-1"

    def test_payment_invalid_amount(self, client):
        """Test a negative amount is a bad request"""
        r = client.post("/ledger/payments", json={
            "contract": contract_payload(),
            "amount": "-5",
            "payment_date": "2024-01-10",
        })
        assert r.status_code == 400

    def test_payment_unknown_kind(self, client):
        """Test an unknown payment kind is a bad request"""
        r = client.post("/ledger/payments", json={
            "contract": contract_payload(),
            "amount": "10",
            "payment_date": "2024-01-10",
            "kind": "bogus",
        })
        assert r.status_code == 400

    def test_interest_only_payment(self, client):
        """Test an interest-only payment with a renewal fee"""
        r = client.post("/ledger/interest-only-payments", json={
            "contract": contract_payload(),
            "amount": "30",
            "payment_date": "2024-01-05",
            "renewal_fee": "20",
        })
        assert r.status_code == 200
        data = r.json()
        assert data["next_outstanding_balance"] == "320.00"
        assert "[INTEREST_ONLY_PAYMENT]" in data["next_annotation"]

    def test_historical_interest(self, client):
        """Test historical interest from a raw amount and from past installments"""
        r = client.post("/ledger/historical-interest", json={
            "contract": contract_payload(interest_rate="10", interest_mode="on_total"),
            "installment_indices": [0, 1],
            "today": "2024-02-15",
        })
        assert r.status_code == 200
        contract = r.json()["contract"]
        assert "[HISTORICAL_INTEREST_RECEIVED:20.00]" in contract["annotation"]

        r = client.post("/ledger/historical-interest", json={"contract": contract, "amount": "5"})
        assert r.status_code == 200
        assert "[HISTORICAL_INTEREST_RECEIVED:25.00]" in r.json()["next_annotation"]

        r = client.post("/ledger/historical-interest", json={"contract": contract_payload()})
        assert r.status_code == 400

    def test_amortization(self, client):
        """Test a principal reduction"""
        r = client.post("/ledger/amortizations", json={
            "contract": contract_payload(
                principal_amount="1000", interest_rate="10", interest_mode="on_total",
                installment_count=1, installment_due_dates=["2024-03-01"],
                outstanding_balance="1100",
            ),
            "amount": "200",
            "applied_on": "2024-02-01",
        })
        assert r.status_code == 200
        data = r.json()
        assert data["next_outstanding_balance"] == "880.00"
        assert data["next_total_interest"] == "80.00"

    def test_renegotiation(self, client):
        """Test renegotiating the remaining balance"""
        r = client.post("/ledger/renegotiations", json={
            "contract": contract_payload(
                annotation="[PARTIAL_PAID:0:100]", total_paid="100", outstanding_balance="200"
            ),
            "new_rate": "10",
            "new_installment_count": 2,
            "today": "2024-02-01",
            "skip_saturday": False,
            "skip_sunday": False,
            "skip_holidays": False,
        })
        assert r.status_code == 200
        data = r.json()
        assert data["next_outstanding_balance"] == "240.00"
        assert data["contract"]["installment_due_dates"] == ["2024-03-01", "2024-04-01"]
        assert "[RENEGOTIATED]" in data["next_annotation"]

    def test_daily_penalty_and_removal(self, client):
        """Test applying then removing an installment penalty"""
        r = client.post("/ledger/penalties", json={
            "contract": contract_payload(),
            "mode": "daily",
            "index": 1,
            "amount": "15",
        })
        assert r.status_code == 200
        contract = r.json()["contract"]
        assert contract["outstanding_balance"] == "315.00"

        r = client.post("/ledger/penalties/remove", json={"contract": contract, "index": 1})
        assert r.status_code == 200
        assert r.json()["next_outstanding_balance"] == "300.00"

    def test_overdue_config(self, client):
        """Test setting and removing the overdue rule"""
        r = client.post("/ledger/penalties", json={
            "contract": contract_payload(),
            "mode": "overdue_config",
            "kind": "fixed",
            "value": "2",
        })
        assert r.status_code == 200
        contract = r.json()["contract"]
        assert contract["annotation"] == "[OVERDUE_CONFIG:fixed:2.00]"

        r = client.post("/ledger/penalties/remove", json={"contract": contract, "overdue_config": True})
        assert r.status_code == 200
        assert r.json()["next_annotation"] == ""

    def test_penalty_missing_fields(self, client):
        """Test an installment penalty needs an index and an amount"""
        r = client.post("/ledger/penalties", json={"contract": contract_payload(), "mode": "daily"})
        assert r.status_code == 400


class TestCalculatorEndpoints:
    """Schedule and interest calculators"""

    def test_schedule(self, client):
        """Test a monthly schedule across February of a leap year"""
        r = client.post("/schedule", json={"start_date": "2024-01-31", "count": 3, "cadence": "monthly"})
        assert r.status_code == 200
        assert r.json()["due_dates"] == ["2024-01-31", "2024-02-29", "2024-03-31"]

    def test_schedule_unknown_cadence(self, client):
        """Test an unknown cadence is a bad request"""
        r = client.post("/schedule", json={"start_date": "2024-01-31", "count": 3, "cadence": "yearly"})
        assert r.status_code == 400

    def test_interest(self, client):
        """Test compound interest and the inverse solve"""
        r = client.post("/interest", json={
            "principal": "1000",
            "rate": "10",
            "installment_count": 3,
            "interest_mode": "compound",
            "target_installment_value": "400",
        })
        assert r.status_code == 200
        data = r.json()
        assert data["total_interest"] == "331.00"
        assert data["installment_value"] == "443.67"
        assert data["price_installment"] == "402.11"
        assert data["solved_rate"] == "6.2659"
