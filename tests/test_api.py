"""
Integration tests for the Lending Core API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

from lending_core.api import app
from lending_core.api.dependencies import get_lending_system


MONTHLY = {"interval_type": "monthly", "interval_value": 1}


def loan_payload(**overrides):
    payload = {
        "method": "price",
        "principal": "1200.00",
        "interest_rate": "2",
        "installment_count": 12,
        "start_date": "2024-01-10",
        "first_due_date": "2024-02-10",
        "periodicity": MONTHLY,
        "customer_id": "customer-1",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def client(system):
    """Test client bound to an in-memory lending system"""
    app.dependency_overrides[get_lending_system] = lambda: system
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealthEndpoints:

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        assert "loans" in r.json()["endpoints"]


class TestSimulations:

    def test_simulate(self, client):
        r = client.post("/simulations", json=loan_payload())
        assert r.status_code == 200
        data = r.json()
        assert data["installment_value"] == "113.47"
        assert len(data["installments"]) == 12
        assert data["installments"][0]["due_date"] == "2024-02-10"

    def test_invalid_method(self, client):
        r = client.post("/simulations", json=loan_payload(method="balloon"))
        assert r.status_code == 400
        assert r.json()["detail"]["error"] == "ValidationError"

    def test_invalid_amount(self, client):
        r = client.post("/simulations", json=loan_payload(principal="abc"))
        assert r.status_code == 400

    @pytest.mark.parametrize("field,value", [
        ("principal", "NaN"),
        ("principal", "Infinity"),
        ("interest_rate", "NaN"),
        ("interest_rate", "-Infinity"),
    ])
    def test_non_finite_numbers_rejected(self, client, field, value):
        r = client.post("/simulations", json=loan_payload(**{field: value}))
        assert r.status_code == 400
        assert r.json()["detail"]["error"] == "ValidationError"

    def test_schedule_with_zero_installment_rejected(self, client):
        r = client.post("/simulations", json=loan_payload(method="interest_only", interest_rate="0",
                                                             installment_count=3))
        assert r.status_code == 400
        assert r.json()["detail"]["details"]["installment"] == 1

    def test_methods(self, client):
        r = client.get("/simulations/methods")
        assert {m["value"] for m in r.json()["methods"]} == {
            "price", "sac", "simple_interest", "recurring_simple_interest", "interest_only"
        }


class TestLoanFlow:

    def create_loan(self, client, **overrides):
        r = client.post("/loans", json=loan_payload(**overrides))
        assert r.status_code == 201, r.text
        return r.json()

    def test_create_and_get(self, client):
        created = self.create_loan(client)
        loan_id = created["loan"]["id"]
        assert len(created["installments"]) == 12

        r = client.get(f"/loans/{loan_id}")
        assert r.status_code == 200
        assert r.json()["status"] == "active"
        assert r.json()["periodicity_description"] == "Monthly"

        r = client.get("/loans", params={"customer_id": "customer-1"})
        assert r.json()["total_count"] == 1

    def test_missing_loan(self, client):
        r = client.get("/loans/missing")
        assert r.status_code == 404
        assert r.json()["detail"]["error"] == "NotFoundError"

    def test_insufficient_balance(self, client):
        creditor = client.post("/creditors", json={"name": "Ana", "initial_deposit": "500"}).json()

        r = client.post("/loans", json=loan_payload(principal="600", creditor_id=creditor["id"]))

        assert r.status_code == 409
        assert r.json()["detail"]["error"] == "InsufficientBalanceError"
        assert client.get("/loans").json()["total_count"] == 0
        assert client.get(f"/creditors/{creditor['id']}").json()["balance"] == "500.00"

    def test_pay_fine_reverse(self, client):
        created = self.create_loan(client)
        installment_id = created["installments"][0]["id"]

        r = client.post(f"/installments/{installment_id}/fine", json={"amount": "3.50", "reason": "late"})
        assert r.json()["fine_amount"] == "3.50"

        r = client.post(f"/installments/{installment_id}/pay", json={"amount": "113.47"})
        assert r.status_code == 200
        assert r.json()["status"] == "paid"
        assert r.json()["fine_amount"] == "3.50"

        r = client.post(f"/installments/{installment_id}/pay", json={"amount": "113.47"})
        assert r.status_code == 400

        r = client.post(f"/installments/{installment_id}/reverse")
        assert r.json()["status"] == "pending"
        assert r.json()["paid_amount"] == "0.00"

        fines = client.get(f"/installments/{installment_id}/fines").json()["fines"]
        assert [f["reason"] for f in fines] == ["late"]

    def test_stale_version_conflict(self, client):
        created = self.create_loan(client)
        installment = created["installments"][0]
        client.post(f"/installments/{installment['id']}/fine", json={"amount": "1"})

        r = client.post(f"/installments/{installment['id']}/pay",
                        json={"amount": "113.47", "expected_version": installment["version"]})
        assert r.status_code == 409

    def test_settle_and_renew(self, client):
        loan_id = self.create_loan(client)["loan"]["id"]

        r = client.post(f"/loans/{loan_id}/settle")
        assert r.status_code == 200
        data = r.json()
        assert data["loan"]["status"] == "completed"
        assert len(data["settled"]) == 12
        assert data["renewal_draft"]["source_loan_id"] == loan_id

        assert client.get(f"/loans/{loan_id}/renewal-draft").status_code == 200

        r = client.post(f"/loans/{loan_id}/renew", json={"start_date": "2024-01-20"})
        assert r.status_code == 201
        assert r.json()["loan"]["renewed_from_loan_id"] == loan_id

    def test_append_installments(self, client):
        loan_id = self.create_loan(client)["loan"]["id"]
        r = client.post(f"/loans/{loan_id}/installments",
                        json={"value": "80", "count": 2, "start_date": "2025-02-10"})
        assert r.status_code == 201
        assert [i["number"] for i in r.json()["installments"]] == [13, 14]

        listed = client.get(f"/loans/{loan_id}/installments").json()
        assert listed["total_count"] == 14

    def test_cancel(self, client):
        loan_id = self.create_loan(client)["loan"]["id"]
        r = client.post(f"/loans/{loan_id}/cancel", json={"reason": "duplicate"})
        assert r.json()["loan"]["status"] == "cancelled"
        assert client.get(f"/loans/{loan_id}/installments").json()["total_count"] == 0

    def test_commissions(self, client):
        client.post("/creditors", json={"name": "House", "is_manager": True})
        creditor = client.post("/creditors", json={"name": "Ana", "initial_deposit": "5000"}).json()
        loan_id = self.create_loan(client, creditor_id=creditor["id"], route_id="route-1",
                                   intermediary_rate="0.5", creditor_rate="1")["loan"]["id"]

        split = client.get(f"/loans/{loan_id}/commissions").json()
        assert split["split"]["manager_rate"] == "0.5"
        assert split["posted"] == []

        r = client.post(f"/loans/{loan_id}/commissions")
        assert r.status_code == 201
        assert len(r.json()["entries"]) == 3

        assert client.post(f"/loans/{loan_id}/commissions").status_code == 400


class TestCreditorsAndCashFlow:

    def test_manual_entries_and_balance(self, client):
        creditor = client.post("/creditors", json={"name": "Ana"}).json()

        r = client.post("/cash-flow", json={"creditor_id": creditor["id"], "category": "deposit", "amount": "250"})
        assert r.status_code == 201
        r = client.post("/cash-flow", json={"creditor_id": creditor["id"], "category": "withdrawal", "amount": "300"})
        assert r.status_code == 409

        balance = client.get(f"/creditors/{creditor['id']}/balance").json()
        assert balance["cached_balance"] == "250.00"
        assert balance["consistent"]

        entries = client.get("/cash-flow", params={"creditor_id": creditor["id"]}).json()
        assert entries["total_count"] == 1

    def test_manager_flag(self, client):
        creditor = client.post("/creditors", json={"name": "Ana"}).json()
        assert client.post(f"/creditors/{creditor['id']}/manager").json()["is_manager"]
        assert not client.delete(f"/creditors/{creditor['id']}/manager").json()["is_manager"]


class TestPeriodicities:

    def test_seed_and_list(self, client):
        created = client.post("/periodicities/seed").json()["created"]
        assert "Monthly" in {p["name"] for p in created}
        assert client.get("/periodicities").json()["total_count"] == len(created)

    def test_create_and_use(self, client):
        r = client.post("/periodicities", json={
            "name": "Business days", "interval_type": "daily", "allowed_weekdays": [1, 2, 3, 4, 5]
        })
        assert r.status_code == 201
        periodicity_id = r.json()["id"]

        payload = loan_payload(installment_count=3, first_due_date=None, periodicity=None,
                               periodicity_id=periodicity_id, start_date="2024-01-12")
        schedule = client.post("/simulations", json=payload).json()["installments"]
        assert [row["due_date"] for row in schedule] == ["2024-01-12", "2024-01-15", "2024-01-16"]

    def test_invalid_rule(self, client):
        r = client.post("/periodicities", json={"name": "Bad", "interval_type": "hourly"})
        assert r.status_code == 400

    def test_preview_and_validate(self, client):
        r = client.post("/periodicities/preview", json={
            "periodicity": MONTHLY, "start_date": "2024-01-31", "count": 3
        })
        assert r.json()["due_dates"] == ["2024-01-31", "2024-02-29", "2024-03-31"]

        r = client.post("/periodicities/validate-start-date", json={
            "periodicity": {"interval_type": "daily", "allowed_weekdays": [1, 2, 3, 4, 5]},
            "start_date": "2024-01-13"
        })
        assert r.json()["is_valid"] is False
        assert r.json()["suggested_date"] == "2024-01-15"


class TestReports:

    def test_dashboard(self, client):
        client.post("/loans", json=loan_payload())
        r = client.get("/reports/dashboard")
        assert r.status_code == 200
        assert r.json()["active_loans"] == 1
        assert r.json()["date"] == "2024-01-10"

    def test_audit_integrity(self, client):
        client.post("/loans", json=loan_payload())
        r = client.get("/reports/audit-integrity")
        assert r.json()["valid"]
