"""HTTP-level tests: status codes, error bodies and admin endpoints."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from erp_api.core.cache import cache
from erp_api.core.performance import monitor
from erp_api.main import app


@pytest.fixture
def client():
    # No context manager: lifespan (schema, scheduler) is not started
    return TestClient(app, raise_server_exceptions=False)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "version": "1.0.0"}


class TestErrorMapping:
    def test_invalid_report_type(self, client):
        response = client.get("/accounting/reports/cash-position")
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Invalid report type: cash-position"
        assert "trial-balance" in body["details"]["valid_types"]

    def test_non_positive_expense(self, client):
        response = client.post("/finance/expenses", json={"category": "Rent", "amount": 0})
        assert response.status_code == 400
        assert response.json() == {"error": "Expense amount must be greater than zero"}

    def test_body_validation_is_400(self, client):
        response = client.post("/finance/expenses", json={"category": "Rent", "amount": "lots"})
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Invalid request"
        assert body["details"][0]["loc"] == ["body", "amount"]

    def test_not_found(self, client):
        with patch("erp_api.routers.crm.Database") as database:
            database.return_value.fetch_one.return_value = None
            response = client.get("/crm/customers/42")
        assert response.status_code == 404
        assert response.json() == {"error": "Customer 42 not found"}

    def test_conflict(self, client):
        with patch("erp_api.routers.accounting.Database") as database:
            db = database.return_value
            db.execute.return_value = None
            db.fetch_one.return_value = {"id": 9, "status": "POSTED"}
            response = client.post("/accounting/journal-entries/9/post")
        assert response.status_code == 409
        assert response.json() == {"error": "Journal entry is already posted"}

    def test_unexpected_error_is_500(self, client):
        with patch("erp_api.routers.crm.Database", side_effect=RuntimeError("connection refused")):
            response = client.get("/crm/customers/1")
        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}


def test_trial_balance_report(client, balanced_ledger_rows):
    with patch("erp_api.routers.accounting.Database") as database:
        database.return_value.fetch_all.return_value = balanced_ledger_rows
        response = client.get("/accounting/reports/trial-balance", params={"as_of_date": "2026-01-31"})
    assert response.status_code == 200
    body = response.json()
    assert body["as_of_date"] == "2026-01-31"
    assert body["summary"]["is_balanced"] is True


def test_point_in_time_report_ignores_start_date(client, balanced_ledger_rows):
    with patch("erp_api.routers.accounting.Database") as database:
        database.return_value.fetch_all.return_value = balanced_ledger_rows
        response = client.get(
            "/accounting/reports/trial-balance",
            params={"start_date": "2026-03-01", "as_of_date": "2026-01-31"},
        )
    assert response.status_code == 200
    assert response.json()["as_of_date"] == "2026-01-31"


def test_period_report_rejects_reversed_range(client):
    with patch("erp_api.routers.accounting.Database") as database:
        response = client.get(
            "/accounting/reports/profit-loss",
            params={"start_date": "2026-03-01", "end_date": "2026-01-31"},
        )
    assert response.status_code == 400
    assert response.json()["details"] == {"start_date": "2026-03-01", "end_date": "2026-01-31"}
    database.assert_not_called()


class TestAdmin:
    def test_performance_records_route_template(self, client):
        client.delete("/admin/performance")
        client.get("/health")
        response = client.get("/admin/performance")
        assert response.status_code == 200
        body = response.json()
        assert body["routes"]["GET /health"]["count"] == 1
        assert "hits" in body["cache"]

    def test_reset_performance(self, client):
        client.get("/health")
        assert client.delete("/admin/performance").json() == {"success": True}
        assert "GET /health" not in monitor.snapshot()

    def test_clear_cache(self, client):
        cache.set("dashboard:overview", {"revenue": 1})
        assert client.delete("/admin/cache").status_code == 200
        assert cache.get("dashboard:overview") is None
