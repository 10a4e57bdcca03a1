"""Leave request rules through the HTTP layer."""

from datetime import date
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from erp_api.main import app


@pytest.fixture
def client():
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def hr_db(mock_db):
    with patch("erp_api.routers.hr.Database", return_value=mock_db):
        yield mock_db


def pending_leave(**overrides) -> dict:
    leave = {
        "id": 5, "employee_id": 1, "leave_type": "casual", "status": "pending",
        "start_date": date(2026, 2, 10), "end_date": date(2026, 2, 12), "days_requested": 3,
    }
    leave.update(overrides)
    return leave


def test_reversed_dates_rejected(client, hr_db):
    response = client.post("/hr/leaves", json={
        "employee_id": 1, "leave_type": "casual", "start_date": "2026-02-12", "end_date": "2026-02-10",
    })
    assert response.status_code == 400
    hr_db.transaction.assert_not_called()


def test_overlapping_request_conflicts(client, hr_db):
    hr_db.fetch_one.return_value = {"id": 1}
    hr_db.conn.execute.return_value.fetchone.return_value = pending_leave(id=4, status="approved")
    response = client.post("/hr/leaves", json={
        "employee_id": 1, "leave_type": "casual", "start_date": "2026-02-12", "end_date": "2026-02-14",
    })
    assert response.status_code == 409
    assert response.json()["details"] == {
        "leave_id": 4, "start_date": "2026-02-10", "end_date": "2026-02-12", "status": "approved",
    }


class TestApprove:
    def test_insufficient_balance(self, client, hr_db):
        hr_db.conn.execute.return_value.fetchone.side_effect = [
            pending_leave(),
            {"id": 9, "total_days": 12, "used_days": 10},
        ]
        response = client.post("/hr/leaves/5/approve")
        assert response.status_code == 400
        assert response.json()["details"] == {"requested": 3, "remaining": 2}

    def test_missing_balance(self, client, hr_db):
        hr_db.conn.execute.return_value.fetchone.side_effect = [pending_leave(), None]
        response = client.post("/hr/leaves/5/approve")
        assert response.status_code == 400
        assert response.json()["error"] == "No casual balance for 2026"

    def test_already_decided(self, client, hr_db):
        hr_db.conn.execute.return_value.fetchone.return_value = pending_leave(status="rejected")
        response = client.post("/hr/leaves/5/approve")
        assert response.status_code == 409

    def test_consumes_balance(self, client, hr_db):
        hr_db.conn.execute.return_value.fetchone.side_effect = [
            pending_leave(),
            {"id": 9, "total_days": 12, "used_days": 2},
            pending_leave(status="approved"),
        ]
        response = client.post("/hr/leaves/5/approve", json={"approved_by": 2})
        assert response.status_code == 200
        balance_update = hr_db.conn.execute.call_args_list[2][0]
        assert "used_days = used_days + %s" in balance_update[0]
        assert balance_update[1] == (3, 9)


def test_approved_leave_cannot_be_edited(client, hr_db):
    hr_db.conn.execute.return_value.fetchone.return_value = pending_leave(status="approved")
    response = client.put("/hr/leaves/5", json={"reason": "family event"})
    assert response.status_code == 409
