"""Invoices, payment reversal, waive-offs and refunds through the HTTP layer."""

from datetime import date
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from erp_api.core.models import BankTransactionType, PaymentMethod, SourceDocument
from erp_api.main import app


@pytest.fixture
def client():
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def finance_db(mock_db):
    with patch("erp_api.routers.finance.Database", return_value=mock_db):
        yield mock_db


@pytest.fixture
def ledger():
    with patch("erp_api.routers.finance.ledger") as ledger:
        ledger.reverse_source_journals.return_value = [{"journal_number": "JV-0009"}]
        ledger.post_waive_off.return_value = {"journal_number": "WO-0001"}
        ledger.post_refund.return_value = {"journal_number": "RFD-0001"}
        yield ledger


def invoice(**overrides) -> dict:
    row = {
        "id": 4, "sales_order_id": 7, "customer_name": "Asha Rao", "total": 1000.0, "paid_amount": 0.0,
        "waived_amount": 0.0, "total_refunded": 0.0, "status": "unpaid",
    }
    row.update(overrides)
    return row


def executed(db, fragment: str) -> list:
    return [c[0][1] for c in db.conn.execute.call_args_list if fragment in c[0][0]]


def test_invoice_list_hides_void_by_default(client, finance_db):
    finance_db.fetch_all.return_value = [{"total": 1000.0, "outstanding": 400.0}]
    response = client.get("/finance/invoices")
    assert response.status_code == 200
    assert response.json()["summary"]["total_outstanding"] == 400.0
    sql, params = finance_db.fetch_all.call_args[0]
    assert "i.status <> %(void)s" in sql
    assert params["status"] is None
    assert params["void"] == "void"


class TestDeletePayment:
    def payment(self, **overrides) -> dict:
        row = {"id": 11, "invoice_id": 4, "amount": 400.0, "bank_account_id": 3}
        row.update(overrides)
        return row

    def test_reverses_everything(self, client, finance_db, ledger):
        finance_db.conn.execute.return_value.fetchone.side_effect = [
            self.payment(),
            invoice(paid_amount=1000.0, status="paid"),
            {"id": 3, "account_type": "UPI", "linked_bank_account_id": 1},
        ]
        response = client.delete("/finance/payments/11")
        assert response.status_code == 200
        assert response.json()["data"] == {
            "payment_id": 11,
            "invoice_id": 4,
            "invoice_paid_amount": 600.0,
            "invoice_status": "partially_paid",
            "reversal_journals": ["JV-0009"],
        }
        ledger.reverse_source_journals.assert_called_once_with(finance_db.conn, SourceDocument.PAYMENT, 11)
        withdrawals = ledger.record_bank_transaction.call_args_list
        assert [(c[0][1], c[0][2], c[0][3], c[0][6]) for c in withdrawals] == [
            (3, BankTransactionType.WITHDRAWAL, 400.0, "PAY-11"),
            (1, BankTransactionType.WITHDRAWAL, 400.0, "PAY-11"),
        ]
        assert executed(finance_db, "UPDATE invoices SET paid_amount") == [(600.0, "partially_paid", 4)]
        assert executed(finance_db, "DELETE FROM payments") == [(11,)]

    def test_cash_payment_skips_bank(self, client, finance_db, ledger):
        finance_db.conn.execute.return_value.fetchone.side_effect = [
            self.payment(bank_account_id=None),
            invoice(paid_amount=400.0, waived_amount=100.0, status="partially_paid"),
        ]
        response = client.delete("/finance/payments/11")
        assert response.status_code == 200
        assert response.json()["data"]["invoice_status"] == "partially_paid"
        ledger.record_bank_transaction.assert_not_called()

    def test_failure_rolls_back(self, client, finance_db, ledger):
        ledger.record_bank_transaction.side_effect = RuntimeError("bank account locked")
        finance_db.conn.execute.return_value.fetchone.side_effect = [
            self.payment(bank_account_id=3),
            invoice(paid_amount=400.0, status="partially_paid"),
            {"id": 3, "account_type": "BANK", "linked_bank_account_id": None},
        ]
        response = client.delete("/finance/payments/11")
        assert response.status_code == 500
        assert executed(finance_db, "DELETE FROM payments") == []
        exit_args = finance_db.transaction.return_value.__exit__.call_args[0]
        assert exit_args[0] is RuntimeError

    def test_refunded_payment_conflicts(self, client, finance_db, ledger):
        finance_db.conn.execute.return_value.fetchone.side_effect = [
            self.payment(),
            invoice(paid_amount=1000.0, total_refunded=800.0, status="paid"),
        ]
        response = client.delete("/finance/payments/11")
        assert response.status_code == 409
        assert response.json()["details"] == {"total_refunded": 800.0}
        ledger.reverse_source_journals.assert_not_called()

    def test_unknown_payment(self, client, finance_db):
        finance_db.conn.execute.return_value.fetchone.return_value = None
        assert client.delete("/finance/payments/99").status_code == 404


class TestWaiveOff:
    def test_settles_invoice(self, client, finance_db, ledger):
        finance_db.conn.execute.return_value.fetchone.side_effect = [
            invoice(paid_amount=600.0, status="partially_paid"),
            {"id": 8, "invoice_id": 4, "amount": 400.0, "reason": "loyal customer"},
            invoice(paid_amount=600.0, waived_amount=400.0, status="paid"),
        ]
        response = client.post("/finance/waive-off", json={
            "invoice_id": 4, "amount": 400, "reason": "loyal customer", "waive_date": "2026-03-05",
        })
        assert response.status_code == 201
        body = response.json()["data"]
        assert body["remaining"] == 0.0
        assert body["journal_number"] == "WO-0001"
        assert executed(finance_db, "UPDATE invoices SET waived_amount") == [(400.0, "paid", 4)]
        ledger.post_waive_off.assert_called_once_with(finance_db.conn, 8, 400.0, date(2026, 3, 5), "WO-8")

    def test_more_than_outstanding(self, client, finance_db, ledger):
        finance_db.conn.execute.return_value.fetchone.return_value = invoice(paid_amount=600.0)
        response = client.post("/finance/waive-off", json={"invoice_id": 4, "amount": 500, "reason": "goodwill"})
        assert response.status_code == 400
        assert response.json()["details"] == {"outstanding": 400.0, "amount": 500.0}
        ledger.post_waive_off.assert_not_called()

    def test_void_invoice(self, client, finance_db, ledger):
        finance_db.conn.execute.return_value.fetchone.return_value = invoice(status="void")
        response = client.post("/finance/waive-off", json={"invoice_id": 4, "amount": 50, "reason": "goodwill"})
        assert response.status_code == 409

    def test_unbilled_order_is_invoiced_first(self, client, finance_db, ledger):
        finance_db.conn.execute.return_value.fetchone.side_effect = [
            {"id": 7, "customer_id": 3, "customer_name": "Asha Rao", "status": "delivered", "grand_total": 1000.0},
            None,
            invoice(),
            {"id": 9, "invoice_id": 4, "amount": 100.0},
            invoice(waived_amount=100.0, status="partially_paid"),
        ]
        with patch("erp_api.services.invoicing.ledger") as invoice_ledger:
            response = client.post("/finance/waive-off", json={"sales_order_id": 7, "amount": 100, "reason": "scratch"})
        assert response.status_code == 201
        invoice_ledger.post_invoice.assert_called_once()
        assert response.json()["data"]["remaining"] == 900.0

    def test_needs_a_target(self, client):
        with patch("erp_api.routers.finance.Database") as database:
            response = client.post("/finance/waive-off", json={"amount": 100, "reason": "goodwill"})
        assert response.status_code == 400
        database.assert_not_called()


class TestRefunds:
    def refund(self, **overrides) -> dict:
        row = {
            "id": 2, "invoice_id": 4, "amount": 300.0, "status": "approved", "reason": "damaged",
            "method": "bank_transfer", "bank_account_id": 3,
        }
        row.update(overrides)
        return row

    def test_request_limited_to_unrefunded_money(self, client, finance_db):
        finance_db.conn.execute.return_value.fetchone.side_effect = [
            invoice(paid_amount=1000.0, total_refunded=200.0, status="paid"),
            {"amount": 500.0},
        ]
        response = client.post("/finance/refunds/4", json={"amount": 400, "reason": "damaged"})
        assert response.status_code == 400
        assert response.json()["details"] == {"available": 300.0, "amount": 400.0}

    def test_request_is_pending(self, client, finance_db):
        finance_db.conn.execute.return_value.fetchone.side_effect = [
            invoice(paid_amount=1000.0, status="paid"),
            {"amount": 0},
            self.refund(status="pending", method="cash", bank_account_id=None),
        ]
        response = client.post("/finance/refunds/4", json={"amount": 300, "reason": "damaged"})
        assert response.status_code == 201
        assert response.json()["data"]["status"] == "pending"

    def test_processing_pays_out(self, client, finance_db, ledger):
        finance_db.conn.execute.return_value.fetchone.side_effect = [
            self.refund(),
            invoice(paid_amount=1000.0, status="paid"),
            self.refund(status="processed"),
        ]
        response = client.patch("/finance/refunds/4/2", json={"status": "processed"})
        assert response.status_code == 200
        assert response.json()["journal_number"] == "RFD-0001"

        withdrawal = ledger.record_bank_transaction.call_args[0]
        assert (withdrawal[1], withdrawal[2], withdrawal[3], withdrawal[6]) == (
            3, BankTransactionType.WITHDRAWAL, 300.0, "RFD-2",
        )
        refund_journal = ledger.post_refund.call_args[0]
        assert refund_journal[1:5] == (2, 300.0, PaymentMethod.BANK_TRANSFER, 3)
        assert executed(finance_db, "total_refunded = total_refunded + %s") == [(300.0, 4)]

    def test_processing_beyond_received_money(self, client, finance_db, ledger):
        finance_db.conn.execute.return_value.fetchone.side_effect = [
            self.refund(),
            invoice(paid_amount=500.0, total_refunded=400.0, status="paid"),
        ]
        response = client.patch("/finance/refunds/4/2", json={"status": "processed"})
        assert response.status_code == 400
        ledger.post_refund.assert_not_called()

    def test_pending_cannot_skip_approval(self, client, finance_db, ledger):
        finance_db.conn.execute.return_value.fetchone.return_value = self.refund(status="pending")
        response = client.patch("/finance/refunds/4/2", json={"status": "processed"})
        assert response.status_code == 409
        ledger.record_bank_transaction.assert_not_called()

    def test_approval_moves_no_money(self, client, finance_db, ledger):
        finance_db.conn.execute.return_value.fetchone.side_effect = [
            self.refund(status="pending"),
            self.refund(status="approved", approved_by=2),
        ]
        response = client.patch("/finance/refunds/4/2", json={"status": "approved", "approved_by": 2})
        assert response.status_code == 200
        assert response.json()["journal_number"] is None
        ledger.post_refund.assert_not_called()


def test_overdue_alerts_skip_void_invoices(client):
    with patch("erp_api.routers.dashboard.Database") as database:
        database.return_value.fetch_all.return_value = []
        response = client.get("/alerts")
    assert response.status_code == 200
    invoice_query = next(
        c[0] for c in database.return_value.fetch_all.call_args_list if "FROM invoices" in c[0][0]
    )
    assert invoice_query[1][0] == ["unpaid", "partially_paid"]
