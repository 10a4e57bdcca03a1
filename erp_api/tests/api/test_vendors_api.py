"""Vendor bill deletion through the HTTP layer."""

from unittest.mock import call, patch

import pytest
from fastapi.testclient import TestClient

from erp_api.core.models import BankTransactionType, SourceDocument
from erp_api.main import app


@pytest.fixture
def client():
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def vendors_db(mock_db):
    with patch("erp_api.routers.vendors.Database", return_value=mock_db):
        yield mock_db


def bill(**overrides) -> dict:
    row = {"id": 77, "supplier_id": 3, "bill_number": "INV-2211", "purchase_order_id": None, "paid_amount": 600.0}
    row.update(overrides)
    return row


def test_purchase_order_bill_conflicts(client, vendors_db):
    vendors_db.conn.execute.return_value.fetchone.return_value = bill(purchase_order_id=12)
    with patch("erp_api.routers.vendors.ledger") as ledger:
        response = client.delete("/vendors/3/bills/77")
    assert response.status_code == 409
    ledger.delete_source_journals.assert_not_called()


def test_unknown_bill(client, vendors_db):
    vendors_db.conn.execute.return_value.fetchone.return_value = None
    assert client.delete("/vendors/3/bills/77").status_code == 404


def test_deletes_bill_payments_and_journals(client, vendors_db):
    conn = vendors_db.conn
    conn.execute.return_value.fetchone.return_value = bill()
    conn.execute.return_value.fetchall.return_value = [
        {"id": 31, "amount": 400.0, "bank_account_id": 2},
        {"id": 32, "amount": 200.0, "bank_account_id": None},
    ]
    with patch("erp_api.routers.vendors.ledger") as ledger:
        ledger.delete_source_journals.side_effect = [2, 1]
        response = client.delete("/vendors/3/bills/77")

    assert response.status_code == 200
    assert response.json()["data"] == {"bill_id": 77, "payments_deleted": 2, "journals_deleted": 3}

    ledger.record_bank_transaction.assert_called_once()
    deposit = ledger.record_bank_transaction.call_args[0]
    assert (deposit[1], deposit[2], deposit[3], deposit[6]) == (2, BankTransactionType.DEPOSIT, 400.0, "VPAY-31")
    assert ledger.delete_source_journals.call_args_list == [
        call(conn, SourceDocument.VENDOR_PAYMENT, [31, 32]),
        call(conn, SourceDocument.VENDOR_BILL, [77]),
    ]
    deletes = [c[0][0] for c in conn.execute.call_args_list if c[0][0].startswith("DELETE")]
    assert deletes == [
        "DELETE FROM vendor_payment_history WHERE vendor_bill_id = %s",
        "DELETE FROM vendor_bill_line_items WHERE vendor_bill_id = %s",
        "DELETE FROM vendor_bills WHERE id = %s",
    ]
