"""Unit tests for purchase order receipt, vendor bills and supplier payments."""

from datetime import date, timedelta
from unittest.mock import MagicMock, patch

import pytest

from erp_api.core.errors import ConflictError, ValidationError
from erp_api.core.models import PaymentMethod, SourceDocument
from erp_api.routers.procurement import SupplierPayment, _create_bill, _pay, _receive, _void_bill


def purchase_order(**overrides) -> dict:
    po = {
        "id": 12, "supplier_id": 3, "product_id": 8, "quantity": 10, "total": 1000.0,
        "paid_amount": 0.0, "status": "approved", "is_custom": False,
    }
    po.update(overrides)
    return po


class TestPay:
    def test_overpayment_rejected(self):
        conn = MagicMock()
        with pytest.raises(ValidationError, match="exceeds") as exc:
            _pay(conn, purchase_order(paid_amount=900), SupplierPayment(amount=150, method=PaymentMethod.CASH))
        assert exc.value.details["remaining"] == 100
        conn.execute.assert_not_called()

    def test_pending_order_cannot_be_paid(self):
        with pytest.raises(ConflictError, match="pending"):
            _pay(MagicMock(), purchase_order(status="pending"), SupplierPayment(amount=100, method=PaymentMethod.CASH))

    def test_bank_method_needs_account(self):
        with pytest.raises(ValidationError, match="account is required"):
            _pay(MagicMock(), purchase_order(), SupplierPayment(amount=100))

    def test_partial_payment_settles_bill_and_withdraws(self):
        conn = MagicMock()
        conn.execute.return_value.fetchone.side_effect = [
            {"id": 40},
            purchase_order(paid_amount=400, payment_status="partially_paid"),
            {"id": 77, "total_amount": 1000.0, "paid_amount": 0.0},
        ]
        with patch("erp_api.routers.procurement.ledger") as ledger:
            ledger.post_vendor_payment.return_value = {"journal_number": "JE-POPAY-40"}
            result = _pay(conn, purchase_order(), SupplierPayment(amount=400, bank_account_id=2))

        assert result["journal_number"] == "JE-POPAY-40"
        po_update = conn.execute.call_args_list[1][0][1]
        assert po_update == (400, "partially_paid", 12)
        bill_update = conn.execute.call_args_list[3][0][1]
        assert bill_update == (400, "partial", 77)
        ledger.record_bank_transaction.assert_called_once()
        assert ledger.record_bank_transaction.call_args[0][6] == "POPAY-40"


class TestReceive:
    def test_catalogue_order_restocks(self):
        conn = MagicMock()
        _receive(conn, purchase_order(), quantity=6)
        stock_update = conn.execute.call_args_list[0][0]
        assert "quantity = quantity + %s" in stock_update[0]
        assert stock_update[1] == (6, 8)

    def test_custom_order_does_not_touch_stock(self):
        conn = MagicMock()
        _receive(conn, purchase_order(is_custom=True))
        assert conn.execute.call_count == 1
        assert "UPDATE purchase_orders" in conn.execute.call_args[0][0]

    def test_cancelled_order_cannot_be_received(self):
        with pytest.raises(ConflictError):
            _receive(MagicMock(), purchase_order(status="cancelled"))


class TestCreateBill:
    def test_due_date_follows_supplier_terms(self):
        conn = MagicMock()
        conn.execute.return_value.fetchone.side_effect = [
            {"name": "Kerala Timber", "payment_terms_days": 45},
            {"id": 77, "bill_number": "PO-12-x", "due_date": date.today() + timedelta(days=45)},
        ]
        with patch("erp_api.routers.procurement.ledger") as ledger:
            ledger.INVENTORY = "1300"
            bill = _create_bill(conn, purchase_order(product_name="Teak plank", description=None))

        insert = conn.execute.call_args_list[1][0][1]
        assert insert[3] == date.today()
        assert insert[4] == date.today() + timedelta(days=45)
        assert insert[5] == 1000.0
        line = conn.execute.call_args_list[2][0][1]
        assert line == (77, 8, "Teak plank", 10, 100.0, 1000.0, "1300")
        ledger.post_vendor_bill.assert_called_once_with(conn, 77, [("1300", 1000.0)], date.today(), bill["bill_number"])

    def test_default_terms_and_custom_orders_hit_cost_of_sales(self):
        conn = MagicMock()
        conn.execute.return_value.fetchone.side_effect = [
            {"name": "Kerala Timber", "payment_terms_days": None},
            {"id": 78, "bill_number": "PO-12-y", "due_date": date.today() + timedelta(days=30)},
        ]
        with patch("erp_api.routers.procurement.ledger") as ledger:
            ledger.COST_OF_GOODS_SOLD = "5000"
            _create_bill(conn, purchase_order(is_custom=True, product_name=None, description="Custom almirah"))

        assert conn.execute.call_args_list[1][0][1][4] == date.today() + timedelta(days=30)
        line = conn.execute.call_args_list[2][0][1]
        assert line[2] == "Custom almirah"
        assert line[-1] == "5000"


class TestVoidBill:
    def test_no_bill(self):
        conn = MagicMock()
        conn.execute.return_value.fetchone.return_value = None
        with patch("erp_api.routers.procurement.ledger") as ledger:
            _void_bill(conn, purchase_order())
        ledger.reverse_source_journals.assert_not_called()
        assert conn.execute.call_count == 1

    def test_paid_bill_blocks_cancellation(self):
        conn = MagicMock()
        conn.execute.return_value.fetchone.return_value = {"id": 77, "paid_amount": 200.0}
        with patch("erp_api.routers.procurement.ledger") as ledger:
            with pytest.raises(ConflictError, match="has payments"):
                _void_bill(conn, purchase_order())
        ledger.reverse_source_journals.assert_not_called()

    def test_unpaid_bill_reversed_and_removed(self):
        conn = MagicMock()
        conn.execute.return_value.fetchone.return_value = {"id": 77, "paid_amount": 0}
        with patch("erp_api.routers.procurement.ledger") as ledger:
            _void_bill(conn, purchase_order())
        ledger.reverse_source_journals.assert_called_once_with(conn, SourceDocument.VENDOR_BILL, 77)
        deletes = [c[0] for c in conn.execute.call_args_list[1:]]
        assert deletes == [
            ("DELETE FROM vendor_bill_line_items WHERE vendor_bill_id = %s", (77,)),
            ("DELETE FROM vendor_bills WHERE id = %s", (77,)),
        ]
