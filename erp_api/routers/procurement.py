"""
Purchase orders: creation, approval, receipt and supplier payments.

GET/POST  /procurement/purchase-orders
PATCH     /procurement/purchase-orders/{po_id}
POST      /procurement/purchase-orders/{po_id}/receive
POST      /procurement/purchase-orders/{po_id}/payments
DELETE    /procurement/purchase-orders/{po_id}

Approving a purchase order raises a vendor bill for its total (debit
inventory, credit payables). Payments against the order settle that bill.
"""

from datetime import date, datetime, timedelta
from typing import Any

import psycopg
from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from erp_api.config import settings
from erp_api.core.cache import cache
from erp_api.core.database import Database
from erp_api.core.errors import ConflictError, NotFoundError, ValidationError
from erp_api.core.logging import get_logger
from erp_api.core.models import (
    BankTransactionType,
    BillStatus,
    PaymentMethod,
    PaymentStatus,
    PurchaseOrderStatus,
    SourceDocument,
    money,
)
from erp_api.services import ledger

log = get_logger(__name__)
router = APIRouter()


class PurchaseOrderCreate(BaseModel):
    supplier_id: int
    product_id: int | None = None
    quantity: int = Field(gt=0)
    is_custom: bool = False
    custom_type: str | None = None
    product_name: str | None = None
    description: str | None = None
    total: float | None = Field(default=None, gt=0)
    due_date: date | None = None
    sales_order_id: int | None = None
    created_by: int | None = None


class PurchaseOrderUpdate(BaseModel):
    status: PurchaseOrderStatus | None = None
    description: str | None = None
    due_date: date | None = None


class SupplierPayment(BaseModel):
    amount: float
    method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    bank_account_id: int | None = None
    payment_date: date | None = None


class ReceiveRequest(BaseModel):
    received_quantity: int | None = Field(default=None, gt=0)
    payment: SupplierPayment | None = None


def _lock_po(conn: psycopg.Connection, po_id: int) -> dict[str, Any]:
    po = conn.execute("SELECT * FROM purchase_orders WHERE id = %s FOR UPDATE", (po_id,)).fetchone()
    if po is None:
        raise NotFoundError("Purchase order", po_id)
    return po


def _create_bill(conn: psycopg.Connection, po: dict[str, Any]) -> dict[str, Any]:
    """Raise the vendor bill for an approved purchase order and journal it."""
    supplier = conn.execute(
        "SELECT name, payment_terms_days FROM suppliers WHERE id = %s", (po["supplier_id"],)
    ).fetchone()
    terms = (supplier or {}).get("payment_terms_days") or settings.default_payment_terms_days
    today = date.today()
    # custom orders are bought for a specific sale and are expensed as cost of sales
    account_code = ledger.COST_OF_GOODS_SOLD if po["is_custom"] else ledger.INVENTORY

    bill = conn.execute(
        """
        INSERT INTO vendor_bills (
            bill_number, supplier_id, purchase_order_id, bill_date, due_date,
            total_amount, status, description, reference_number
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING *
        """,
        (
            f"PO-{po['id']}-{datetime.now():%Y%m%d%H%M%S}",
            po["supplier_id"],
            po["id"],
            today,
            today + timedelta(days=terms),
            po["total"],
            BillStatus.PENDING.value,
            f"Vendor bill for purchase order {po['id']}",
            f"PO-REF-{po['id']}",
        ),
    ).fetchone()
    conn.execute(
        """
        INSERT INTO vendor_bill_line_items (
            vendor_bill_id, product_id, description, quantity, unit_price, total_amount, account_code
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        """,
        (
            bill["id"],
            po["product_id"],
            po["product_name"] or po["description"] or "Purchase order",
            po["quantity"],
            money(po["total"] / po["quantity"]),
            po["total"],
            account_code,
        ),
    )
    ledger.post_vendor_bill(conn, bill["id"], [(account_code, po["total"])], today, bill["bill_number"])
    log.info("vendor_bill_created_from_po", po_id=po["id"], bill_id=bill["id"], due_date=str(bill["due_date"]))
    return bill


def _void_bill(conn: psycopg.Connection, po: dict[str, Any]) -> None:
    """Reverse and remove the unpaid bill of a purchase order being cancelled."""
    bill = conn.execute(
        "SELECT id, paid_amount FROM vendor_bills WHERE purchase_order_id = %s FOR UPDATE", (po["id"],)
    ).fetchone()
    if bill is None:
        return
    if bill["paid_amount"] > 0:
        raise ConflictError("Purchase order has payments and cannot be cancelled")
    ledger.reverse_source_journals(conn, SourceDocument.VENDOR_BILL, bill["id"])
    conn.execute("DELETE FROM vendor_bill_line_items WHERE vendor_bill_id = %s", (bill["id"],))
    conn.execute("DELETE FROM vendor_bills WHERE id = %s", (bill["id"],))


def _receive(conn: psycopg.Connection, po: dict[str, Any], quantity: int | None = None) -> dict[str, Any]:
    current = PurchaseOrderStatus(po["status"])
    if not current.can_transition_to(PurchaseOrderStatus.RECEIVED):
        raise ConflictError(f"Cannot receive a purchase order that is {current.value}")

    received = quantity or po["quantity"]
    if po["product_id"] is not None and not po["is_custom"]:
        conn.execute(
            "UPDATE products SET quantity = quantity + %s, updated_at = NOW() WHERE id = %s",
            (received, po["product_id"]),
        )
        conn.execute(
            """
            INSERT INTO stock_adjustments (product_id, quantity_change, reason, reference)
            VALUES (%s, %s, 'purchase_received', %s)
            """,
            (po["product_id"], received, f"PO-{po['id']}"),
        )
    return conn.execute(
        "UPDATE purchase_orders SET status = %s, received_at = NOW() WHERE id = %s RETURNING *",
        (PurchaseOrderStatus.RECEIVED.value, po["id"]),
    ).fetchone()


def _pay(conn: psycopg.Connection, po: dict[str, Any], payment: SupplierPayment) -> dict[str, Any]:
    """Record a supplier payment against a purchase order and its bill."""
    if payment.amount <= 0:
        raise ValidationError("Payment amount must be greater than zero")
    if payment.method.requires_account and payment.bank_account_id is None:
        raise ValidationError(f"An account is required for {payment.method.value} payments")
    status = PurchaseOrderStatus(po["status"])
    if status not in (PurchaseOrderStatus.APPROVED, PurchaseOrderStatus.RECEIVED):
        raise ConflictError(f"Cannot pay a purchase order that is {status.value}")

    total = money(po["total"])
    paid = money(po["paid_amount"] + payment.amount)
    if paid > total + 0.005:
        raise ValidationError(
            "Payment exceeds the purchase order total",
            details={"total": total, "paid_amount": money(po["paid_amount"]), "remaining": money(total - po["paid_amount"])},
        )

    payment_date = payment.payment_date or date.today()
    row = conn.execute(
        """
        INSERT INTO purchase_order_payments (purchase_order_id, amount, payment_date, method, bank_account_id)
        VALUES (%s, %s, %s, %s, %s)
        RETURNING *
        """,
        (po["id"], payment.amount, payment_date, payment.method.value, payment.bank_account_id),
    ).fetchone()

    payment_status = PaymentStatus.from_amounts(paid, total)
    po = conn.execute(
        "UPDATE purchase_orders SET paid_amount = %s, payment_status = %s WHERE id = %s RETURNING *",
        (paid, payment_status.value, po["id"]),
    ).fetchone()

    bill = conn.execute(
        "SELECT id, total_amount, paid_amount FROM vendor_bills WHERE purchase_order_id = %s FOR UPDATE",
        (po["id"],),
    ).fetchone()
    if bill is not None:
        bill_paid = money(bill["paid_amount"] + payment.amount)
        conn.execute(
            "UPDATE vendor_bills SET paid_amount = %s, status = %s WHERE id = %s",
            (bill_paid, BillStatus.from_amounts(bill_paid, bill["total_amount"]).value, bill["id"]),
        )

    if payment.bank_account_id is not None:
        ledger.record_bank_transaction(
            conn, payment.bank_account_id, BankTransactionType.WITHDRAWAL, payment.amount,
            payment_date, f"Payment for purchase order {po['id']}", f"POPAY-{row['id']}",
        )
    journal = ledger.post_vendor_payment(
        conn, SourceDocument.PURCHASE_ORDER_PAYMENT, row["id"], payment.amount,
        payment.method, payment.bank_account_id, payment_date, f"PO-{po['id']}",
    )
    log.info(
        "purchase_order_payment_recorded",
        po_id=po["id"],
        amount=payment.amount,
        paid_amount=paid,
        payment_status=payment_status.value,
    )
    return {"payment": row, "purchase_order": po, "journal_number": journal["journal_number"]}


@router.get("/procurement/purchase-orders")
def list_purchase_orders(
    supplier_id: int | None = None,
    status: PurchaseOrderStatus | None = None,
    payment_status: PaymentStatus | None = None,
    limit: int = Query(default=100, le=500),
    offset: int = 0,
):
    db = Database()
    rows = db.fetch_all(
        """
        SELECT po.*, s.name AS supplier_name, u.name AS created_by_name,
               COALESCE(p.name, po.product_name) AS item_name,
               c.name AS customer_name,
               po.total - po.paid_amount AS balance_due
        FROM purchase_orders po
        JOIN suppliers s ON s.id = po.supplier_id
        LEFT JOIN users u ON u.id = po.created_by
        LEFT JOIN products p ON p.id = po.product_id
        LEFT JOIN sales_orders so ON so.id = po.sales_order_id
        LEFT JOIN customers c ON c.id = so.customer_id
        WHERE (%(supplier)s::int IS NULL OR po.supplier_id = %(supplier)s)
          AND (%(status)s::text IS NULL OR po.status = %(status)s)
          AND (%(payment_status)s::text IS NULL OR po.payment_status = %(payment_status)s)
        ORDER BY po.created_at DESC
        LIMIT %(limit)s OFFSET %(offset)s
        """,
        {
            "supplier": supplier_id,
            "status": status.value if status else None,
            "payment_status": payment_status.value if payment_status else None,
            "limit": limit,
            "offset": offset,
        },
    )
    return {"success": True, "data": rows}


@router.post("/procurement/purchase-orders", status_code=201)
def create_purchase_order(request: PurchaseOrderCreate):
    """
    Create a pending purchase order.

    Catalogue orders are priced at product cost x quantity; custom orders
    must carry an explicit total.
    """
    db = Database()
    product_name = request.product_name
    if request.is_custom:
        if request.total is None:
            raise ValidationError("Custom purchase orders require a total")
        total = request.total
    else:
        if request.product_id is None:
            raise ValidationError("product_id is required for catalogue purchase orders")
        product = db.fetch_one("SELECT name, cost FROM products WHERE id = %s", (request.product_id,))
        if product is None:
            raise NotFoundError("Product", request.product_id)
        total = money(product["cost"] * request.quantity)
        product_name = product_name or product["name"]
    if total <= 0:
        raise ValidationError("Purchase order total must be greater than zero")

    if db.fetch_one("SELECT id FROM suppliers WHERE id = %s", (request.supplier_id,)) is None:
        raise NotFoundError("Supplier", request.supplier_id)

    row = db.execute(
        """
        INSERT INTO purchase_orders (
            supplier_id, product_id, product_name, quantity, total, status,
            is_custom, custom_type, description, due_date, sales_order_id, created_by
        )
        VALUES (%s, %s, %s, %s, %s, 'pending', %s, %s, %s, %s, %s, %s)
        RETURNING *
        """,
        (
            request.supplier_id,
            request.product_id,
            product_name,
            request.quantity,
            total,
            request.is_custom,
            request.custom_type,
            request.description,
            request.due_date,
            request.sales_order_id,
            request.created_by,
        ),
    )
    log.info("purchase_order_created", po_id=row["id"], supplier_id=request.supplier_id, total=total)
    cache.invalidate_prefix("dashboard")
    return {"success": True, "data": row}


@router.patch("/procurement/purchase-orders/{po_id}")
def update_purchase_order(po_id: int, request: PurchaseOrderUpdate):
    db = Database()
    bill = None
    with db.transaction() as conn:
        po = _lock_po(conn, po_id)
        values = request.model_dump(exclude_unset=True, exclude={"status"})
        if values:
            assignments = ", ".join(f"{column} = %({column})s" for column in sorted(values))
            po = conn.execute(
                f"UPDATE purchase_orders SET {assignments} WHERE id = %(id)s RETURNING *",
                {**values, "id": po_id},
            ).fetchone()

        target = request.status
        current = PurchaseOrderStatus(po["status"])
        if target is not None and target != current:
            if not current.can_transition_to(target):
                raise ConflictError(f"Cannot move purchase order from {current.value} to {target.value}")
            if target is PurchaseOrderStatus.APPROVED:
                bill = _create_bill(conn, po)
                po = conn.execute(
                    "UPDATE purchase_orders SET status = %s WHERE id = %s RETURNING *",
                    (target.value, po_id),
                ).fetchone()
            elif target is PurchaseOrderStatus.RECEIVED:
                po = _receive(conn, po)
            else:
                _void_bill(conn, po)
                po = conn.execute(
                    "UPDATE purchase_orders SET status = %s WHERE id = %s RETURNING *",
                    (target.value, po_id),
                ).fetchone()
            log.info("purchase_order_status_changed", po_id=po_id, old_status=current.value, new_status=target.value)

    cache.invalidate_prefix("dashboard")
    return {"success": True, "data": po, "vendor_bill": bill}


@router.post("/procurement/purchase-orders/{po_id}/receive")
def receive_purchase_order(po_id: int, request: ReceiveRequest | None = None):
    """Receive goods into stock and optionally pay the supplier, atomically."""
    request = request or ReceiveRequest()
    db = Database()
    payment = None
    with db.transaction() as conn:
        po = _receive(conn, _lock_po(conn, po_id), request.received_quantity)
        if request.payment is not None:
            payment = _pay(conn, po, request.payment)
            po = payment["purchase_order"]

    log.info("purchase_order_received", po_id=po_id, quantity=request.received_quantity or po["quantity"])
    cache.invalidate_prefix("dashboard")
    return {"success": True, "data": po, "payment": payment}


@router.post("/procurement/purchase-orders/{po_id}/payments", status_code=201)
def pay_purchase_order(po_id: int, request: SupplierPayment):
    db = Database()
    with db.transaction() as conn:
        result = _pay(conn, _lock_po(conn, po_id), request)
    cache.invalidate_prefix("dashboard")
    return {"success": True, "data": result}


@router.delete("/procurement/purchase-orders/{po_id}")
def delete_purchase_order(po_id: int):
    db = Database()
    with db.transaction() as conn:
        po = _lock_po(conn, po_id)
        if po["status"] != PurchaseOrderStatus.PENDING.value:
            raise ConflictError("Only pending purchase orders can be deleted")
        conn.execute("DELETE FROM purchase_orders WHERE id = %s", (po_id,))
    log.info("purchase_order_deleted", po_id=po_id)
    cache.invalidate_prefix("dashboard")
    return {"success": True, "data": {"id": po_id}}
