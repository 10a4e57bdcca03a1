"""
Suppliers, vendor bills and bill payments.

GET/POST  /vendors
GET       /vendors/stats
GET       /vendors/{vendor_id}
GET/POST  /vendors/{vendor_id}/bills
POST      /vendors/{vendor_id}/bills/{bill_id}/payments
DELETE    /vendors/{vendor_id}/bills/{bill_id}
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
    SourceDocument,
    money,
)
from erp_api.services import ledger

log = get_logger(__name__)
router = APIRouter()


class VendorCreate(BaseModel):
    name: str
    contact: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    payment_terms_days: int | None = Field(default=None, ge=0)


class BillLine(BaseModel):
    description: str
    product_id: int | None = None
    quantity: float = Field(default=1, gt=0)
    unit_price: float = Field(ge=0)
    account_code: str | None = None


class BillCreate(BaseModel):
    bill_number: str | None = None
    bill_date: date | None = None
    due_date: date | None = None
    description: str | None = None
    reference_number: str | None = None
    line_items: list[BillLine] = Field(min_length=1)


class BillPayment(BaseModel):
    amount: float
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    bank_account_id: int | None = None
    payment_date: date | None = None
    reference: str | None = None


def _get_vendor(db: Database, vendor_id: int) -> dict[str, Any]:
    vendor = db.fetch_one("SELECT * FROM suppliers WHERE id = %s", (vendor_id,))
    if vendor is None:
        raise NotFoundError("Vendor", vendor_id)
    return vendor


def _lock_bill(conn: psycopg.Connection, vendor_id: int, bill_id: int) -> dict[str, Any]:
    bill = conn.execute(
        "SELECT * FROM vendor_bills WHERE id = %s AND supplier_id = %s FOR UPDATE",
        (bill_id, vendor_id),
    ).fetchone()
    if bill is None:
        raise NotFoundError("Vendor bill", bill_id)
    return bill


@router.get("/vendors")
def list_vendors(search: str | None = None, include_inactive: bool = False):
    db = Database()
    rows = db.fetch_all(
        """
        SELECT * FROM suppliers
        WHERE (%(pattern)s::text IS NULL OR name ILIKE %(pattern)s OR contact ILIKE %(pattern)s)
          AND (%(all)s OR is_active)
        ORDER BY name
        """,
        {"pattern": f"%{search}%" if search else None, "all": include_inactive},
    )
    return {"success": True, "data": rows}


@router.post("/vendors", status_code=201)
def create_vendor(request: VendorCreate):
    if not request.name.strip():
        raise ValidationError("Vendor name is required")
    db = Database()
    row = db.execute(
        """
        INSERT INTO suppliers (name, contact, email, phone, address, payment_terms_days)
        VALUES (%(name)s, %(contact)s, %(email)s, %(phone)s, %(address)s, %(payment_terms_days)s)
        RETURNING *
        """,
        request.model_dump(),
    )
    log.info("vendor_created", vendor_id=row["id"])
    return {"success": True, "data": row}


@router.get("/vendors/stats")
def vendor_stats():
    """Per-vendor purchasing, stock and payables figures, largest stock value first."""
    db = Database()
    rows = db.fetch_all(
        """
        SELECT s.id, s.name, s.contact,
               COALESCE(po.order_count, 0) AS total_purchase_orders,
               COALESCE(po.pending_orders, 0) AS pending_orders,
               po.last_order_date,
               COALESCE(p.products_count, 0) AS products_count,
               COALESCE(p.stock_quantity, 0) AS current_stock_quantity,
               COALESCE(p.stock_value, 0) AS current_stock_value,
               COALESCE(p.stock_cost, 0) AS total_purchase_cost,
               COALESCE(b.billed, 0) AS total_bill_amount,
               COALESCE(b.paid, 0) AS total_paid,
               COALESCE(b.unpaid_bills, 0) AS unpaid_bills
        FROM suppliers s
        LEFT JOIN (
            SELECT supplier_id, COUNT(*) AS order_count,
                   COUNT(*) FILTER (WHERE status = 'pending') AS pending_orders,
                   MAX(created_at) AS last_order_date
            FROM purchase_orders GROUP BY supplier_id
        ) po ON po.supplier_id = s.id
        LEFT JOIN (
            SELECT supplier_id, COUNT(*) AS products_count, SUM(quantity) AS stock_quantity,
                   SUM(quantity * price) AS stock_value, SUM(quantity * cost) AS stock_cost
            FROM products WHERE is_active GROUP BY supplier_id
        ) p ON p.supplier_id = s.id
        LEFT JOIN (
            SELECT supplier_id, SUM(total_amount) AS billed, SUM(paid_amount) AS paid,
                   COUNT(*) FILTER (WHERE status <> 'paid') AS unpaid_bills
            FROM vendor_bills GROUP BY supplier_id
        ) b ON b.supplier_id = s.id
        ORDER BY s.name
        """
    )

    stats = []
    for row in rows:
        stock_value = money(row["current_stock_value"])
        stock_cost = money(row["total_purchase_cost"])
        pending = money(row["total_bill_amount"] - row["total_paid"])
        stats.append({
            **row,
            "current_stock_value": stock_value,
            "total_purchase_cost": stock_cost,
            "total_bill_amount": money(row["total_bill_amount"]),
            "total_paid": money(row["total_paid"]),
            "total_pending": pending,
            "profit_potential": money(stock_value - stock_cost),
            "profit_percentage": money((stock_value - stock_cost) / stock_cost * 100) if stock_cost else 0.0,
            "payment_status": "pending" if pending > 0 else "paid",
            "status": "Active" if row["total_purchase_orders"] or row["products_count"] else "Inactive",
        })
    stats.sort(key=lambda s: s["current_stock_value"], reverse=True)
    return {"success": True, "data": stats}


@router.get("/vendors/{vendor_id}")
def get_vendor(vendor_id: int):
    db = Database()
    vendor = _get_vendor(db, vendor_id)
    bills = db.fetch_all(
        """
        SELECT id, bill_number, bill_date, due_date, total_amount, paid_amount, status
        FROM vendor_bills WHERE supplier_id = %s
        ORDER BY bill_date DESC
        """,
        (vendor_id,),
    )
    today = date.today()
    outstanding = [b for b in bills if b["status"] != BillStatus.PAID.value]
    return {
        "success": True,
        "data": {
            **vendor,
            "bills": bills,
            "bill_stats": {
                "total_bills": len(bills),
                "total_billed": money(sum(b["total_amount"] for b in bills)),
                "total_paid": money(sum(b["paid_amount"] for b in bills)),
                "outstanding": money(sum(b["total_amount"] - b["paid_amount"] for b in outstanding)),
                "unpaid_bills": len(outstanding),
                "overdue_bills": sum(1 for b in outstanding if b["due_date"] and b["due_date"] < today),
            },
        },
    }


@router.get("/vendors/{vendor_id}/bills")
def list_bills(vendor_id: int, status: BillStatus | None = None, limit: int = Query(default=100, le=500)):
    db = Database()
    _get_vendor(db, vendor_id)
    rows = db.fetch_all(
        """
        SELECT b.*, b.total_amount - b.paid_amount AS outstanding,
               COALESCE(json_agg(l ORDER BY l.id) FILTER (WHERE l.id IS NOT NULL), '[]') AS line_items
        FROM vendor_bills b
        LEFT JOIN vendor_bill_line_items l ON l.vendor_bill_id = b.id
        WHERE b.supplier_id = %(vendor)s AND (%(status)s::text IS NULL OR b.status = %(status)s)
        GROUP BY b.id
        ORDER BY b.bill_date DESC, b.id DESC
        LIMIT %(limit)s
        """,
        {"vendor": vendor_id, "status": status.value if status else None, "limit": limit},
    )
    return {"success": True, "data": rows}


@router.post("/vendors/{vendor_id}/bills", status_code=201)
def create_bill(vendor_id: int, request: BillCreate):
    """
    Record a vendor bill with its line items.

    Each line is debited to its account (inventory for stocked products,
    general expense otherwise) and the total credited to accounts payable.
    """
    db = Database()
    vendor = _get_vendor(db, vendor_id)

    bill_date = request.bill_date or date.today()
    terms = vendor["payment_terms_days"] or settings.default_payment_terms_days
    due_date = request.due_date or bill_date + timedelta(days=terms)
    if due_date < bill_date:
        raise ValidationError("due_date cannot be before bill_date")

    lines = []
    for item in request.line_items:
        code = item.account_code or (ledger.INVENTORY if item.product_id else ledger.GENERAL_EXPENSE)
        lines.append((item, code, money(item.quantity * item.unit_price)))
    total = money(sum(amount for _, _, amount in lines))
    if total <= 0:
        raise ValidationError("Bill total must be greater than zero")

    bill_number = request.bill_number or f"BILL-{vendor_id}-{datetime.now():%Y%m%d%H%M%S}"
    with db.transaction() as conn:
        if conn.execute("SELECT 1 FROM vendor_bills WHERE bill_number = %s", (bill_number,)).fetchone():
            raise ConflictError(f"Bill number {bill_number} already exists")
        bill = conn.execute(
            """
            INSERT INTO vendor_bills (
                bill_number, supplier_id, bill_date, due_date, total_amount,
                status, description, reference_number
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                bill_number, vendor_id, bill_date, due_date, total,
                BillStatus.PENDING.value, request.description, request.reference_number,
            ),
        ).fetchone()
        with conn.cursor() as cur:
            cur.executemany(
                """
                INSERT INTO vendor_bill_line_items (
                    vendor_bill_id, product_id, description, quantity, unit_price, total_amount, account_code
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                """,
                [
                    (bill["id"], item.product_id, item.description, item.quantity, item.unit_price, amount, code)
                    for item, code, amount in lines
                ],
            )
        journal = ledger.post_vendor_bill(
            conn, bill["id"], [(code, amount) for _, code, amount in lines], bill_date, bill_number,
        )

    log.info("vendor_bill_created", vendor_id=vendor_id, bill_id=bill["id"], total=total)
    cache.invalidate_prefix("dashboard")
    return {"success": True, "data": bill, "journal_number": journal["journal_number"]}


@router.post("/vendors/{vendor_id}/bills/{bill_id}/payments", status_code=201)
def pay_bill(vendor_id: int, bill_id: int, request: BillPayment):
    if request.amount <= 0:
        raise ValidationError("Payment amount must be greater than zero")
    if request.payment_method.requires_account and request.bank_account_id is None:
        raise ValidationError(f"An account is required for {request.payment_method.value} payments")

    payment_date = request.payment_date or date.today()
    db = Database()
    with db.transaction() as conn:
        bill = _lock_bill(conn, vendor_id, bill_id)
        outstanding = money(bill["total_amount"] - bill["paid_amount"])
        if request.amount > outstanding + 0.005:
            raise ValidationError(
                "Payment exceeds the outstanding amount",
                details={"outstanding": outstanding, "amount": request.amount},
            )

        payment = conn.execute(
            """
            INSERT INTO vendor_payment_history (
                vendor_bill_id, supplier_id, amount, payment_date, payment_method, bank_account_id, reference
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                bill_id, vendor_id, request.amount, payment_date,
                request.payment_method.value, request.bank_account_id, request.reference,
            ),
        ).fetchone()

        paid = money(bill["paid_amount"] + request.amount)
        status = BillStatus.from_amounts(paid, bill["total_amount"])
        bill = conn.execute(
            "UPDATE vendor_bills SET paid_amount = %s, status = %s WHERE id = %s RETURNING *",
            (paid, status.value, bill_id),
        ).fetchone()

        if request.bank_account_id is not None:
            ledger.record_bank_transaction(
                conn, request.bank_account_id, BankTransactionType.WITHDRAWAL, request.amount,
                payment_date, f"Payment for bill {bill['bill_number']}", f"VPAY-{payment['id']}",
            )
        journal = ledger.post_vendor_payment(
            conn, SourceDocument.VENDOR_PAYMENT, payment["id"], request.amount,
            request.payment_method, request.bank_account_id, payment_date, bill["bill_number"],
        )

    log.info("vendor_bill_paid", bill_id=bill_id, amount=request.amount, status=status.value)
    cache.invalidate_prefix("dashboard")
    return {
        "success": True,
        "data": {"payment": payment, "bill": bill, "journal_number": journal["journal_number"]},
    }


@router.delete("/vendors/{vendor_id}/bills/{bill_id}")
def delete_bill(vendor_id: int, bill_id: int):
    """
    Delete a bill with its lines, payments and journals.

    Money paid from bank accounts is put back. Bills raised by purchase
    orders are removed by cancelling the order instead.
    """
    db = Database()
    with db.transaction() as conn:
        bill = _lock_bill(conn, vendor_id, bill_id)
        if bill["purchase_order_id"] is not None:
            raise ConflictError("Bills created from purchase orders are removed by cancelling the order")

        payments = conn.execute(
            "SELECT id, amount, bank_account_id FROM vendor_payment_history WHERE vendor_bill_id = %s",
            (bill_id,),
        ).fetchall()
        for payment in payments:
            if payment["bank_account_id"] is not None:
                ledger.record_bank_transaction(
                    conn, payment["bank_account_id"], BankTransactionType.DEPOSIT, payment["amount"],
                    date.today(), f"Refund of deleted bill {bill['bill_number']}", f"VPAY-{payment['id']}",
                )

        journals = ledger.delete_source_journals(conn, SourceDocument.VENDOR_PAYMENT, [p["id"] for p in payments])
        journals += ledger.delete_source_journals(conn, SourceDocument.VENDOR_BILL, [bill_id])
        conn.execute("DELETE FROM vendor_payment_history WHERE vendor_bill_id = %s", (bill_id,))
        conn.execute("DELETE FROM vendor_bill_line_items WHERE vendor_bill_id = %s", (bill_id,))
        conn.execute("DELETE FROM vendor_bills WHERE id = %s", (bill_id,))

    log.info("vendor_bill_deleted", bill_id=bill_id, payments=len(payments), journals=journals)
    cache.invalidate_prefix("dashboard")
    return {
        "success": True,
        "data": {"bill_id": bill_id, "payments_deleted": len(payments), "journals_deleted": journals},
    }
