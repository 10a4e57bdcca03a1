"""
Sales orders, customer payments and sales representative rankings.

GET/POST  /sales/orders
GET       /sales/orders/{order_id}
PATCH     /sales/orders/{order_id}/status
POST      /sales/orders/{order_id}/cancel
GET/POST  /sales/orders/{order_id}/payments
GET       /sales/rankings
"""

from collections import defaultdict
from datetime import date, datetime
from typing import Any

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from erp_api.core.cache import cache
from erp_api.core.database import Database
from erp_api.core.errors import ConflictError, NotFoundError, ValidationError
from erp_api.core.logging import get_logger
from erp_api.core.models import (
    BankTransactionType,
    DeliveryStatus,
    InvoiceStatus,
    OrderStatus,
    PaymentMethod,
    SourceDocument,
    money,
)
from erp_api.services import invoicing, ledger, logistics

log = get_logger(__name__)
router = APIRouter()


class OrderItem(BaseModel):
    product_id: int | None = None
    name: str | None = None
    quantity: int = Field(gt=0)
    unit_price: float | None = Field(default=None, ge=0)
    discount_percent: float = Field(default=0, ge=0, le=100)
    is_custom: bool = False


class OrderCreate(BaseModel):
    customer_id: int
    sales_representative_id: int | None = None
    status: OrderStatus = OrderStatus.CONFIRMED
    items: list[OrderItem]
    discount_amount: float = Field(default=0, ge=0)
    tax_percent: float = Field(default=0, ge=0)
    notes: str | None = None
    # opens a pending delivery for the order
    delivery_address: str | None = None
    time_slot: str | None = None


class StatusUpdate(BaseModel):
    status: OrderStatus


class CancelRequest(BaseModel):
    reason: str | None = None


class PaymentCreate(BaseModel):
    amount: float
    method: PaymentMethod
    bank_account_id: int | None = None
    payment_date: date | None = None
    reference: str | None = None
    description: str | None = None


def compute_totals(items: list[dict[str, Any]], discount_amount: float, tax_percent: float) -> dict[str, float]:
    """
    Order totals from priced items.

    Each item's final price is quantity x unit price less its discount
    percent; order discount is taken before tax.
    """
    subtotal = 0.0
    for item in items:
        item["final_price"] = money(item["quantity"] * item["unit_price"] * (1 - item["discount_percent"] / 100))
        subtotal += item["final_price"]
    if discount_amount > subtotal:
        raise ValidationError("Order discount cannot exceed the subtotal")
    taxable = subtotal - discount_amount
    tax_amount = money(taxable * tax_percent / 100)
    return {
        "subtotal": money(subtotal),
        "discount_amount": money(discount_amount),
        "tax_amount": tax_amount,
        "grand_total": money(taxable + tax_amount),
    }


@router.get("/sales/orders")
def list_orders(
    status: OrderStatus | None = None,
    customer_id: int | None = None,
    sales_rep_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = Query(default=100, le=500),
    offset: int = 0,
):
    db = Database()
    rows = db.fetch_all(
        """
        SELECT o.*, c.name AS customer_name, u.name AS sales_representative_name,
               COALESCE(i.paid_amount, 0) AS paid_amount,
               o.grand_total - COALESCE(i.paid_amount, 0) - COALESCE(i.waived_amount, 0) AS balance_due
        FROM sales_orders o
        JOIN customers c ON c.id = o.customer_id
        LEFT JOIN users u ON u.id = o.sales_representative_id
        LEFT JOIN invoices i ON i.sales_order_id = o.id
        WHERE (%(status)s::text IS NULL OR o.status = %(status)s)
          AND (%(customer_id)s::int IS NULL OR o.customer_id = %(customer_id)s)
          AND (%(rep_id)s::int IS NULL OR o.sales_representative_id = %(rep_id)s)
          AND (%(start)s::date IS NULL OR o.created_at::date >= %(start)s)
          AND (%(end)s::date IS NULL OR o.created_at::date <= %(end)s)
        ORDER BY o.created_at DESC
        LIMIT %(limit)s OFFSET %(offset)s
        """,
        {
            "status": status.value if status else None,
            "customer_id": customer_id,
            "rep_id": sales_rep_id,
            "start": start_date,
            "end": end_date,
            "limit": limit,
            "offset": offset,
        },
    )
    return {"success": True, "data": rows}


@router.post("/sales/orders", status_code=201)
def create_order(request: OrderCreate):
    """
    Create an order with its items.

    Catalogue items default to the product's price and take their quantity
    out of stock; custom items need a name and unit price.
    """
    if not request.items:
        raise ValidationError("An order needs at least one item")
    if request.status == OrderStatus.CANCELLED:
        raise ValidationError("Orders cannot be created cancelled")

    db = Database()
    with db.transaction() as conn:
        customer = conn.execute("SELECT id FROM customers WHERE id = %s", (request.customer_id,)).fetchone()
        if customer is None:
            raise NotFoundError("Customer", request.customer_id)

        items = []
        for index, item in enumerate(request.items, start=1):
            values = item.model_dump()
            if item.is_custom or item.product_id is None:
                if not item.name or item.unit_price is None:
                    raise ValidationError(f"Item {index}: custom items need a name and unit_price")
                values["is_custom"] = True
            else:
                product = conn.execute(
                    "SELECT id, name, price FROM products WHERE id = %s", (item.product_id,)
                ).fetchone()
                if product is None:
                    raise NotFoundError("Product", item.product_id)
                values["name"] = item.name or product["name"]
                if item.unit_price is None:
                    values["unit_price"] = product["price"]
            items.append(values)

        totals = compute_totals(items, request.discount_amount, request.tax_percent)
        order = conn.execute(
            """
            INSERT INTO sales_orders (
                customer_id, sales_representative_id, status, subtotal,
                discount_amount, tax_amount, grand_total, notes
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                request.customer_id,
                request.sales_representative_id,
                request.status.value,
                totals["subtotal"],
                totals["discount_amount"],
                totals["tax_amount"],
                totals["grand_total"],
                request.notes,
            ),
        ).fetchone()

        for item in items:
            conn.execute(
                """
                INSERT INTO sales_order_items (
                    order_id, product_id, name, quantity, unit_price,
                    discount_percent, final_price, is_custom
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    order["id"],
                    item["product_id"],
                    item["name"],
                    item["quantity"],
                    item["unit_price"],
                    item["discount_percent"],
                    item["final_price"],
                    item["is_custom"],
                ),
            )
            if item["is_custom"]:
                continue
            taken = conn.execute(
                """
                UPDATE products SET quantity = quantity - %s, updated_at = NOW()
                WHERE id = %s AND quantity >= %s
                RETURNING id
                """,
                (item["quantity"], item["product_id"], item["quantity"]),
            ).fetchone()
            if taken is None:
                raise ValidationError(f"Insufficient stock for {item['name']}")
            conn.execute(
                "INSERT INTO stock_adjustments (product_id, quantity_change, reason, reference) VALUES (%s, %s, 'sale', %s)",
                (item["product_id"], -item["quantity"], f"SO-{order['id']}"),
            )

        delivery = None
        if request.delivery_address:
            delivery = logistics.open_delivery(conn, order["id"], request.delivery_address, request.time_slot)

    cache.invalidate_prefix("dashboard")
    log.info("sales_order_created", order_id=order["id"], grand_total=order["grand_total"], items=len(items))
    return {"success": True, "data": {**order, "items": items, "delivery": delivery}}


@router.get("/sales/orders/{order_id}")
def get_order(order_id: int):
    db = Database()
    order = db.fetch_one(
        """
        SELECT o.*, c.name AS customer_name, c.phone AS customer_phone,
               i.id AS invoice_id, i.status AS invoice_status,
               COALESCE(i.paid_amount, 0) AS paid_amount,
               COALESCE(i.waived_amount, 0) AS waived_amount
        FROM sales_orders o
        JOIN customers c ON c.id = o.customer_id
        LEFT JOIN invoices i ON i.sales_order_id = o.id
        WHERE o.id = %s
        """,
        (order_id,),
    )
    if order is None:
        raise NotFoundError("Sales order", order_id)
    items = db.fetch_all("SELECT * FROM sales_order_items WHERE order_id = %s ORDER BY id", (order_id,))
    order["balance_due"] = money(order["grand_total"] - order["paid_amount"] - order["waived_amount"])
    return {"success": True, "data": {**order, "items": items}}


@router.patch("/sales/orders/{order_id}/status")
def update_order_status(order_id: int, request: StatusUpdate):
    """
    Move an order along its lifecycle.

    Shipping or delivering bills the order if it has no invoice yet; an order
    becoming ready for delivery gets a pending delivery.
    """
    target = request.status
    if target == OrderStatus.CANCELLED:
        raise ValidationError(f"Use POST /sales/orders/{order_id}/cancel to cancel an order")

    db = Database()
    with db.transaction() as conn:
        order = conn.execute(
            """
            SELECT o.*, c.name AS customer_name, c.address AS customer_address
            FROM sales_orders o JOIN customers c ON c.id = o.customer_id
            WHERE o.id = %s
            FOR UPDATE OF o
            """,
            (order_id,),
        ).fetchone()
        if order is None:
            raise NotFoundError("Sales order", order_id)
        current = OrderStatus(order["status"])
        if not current.can_transition_to(target):
            raise ConflictError(
                f"Cannot move an order from {current.value} to {target.value}",
                details={"allowed": sorted(s.value for s in OrderStatus if current.can_transition_to(s))},
            )

        invoice = None
        if target in (OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            invoice = invoicing.ensure_invoice(conn, order, date.today())
        delivery = None
        if target in (OrderStatus.READY_FOR_DELIVERY, OrderStatus.PARTIAL_DELIVERY_READY):
            delivery = logistics.open_delivery(conn, order_id, order["customer_address"])

        updated = conn.execute(
            "UPDATE sales_orders SET status = %s, updated_at = NOW() WHERE id = %s RETURNING *",
            (target.value, order_id),
        ).fetchone()

    cache.invalidate_prefix("dashboard")
    log.info("sales_order_status_changed", order_id=order_id, previous=current.value, status=target.value)
    return {
        "success": True,
        "data": updated,
        "invoice_id": invoice["id"] if invoice else None,
        "delivery_id": delivery["id"] if delivery else None,
    }


@router.post("/sales/orders/{order_id}/cancel")
def cancel_order(order_id: int, request: CancelRequest | None = None):
    """
    Cancel an order and put its catalogue items back in stock.

    Orders with money received cannot be cancelled until those payments are
    deleted. The invoice is voided and its journals (and any waive-offs)
    reversed.
    """
    reason = request.reason if request else None
    db = Database()
    with db.transaction() as conn:
        order = conn.execute("SELECT * FROM sales_orders WHERE id = %s FOR UPDATE", (order_id,)).fetchone()
        if order is None:
            raise NotFoundError("Sales order", order_id)
        current = OrderStatus(order["status"])
        if current == OrderStatus.CANCELLED:
            raise ConflictError("Order is already cancelled")
        if not current.can_transition_to(OrderStatus.CANCELLED):
            raise ConflictError(f"A {current.value} order cannot be cancelled")

        invoice = conn.execute(
            "SELECT * FROM invoices WHERE sales_order_id = %s FOR UPDATE", (order_id,)
        ).fetchone()
        if invoice is not None and invoice["paid_amount"] > 0:
            raise ConflictError(
                "Order has payments recorded; delete them before cancelling",
                details={"invoice_id": invoice["id"], "paid_amount": money(invoice["paid_amount"])},
            )

        items = conn.execute(
            "SELECT product_id, quantity FROM sales_order_items WHERE order_id = %s AND NOT is_custom AND product_id IS NOT NULL",
            (order_id,),
        ).fetchall()
        for item in items:
            conn.execute(
                "UPDATE products SET quantity = quantity + %s, updated_at = NOW() WHERE id = %s",
                (item["quantity"], item["product_id"]),
            )
            conn.execute(
                "INSERT INTO stock_adjustments (product_id, quantity_change, reason, reference) VALUES (%s, %s, 'sale_cancelled', %s)",
                (item["product_id"], item["quantity"], f"SO-{order_id}"),
            )

        if invoice is not None:
            ledger.reverse_source_journals(conn, SourceDocument.INVOICE, invoice["id"])
            waive_offs = conn.execute(
                "SELECT id FROM invoice_waive_offs WHERE invoice_id = %s", (invoice["id"],)
            ).fetchall()
            for waive_off in waive_offs:
                ledger.reverse_source_journals(conn, SourceDocument.WAIVE_OFF, waive_off["id"])
            conn.execute(
                "UPDATE invoices SET status = %s WHERE id = %s",
                (InvoiceStatus.VOID.value, invoice["id"]),
            )
        conn.execute(
            """
            UPDATE deliveries SET status = %s, updated_at = NOW()
            WHERE sales_order_id = %s AND status <> ALL(%s)
            """,
            (DeliveryStatus.CANCELLED.value, order_id, [DeliveryStatus.DELIVERED.value, DeliveryStatus.CANCELLED.value]),
        )

        updated = conn.execute(
            """
            UPDATE sales_orders
            SET status = %s, cancellation_reason = %s, cancelled_at = NOW(), updated_at = NOW()
            WHERE id = %s
            RETURNING *
            """,
            (OrderStatus.CANCELLED.value, reason, order_id),
        ).fetchone()

    cache.invalidate_prefix("dashboard")
    log.info("sales_order_cancelled", order_id=order_id, restocked_items=len(items))
    return {"success": True, "data": updated, "restocked_items": len(items)}


@router.get("/sales/orders/{order_id}/payments")
def list_order_payments(order_id: int):
    db = Database()
    order = db.fetch_one("SELECT id, grand_total FROM sales_orders WHERE id = %s", (order_id,))
    if order is None:
        raise NotFoundError("Sales order", order_id)
    payments = db.fetch_all(
        """
        SELECT p.*, b.name AS bank_account_name
        FROM payments p
        JOIN invoices i ON i.id = p.invoice_id
        LEFT JOIN bank_accounts b ON b.id = p.bank_account_id
        WHERE i.sales_order_id = %s
        ORDER BY p.date DESC, p.id DESC
        """,
        (order_id,),
    )
    total_paid = money(sum(p["amount"] for p in payments))
    return {
        "success": True,
        "data": payments,
        "summary": {
            "total_paid": total_paid,
            "payment_count": len(payments),
            "order_total": money(order["grand_total"]),
            "balance_due": money(order["grand_total"] - total_paid),
        },
    }


@router.post("/sales/orders/{order_id}/payments", status_code=201)
def record_payment(order_id: int, request: PaymentCreate):
    """
    Record a customer payment against an order.

    In one transaction: the order's invoice is created if missing, the
    payment is stored, the invoice paid amount and status move, the money is
    deposited to the chosen bank/UPI account (a UPI account linked to a bank
    mirrors the deposit there) and the journal entry is posted.
    """
    if request.amount <= 0:
        raise ValidationError("Payment amount must be greater than zero")
    if request.method.requires_account and request.bank_account_id is None:
        raise ValidationError(f"An account is required for {request.method.value} payments")

    payment_date = request.payment_date or date.today()
    db = Database()
    with db.transaction() as conn:
        order = conn.execute(
            """
            SELECT o.*, c.name AS customer_name
            FROM sales_orders o JOIN customers c ON c.id = o.customer_id
            WHERE o.id = %s
            FOR UPDATE OF o
            """,
            (order_id,),
        ).fetchone()
        if order is None:
            raise NotFoundError("Sales order", order_id)
        if order["status"] == OrderStatus.CANCELLED.value:
            raise ConflictError("Cannot record a payment on a cancelled order")

        invoice = invoicing.ensure_invoice(conn, order, payment_date)
        outstanding = invoicing.outstanding(invoice)
        if request.amount - outstanding > 0.005:
            raise ValidationError(
                "Payment exceeds the outstanding balance",
                details={"outstanding": outstanding, "amount": request.amount},
            )

        bank_account = None
        if request.bank_account_id is not None:
            bank_account = conn.execute(
                "SELECT * FROM bank_accounts WHERE id = %s", (request.bank_account_id,)
            ).fetchone()
            if bank_account is None:
                raise NotFoundError("Bank account", request.bank_account_id)

        payment = conn.execute(
            """
            INSERT INTO payments (invoice_id, amount, method, date, reference, description, bank_account_id)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                invoice["id"],
                request.amount,
                request.method.value,
                payment_date,
                request.reference,
                request.description,
                request.bank_account_id,
            ),
        ).fetchone()

        paid = money(invoice["paid_amount"] + request.amount)
        status = InvoiceStatus.from_amounts(paid, invoice["waived_amount"], invoice["total"])
        invoice = conn.execute(
            "UPDATE invoices SET paid_amount = %s, status = %s WHERE id = %s RETURNING *",
            (paid, status.value, invoice["id"]),
        ).fetchone()

        if bank_account is not None:
            description = f"Payment for order {order_id} ({order['customer_name']})"
            ledger.record_bank_transaction(
                conn, bank_account["id"], BankTransactionType.DEPOSIT, request.amount,
                payment_date, description, f"PAY-{payment['id']}",
            )
            if bank_account["account_type"] == "UPI" and bank_account["linked_bank_account_id"]:
                ledger.record_bank_transaction(
                    conn, bank_account["linked_bank_account_id"], BankTransactionType.DEPOSIT, request.amount,
                    payment_date, f"UPI settlement: {description}", f"PAY-{payment['id']}",
                )

        journal = ledger.post_payment_received(
            conn, payment["id"], request.amount, request.method,
            request.bank_account_id, payment_date, request.reference,
        )

    cache.invalidate_prefix("dashboard")
    log.info(
        "payment_recorded",
        order_id=order_id,
        payment_id=payment["id"],
        amount=request.amount,
        method=request.method.value,
        invoice_status=invoice["status"],
    )
    return {
        "success": True,
        "data": {
            "payment": payment,
            "invoice": invoice,
            "journal_number": journal["journal_number"],
        },
    }


def rank_representatives(rows: list[dict[str, Any]]) -> dict[str, list[dict[str, Any]]]:
    """
    Aggregate per-order rows into sales representative rankings.

    Each row is one billable order with rep_id, rep_name, customer_id,
    grand_total, subtotal, discount_amount, item_cost and collected.
    """
    reps: dict[Any, dict[str, Any]] = {}
    customers: dict[Any, set] = defaultdict(set)
    for row in rows:
        rep = reps.setdefault(row["rep_id"], {
            "id": row["rep_id"],
            "name": row["rep_name"],
            "total_orders": 0,
            "total_revenue": 0.0,
            "total_discount_given": 0.0,
            "gross_sales": 0.0,
            "total_cost": 0.0,
            "total_collected": 0.0,
        })
        rep["total_orders"] += 1
        rep["total_revenue"] += float(row["grand_total"] or 0)
        rep["total_discount_given"] += float(row["discount_amount"] or 0)
        rep["gross_sales"] += float(row["subtotal"] or 0)
        rep["total_cost"] += float(row["item_cost"] or 0)
        rep["total_collected"] += float(row["collected"] or 0)
        customers[row["rep_id"]].add(row["customer_id"])

    metrics = []
    for rep_id, rep in reps.items():
        revenue = rep["total_revenue"]
        profit = revenue - rep["total_cost"]
        metrics.append({
            "id": rep_id,
            "name": rep["name"],
            "total_orders": rep["total_orders"],
            "unique_customers": len(customers[rep_id]),
            "total_revenue": money(revenue),
            "total_cost": money(rep["total_cost"]),
            "total_profit": money(profit),
            "profit_margin": money(profit / revenue * 100) if revenue else 0.0,
            "average_order_value": money(revenue / rep["total_orders"]),
            "total_discount_given": money(rep["total_discount_given"]),
            "discount_rate": money(rep["total_discount_given"] / rep["gross_sales"] * 100) if rep["gross_sales"] else 0.0,
            "total_collected": money(rep["total_collected"]),
            "total_pending": money(revenue - rep["total_collected"]),
            "collection_rate": money(rep["total_collected"] / revenue * 100) if revenue else 0.0,
        })

    def top(key: str, reverse: bool = True) -> list[dict[str, Any]]:
        return sorted(metrics, key=lambda m: m[key], reverse=reverse)

    return {
        "most_profitable": top("total_profit"),
        "profit_efficiency": top("profit_margin"),
        "most_sales": top("total_orders"),
        "highest_revenue": top("total_revenue"),
        "discount_control": top("discount_rate", reverse=False),
        "best_collection": top("collection_rate"),
    }


@router.get("/sales/rankings")
def sales_rankings(start_date: date | None = None, end_date: date | None = None):
    """Rank sales representatives over billable orders in a period."""
    db = Database()
    rows = db.fetch_all(
        """
        SELECT o.id, o.customer_id, o.grand_total, o.subtotal, o.discount_amount,
               u.id AS rep_id, COALESCE(u.name, u.email) AS rep_name,
               COALESCE((
                   SELECT SUM(p.cost * it.quantity)
                   FROM sales_order_items it JOIN products p ON p.id = it.product_id
                   WHERE it.order_id = o.id
               ), 0) AS item_cost,
               COALESCE(i.paid_amount, 0) AS collected
        FROM sales_orders o
        JOIN users u ON u.id = o.sales_representative_id
        LEFT JOIN invoices i ON i.sales_order_id = o.id
        WHERE o.status = ANY(%(billable)s)
          AND (%(start)s::date IS NULL OR o.created_at::date >= %(start)s)
          AND (%(end)s::date IS NULL OR o.created_at::date <= %(end)s)
        """,
        {
            "billable": [s.value for s in OrderStatus.billable()],
            "start": start_date,
            "end": end_date,
        },
    )
    return {
        "period": {
            "start_date": start_date.isoformat() if start_date else None,
            "end_date": end_date.isoformat() if end_date else None,
        },
        "rankings": rank_representatives(rows),
        "generated_at": datetime.now().isoformat(),
    }
