"""
Dashboard KPIs and system alerts.

GET  /dashboard/overview
GET  /alerts
"""

from datetime import date, timedelta
from typing import Any

from fastapi import APIRouter

from erp_api.config import settings
from erp_api.core.cache import cache
from erp_api.core.database import Database
from erp_api.core.logging import get_logger
from erp_api.core.models import BillStatus, InvoiceStatus, OrderStatus, money

log = get_logger(__name__)
router = APIRouter()

OVERVIEW_CACHE_KEY = "dashboard:overview"


def _overview(db: Database) -> dict[str, Any]:
    today = date.today()
    month_start = today.replace(day=1)
    billable = [s.value for s in OrderStatus.billable()]

    sales = db.fetch_one(
        """
        SELECT COALESCE(SUM(grand_total), 0) AS total_revenue,
               COALESCE(SUM(grand_total) FILTER (WHERE created_at::date >= %(month)s), 0) AS month_revenue,
               COALESCE(SUM(grand_total) FILTER (WHERE created_at::date = %(today)s), 0) AS today_revenue,
               COUNT(*) AS order_count,
               COUNT(*) FILTER (WHERE created_at::date >= %(month)s) AS month_orders
        FROM sales_orders
        WHERE status = ANY(%(billable)s)
        """,
        {"month": month_start, "today": today, "billable": billable},
    )
    receivables = db.fetch_one(
        """
        SELECT COALESCE(SUM(o.grand_total - COALESCE(i.paid_amount, 0) - COALESCE(i.waived_amount, 0)), 0) AS amount
        FROM sales_orders o
        LEFT JOIN invoices i ON i.sales_order_id = o.id
        WHERE o.status = ANY(%s)
        """,
        (billable,),
    )
    payables = db.fetch_one(
        "SELECT COALESCE(SUM(total_amount - paid_amount), 0) AS amount FROM vendor_bills WHERE status = ANY(%s)",
        ([s.value for s in BillStatus.open_statuses()],),
    )
    counts = db.fetch_one(
        """
        SELECT
            (SELECT COUNT(*) FROM products WHERE is_active AND quantity <= reorder_level) AS low_stock,
            (SELECT COUNT(*) FROM leave_requests WHERE status = 'pending') AS pending_leaves,
            (SELECT COUNT(*) FROM purchase_orders WHERE status IN ('pending', 'approved')) AS open_purchase_orders,
            (SELECT COUNT(*) FROM customers) AS customers,
            (SELECT COUNT(*) FROM employees WHERE employment_status = 'active') AS active_employees
        """
    )
    cash = db.fetch_one("SELECT COALESCE(SUM(current_balance), 0) AS amount FROM bank_accounts WHERE is_active")

    return {
        "revenue": {
            "total": money(sales["total_revenue"]),
            "this_month": money(sales["month_revenue"]),
            "today": money(sales["today_revenue"]),
            "orders": sales["order_count"],
            "orders_this_month": sales["month_orders"],
        },
        "outstanding_receivables": money(receivables["amount"]),
        "outstanding_payables": money(payables["amount"]),
        "cash_and_bank": money(cash["amount"]),
        "low_stock_count": counts["low_stock"],
        "pending_leaves": counts["pending_leaves"],
        "open_purchase_orders": counts["open_purchase_orders"],
        "customers": counts["customers"],
        "active_employees": counts["active_employees"],
        "as_of": today.isoformat(),
    }


def build_alerts(
    low_stock: list[dict[str, Any]],
    overdue_bills: list[dict[str, Any]],
    overdue_invoices: list[dict[str, Any]],
    pending_leaves: list[dict[str, Any]],
    today: date,
) -> list[dict[str, Any]]:
    """Turn the raw alert queries into prioritised alert entries, high priority first."""
    alerts = []
    for item in low_stock:
        alerts.append({
            "type": "inventory",
            "priority": "high" if item["quantity"] == 0 else "medium",
            "title": f"Low stock: {item['name']}",
            "message": f"Stock level is {item['quantity']} (reorder level: {item['reorder_level']})",
            "metadata": {"product_id": item["id"], "sku": item.get("sku")},
        })
    for bill in overdue_bills:
        days = (today - bill["due_date"]).days
        alerts.append({
            "type": "payables",
            "priority": "high" if days > 30 else "medium",
            "title": f"Overdue bill {bill['bill_number']}",
            "message": f"{money(bill['outstanding'])} owed to {bill['supplier_name']}, {days} days past due",
            "metadata": {"bill_id": bill["id"], "days_overdue": days},
        })
    for invoice in overdue_invoices:
        days = (today - invoice["invoice_date"]).days
        alerts.append({
            "type": "receivables",
            "priority": "high" if days > 60 else "medium",
            "title": f"Overdue invoice #{invoice['id']}",
            "message": f"{money(invoice['outstanding'])} due from {invoice['customer_name']} for {days} days",
            "metadata": {"invoice_id": invoice["id"], "days_outstanding": days},
        })
    for leave in pending_leaves:
        alerts.append({
            "type": "hr",
            "priority": "high" if leave["start_date"] <= today else "low",
            "title": f"Leave request from {leave['employee_name']}",
            "message": f"{leave['leave_type']} leave {leave['start_date'].isoformat()} to {leave['end_date'].isoformat()} awaits a decision",
            "metadata": {"leave_id": leave["id"]},
        })

    order = {"high": 0, "medium": 1, "low": 2}
    alerts.sort(key=lambda a: order[a["priority"]])
    return alerts


@router.get("/dashboard/overview")
def overview():
    """Headline KPIs; cached for a few minutes and invalidated by writes."""
    db = Database()
    data = cache.get_or_set(OVERVIEW_CACHE_KEY, lambda: _overview(db))
    return {"success": True, "data": data}


@router.get("/alerts")
def alerts():
    today = date.today()
    db = Database()
    low_stock = db.fetch_all(
        "SELECT id, sku, name, quantity, reorder_level FROM products WHERE is_active AND quantity <= reorder_level"
    )
    overdue_bills = db.fetch_all(
        """
        SELECT b.id, b.bill_number, b.due_date, b.total_amount - b.paid_amount AS outstanding,
               s.name AS supplier_name
        FROM vendor_bills b JOIN suppliers s ON s.id = b.supplier_id
        WHERE b.status = ANY(%s) AND b.due_date < %s
        ORDER BY b.due_date
        """,
        ([s.value for s in BillStatus.open_statuses()], today),
    )
    overdue_invoices = db.fetch_all(
        """
        SELECT id, customer_name, invoice_date, total - paid_amount - waived_amount AS outstanding
        FROM invoices
        WHERE status = ANY(%s) AND invoice_date < %s AND total - paid_amount - waived_amount > 0
        ORDER BY invoice_date
        """,
        ([s.value for s in InvoiceStatus.open_statuses()], today - timedelta(days=settings.overdue_invoice_days)),
    )
    pending_leaves = db.fetch_all(
        """
        SELECT l.id, l.leave_type, l.start_date, l.end_date, e.name AS employee_name
        FROM leave_requests l JOIN employees e ON e.id = l.employee_id
        WHERE l.status = 'pending'
        ORDER BY l.start_date
        """
    )

    data = build_alerts(low_stock, overdue_bills, overdue_invoices, pending_leaves, today)
    return {
        "success": True,
        "data": data,
        "summary": {
            "total": len(data),
            "high": sum(1 for a in data if a["priority"] == "high"),
        },
    }
