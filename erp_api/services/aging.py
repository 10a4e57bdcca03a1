"""
Accounts receivable / payable aging.

Receivables are aged from the sales order date, payables from the bill date.
Each open document's remaining amount lands in exactly one bucket:

    current    days outstanding <= 0
    days_1_30  1..30
    days_31_60 31..60
    days_61_90 61..90
    days_90_plus > 90
"""

from collections import defaultdict
from datetime import date, datetime
from typing import Any

from erp_api.core.models import AgingRow

BUCKETS = ("current", "days_1_30", "days_31_60", "days_61_90", "days_90_plus")


def bucket_for(days_outstanding: int) -> str:
    if days_outstanding <= 0:
        return "current"
    if days_outstanding <= 30:
        return "days_1_30"
    if days_outstanding <= 60:
        return "days_31_60"
    if days_outstanding <= 90:
        return "days_61_90"
    return "days_90_plus"


def _as_date(value: date | datetime | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _add(row: AgingRow, amount: float, document_date: date, as_of: date) -> None:
    days = (as_of - document_date).days
    bucket = bucket_for(days)
    setattr(row, bucket, getattr(row, bucket) + amount)
    row.total_due += amount
    if row.oldest_date is None or days > row.oldest_days:
        row.oldest_date = document_date
        row.oldest_days = days


def _report(rows: dict[Any, AgingRow], as_of: date) -> dict[str, Any]:
    details = sorted(rows.values(), key=lambda r: r.total_due, reverse=True)
    summary = {bucket: round(sum(getattr(r, bucket) for r in details), 2) for bucket in BUCKETS}
    summary["total"] = round(sum(summary[bucket] for bucket in BUCKETS), 2)
    return {
        "as_of_date": as_of.isoformat(),
        "summary": summary,
        "details": [r.to_dict() for r in details],
    }


def age_receivables(
    orders: list[dict[str, Any]],
    invoices: list[dict[str, Any]],
    as_of: date,
) -> dict[str, Any]:
    """
    Age unpaid customer balances.

    Args:
        orders: Billable sales orders with customer_id, customer_name,
            customer_phone, customer_email, grand_total, created_at
        invoices: Invoices with sales_order_id, paid_amount, waived_amount
        as_of: Date the ages are measured against
    """
    settled: dict[Any, list[float]] = defaultdict(lambda: [0.0, 0.0])
    for invoice in invoices:
        if invoice.get("sales_order_id") is None:
            continue
        entry = settled[invoice["sales_order_id"]]
        entry[0] += float(invoice.get("paid_amount") or 0)
        entry[1] += float(invoice.get("waived_amount") or 0)

    customers: dict[Any, AgingRow] = {}
    for order in orders:
        grand_total = float(order.get("grand_total") or 0)
        paid, waived = settled.get(order["id"], (0.0, 0.0))
        remaining = round(grand_total - paid - waived, 2)
        if remaining <= 0:
            continue

        customer_id = order.get("customer_id")
        row = customers.get(customer_id)
        if row is None:
            row = customers[customer_id] = AgingRow(
                party_id=customer_id,
                name=order.get("customer_name") or "Unknown Customer",
                contact=order.get("customer_phone") or order.get("customer_email") or "N/A",
            )
        row.document_total += grand_total
        row.paid_amount += paid
        _add(row, remaining, _as_date(order["created_at"]), as_of)

    return _report(customers, as_of)


def age_payables(
    bills: list[dict[str, Any]],
    payments: list[dict[str, Any]],
    as_of: date,
) -> dict[str, Any]:
    """
    Age unpaid vendor bills.

    The paid figure of a bill is the larger of its own paid_amount and the
    sum of its completed payment history rows, so bills whose paid_amount
    was never updated still age correctly.
    """
    history: dict[Any, float] = defaultdict(float)
    for payment in payments:
        history[payment["vendor_bill_id"]] += float(payment.get("amount") or 0)

    vendors: dict[Any, AgingRow] = {}
    for bill in bills:
        total = float(bill.get("total_amount") or 0)
        paid = max(float(bill.get("paid_amount") or 0), history.get(bill["id"], 0.0))
        remaining = round(total - paid, 2)
        if remaining <= 0:
            continue

        supplier_id = bill.get("supplier_id")
        row = vendors.get(supplier_id)
        if row is None:
            row = vendors[supplier_id] = AgingRow(
                party_id=supplier_id,
                name=bill.get("supplier_name") or "Unknown Vendor",
                contact=bill.get("supplier_contact") or bill.get("supplier_email") or "N/A",
            )
        row.document_total += total
        row.paid_amount += paid
        _add(row, remaining, _as_date(bill["bill_date"]), as_of)

    return _report(vendors, as_of)
