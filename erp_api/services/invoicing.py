"""
Customer invoices: one per sales order, created the first time money moves.
"""

from datetime import date
from typing import Any

import psycopg

from erp_api.core.logging import get_logger
from erp_api.core.models import money
from erp_api.services import ledger

log = get_logger(__name__)


def ensure_invoice(conn: psycopg.Connection, order: dict[str, Any], invoice_date: date) -> dict[str, Any]:
    """
    Lock the order's invoice, creating and journaling it on first use.

    ``order`` needs id, customer_id, customer_name and grand_total.
    """
    invoice = conn.execute(
        "SELECT * FROM invoices WHERE sales_order_id = %s FOR UPDATE", (order["id"],)
    ).fetchone()
    if invoice is not None:
        return invoice

    invoice = conn.execute(
        """
        INSERT INTO invoices (sales_order_id, customer_id, customer_name, invoice_date, total)
        VALUES (%s, %s, %s, %s, %s)
        RETURNING *
        """,
        (order["id"], order["customer_id"], order["customer_name"], invoice_date, order["grand_total"]),
    ).fetchone()
    ledger.post_invoice(conn, invoice["id"], invoice["total"], invoice_date, f"SO-{order['id']}")
    log.info("invoice_created", invoice_id=invoice["id"], order_id=order["id"])
    return invoice


def outstanding(invoice: dict[str, Any]) -> float:
    """What the customer still owes: total less payments and waive-offs."""
    return money(invoice["total"] - invoice["paid_amount"] - invoice["waived_amount"])


def refundable(invoice: dict[str, Any], reserved: float = 0.0) -> float:
    """Money received that has not been (or is not about to be) handed back."""
    return money(invoice["paid_amount"] - invoice["total_refunded"] - reserved)
