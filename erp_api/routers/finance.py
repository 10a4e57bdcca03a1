"""
Finance: invoices, payments, bank accounts, expenses, day sheet and aging.

GET       /finance/invoices
DELETE    /finance/payments/{payment_id}
GET/POST  /finance/waive-off
POST      /finance/refunds/{invoice_id}
GET       /finance/refunds/{invoice_id}
PATCH     /finance/refunds/{invoice_id}/{refund_id}
GET/POST  /finance/bank-accounts
GET/POST  /finance/bank-transactions
GET/POST  /finance/expenses
GET       /finance/day-sheet?date=YYYY-MM-DD
GET       /finance/aging-report?as_of_date=&type=receivables|payables
"""

from datetime import date, datetime
from typing import Literal

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from erp_api.core.cache import cache
from erp_api.core.database import Database
from erp_api.core.errors import ConflictError, NotFoundError, ValidationError
from erp_api.core.logging import get_logger
from erp_api.core.models import (
    BankTransactionType,
    BillStatus,
    InvoiceStatus,
    JournalEntry,
    JournalLine,
    OrderStatus,
    PaymentMethod,
    RefundStatus,
    SourceDocument,
    money,
)
from erp_api.services import aging, invoicing, ledger, reports

log = get_logger(__name__)
router = APIRouter()


class BankAccountCreate(BaseModel):
    name: str
    account_type: Literal["BANK", "UPI", "CASH"] = "BANK"
    account_number: str | None = None
    opening_balance: float = 0
    chart_account_id: int | None = None
    linked_bank_account_id: int | None = None


class BankTransactionCreate(BaseModel):
    bank_account_id: int
    type: BankTransactionType
    amount: float
    transaction_date: date | None = None
    description: str | None = None
    reference: str | None = None
    # Ledger account on the other side (e.g. 3000 for an owner's deposit)
    contra_account_code: str | None = None


class ExpenseCreate(BaseModel):
    expense_date: date | None = None
    category: str
    description: str | None = None
    amount: float
    payment_method: PaymentMethod = PaymentMethod.CASH
    bank_account_id: int | None = None
    account_code: str | None = None


class WaiveOffCreate(BaseModel):
    invoice_id: int | None = None
    sales_order_id: int | None = None
    amount: float
    reason: str = Field(min_length=1)
    waived_by: int | None = None
    waive_date: date | None = None


class RefundCreate(BaseModel):
    amount: float
    reason: str = Field(min_length=1)
    method: PaymentMethod = PaymentMethod.CASH
    bank_account_id: int | None = None
    requested_by: int | None = None
    notes: str | None = None


class RefundUpdate(BaseModel):
    status: RefundStatus
    approved_by: int | None = None
    notes: str | None = None


@router.get("/finance/invoices")
def list_invoices(
    status: InvoiceStatus | None = None,
    customer_id: int | None = None,
    limit: int = Query(default=100, le=500),
    offset: int = 0,
):
    """Invoices with what is still owed; voided invoices only when asked for by status."""
    db = Database()
    rows = db.fetch_all(
        """
        SELECT i.*,
               CASE WHEN i.status = %(void)s THEN 0
                    ELSE i.total - i.paid_amount - i.waived_amount END AS outstanding,
               o.status AS order_status
        FROM invoices i
        LEFT JOIN sales_orders o ON o.id = i.sales_order_id
        WHERE (i.status = %(status)s OR (%(status)s::text IS NULL AND i.status <> %(void)s))
          AND (%(customer_id)s::int IS NULL OR i.customer_id = %(customer_id)s)
        ORDER BY i.invoice_date DESC, i.id DESC
        LIMIT %(limit)s OFFSET %(offset)s
        """,
        {
            "status": status.value if status else None,
            "void": InvoiceStatus.VOID.value,
            "customer_id": customer_id,
            "limit": limit,
            "offset": offset,
        },
    )
    return {
        "success": True,
        "data": rows,
        "summary": {
            "count": len(rows),
            "total_invoiced": money(sum(r["total"] for r in rows)),
            "total_outstanding": money(sum(r["outstanding"] for r in rows)),
        },
    }


@router.delete("/finance/payments/{payment_id}")
def delete_payment(payment_id: int):
    """
    Undo a customer payment.

    The journal entry is reversed, the bank deposit withdrawn again, the
    invoice paid amount rolled back and the payment removed, all atomically.
    """
    db = Database()
    with db.transaction() as conn:
        payment = conn.execute("SELECT * FROM payments WHERE id = %s FOR UPDATE", (payment_id,)).fetchone()
        if payment is None:
            raise NotFoundError("Payment", payment_id)
        invoice = conn.execute(
            "SELECT * FROM invoices WHERE id = %s FOR UPDATE", (payment["invoice_id"],)
        ).fetchone()
        if invoice["paid_amount"] - payment["amount"] < invoice["total_refunded"] - 0.005:
            raise ConflictError(
                "Payment has already been refunded to the customer",
                details={"total_refunded": money(invoice["total_refunded"])},
            )

        reversals = ledger.reverse_source_journals(conn, SourceDocument.PAYMENT, payment_id)

        if payment["bank_account_id"] is not None:
            account = conn.execute(
                "SELECT id, account_type, linked_bank_account_id FROM bank_accounts WHERE id = %s",
                (payment["bank_account_id"],),
            ).fetchone()
            targets = [account["id"]]
            if account["account_type"] == "UPI" and account["linked_bank_account_id"]:
                targets.append(account["linked_bank_account_id"])
            for bank_account_id in targets:
                ledger.record_bank_transaction(
                    conn, bank_account_id, BankTransactionType.WITHDRAWAL, payment["amount"],
                    date.today(), f"Reversal of payment {payment_id}", f"PAY-{payment_id}",
                )

        paid = max(money(invoice["paid_amount"] - payment["amount"]), 0.0)
        status = InvoiceStatus.from_amounts(paid, invoice["waived_amount"], invoice["total"])
        conn.execute(
            "UPDATE invoices SET paid_amount = %s, status = %s WHERE id = %s",
            (paid, status.value, invoice["id"]),
        )
        conn.execute("DELETE FROM payments WHERE id = %s", (payment_id,))

    cache.invalidate_prefix("dashboard")
    log.info("payment_deleted", payment_id=payment_id, amount=payment["amount"], reversals=len(reversals))
    return {
        "success": True,
        "data": {
            "payment_id": payment_id,
            "invoice_id": invoice["id"],
            "invoice_paid_amount": paid,
            "invoice_status": status.value,
            "reversal_journals": [r["journal_number"] for r in reversals],
        },
    }


def _lock_invoice(conn, invoice_id: int | None, sales_order_id: int | None, on: date) -> dict:
    """Invoice by id, or the sales order's invoice (created if the order was never billed)."""
    if invoice_id is not None:
        invoice = conn.execute("SELECT * FROM invoices WHERE id = %s FOR UPDATE", (invoice_id,)).fetchone()
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    order = conn.execute(
        """
        SELECT o.*, c.name AS customer_name
        FROM sales_orders o JOIN customers c ON c.id = o.customer_id
        WHERE o.id = %s
        FOR UPDATE OF o
        """,
        (sales_order_id,),
    ).fetchone()
    if order is None:
        raise NotFoundError("Sales order", sales_order_id)
    if order["status"] == OrderStatus.CANCELLED.value:
        raise ConflictError("Sales order is cancelled")
    return invoicing.ensure_invoice(conn, order, on)


@router.post("/finance/waive-off", status_code=201)
def waive_off(request: WaiveOffCreate):
    """
    Forgive part of what a customer owes.

    The invoice's waived amount grows (settling it when nothing is left) and
    the write-off is journaled against receivables.
    """
    if request.amount <= 0:
        raise ValidationError("Waive-off amount must be greater than zero")
    if request.invoice_id is None and request.sales_order_id is None:
        raise ValidationError("invoice_id or sales_order_id is required")

    waive_date = request.waive_date or date.today()
    db = Database()
    with db.transaction() as conn:
        invoice = _lock_invoice(conn, request.invoice_id, request.sales_order_id, waive_date)
        if invoice["status"] == InvoiceStatus.VOID.value:
            raise ConflictError("Invoice is void")

        remaining = invoicing.outstanding(invoice)
        if request.amount - remaining > 0.005:
            raise ValidationError(
                "Waive-off exceeds the outstanding balance",
                details={"outstanding": remaining, "amount": request.amount},
            )

        record = conn.execute(
            """
            INSERT INTO invoice_waive_offs (invoice_id, amount, reason, waived_by, waived_at)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING *
            """,
            (invoice["id"], request.amount, request.reason, request.waived_by, waive_date),
        ).fetchone()
        waived = money(invoice["waived_amount"] + request.amount)
        status = InvoiceStatus.from_amounts(invoice["paid_amount"], waived, invoice["total"])
        invoice = conn.execute(
            "UPDATE invoices SET waived_amount = %s, status = %s WHERE id = %s RETURNING *",
            (waived, status.value, invoice["id"]),
        ).fetchone()
        journal = ledger.post_waive_off(conn, record["id"], request.amount, waive_date, f"WO-{record['id']}")

    cache.invalidate_prefix("dashboard")
    log.info("invoice_waived", invoice_id=invoice["id"], amount=request.amount, invoice_status=status.value)
    return {
        "success": True,
        "data": {
            "waive_off": record,
            "invoice": invoice,
            "remaining": invoicing.outstanding(invoice),
            "journal_number": journal["journal_number"],
        },
    }


@router.get("/finance/waive-off")
def list_waive_offs(invoice_id: int | None = None, sales_order_id: int | None = None):
    db = Database()
    rows = db.fetch_all(
        """
        SELECT w.*, i.sales_order_id, i.customer_name
        FROM invoice_waive_offs w
        JOIN invoices i ON i.id = w.invoice_id
        WHERE (%(invoice)s::int IS NULL OR w.invoice_id = %(invoice)s)
          AND (%(order)s::int IS NULL OR i.sales_order_id = %(order)s)
        ORDER BY w.waived_at DESC, w.id DESC
        """,
        {"invoice": invoice_id, "order": sales_order_id},
    )
    return {
        "success": True,
        "data": rows,
        "summary": {"count": len(rows), "total_waived": money(sum(r["amount"] for r in rows))},
    }


def _reserved_for_refunds(conn, invoice_id: int) -> float:
    """Refunds requested or approved but not yet paid out."""
    row = conn.execute(
        """
        SELECT COALESCE(SUM(amount), 0) AS amount
        FROM invoice_refunds
        WHERE invoice_id = %s AND status = ANY(%s)
        """,
        (invoice_id, [RefundStatus.PENDING.value, RefundStatus.APPROVED.value]),
    ).fetchone()
    return money(row["amount"])


@router.post("/finance/refunds/{invoice_id}", status_code=201)
def request_refund(invoice_id: int, request: RefundCreate):
    """Ask to hand money back to a customer; nothing moves until it is processed."""
    if request.amount <= 0:
        raise ValidationError("Refund amount must be greater than zero")
    if request.method.requires_account and request.bank_account_id is None:
        raise ValidationError(f"An account is required for {request.method.value} refunds")

    db = Database()
    with db.transaction() as conn:
        invoice = conn.execute("SELECT * FROM invoices WHERE id = %s FOR UPDATE", (invoice_id,)).fetchone()
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)

        available = invoicing.refundable(invoice, _reserved_for_refunds(conn, invoice_id))
        if request.amount - available > 0.005:
            raise ValidationError(
                "Refund exceeds the amount available for refund",
                details={"available": max(available, 0.0), "amount": request.amount},
            )

        refund = conn.execute(
            """
            INSERT INTO invoice_refunds (invoice_id, amount, reason, method, bank_account_id, requested_by, notes)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                invoice_id,
                request.amount,
                request.reason,
                request.method.value,
                request.bank_account_id,
                request.requested_by,
                request.notes,
            ),
        ).fetchone()

    log.info("refund_requested", invoice_id=invoice_id, refund_id=refund["id"], amount=request.amount)
    return {"success": True, "data": refund}


@router.get("/finance/refunds/{invoice_id}")
def invoice_refunds(invoice_id: int):
    db = Database()
    invoice = db.fetch_one("SELECT * FROM invoices WHERE id = %s", (invoice_id,))
    if invoice is None:
        raise NotFoundError("Invoice", invoice_id)
    refunds = db.fetch_all(
        """
        SELECT r.*, b.name AS bank_account_name
        FROM invoice_refunds r
        LEFT JOIN bank_accounts b ON b.id = r.bank_account_id
        WHERE r.invoice_id = %s
        ORDER BY r.created_at DESC, r.id DESC
        """,
        (invoice_id,),
    )

    by_status = {status.value: {"count": 0, "amount": 0.0} for status in RefundStatus}
    for refund in refunds:
        group = by_status[refund["status"]]
        group["count"] += 1
        group["amount"] = money(group["amount"] + refund["amount"])
    reserved = by_status[RefundStatus.PENDING.value]["amount"] + by_status[RefundStatus.APPROVED.value]["amount"]
    return {
        "success": True,
        "data": {
            "invoice": invoice,
            "refunds": refunds,
            "summary": {
                "total_paid": money(invoice["paid_amount"]),
                "total_refunded": money(invoice["total_refunded"]),
                "available_for_refund": max(invoicing.refundable(invoice, reserved), 0.0),
                "by_status": by_status,
            },
        },
    }


@router.patch("/finance/refunds/{invoice_id}/{refund_id}")
def update_refund(invoice_id: int, refund_id: int, request: RefundUpdate):
    """
    Approve, reject or process a refund.

    Processing pays the money out: the bank/UPI account is debited, the
    invoice's refunded total grows and the refund is journaled against sales
    returns.
    """
    db = Database()
    journal = None
    with db.transaction() as conn:
        refund = conn.execute(
            "SELECT * FROM invoice_refunds WHERE id = %s AND invoice_id = %s FOR UPDATE",
            (refund_id, invoice_id),
        ).fetchone()
        if refund is None:
            raise NotFoundError("Refund", refund_id)
        current = RefundStatus(refund["status"])
        if not current.can_transition_to(request.status):
            raise ConflictError(f"Cannot move a {current.value} refund to {request.status.value}")

        if request.status == RefundStatus.PROCESSED:
            invoice = conn.execute("SELECT * FROM invoices WHERE id = %s FOR UPDATE", (invoice_id,)).fetchone()
            available = invoicing.refundable(invoice)
            if refund["amount"] - available > 0.005:
                raise ValidationError(
                    "Refund exceeds the amount available for refund",
                    details={"available": max(available, 0.0), "amount": refund["amount"]},
                )
            today = date.today()
            if refund["bank_account_id"] is not None:
                ledger.record_bank_transaction(
                    conn, refund["bank_account_id"], BankTransactionType.WITHDRAWAL, refund["amount"],
                    today, f"Refund for invoice {invoice_id}: {refund['reason']}", f"RFD-{refund_id}",
                )
            journal = ledger.post_refund(
                conn, refund_id, refund["amount"], PaymentMethod(refund["method"]),
                refund["bank_account_id"], today, f"RFD-{refund_id}",
            )
            conn.execute(
                "UPDATE invoices SET total_refunded = total_refunded + %s WHERE id = %s",
                (refund["amount"], invoice_id),
            )

        refund = conn.execute(
            """
            UPDATE invoice_refunds
            SET status = %s,
                approved_by = COALESCE(%s, approved_by),
                notes = COALESCE(%s, notes),
                processed_at = CASE WHEN %s THEN NOW() ELSE processed_at END,
                updated_at = NOW()
            WHERE id = %s
            RETURNING *
            """,
            (
                request.status.value,
                request.approved_by,
                request.notes,
                request.status == RefundStatus.PROCESSED,
                refund_id,
            ),
        ).fetchone()

    if journal is not None:
        cache.invalidate_prefix("dashboard")
    log.info("refund_updated", refund_id=refund_id, invoice_id=invoice_id, status=request.status.value)
    return {
        "success": True,
        "data": refund,
        "journal_number": journal["journal_number"] if journal else None,
    }


@router.get("/finance/bank-accounts")
def list_bank_accounts(account_type: Literal["BANK", "UPI", "CASH"] | None = None):
    db = Database()
    rows = db.fetch_all(
        """
        SELECT b.*, c.account_code AS chart_account_code, l.name AS linked_bank_account_name
        FROM bank_accounts b
        LEFT JOIN chart_of_accounts c ON c.id = b.chart_account_id
        LEFT JOIN bank_accounts l ON l.id = b.linked_bank_account_id
        WHERE b.is_active AND (%(type)s::text IS NULL OR b.account_type = %(type)s)
        ORDER BY b.account_type, b.name
        """,
        {"type": account_type},
    )
    return {"success": True, "data": rows}


@router.post("/finance/bank-accounts", status_code=201)
def create_bank_account(request: BankAccountCreate):
    if request.linked_bank_account_id is not None and request.account_type != "UPI":
        raise ValidationError("Only UPI accounts can be linked to a bank account")
    db = Database()
    row = db.execute(
        """
        INSERT INTO bank_accounts (
            name, account_type, account_number, opening_balance, current_balance,
            chart_account_id, linked_bank_account_id
        )
        VALUES (%(name)s, %(account_type)s, %(account_number)s, %(opening_balance)s,
                %(opening_balance)s, %(chart_account_id)s, %(linked_bank_account_id)s)
        RETURNING *
        """,
        request.model_dump(),
    )
    log.info("bank_account_created", bank_account_id=row["id"], account_type=row["account_type"])
    return {"success": True, "data": row}


@router.get("/finance/bank-transactions")
def list_bank_transactions(
    bank_account_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = Query(default=200, le=1000),
):
    db = Database()
    rows = db.fetch_all(
        """
        SELECT t.*, b.name AS bank_account_name, b.account_type
        FROM bank_transactions t
        JOIN bank_accounts b ON b.id = t.bank_account_id
        WHERE (%(account)s::int IS NULL OR t.bank_account_id = %(account)s)
          AND (%(start)s::date IS NULL OR t.date >= %(start)s)
          AND (%(end)s::date IS NULL OR t.date <= %(end)s)
        ORDER BY t.date DESC, t.id DESC
        LIMIT %(limit)s
        """,
        {"account": bank_account_id, "start": start_date, "end": end_date, "limit": limit},
    )
    deposits = sum(r["amount"] for r in rows if r["type"] == BankTransactionType.DEPOSIT.value)
    withdrawals = sum(r["amount"] for r in rows if r["type"] == BankTransactionType.WITHDRAWAL.value)
    return {
        "success": True,
        "data": rows,
        "summary": {
            "total_deposits": money(deposits),
            "total_withdrawals": money(withdrawals),
            "net": money(deposits - withdrawals),
        },
    }


@router.post("/finance/bank-transactions", status_code=201)
def create_bank_transaction(request: BankTransactionCreate):
    """Record a deposit or withdrawal; with a contra account it is journaled too."""
    if request.amount <= 0:
        raise ValidationError("Amount must be greater than zero")

    tx_date = request.transaction_date or date.today()
    db = Database()
    journal = None
    with db.transaction() as conn:
        transaction = ledger.record_bank_transaction(
            conn, request.bank_account_id, request.type, request.amount,
            tx_date, request.description, request.reference,
        )
        if request.contra_account_code:
            bank_code = ledger.resolve_payment_account(conn, PaymentMethod.BANK_TRANSFER, request.bank_account_id)
            if request.type == BankTransactionType.DEPOSIT:
                lines = [
                    JournalLine(bank_code, debit=request.amount),
                    JournalLine(request.contra_account_code, credit=request.amount),
                ]
            else:
                lines = [
                    JournalLine(request.contra_account_code, debit=request.amount),
                    JournalLine(bank_code, credit=request.amount),
                ]
            journal = ledger.create_journal_entry(conn, JournalEntry(
                entry_date=tx_date,
                description=request.description or f"Bank {request.type.value}",
                lines=lines,
                source_type=SourceDocument.BANK_TRANSACTION,
                source_id=transaction["id"],
                reference=request.reference,
            ))

    log.info(
        "bank_transaction_recorded",
        bank_account_id=request.bank_account_id,
        type=request.type.value,
        amount=request.amount,
        journaled=journal is not None,
    )
    return {
        "success": True,
        "data": transaction,
        "journal_number": journal["journal_number"] if journal else None,
    }


@router.get("/finance/expenses")
def list_expenses(
    category: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = Query(default=200, le=1000),
):
    db = Database()
    rows = db.fetch_all(
        """
        SELECT e.*, b.name AS bank_account_name
        FROM expenses e
        LEFT JOIN bank_accounts b ON b.id = e.bank_account_id
        WHERE (%(category)s::text IS NULL OR e.category = %(category)s)
          AND (%(start)s::date IS NULL OR e.date >= %(start)s)
          AND (%(end)s::date IS NULL OR e.date <= %(end)s)
        ORDER BY e.date DESC, e.id DESC
        LIMIT %(limit)s
        """,
        {"category": category, "start": start_date, "end": end_date, "limit": limit},
    )
    by_category: dict[str, float] = {}
    for row in rows:
        by_category[row["category"]] = by_category.get(row["category"], 0.0) + row["amount"]
    return {
        "success": True,
        "data": rows,
        "summary": {
            "total": money(sum(by_category.values())),
            "by_category": {k: money(v) for k, v in sorted(by_category.items())},
        },
    }


@router.post("/finance/expenses", status_code=201)
def create_expense(request: ExpenseCreate):
    """Record an expense: debit the expense account, credit where the money came from."""
    if request.amount <= 0:
        raise ValidationError("Expense amount must be greater than zero")
    if request.payment_method.requires_account and request.bank_account_id is None:
        raise ValidationError(f"An account is required for {request.payment_method.value} expenses")

    expense_date = request.expense_date or date.today()
    account_code = request.account_code or ledger.expense_account_for(request.category)
    db = Database()
    with db.transaction() as conn:
        expense = conn.execute(
            """
            INSERT INTO expenses (date, category, description, amount, payment_method, bank_account_id, account_code)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                expense_date,
                request.category,
                request.description,
                request.amount,
                request.payment_method.value,
                request.bank_account_id,
                account_code,
            ),
        ).fetchone()
        if request.bank_account_id is not None:
            ledger.record_bank_transaction(
                conn, request.bank_account_id, BankTransactionType.WITHDRAWAL, request.amount,
                expense_date, request.description or request.category, f"EXP-{expense['id']}",
            )
        journal = ledger.post_expense(
            conn, expense["id"], request.amount, account_code, request.payment_method,
            request.bank_account_id, expense_date, request.description or request.category,
        )

    cache.invalidate_prefix("dashboard")
    log.info("expense_recorded", expense_id=expense["id"], category=request.category, amount=request.amount)
    return {"success": True, "data": expense, "journal_number": journal["journal_number"]}


@router.get("/finance/day-sheet")
def day_sheet(day: date | None = Query(default=None, alias="date")):
    """Everything that moved money on one day, with opening and closing positions."""
    day = day or date.today()
    db = Database()
    positions = db.fetch_all(reports.CASH_POSITIONS_SQL, {"start": day, "end": day})
    accounts, totals = reports.cash_positions(positions)

    payments = db.fetch_all(
        """
        SELECT p.id, p.amount, p.method, p.reference, i.sales_order_id, i.customer_name
        FROM payments p JOIN invoices i ON i.id = p.invoice_id
        WHERE p.date = %s
        ORDER BY p.id
        """,
        (day,),
    )
    expenses = db.fetch_all(
        "SELECT id, category, description, amount, payment_method FROM expenses WHERE date = %s ORDER BY id",
        (day,),
    )
    transactions = db.fetch_all(
        """
        SELECT t.*, b.name AS bank_account_name, b.account_type
        FROM bank_transactions t JOIN bank_accounts b ON b.id = t.bank_account_id
        WHERE t.date = %s
        ORDER BY t.id
        """,
        (day,),
    )

    received_by_method: dict[str, float] = {}
    for payment in payments:
        received_by_method[payment["method"]] = received_by_method.get(payment["method"], 0.0) + payment["amount"]

    return {
        "date": day.isoformat(),
        "accounts": accounts,
        "payments_received": payments,
        "expenses": expenses,
        "transactions": transactions,
        "summary": {
            "opening_balance": totals["opening"],
            "total_inflow": totals["inflow"],
            "total_outflow": totals["outflow"],
            "closing_balance": totals["closing"],
            "payments_received": money(sum(p["amount"] for p in payments)),
            "received_by_method": {k: money(v) for k, v in received_by_method.items()},
            "expenses_paid": money(sum(e["amount"] for e in expenses)),
        },
    }


@router.get("/finance/aging-report")
def aging_report(
    as_of_date: date | None = None,
    report_type: Literal["receivables", "payables"] | None = Query(default=None, alias="type"),
):
    """Receivables and/or payables split into age buckets."""
    as_of = as_of_date or date.today()
    db = Database()
    result: dict = {"as_of_date": as_of.isoformat()}

    if report_type in (None, "receivables"):
        orders = db.fetch_all(
            """
            SELECT o.id, o.customer_id, o.grand_total, o.created_at,
                   c.name AS customer_name, c.phone AS customer_phone, c.email AS customer_email
            FROM sales_orders o
            LEFT JOIN customers c ON c.id = o.customer_id
            WHERE o.status = ANY(%s) AND o.created_at::date <= %s
            ORDER BY o.created_at
            """,
            ([s.value for s in OrderStatus.billable()], as_of),
        )
        invoices = db.fetch_all("SELECT sales_order_id, paid_amount, waived_amount FROM invoices")
        result["receivables"] = aging.age_receivables(orders, invoices, as_of)

    if report_type in (None, "payables"):
        bills = db.fetch_all(
            """
            SELECT b.id, b.supplier_id, b.total_amount, b.paid_amount, b.bill_date,
                   s.name AS supplier_name, s.contact AS supplier_contact, s.email AS supplier_email
            FROM vendor_bills b
            LEFT JOIN suppliers s ON s.id = b.supplier_id
            WHERE b.status = ANY(%s) AND b.bill_date <= %s
            ORDER BY b.bill_date
            """,
            ([s.value for s in BillStatus.open_statuses()], as_of),
        )
        payments = db.fetch_all(
            "SELECT vendor_bill_id, amount FROM vendor_payment_history WHERE status = 'completed' AND payment_date <= %s",
            (as_of,),
        )
        result["payables"] = aging.age_payables(bills, payments, as_of)

    if report_type is not None:
        section = result.pop("receivables" if report_type == "receivables" else "payables")
        result["summary"] = section["summary"]
        result["accounts"] = section["details"]

    result["generated_at"] = datetime.now().isoformat()
    return result
