"""
Double-entry journal posting.

Every money movement recorded by the routers (customer payments, vendor bills
and payments, expenses, bank transactions) goes through this module so that
the ledger stays the single source for account balances.

All helpers take an open psycopg connection so they can join the caller's
transaction (see Database.transaction()).
"""

import secrets
from datetime import date, datetime
from typing import Any, Iterable

import psycopg

from erp_api.core.errors import ValidationError
from erp_api.core.logging import get_logger
from erp_api.core.models import (
    AccountType,
    BankTransactionType,
    JournalEntry,
    JournalLine,
    JournalStatus,
    PaymentMethod,
    SourceDocument,
)

log = get_logger(__name__)

# Account codes used by automatic postings
CASH = "1010"
BANK = "1020"
UPI = "1025"
CARD = "1030"
ACCOUNTS_RECEIVABLE = "1200"
INVENTORY = "1300"
ACCOUNTS_PAYABLE = "2000"
OWNER_EQUITY = "3000"
RETAINED_EARNINGS = "3100"
SALES_REVENUE = "4000"
COST_OF_GOODS_SOLD = "5000"
GENERAL_EXPENSE = "6000"
SALES_RETURNS = "4900"
WRITE_OFFS = "6900"

DEFAULT_CHART: list[tuple[str, str, AccountType, str | None]] = [
    ("1000", "Current Assets", AccountType.ASSET, None),
    (CASH, "Cash in Hand", AccountType.ASSET, "1000"),
    (BANK, "Bank Accounts", AccountType.ASSET, "1000"),
    (UPI, "UPI Collections", AccountType.ASSET, "1000"),
    (CARD, "Card Settlements", AccountType.ASSET, "1000"),
    (ACCOUNTS_RECEIVABLE, "Accounts Receivable", AccountType.ASSET, "1000"),
    (INVENTORY, "Inventory", AccountType.ASSET, "1000"),
    ("1500", "Fixed Assets", AccountType.ASSET, None),
    (ACCOUNTS_PAYABLE, "Accounts Payable", AccountType.LIABILITY, None),
    ("2100", "Taxes Payable", AccountType.LIABILITY, None),
    ("2200", "Salaries Payable", AccountType.LIABILITY, None),
    (OWNER_EQUITY, "Owner's Equity", AccountType.EQUITY, None),
    (RETAINED_EARNINGS, "Retained Earnings", AccountType.EQUITY, None),
    (SALES_REVENUE, "Sales Revenue", AccountType.REVENUE, None),
    ("4100", "Other Income", AccountType.REVENUE, None),
    (SALES_RETURNS, "Sales Returns & Refunds", AccountType.REVENUE, None),
    (COST_OF_GOODS_SOLD, "Cost of Goods Sold", AccountType.EXPENSE, None),
    (GENERAL_EXPENSE, "General Expenses", AccountType.EXPENSE, None),
    ("6100", "Salaries & Wages", AccountType.EXPENSE, "6000"),
    ("6200", "Rent", AccountType.EXPENSE, "6000"),
    ("6300", "Utilities", AccountType.EXPENSE, "6000"),
    ("6400", "Transport & Logistics", AccountType.EXPENSE, "6000"),
    ("6500", "Marketing", AccountType.EXPENSE, "6000"),
    (WRITE_OFFS, "Bad Debts & Write-offs", AccountType.EXPENSE, "6000"),
]

# Ordered fallbacks: the first code that exists in the chart wins
PAYMENT_ACCOUNT_CANDIDATES: dict[PaymentMethod, list[str]] = {
    PaymentMethod.CASH: [CASH, "1001"],
    PaymentMethod.BANK_TRANSFER: [BANK, "1011", CASH],
    PaymentMethod.CHEQUE: [BANK, "1011", CASH],
    PaymentMethod.UPI: [UPI, BANK, CASH],
    PaymentMethod.CARD: [CARD, BANK, CASH],
    PaymentMethod.OTHER: [CASH],
}
RECEIVABLE_CANDIDATES = [ACCOUNTS_RECEIVABLE, "1100"]

# Expense categories that map onto a specific ledger account
EXPENSE_CATEGORY_ACCOUNTS = {
    "salaries": "6100",
    "rent": "6200",
    "utilities": "6300",
    "transport": "6400",
    "logistics": "6400",
    "marketing": "6500",
    "purchase": INVENTORY,
    "inventory": INVENTORY,
}

_JOURNAL_PREFIXES = {
    SourceDocument.INVOICE: "INV",
    SourceDocument.PAYMENT: "PAY",
    SourceDocument.VENDOR_BILL: "BILL",
    SourceDocument.VENDOR_PAYMENT: "VPAY",
    SourceDocument.PURCHASE_ORDER_PAYMENT: "POPAY",
    SourceDocument.EXPENSE: "EXP",
    SourceDocument.WAIVE_OFF: "WO",
    SourceDocument.REFUND: "RFD",
    SourceDocument.BANK_TRANSACTION: "BANK",
    SourceDocument.REVERSAL: "REV",
    SourceDocument.MANUAL: "MAN",
}

BALANCES_SQL = """
    SELECT c.id, c.account_code, c.account_name, c.account_type, c.parent_code,
           COALESCE(t.debit, 0) AS debit, COALESCE(t.credit, 0) AS credit
    FROM chart_of_accounts c
    LEFT JOIN (
        SELECT l.account_id,
               SUM(l.debit_amount) AS debit,
               SUM(l.credit_amount) AS credit
        FROM journal_entry_lines l
        JOIN journal_entries j ON j.id = l.journal_entry_id
        WHERE j.status = 'POSTED'
          AND j.entry_date >= %(start)s
          AND j.entry_date <= %(end)s
        GROUP BY l.account_id
    ) t ON t.account_id = c.id
    WHERE c.is_active
    ORDER BY c.account_code
"""

LEDGER_EPOCH = date(1900, 1, 1)


def journal_number(source_type: SourceDocument, source_id: int | None, now: datetime | None = None) -> str:
    """Build ``JE-<PREFIX>-<id>-<YYYYMMDD>-<HHMMSS>``."""
    now = now or datetime.now()
    ident = str(source_id) if source_id is not None else secrets.token_hex(3).upper()
    return f"JE-{_JOURNAL_PREFIXES[source_type]}-{ident}-{now:%Y%m%d}-{now:%H%M%S}"


def validate_lines(lines: list[JournalLine]) -> None:
    """
    Reject entries that would break double-entry bookkeeping.

    Raises:
        ValidationError: fewer than two lines, a line with both or neither
            side set, a negative amount, or debits not equal to credits.
    """
    if len(lines) < 2:
        raise ValidationError("A journal entry needs at least two lines")

    for number, line in enumerate(lines, start=1):
        if line.debit < 0 or line.credit < 0:
            raise ValidationError(f"Line {number}: amounts cannot be negative")
        if (line.debit > 0) == (line.credit > 0):
            raise ValidationError(f"Line {number}: exactly one of debit or credit must be positive")

    entry = JournalEntry(entry_date=date.today(), description="", lines=lines)
    if not entry.is_balanced:
        raise ValidationError(
            "Journal entry is not balanced",
            details={"total_debit": entry.total_debit, "total_credit": entry.total_credit},
        )


def account_ids(conn: psycopg.Connection, codes: Iterable[str]) -> dict[str, int]:
    """Map account codes to chart_of_accounts ids; unknown codes are absent."""
    rows = conn.execute(
        "SELECT id, account_code FROM chart_of_accounts WHERE account_code = ANY(%s)",
        (list(set(codes)),),
    ).fetchall()
    return {row["account_code"]: row["id"] for row in rows}


def first_existing_account(conn: psycopg.Connection, candidates: list[str]) -> str | None:
    found = account_ids(conn, candidates)
    for code in candidates:
        if code in found:
            return code
    return None


def resolve_payment_account(
    conn: psycopg.Connection,
    method: PaymentMethod,
    bank_account_id: int | None = None,
) -> str:
    """
    Pick the asset account a payment moves through.

    A bank account linked to a chart account always wins; otherwise the
    method's candidate codes are tried in order.
    """
    if bank_account_id is not None:
        row = conn.execute(
            """
            SELECT c.account_code
            FROM bank_accounts b
            JOIN chart_of_accounts c ON c.id = b.chart_account_id
            WHERE b.id = %s
            """,
            (bank_account_id,),
        ).fetchone()
        if row:
            return row["account_code"]

    code = first_existing_account(conn, PAYMENT_ACCOUNT_CANDIDATES[method])
    if code is None:
        raise ValidationError(
            f"No ledger account configured for payment method '{method.value}'",
            details={"candidates": PAYMENT_ACCOUNT_CANDIDATES[method]},
        )
    return code


def receivable_account(conn: psycopg.Connection) -> str:
    code = first_existing_account(conn, RECEIVABLE_CANDIDATES)
    if code is None:
        raise ValidationError("Accounts Receivable account is missing from the chart of accounts")
    return code


def expense_account_for(category: str | None) -> str:
    return EXPENSE_CATEGORY_ACCOUNTS.get((category or "").strip().lower(), GENERAL_EXPENSE)


def create_journal_entry(conn: psycopg.Connection, entry: JournalEntry, post: bool = True) -> dict[str, Any]:
    """
    Validate and insert a journal entry with its lines.

    Args:
        conn: Connection of the caller's transaction
        entry: Entry with lines addressed by account code
        post: Insert as POSTED (counts towards balances) or DRAFT

    Returns:
        The inserted journal_entries row
    """
    validate_lines(entry.lines)

    ids = account_ids(conn, (line.account_code for line in entry.lines))
    missing = sorted({line.account_code for line in entry.lines} - ids.keys())
    if missing:
        raise ValidationError("Unknown account codes", details={"account_codes": missing})

    status = JournalStatus.POSTED if post else JournalStatus.DRAFT
    journal = conn.execute(
        """
        INSERT INTO journal_entries (
            journal_number, entry_date, description, reference_number,
            source_document_type, source_document_id, status,
            total_debit, total_credit, posted_at
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, CASE WHEN %s THEN NOW() END)
        RETURNING *
        """,
        (
            journal_number(entry.source_type, entry.source_id),
            entry.entry_date,
            entry.description,
            entry.reference,
            entry.source_type.value,
            entry.source_id,
            status.value,
            entry.total_debit,
            entry.total_credit,
            post,
        ),
    ).fetchone()

    with conn.cursor() as cur:
        cur.executemany(
            """
            INSERT INTO journal_entry_lines (
                journal_entry_id, account_id, line_number, debit_amount, credit_amount, description
            )
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            [
                (
                    journal["id"],
                    ids[line.account_code],
                    number,
                    round(line.debit, 2),
                    round(line.credit, 2),
                    line.description or entry.description,
                )
                for number, line in enumerate(entry.lines, start=1)
            ],
        )

    log.info(
        "journal_entry_created",
        journal_number=journal["journal_number"],
        source=entry.source_type.value,
        source_id=entry.source_id,
        amount=entry.total_debit,
        status=status.value,
    )
    return journal


def post_invoice(
    conn: psycopg.Connection,
    invoice_id: int,
    amount: float,
    entry_date: date,
    reference: str | None = None,
) -> dict[str, Any]:
    """Customer invoice: debit receivables, credit sales revenue."""
    return create_journal_entry(conn, JournalEntry(
        entry_date=entry_date,
        description=f"Invoice {reference or invoice_id}",
        lines=[
            JournalLine(receivable_account(conn), debit=amount),
            JournalLine(SALES_REVENUE, credit=amount),
        ],
        source_type=SourceDocument.INVOICE,
        source_id=invoice_id,
        reference=reference,
    ))


def post_payment_received(
    conn: psycopg.Connection,
    payment_id: int,
    amount: float,
    method: PaymentMethod,
    bank_account_id: int | None,
    entry_date: date,
    reference: str | None = None,
) -> dict[str, Any]:
    """Customer payment: debit the payment account, credit receivables."""
    debit_code = resolve_payment_account(conn, method, bank_account_id)
    return create_journal_entry(conn, JournalEntry(
        entry_date=entry_date,
        description=f"Payment received ({method.value})",
        lines=[
            JournalLine(debit_code, debit=amount),
            JournalLine(receivable_account(conn), credit=amount),
        ],
        source_type=SourceDocument.PAYMENT,
        source_id=payment_id,
        reference=reference,
    ))


def post_vendor_bill(
    conn: psycopg.Connection,
    bill_id: int,
    lines: list[tuple[str, float]],
    entry_date: date,
    reference: str | None = None,
) -> dict[str, Any]:
    """
    Vendor bill: debit each expense/inventory account, credit payables.

    Args:
        lines: (account_code, amount) pairs; amounts on the same code are merged
    """
    merged: dict[str, float] = {}
    for code, amount in lines:
        merged[code] = merged.get(code, 0.0) + amount
    total = round(sum(merged.values()), 2)

    return create_journal_entry(conn, JournalEntry(
        entry_date=entry_date,
        description=f"Vendor bill {reference or bill_id}",
        lines=[JournalLine(code, debit=round(amount, 2)) for code, amount in merged.items()]
        + [JournalLine(ACCOUNTS_PAYABLE, credit=total)],
        source_type=SourceDocument.VENDOR_BILL,
        source_id=bill_id,
        reference=reference,
    ))


def post_vendor_payment(
    conn: psycopg.Connection,
    source_type: SourceDocument,
    source_id: int,
    amount: float,
    method: PaymentMethod,
    bank_account_id: int | None,
    entry_date: date,
    reference: str | None = None,
) -> dict[str, Any]:
    """Payment to a supplier: debit payables, credit the payment account."""
    credit_code = resolve_payment_account(conn, method, bank_account_id)
    return create_journal_entry(conn, JournalEntry(
        entry_date=entry_date,
        description=f"Supplier payment ({method.value})",
        lines=[
            JournalLine(ACCOUNTS_PAYABLE, debit=amount),
            JournalLine(credit_code, credit=amount),
        ],
        source_type=source_type,
        source_id=source_id,
        reference=reference,
    ))


def post_expense(
    conn: psycopg.Connection,
    expense_id: int,
    amount: float,
    expense_code: str,
    method: PaymentMethod,
    bank_account_id: int | None,
    entry_date: date,
    description: str | None = None,
) -> dict[str, Any]:
    """Expense paid out: debit the expense account, credit the payment account."""
    credit_code = resolve_payment_account(conn, method, bank_account_id)
    return create_journal_entry(conn, JournalEntry(
        entry_date=entry_date,
        description=description or "Expense",
        lines=[
            JournalLine(expense_code, debit=amount),
            JournalLine(credit_code, credit=amount),
        ],
        source_type=SourceDocument.EXPENSE,
        source_id=expense_id,
    ))


def post_waive_off(
    conn: psycopg.Connection,
    waive_off_id: int,
    amount: float,
    entry_date: date,
    reference: str | None = None,
) -> dict[str, Any]:
    """Receivable written off: debit write-offs, credit receivables."""
    return create_journal_entry(conn, JournalEntry(
        entry_date=entry_date,
        description=f"Waive-off {reference or waive_off_id}",
        lines=[
            JournalLine(WRITE_OFFS, debit=amount),
            JournalLine(receivable_account(conn), credit=amount),
        ],
        source_type=SourceDocument.WAIVE_OFF,
        source_id=waive_off_id,
        reference=reference,
    ))


def post_refund(
    conn: psycopg.Connection,
    refund_id: int,
    amount: float,
    method: PaymentMethod,
    bank_account_id: int | None,
    entry_date: date,
    reference: str | None = None,
) -> dict[str, Any]:
    """Money returned to a customer: debit sales returns, credit the payment account."""
    credit_code = resolve_payment_account(conn, method, bank_account_id)
    return create_journal_entry(conn, JournalEntry(
        entry_date=entry_date,
        description=f"Customer refund ({method.value})",
        lines=[
            JournalLine(SALES_RETURNS, debit=amount),
            JournalLine(credit_code, credit=amount),
        ],
        source_type=SourceDocument.REFUND,
        source_id=refund_id,
        reference=reference,
    ))


def reverse_source_journals(
    conn: psycopg.Connection,
    source_type: SourceDocument,
    source_id: int,
    entry_date: date | None = None,
) -> list[dict[str, Any]]:
    """
    Post contra entries for every posted journal of a source document.

    The originals stay untouched; each reversal swaps debit and credit and
    references the journal it cancels.
    """
    journals = conn.execute(
        """
        SELECT id, journal_number, description
        FROM journal_entries
        WHERE source_document_type = %s AND source_document_id = %s AND status = 'POSTED'
        """,
        (source_type.value, source_id),
    ).fetchall()

    reversals = []
    for journal in journals:
        lines = conn.execute(
            """
            SELECT c.account_code, l.debit_amount, l.credit_amount, l.description
            FROM journal_entry_lines l
            JOIN chart_of_accounts c ON c.id = l.account_id
            WHERE l.journal_entry_id = %s
            ORDER BY l.line_number
            """,
            (journal["id"],),
        ).fetchall()
        reversals.append(create_journal_entry(conn, JournalEntry(
            entry_date=entry_date or date.today(),
            description=f"Reversal of {journal['journal_number']}",
            lines=[
                JournalLine(
                    line["account_code"],
                    debit=line["credit_amount"],
                    credit=line["debit_amount"],
                    description=line["description"] or "",
                )
                for line in lines
            ],
            source_type=SourceDocument.REVERSAL,
            source_id=journal["id"],
            reference=journal["journal_number"],
        )))

    if reversals:
        log.info("journals_reversed", source=source_type.value, source_id=source_id, count=len(reversals))
    return reversals


def delete_source_journals(conn: psycopg.Connection, source_type: SourceDocument, source_ids: list[int]) -> int:
    """Remove the journals of deleted source documents (lines cascade)."""
    if not source_ids:
        return 0
    cursor = conn.execute(
        "DELETE FROM journal_entries WHERE source_document_type = %s AND source_document_id = ANY(%s)",
        (source_type.value, source_ids),
    )
    return cursor.rowcount


def seed_chart_of_accounts(conn: psycopg.Connection) -> int:
    """Insert the default chart; existing codes are left alone. Returns rows inserted."""
    inserted = 0
    for code, name, account_type, parent in DEFAULT_CHART:
        cursor = conn.execute(
            """
            INSERT INTO chart_of_accounts (account_code, account_name, account_type, parent_code)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (account_code) DO NOTHING
            """,
            (code, name, account_type.value, parent),
        )
        inserted += cursor.rowcount
    log.info("chart_of_accounts_seeded", inserted=inserted, total=len(DEFAULT_CHART))
    return inserted


def record_bank_transaction(
    conn: psycopg.Connection,
    bank_account_id: int,
    tx_type: BankTransactionType,
    amount: float,
    tx_date: date,
    description: str | None = None,
    reference: str | None = None,
) -> dict[str, Any]:
    """
    Insert a deposit/withdrawal and move the account's running balance.

    The balance is adjusted in SQL so concurrent writers do not overwrite
    each other.
    """
    updated = conn.execute(
        "UPDATE bank_accounts SET current_balance = current_balance + %s WHERE id = %s RETURNING id",
        (tx_type.sign * amount, bank_account_id),
    ).fetchone()
    if updated is None:
        raise ValidationError(f"Bank account {bank_account_id} does not exist")

    return conn.execute(
        """
        INSERT INTO bank_transactions (bank_account_id, date, type, amount, description, reference)
        VALUES (%s, %s, %s, %s, %s, %s)
        RETURNING *
        """,
        (bank_account_id, tx_date, tx_type.value, amount, description, reference),
    ).fetchone()
