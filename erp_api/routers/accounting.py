"""
Chart of accounts, manual journal entries and financial reports.

GET/POST  /accounting/chart-of-accounts
GET/POST  /accounting/journal-entries
GET       /accounting/journal-entries/{entry_id}
POST      /accounting/journal-entries/{entry_id}/post
DELETE    /accounting/journal-entries/{entry_id}
GET       /accounting/reports/{report_type}
POST      /accounting/initialize
"""

from datetime import date

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from erp_api.core.database import Database
from erp_api.core.errors import ConflictError, NotFoundError, ValidationError
from erp_api.core.logging import get_logger
from erp_api.core.models import AccountType, JournalEntry, JournalLine, JournalStatus, SourceDocument
from erp_api.services import ledger, reports

log = get_logger(__name__)
router = APIRouter()


class AccountCreate(BaseModel):
    account_code: str = Field(min_length=1, max_length=20)
    account_name: str
    account_type: AccountType
    parent_code: str | None = None


class JournalLineIn(BaseModel):
    account_code: str
    debit: float = 0
    credit: float = 0
    description: str | None = None


class JournalEntryCreate(BaseModel):
    entry_date: date | None = None
    description: str
    reference_number: str | None = None
    lines: list[JournalLineIn]
    post: bool = False


@router.get("/accounting/chart-of-accounts")
def list_accounts(account_type: AccountType | None = None, include_inactive: bool = False):
    db = Database()
    rows = db.fetch_all(
        """
        SELECT * FROM chart_of_accounts
        WHERE (%(type)s::text IS NULL OR account_type = %(type)s)
          AND (%(all)s OR is_active)
        ORDER BY account_code
        """,
        {"type": account_type.value if account_type else None, "all": include_inactive},
    )
    return {"success": True, "data": rows}


@router.post("/accounting/chart-of-accounts", status_code=201)
def create_account(request: AccountCreate):
    db = Database()
    if db.fetch_one("SELECT id FROM chart_of_accounts WHERE account_code = %s", (request.account_code,)):
        raise ConflictError(f"Account code {request.account_code} already exists")
    if request.parent_code and not db.fetch_one(
        "SELECT id FROM chart_of_accounts WHERE account_code = %s", (request.parent_code,)
    ):
        raise ValidationError(f"Parent account {request.parent_code} does not exist")

    row = db.execute(
        """
        INSERT INTO chart_of_accounts (account_code, account_name, account_type, parent_code)
        VALUES (%s, %s, %s, %s)
        RETURNING *
        """,
        (request.account_code, request.account_name, request.account_type.value, request.parent_code),
    )
    log.info("account_created", account_code=row["account_code"], account_type=row["account_type"])
    return {"success": True, "data": row}


@router.get("/accounting/journal-entries")
def list_journal_entries(
    status: JournalStatus | None = None,
    source_type: SourceDocument | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = Query(default=100, le=500),
    offset: int = 0,
):
    db = Database()
    rows = db.fetch_all(
        """
        SELECT * FROM journal_entries
        WHERE (%(status)s::text IS NULL OR status = %(status)s)
          AND (%(source)s::text IS NULL OR source_document_type = %(source)s)
          AND (%(start)s::date IS NULL OR entry_date >= %(start)s)
          AND (%(end)s::date IS NULL OR entry_date <= %(end)s)
        ORDER BY entry_date DESC, id DESC
        LIMIT %(limit)s OFFSET %(offset)s
        """,
        {
            "status": status.value if status else None,
            "source": source_type.value if source_type else None,
            "start": start_date,
            "end": end_date,
            "limit": limit,
            "offset": offset,
        },
    )
    return {"success": True, "data": rows}


@router.post("/accounting/journal-entries", status_code=201)
def create_journal_entry(request: JournalEntryCreate):
    """Manual entry, saved as a draft unless ``post`` is set."""
    entry = JournalEntry(
        entry_date=request.entry_date or date.today(),
        description=request.description,
        lines=[
            JournalLine(line.account_code, debit=line.debit, credit=line.credit, description=line.description or "")
            for line in request.lines
        ],
        source_type=SourceDocument.MANUAL,
        reference=request.reference_number,
    )
    db = Database()
    with db.transaction() as conn:
        journal = ledger.create_journal_entry(conn, entry, post=request.post)
    return {"success": True, "data": journal}


def _load_entry(db: Database, entry_id: int) -> dict:
    journal = db.fetch_one("SELECT * FROM journal_entries WHERE id = %s", (entry_id,))
    if journal is None:
        raise NotFoundError("Journal entry", entry_id)
    return journal


@router.get("/accounting/journal-entries/{entry_id}")
def get_journal_entry(entry_id: int):
    db = Database()
    journal = _load_entry(db, entry_id)
    lines = db.fetch_all(
        """
        SELECT l.line_number, l.debit_amount, l.credit_amount, l.description,
               c.account_code, c.account_name, c.account_type
        FROM journal_entry_lines l
        JOIN chart_of_accounts c ON c.id = l.account_id
        WHERE l.journal_entry_id = %s
        ORDER BY l.line_number
        """,
        (entry_id,),
    )
    return {"success": True, "data": {**journal, "lines": lines}}


@router.post("/accounting/journal-entries/{entry_id}/post")
def post_journal_entry(entry_id: int):
    db = Database()
    row = db.execute(
        """
        UPDATE journal_entries SET status = 'POSTED', posted_at = NOW()
        WHERE id = %s AND status = 'DRAFT'
        RETURNING *
        """,
        (entry_id,),
    )
    if row is None:
        _load_entry(db, entry_id)
        raise ConflictError("Journal entry is already posted")
    log.info("journal_entry_posted", journal_number=row["journal_number"])
    return {"success": True, "data": row}


@router.delete("/accounting/journal-entries/{entry_id}")
def delete_journal_entry(entry_id: int):
    """Drafts only; posted entries are corrected with a reversal."""
    db = Database()
    row = db.execute(
        "DELETE FROM journal_entries WHERE id = %s AND status = 'DRAFT' RETURNING id, journal_number",
        (entry_id,),
    )
    if row is None:
        _load_entry(db, entry_id)
        raise ConflictError("Posted journal entries cannot be deleted")
    log.info("journal_entry_deleted", journal_number=row["journal_number"])
    return {"success": True, "data": row}


@router.get("/accounting/reports/{report_type}")
def financial_report(
    report_type: str,
    start_date: date | None = None,
    end_date: date | None = None,
    as_of_date: date | None = None,
):
    """
    Financial statements computed from posted journal lines.

    Period reports (profit-loss, cash-flow) default to the current month;
    point-in-time reports (balance-sheet, trial-balance, account-balances)
    default to today.
    """
    if report_type not in reports.REPORT_TYPES:
        raise ValidationError(
            f"Invalid report type: {report_type}",
            details={"valid_types": list(reports.REPORT_TYPES)},
        )

    today = date.today()
    end = end_date or as_of_date or today

    # point-in-time reports ignore start_date
    if report_type in reports.PERIOD_REPORTS:
        start = start_date or end.replace(day=1)
        if start > end:
            raise ValidationError(
                "start_date must not be after end_date",
                details={"start_date": start.isoformat(), "end_date": end.isoformat()},
            )

    db = Database()
    if report_type == "cash-flow":
        rows = db.fetch_all(reports.CASH_POSITIONS_SQL, {"start": start, "end": end})
        return reports.cash_flow(rows, start, end)

    if report_type == "profit-loss":
        rows = db.fetch_all(ledger.BALANCES_SQL, {"start": start, "end": end})
        return reports.profit_loss(rows, start, end)

    rows = db.fetch_all(ledger.BALANCES_SQL, {"start": ledger.LEDGER_EPOCH, "end": end})
    if report_type == "balance-sheet":
        return reports.balance_sheet(rows, end)
    if report_type == "trial-balance":
        return reports.trial_balance(rows, end)
    return reports.account_balances(rows, end)


@router.post("/accounting/initialize")
def initialize_accounts():
    """Seed the default chart of accounts; safe to call repeatedly."""
    db = Database()
    with db.transaction() as conn:
        inserted = ledger.seed_chart_of_accounts(conn)
    return {
        "success": True,
        "data": {"inserted": inserted, "total": len(ledger.DEFAULT_CHART)},
    }
