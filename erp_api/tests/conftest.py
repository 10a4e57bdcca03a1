"""
Shared pytest fixtures for erp_api tests.
"""

import pytest
from datetime import date, datetime
from unittest.mock import MagicMock

from erp_api.core.models import PunchLog, PunchType


@pytest.fixture
def balanced_ledger_rows() -> list[dict]:
    """
    Per-account totals (as returned by BALANCES_SQL) for a small balanced ledger:

    - owner puts 500 cash into the business
    - invoice of 1000 (AR / revenue)
    - 600 collected into the bank
    - 200 of expenses paid in cash
    """
    return [
        {"account_code": "1010", "account_name": "Cash in Hand", "account_type": "ASSET", "debit": 500.0, "credit": 200.0},
        {"account_code": "1020", "account_name": "Bank Accounts", "account_type": "ASSET", "debit": 600.0, "credit": 0.0},
        {"account_code": "1200", "account_name": "Accounts Receivable", "account_type": "ASSET", "debit": 1000.0, "credit": 600.0},
        {"account_code": "2000", "account_name": "Accounts Payable", "account_type": "LIABILITY", "debit": 0.0, "credit": 0.0},
        {"account_code": "3000", "account_name": "Owner's Equity", "account_type": "EQUITY", "debit": 0.0, "credit": 500.0},
        {"account_code": "4000", "account_name": "Sales Revenue", "account_type": "REVENUE", "debit": 0.0, "credit": 1000.0},
        {"account_code": "6000", "account_name": "General Expenses", "account_type": "EXPENSE", "debit": 200.0, "credit": 0.0},
    ]


@pytest.fixture
def make_punch():
    """Factory for punches on 2026-01-15."""
    counter = iter(range(1, 1000))

    def _make(employee_id: int, hhmm: str, punch_type: PunchType = PunchType.IN, device_id: int = 1) -> PunchLog:
        hour, minute = (int(part) for part in hhmm.split(":"))
        return PunchLog(
            id=next(counter),
            employee_id=employee_id,
            punch_time=datetime(2026, 1, 15, hour, minute),
            punch_type=punch_type,
            device_id=device_id,
            verification_method="fingerprint",
        )

    return _make


@pytest.fixture
def work_date() -> date:
    return date(2026, 1, 15)


@pytest.fixture
def mock_db() -> MagicMock:
    """Database double whose transaction() yields ``mock_db.conn``."""
    db = MagicMock()
    db.conn = db.transaction.return_value.__enter__.return_value
    return db
