"""
HR arithmetic: leave spans, working days, attended days and net pay.
"""

from datetime import date, timedelta
from typing import Any, Iterable

from erp_api.core.models import AttendanceStatus, money

# Sunday is the only weekly off
WEEKLY_OFF = {6}

ATTENDANCE_CREDIT = {
    AttendanceStatus.PRESENT.value: 1.0,
    AttendanceStatus.LATE.value: 1.0,
    AttendanceStatus.HALF_DAY.value: 0.5,
    AttendanceStatus.ABSENT.value: 0.0,
}


def working_days(start: date, end: date) -> int:
    days = 0
    current = start
    while current <= end:
        if current.weekday() not in WEEKLY_OFF:
            days += 1
        current += timedelta(days=1)
    return days


def present_days(records: Iterable[dict[str, Any]]) -> float:
    """Days credited from attendance records (half days count 0.5)."""
    return sum(ATTENDANCE_CREDIT.get(r["status"], 0.0) for r in records)


def prorated_basic(monthly_basic: float, worked: float, total_days: int) -> float:
    if total_days <= 0:
        return 0.0
    return money(monthly_basic * min(worked, total_days) / total_days)


def net_salary(basic: float, allowances: float, deductions: float) -> float:
    return money(basic + allowances - deductions)


def leave_days(start: date, end: date) -> int:
    """Calendar days of a leave request, both ends inclusive."""
    return (end - start).days + 1


def overlaps(start_a: date, end_a: date, start_b: date, end_b: date) -> bool:
    return start_a <= end_b and start_b <= end_a
