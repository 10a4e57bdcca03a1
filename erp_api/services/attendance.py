"""
Turn raw device punches into daily attendance records.

For each employee and day the first IN and the last OUT are used. Devices
that record every punch as IN (more than one IN and no OUT) are treated as
alternating: first punch is the check-in, last punch the check-out.
"""

from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Any

from erp_api.config import settings
from erp_api.core.database import Database
from erp_api.core.logging import get_logger
from erp_api.core.models import AttendanceStatus, AttendanceSummary, PunchLog, PunchType

log = get_logger(__name__)


def classify(check_in: datetime, total_hours: float) -> AttendanceStatus:
    """Late after the configured cut-off; half day below the minimum hours."""
    status = AttendanceStatus.PRESENT
    if check_in.time().replace(second=0, microsecond=0) > settings.late_after:
        status = AttendanceStatus.LATE
    if 0 < total_hours < settings.half_day_hours:
        status = AttendanceStatus.HALF_DAY
    return status


def summarize_day(employee_id: int, work_date: date, punches: list[PunchLog]) -> AttendanceSummary | None:
    """
    Build one employee's attendance for a day.

    Returns None when the employee has no IN punch that day.
    """
    ordered = sorted(punches, key=lambda p: p.punch_time)
    ins = [p for p in ordered if p.punch_type == PunchType.IN]
    outs = [p for p in ordered if p.punch_type == PunchType.OUT]
    if not ins:
        return None

    if len(ins) > 1 and not outs:
        check_in, check_out = ordered[0], ordered[-1]
    else:
        check_in = ins[0]
        check_out = outs[-1] if outs else None

    total_hours = 0.0
    if check_out is not None:
        total_hours = round((check_out.punch_time - check_in.punch_time).total_seconds() / 3600, 2)

    return AttendanceSummary(
        employee_id=employee_id,
        work_date=work_date,
        check_in=check_in.punch_time,
        check_out=check_out.punch_time if check_out else None,
        total_hours=total_hours,
        status=classify(check_in.punch_time, total_hours),
        device_id=check_in.device_id,
        verification_method=check_in.verification_method,
        punch_ids=[p.id for p in ordered if p.id is not None],
    )


def summarize_punches(punches: list[PunchLog], work_date: date) -> list[AttendanceSummary]:
    """Summaries for every employee with punches on ``work_date``."""
    by_employee: dict[int, list[PunchLog]] = defaultdict(list)
    for punch in punches:
        by_employee[punch.employee_id].append(punch)

    summaries = []
    for employee_id, employee_punches in by_employee.items():
        summary = summarize_day(employee_id, work_date, employee_punches)
        if summary is None:
            log.debug("attendance_skipped_no_check_in", employee_id=employee_id, date=work_date.isoformat())
            continue
        summaries.append(summary)
    return summaries


def _punch_from_row(row: dict[str, Any]) -> PunchLog:
    return PunchLog(
        id=row["id"],
        employee_id=row["employee_id"],
        device_id=row.get("device_id"),
        punch_time=row["punch_time"],
        punch_type=PunchType(row["punch_type"]),
        verification_method=row.get("verification_method"),
    )


def process_date(db: Database, work_date: date) -> int:
    """
    Process unprocessed punches of one day.

    Attendance rows are upserted on (employee_id, date) and the consumed
    punches marked processed in the same transaction. Returns the number of
    employees processed.
    """
    day_start = datetime.combine(work_date, time.min)
    with db.transaction() as conn:
        rows = conn.execute(
            """
            SELECT id, employee_id, device_id, punch_time, punch_type, verification_method
            FROM attendance_punch_logs
            WHERE processed = FALSE AND punch_time >= %s AND punch_time < %s
            ORDER BY punch_time
            """,
            (day_start, day_start + timedelta(days=1)),
        ).fetchall()
        summaries = summarize_punches([_punch_from_row(r) for r in rows], work_date)

        for summary in summaries:
            conn.execute(
                """
                INSERT INTO attendance_records (
                    employee_id, date, check_in_time, check_out_time, total_hours,
                    status, device_id, punch_type, verification_method
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, 'auto', %s)
                ON CONFLICT (employee_id, date) DO UPDATE SET
                    check_in_time = EXCLUDED.check_in_time,
                    check_out_time = EXCLUDED.check_out_time,
                    total_hours = EXCLUDED.total_hours,
                    status = EXCLUDED.status,
                    device_id = EXCLUDED.device_id,
                    verification_method = EXCLUDED.verification_method,
                    updated_at = NOW()
                """,
                (
                    summary.employee_id,
                    summary.work_date,
                    summary.check_in,
                    summary.check_out,
                    summary.total_hours,
                    summary.status.value,
                    summary.device_id,
                    summary.verification_method,
                ),
            )

        punch_ids = [pid for summary in summaries for pid in summary.punch_ids]
        if punch_ids:
            conn.execute(
                "UPDATE attendance_punch_logs SET processed = TRUE WHERE id = ANY(%s)",
                (punch_ids,),
            )

    log.info("attendance_processed", date=work_date.isoformat(), employees=len(summaries), punches=len(rows))
    return len(summaries)


def process_all_dates(db: Database) -> dict[str, Any]:
    """Process every day that still has unprocessed punches, oldest first."""
    rows = db.fetch_all(
        "SELECT DISTINCT punch_time::date AS day FROM attendance_punch_logs WHERE processed = FALSE ORDER BY day"
    )
    total = 0
    dates = []
    for row in rows:
        total += process_date(db, row["day"])
        dates.append(row["day"].isoformat())
    return {"processed": total, "dates": dates}
