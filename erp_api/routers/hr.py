"""
Employees, leave, attendance and payroll.

GET/POST  /hr/employees
PATCH     /hr/employees/{employee_id}
GET/POST  /hr/leaves
GET/PUT   /hr/leaves/{leave_id}
POST      /hr/leaves/{leave_id}/approve
POST      /hr/leaves/{leave_id}/reject
GET/PUT   /hr/leave-balances/{employee_id}
GET       /hr/attendance
POST      /hr/attendance/process
GET/POST  /hr/payroll-records
"""

from datetime import date
from typing import Any

import psycopg
from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from erp_api.core.database import Database, build_update
from erp_api.core.errors import ConflictError, NotFoundError, ValidationError
from erp_api.core.logging import get_logger
from erp_api.core.models import LeaveStatus, money
from erp_api.services import attendance, hr

log = get_logger(__name__)
router = APIRouter()

EMPLOYEE_FIELDS = {
    "name", "email", "phone", "department", "position",
    "date_of_joining", "basic_salary", "essl_device_id", "employment_status",
}
LEAVE_FIELDS = {"leave_type", "start_date", "end_date", "days_requested", "reason", "emergency_contact", "emergency_phone"}
ACTIVE_LEAVE_STATUSES = [LeaveStatus.PENDING.value, LeaveStatus.APPROVED.value]


class EmployeeCreate(BaseModel):
    employee_code: str
    name: str
    email: str | None = None
    phone: str | None = None
    department: str | None = None
    position: str | None = None
    date_of_joining: date | None = None
    basic_salary: float = Field(default=0, ge=0)
    essl_device_id: str | None = None
    user_id: int | None = None


class EmployeeUpdate(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    department: str | None = None
    position: str | None = None
    date_of_joining: date | None = None
    basic_salary: float | None = Field(default=None, ge=0)
    essl_device_id: str | None = None
    employment_status: str | None = None


class LeaveCreate(BaseModel):
    employee_id: int
    leave_type: str
    start_date: date
    end_date: date
    reason: str | None = None
    emergency_contact: str | None = None
    emergency_phone: str | None = None


class LeaveUpdate(BaseModel):
    leave_type: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    reason: str | None = None
    emergency_contact: str | None = None
    emergency_phone: str | None = None
    status: LeaveStatus | None = None


class LeaveDecision(BaseModel):
    approved_by: int | None = None
    admin_notes: str | None = None


class LeaveBalanceUpdate(BaseModel):
    leave_type: str
    year: int | None = None
    total_days: float = Field(ge=0)
    used_days: float = Field(default=0, ge=0)


class AttendanceProcessRequest(BaseModel):
    work_date: date | None = None


class PayrollCreate(BaseModel):
    employee_id: int
    pay_period_start: date
    pay_period_end: date
    basic_salary: float | None = Field(default=None, ge=0)
    allowances: float = Field(default=0, ge=0)
    deductions: float = Field(default=0, ge=0)
    from_attendance: bool = False


def _get_employee(db: Database, employee_id: int) -> dict[str, Any]:
    employee = db.fetch_one("SELECT * FROM employees WHERE id = %s", (employee_id,))
    if employee is None:
        raise NotFoundError("Employee", employee_id)
    return employee


def _check_overlap(conn: psycopg.Connection, employee_id: int, start: date, end: date, exclude_id: int | None = None):
    clash = conn.execute(
        """
        SELECT id, start_date, end_date, status FROM leave_requests
        WHERE employee_id = %s AND status = ANY(%s)
          AND start_date <= %s AND end_date >= %s
          AND (%s::int IS NULL OR id <> %s)
        LIMIT 1
        """,
        (employee_id, ACTIVE_LEAVE_STATUSES, end, start, exclude_id, exclude_id),
    ).fetchone()
    if clash is not None:
        raise ConflictError(
            "Leave request overlaps an existing request",
            details={
                "leave_id": clash["id"],
                "start_date": clash["start_date"].isoformat(),
                "end_date": clash["end_date"].isoformat(),
                "status": clash["status"],
            },
        )


def _lock_leave(conn: psycopg.Connection, leave_id: int) -> dict[str, Any]:
    leave = conn.execute("SELECT * FROM leave_requests WHERE id = %s FOR UPDATE", (leave_id,)).fetchone()
    if leave is None:
        raise NotFoundError("Leave request", leave_id)
    return leave


def _lock_balance(conn: psycopg.Connection, leave: dict[str, Any]) -> dict[str, Any] | None:
    return conn.execute(
        """
        SELECT * FROM employee_leave_balances
        WHERE employee_id = %s AND leave_type = %s AND year = %s
        FOR UPDATE
        """,
        (leave["employee_id"], leave["leave_type"], leave["start_date"].year),
    ).fetchone()


# Employees

@router.get("/hr/employees")
def list_employees(department: str | None = None, status: str | None = "active"):
    db = Database()
    rows = db.fetch_all(
        """
        SELECT * FROM employees
        WHERE (%(department)s::text IS NULL OR department = %(department)s)
          AND (%(status)s::text IS NULL OR employment_status = %(status)s)
        ORDER BY name
        """,
        {"department": department, "status": status},
    )
    return {"success": True, "data": rows}


@router.post("/hr/employees", status_code=201)
def create_employee(request: EmployeeCreate):
    db = Database()
    if db.fetch_one("SELECT id FROM employees WHERE employee_code = %s", (request.employee_code,)):
        raise ConflictError(f"Employee code {request.employee_code} already exists")
    if request.essl_device_id and db.fetch_one(
        "SELECT id FROM employees WHERE essl_device_id = %s", (request.essl_device_id,)
    ):
        raise ConflictError(f"Device user {request.essl_device_id} is already mapped to another employee")

    row = db.execute(
        """
        INSERT INTO employees (
            employee_code, name, email, phone, department, position,
            date_of_joining, basic_salary, essl_device_id, user_id
        )
        VALUES (%(employee_code)s, %(name)s, %(email)s, %(phone)s, %(department)s, %(position)s,
                %(date_of_joining)s, %(basic_salary)s, %(essl_device_id)s, %(user_id)s)
        RETURNING *
        """,
        request.model_dump(),
    )
    log.info("employee_created", employee_id=row["id"], employee_code=row["employee_code"])
    return {"success": True, "data": row}


@router.patch("/hr/employees/{employee_id}")
def update_employee(employee_id: int, request: EmployeeUpdate):
    sql, params = build_update(
        "employees",
        request.model_dump(exclude_unset=True),
        EMPLOYEE_FIELDS,
        touch=True,
    )
    db = Database()
    row = db.execute(sql, {**params, "id": employee_id})
    if row is None:
        raise NotFoundError("Employee", employee_id)
    log.info("employee_updated", employee_id=employee_id, fields=sorted(params))
    return {"success": True, "data": row}


# Leave requests

@router.get("/hr/leaves")
def list_leaves(employee_id: int | None = None, status: LeaveStatus | None = None):
    db = Database()
    rows = db.fetch_all(
        """
        SELECT l.*, e.name AS employee_name, e.employee_code
        FROM leave_requests l
        JOIN employees e ON e.id = l.employee_id
        WHERE (%(employee)s::int IS NULL OR l.employee_id = %(employee)s)
          AND (%(status)s::text IS NULL OR l.status = %(status)s)
        ORDER BY l.start_date DESC
        """,
        {"employee": employee_id, "status": status.value if status else None},
    )
    return {"success": True, "data": rows}


@router.post("/hr/leaves", status_code=201)
def create_leave(request: LeaveCreate):
    if request.start_date > request.end_date:
        raise ValidationError("start_date must be on or before end_date")
    db = Database()
    _get_employee(db, request.employee_id)
    with db.transaction() as conn:
        _check_overlap(conn, request.employee_id, request.start_date, request.end_date)
        row = conn.execute(
            """
            INSERT INTO leave_requests (
                employee_id, leave_type, start_date, end_date, days_requested,
                reason, emergency_contact, emergency_phone
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                request.employee_id,
                request.leave_type,
                request.start_date,
                request.end_date,
                hr.leave_days(request.start_date, request.end_date),
                request.reason,
                request.emergency_contact,
                request.emergency_phone,
            ),
        ).fetchone()
    log.info("leave_requested", leave_id=row["id"], employee_id=request.employee_id, days=row["days_requested"])
    return {"success": True, "data": row}


@router.get("/hr/leaves/{leave_id}")
def get_leave(leave_id: int):
    db = Database()
    row = db.fetch_one(
        """
        SELECT l.*, e.name AS employee_name, e.employee_code
        FROM leave_requests l JOIN employees e ON e.id = l.employee_id
        WHERE l.id = %s
        """,
        (leave_id,),
    )
    if row is None:
        raise NotFoundError("Leave request", leave_id)
    return {"success": True, "data": row}


@router.put("/hr/leaves/{leave_id}")
def update_leave(leave_id: int, request: LeaveUpdate):
    """
    Edit a pending request, or cancel a request.

    Decided (approved/rejected) requests only accept a status change to
    cancelled; cancelling an approved request gives the days back.
    """
    values = request.model_dump(exclude_unset=True)
    target = values.pop("status", None)

    db = Database()
    with db.transaction() as conn:
        leave = _lock_leave(conn, leave_id)
        current = LeaveStatus(leave["status"])

        if values:
            if current is not LeaveStatus.PENDING:
                raise ConflictError(f"A {current.value} leave request can no longer be edited")
            start = values.get("start_date", leave["start_date"])
            end = values.get("end_date", leave["end_date"])
            if start > end:
                raise ValidationError("start_date must be on or before end_date")
            _check_overlap(conn, leave["employee_id"], start, end, exclude_id=leave_id)
            values["days_requested"] = hr.leave_days(start, end)
            sql, params = build_update("leave_requests", values, LEAVE_FIELDS, touch=True)
            leave = conn.execute(sql, {**params, "id": leave_id}).fetchone()

        if target is not None and target is not current:
            if target in (LeaveStatus.APPROVED, LeaveStatus.REJECTED):
                raise ValidationError("Use the approve/reject endpoints to decide a leave request")
            if target is LeaveStatus.PENDING or current in (LeaveStatus.CANCELLED, LeaveStatus.REJECTED):
                raise ConflictError(f"Cannot move leave request from {current.value} to {target.value}")
            if current is LeaveStatus.APPROVED:
                balance = _lock_balance(conn, leave)
                if balance is not None:
                    conn.execute(
                        "UPDATE employee_leave_balances SET used_days = GREATEST(used_days - %s, 0), updated_at = NOW() WHERE id = %s",
                        (leave["days_requested"], balance["id"]),
                    )
            leave = conn.execute(
                "UPDATE leave_requests SET status = %s, updated_at = NOW() WHERE id = %s RETURNING *",
                (target.value, leave_id),
            ).fetchone()
            log.info("leave_status_changed", leave_id=leave_id, old_status=current.value, new_status=target.value)

    return {"success": True, "data": leave}


@router.post("/hr/leaves/{leave_id}/approve")
def approve_leave(leave_id: int, request: LeaveDecision | None = None):
    """Approve a pending request, consuming days from the employee's balance for that year."""
    request = request or LeaveDecision()
    db = Database()
    with db.transaction() as conn:
        leave = _lock_leave(conn, leave_id)
        if leave["status"] != LeaveStatus.PENDING.value:
            raise ConflictError(f"Leave request is already {leave['status']}")

        balance = _lock_balance(conn, leave)
        if balance is None:
            raise ValidationError(
                f"No {leave['leave_type']} balance for {leave['start_date'].year}",
                details={"employee_id": leave["employee_id"]},
            )
        remaining = balance["total_days"] - balance["used_days"]
        if leave["days_requested"] > remaining:
            raise ValidationError(
                "Insufficient leave balance",
                details={"requested": leave["days_requested"], "remaining": remaining},
            )

        conn.execute(
            "UPDATE employee_leave_balances SET used_days = used_days + %s, updated_at = NOW() WHERE id = %s",
            (leave["days_requested"], balance["id"]),
        )
        leave = conn.execute(
            """
            UPDATE leave_requests
            SET status = %s, approved_by = %s, approved_at = NOW(), admin_notes = %s, updated_at = NOW()
            WHERE id = %s
            RETURNING *
            """,
            (LeaveStatus.APPROVED.value, request.approved_by, request.admin_notes, leave_id),
        ).fetchone()

    log.info("leave_approved", leave_id=leave_id, employee_id=leave["employee_id"], days=leave["days_requested"])
    return {"success": True, "data": leave}


@router.post("/hr/leaves/{leave_id}/reject")
def reject_leave(leave_id: int, request: LeaveDecision | None = None):
    request = request or LeaveDecision()
    db = Database()
    row = db.execute(
        """
        UPDATE leave_requests
        SET status = %s, approved_by = %s, admin_notes = %s, updated_at = NOW()
        WHERE id = %s AND status = %s
        RETURNING *
        """,
        (LeaveStatus.REJECTED.value, request.approved_by, request.admin_notes, leave_id, LeaveStatus.PENDING.value),
    )
    if row is None:
        leave = db.fetch_one("SELECT status FROM leave_requests WHERE id = %s", (leave_id,))
        if leave is None:
            raise NotFoundError("Leave request", leave_id)
        raise ConflictError(f"Leave request is already {leave['status']}")
    log.info("leave_rejected", leave_id=leave_id)
    return {"success": True, "data": row}


# Leave balances

@router.get("/hr/leave-balances/{employee_id}")
def get_leave_balances(employee_id: int, year: int | None = None):
    db = Database()
    _get_employee(db, employee_id)
    rows = db.fetch_all(
        """
        SELECT *, total_days - used_days AS remaining_days
        FROM employee_leave_balances
        WHERE employee_id = %s AND year = %s
        ORDER BY leave_type
        """,
        (employee_id, year or date.today().year),
    )
    return {"success": True, "data": rows}


@router.put("/hr/leave-balances/{employee_id}")
def set_leave_balance(employee_id: int, request: LeaveBalanceUpdate):
    if request.used_days > request.total_days:
        raise ValidationError("used_days cannot exceed total_days")
    db = Database()
    _get_employee(db, employee_id)
    row = db.execute(
        """
        INSERT INTO employee_leave_balances (employee_id, leave_type, year, total_days, used_days)
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT (employee_id, leave_type, year) DO UPDATE SET
            total_days = EXCLUDED.total_days,
            used_days = EXCLUDED.used_days,
            updated_at = NOW()
        RETURNING *
        """,
        (employee_id, request.leave_type, request.year or date.today().year, request.total_days, request.used_days),
    )
    log.info("leave_balance_set", employee_id=employee_id, leave_type=request.leave_type, total=request.total_days)
    return {"success": True, "data": row}


# Attendance

@router.get("/hr/attendance")
def list_attendance(
    employee_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = Query(default=500, le=5000),
):
    db = Database()
    rows = db.fetch_all(
        """
        SELECT a.*, e.name AS employee_name, e.employee_code
        FROM attendance_records a
        JOIN employees e ON e.id = a.employee_id
        WHERE (%(employee)s::int IS NULL OR a.employee_id = %(employee)s)
          AND (%(start)s::date IS NULL OR a.date >= %(start)s)
          AND (%(end)s::date IS NULL OR a.date <= %(end)s)
        ORDER BY a.date DESC, e.name
        LIMIT %(limit)s
        """,
        {"employee": employee_id, "start": start_date, "end": end_date, "limit": limit},
    )
    by_status: dict[str, int] = {}
    for row in rows:
        by_status[row["status"]] = by_status.get(row["status"], 0) + 1
    return {
        "success": True,
        "data": rows,
        "summary": {
            "records": len(rows),
            "by_status": by_status,
            "total_hours": money(sum(r["total_hours"] for r in rows)),
        },
    }


@router.post("/hr/attendance/process")
def process_attendance(request: AttendanceProcessRequest | None = None):
    """Turn unprocessed punches into daily attendance, for one date or every pending date."""
    db = Database()
    if request is not None and request.work_date is not None:
        processed = attendance.process_date(db, request.work_date)
        return {"success": True, "data": {"processed": processed, "dates": [request.work_date.isoformat()]}}
    return {"success": True, "data": attendance.process_all_dates(db)}


# Payroll

@router.get("/hr/payroll-records")
def list_payroll(employee_id: int | None = None, period_start: date | None = None):
    db = Database()
    rows = db.fetch_all(
        """
        SELECT p.*, e.name AS employee_name, e.employee_code
        FROM payroll_records p JOIN employees e ON e.id = p.employee_id
        WHERE (%(employee)s::int IS NULL OR p.employee_id = %(employee)s)
          AND (%(start)s::date IS NULL OR p.pay_period_start = %(start)s)
        ORDER BY p.pay_period_start DESC, e.name
        """,
        {"employee": employee_id, "start": period_start},
    )
    return {"success": True, "data": rows}


@router.post("/hr/payroll-records", status_code=201)
def create_payroll(request: PayrollCreate):
    """
    Create a payroll record: net = basic + allowances - deductions.

    With ``from_attendance`` the basic salary is prorated by attended days
    (half days count 0.5) over the period's working days.
    """
    if request.pay_period_start > request.pay_period_end:
        raise ValidationError("pay_period_start must be on or before pay_period_end")
    db = Database()
    employee = _get_employee(db, request.employee_id)

    days = hr.working_days(request.pay_period_start, request.pay_period_end)
    basic = request.basic_salary if request.basic_salary is not None else money(employee["basic_salary"])
    present = float(days)
    if request.from_attendance:
        records = db.fetch_all(
            "SELECT status FROM attendance_records WHERE employee_id = %s AND date BETWEEN %s AND %s",
            (request.employee_id, request.pay_period_start, request.pay_period_end),
        )
        present = hr.present_days(records)
        basic = hr.prorated_basic(basic, present, days)

    net = hr.net_salary(basic, request.allowances, request.deductions)
    if net < 0:
        raise ValidationError("Deductions exceed gross pay", details={"net_salary": net})

    with db.transaction() as conn:
        exists = conn.execute(
            "SELECT id FROM payroll_records WHERE employee_id = %s AND pay_period_start = %s",
            (request.employee_id, request.pay_period_start),
        ).fetchone()
        if exists:
            raise ConflictError("A payroll record already exists for this employee and period")
        row = conn.execute(
            """
            INSERT INTO payroll_records (
                employee_id, pay_period_start, pay_period_end, working_days, present_days,
                basic_salary, allowances, deductions, net_salary
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                request.employee_id, request.pay_period_start, request.pay_period_end, days, present,
                basic, request.allowances, request.deductions, net,
            ),
        ).fetchone()

    log.info("payroll_created", employee_id=request.employee_id, net_salary=net, from_attendance=request.from_attendance)
    return {"success": True, "data": row}
