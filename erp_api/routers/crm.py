"""
Customers and leads.

GET/POST   /crm/customers
GET/PATCH  /crm/customers/{customer_id}
GET/POST   /crm/leads
PATCH      /crm/leads/{lead_id}
POST       /crm/leads/{lead_id}/convert
"""

from fastapi import APIRouter, Query
from pydantic import BaseModel

from erp_api.core.database import Database, build_update
from erp_api.core.errors import ConflictError, NotFoundError, ValidationError
from erp_api.core.logging import get_logger
from erp_api.core.models import LeadStatus, OrderStatus

log = get_logger(__name__)
router = APIRouter()

CUSTOMER_FIELDS = {"name", "email", "phone", "address", "city", "source"}
LEAD_FIELDS = {"name", "email", "phone", "source", "status", "assigned_to", "notes"}


class CustomerCreate(BaseModel):
    name: str
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    source: str | None = None


class CustomerUpdate(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    source: str | None = None


class LeadCreate(BaseModel):
    name: str
    email: str | None = None
    phone: str | None = None
    source: str | None = None
    assigned_to: int | None = None
    notes: str | None = None


class LeadUpdate(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    source: str | None = None
    status: LeadStatus | None = None
    assigned_to: int | None = None
    notes: str | None = None


@router.get("/crm/customers")
def list_customers(
    search: str | None = Query(default=None, description="Match on name, phone or email"),
    limit: int = Query(default=100, le=500),
    offset: int = 0,
):
    db = Database()
    pattern = f"%{search}%" if search else None
    rows = db.fetch_all(
        """
        SELECT c.*,
               COUNT(o.id) AS order_count,
               COALESCE(SUM(o.grand_total) FILTER (WHERE o.status = ANY(%(billable)s)), 0) AS total_spent
        FROM customers c
        LEFT JOIN sales_orders o ON o.customer_id = c.id
        WHERE %(pattern)s::text IS NULL
           OR c.name ILIKE %(pattern)s OR c.phone ILIKE %(pattern)s OR c.email ILIKE %(pattern)s
        GROUP BY c.id
        ORDER BY c.created_at DESC
        LIMIT %(limit)s OFFSET %(offset)s
        """,
        {
            "pattern": pattern,
            "billable": [s.value for s in OrderStatus.billable()],
            "limit": limit,
            "offset": offset,
        },
    )
    return {"success": True, "data": rows}


@router.post("/crm/customers", status_code=201)
def create_customer(request: CustomerCreate):
    if not request.name.strip():
        raise ValidationError("Customer name is required")
    db = Database()
    row = db.execute(
        """
        INSERT INTO customers (name, email, phone, address, city, source)
        VALUES (%(name)s, %(email)s, %(phone)s, %(address)s, %(city)s, %(source)s)
        RETURNING *
        """,
        request.model_dump(),
    )
    log.info("customer_created", customer_id=row["id"])
    return {"success": True, "data": row}


@router.get("/crm/customers/{customer_id}")
def get_customer(customer_id: int):
    db = Database()
    customer = db.fetch_one("SELECT * FROM customers WHERE id = %s", (customer_id,))
    if customer is None:
        raise NotFoundError("Customer", customer_id)
    orders = db.fetch_all(
        """
        SELECT o.id, o.status, o.grand_total, o.created_at,
               COALESCE(i.paid_amount, 0) AS paid_amount
        FROM sales_orders o
        LEFT JOIN invoices i ON i.sales_order_id = o.id
        WHERE o.customer_id = %s
        ORDER BY o.created_at DESC
        """,
        (customer_id,),
    )
    return {"success": True, "data": {**customer, "orders": orders}}


@router.patch("/crm/customers/{customer_id}")
def update_customer(customer_id: int, request: CustomerUpdate):
    sql, params = build_update(
        "customers",
        request.model_dump(exclude_unset=True),
        CUSTOMER_FIELDS,
        touch=True,
    )
    db = Database()
    row = db.execute(sql, {**params, "id": customer_id})
    if row is None:
        raise NotFoundError("Customer", customer_id)
    return {"success": True, "data": row}


@router.get("/crm/leads")
def list_leads(status: LeadStatus | None = None, assigned_to: int | None = None):
    db = Database()
    rows = db.fetch_all(
        """
        SELECT * FROM leads
        WHERE (%(status)s::text IS NULL OR status = %(status)s)
          AND (%(assigned_to)s::int IS NULL OR assigned_to = %(assigned_to)s)
        ORDER BY created_at DESC
        """,
        {"status": status.value if status else None, "assigned_to": assigned_to},
    )
    return {"success": True, "data": rows}


@router.post("/crm/leads", status_code=201)
def create_lead(request: LeadCreate):
    db = Database()
    row = db.execute(
        """
        INSERT INTO leads (name, email, phone, source, assigned_to, notes)
        VALUES (%(name)s, %(email)s, %(phone)s, %(source)s, %(assigned_to)s, %(notes)s)
        RETURNING *
        """,
        request.model_dump(),
    )
    log.info("lead_created", lead_id=row["id"], source=row["source"])
    return {"success": True, "data": row}


@router.patch("/crm/leads/{lead_id}")
def update_lead(lead_id: int, request: LeadUpdate):
    """Update a lead; status changes must follow the lead pipeline."""
    db = Database()
    lead = db.fetch_one("SELECT * FROM leads WHERE id = %s", (lead_id,))
    if lead is None:
        raise NotFoundError("Lead", lead_id)

    values = request.model_dump(exclude_unset=True)
    if "status" in values:
        target = values["status"]
        if target == LeadStatus.CONVERTED:
            raise ValidationError("Use /crm/leads/{id}/convert to convert a lead")
        current = LeadStatus(lead["status"])
        if target != current and not current.can_transition_to(target):
            raise ConflictError(f"Cannot move lead from {current.value} to {target.value}")
        values["status"] = target.value

    sql, params = build_update("leads", values, LEAD_FIELDS, touch=True)
    row = db.execute(sql, {**params, "id": lead_id})
    return {"success": True, "data": row}


@router.post("/crm/leads/{lead_id}/convert")
def convert_lead(lead_id: int):
    """Create a customer from a qualified lead and mark the lead converted."""
    db = Database()
    with db.transaction() as conn:
        lead = conn.execute("SELECT * FROM leads WHERE id = %s FOR UPDATE", (lead_id,)).fetchone()
        if lead is None:
            raise NotFoundError("Lead", lead_id)
        if not LeadStatus(lead["status"]).can_transition_to(LeadStatus.CONVERTED):
            raise ConflictError(f"Only qualified leads can be converted (lead is {lead['status']})")

        customer = conn.execute(
            """
            INSERT INTO customers (name, email, phone, source)
            VALUES (%s, %s, %s, %s)
            RETURNING *
            """,
            (lead["name"], lead["email"], lead["phone"], lead["source"] or "lead"),
        ).fetchone()
        conn.execute(
            "UPDATE leads SET status = %s, customer_id = %s, updated_at = NOW() WHERE id = %s",
            (LeadStatus.CONVERTED.value, customer["id"], lead_id),
        )

    log.info("lead_converted", lead_id=lead_id, customer_id=customer["id"])
    return {"success": True, "data": {"lead_id": lead_id, "customer": customer}}
