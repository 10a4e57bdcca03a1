"""
Deliveries and the logistics dashboard.

GET/POST  /logistics/deliveries
GET/PATCH /logistics/deliveries/{delivery_id}
GET       /logistics/ready-for-delivery
GET       /dashboard/logistics?start_date=&end_date=
"""

from datetime import date, datetime

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from erp_api.core.cache import cache
from erp_api.core.database import Database, build_update
from erp_api.core.errors import ConflictError, NotFoundError, ValidationError
from erp_api.core.logging import get_logger
from erp_api.core.models import DeliveryStatus, OrderStatus
from erp_api.services import invoicing, logistics

log = get_logger(__name__)
router = APIRouter()

DELIVERY_FIELDS = {
    "status",
    "delivery_address",
    "time_slot",
    "route",
    "driver_id",
    "delivery_fee",
    "estimated_delivery_time",
    "actual_delivery_time",
    "delivered_to",
    "notes",
}


class DeliveryCreate(BaseModel):
    sales_order_id: int
    delivery_address: str | None = None
    time_slot: str | None = None
    route: str | None = None
    driver_id: int | None = None
    delivery_fee: float = Field(default=0, ge=0)
    estimated_delivery_time: datetime | None = None
    notes: str | None = None


class DeliveryUpdate(BaseModel):
    status: DeliveryStatus | None = None
    delivery_address: str | None = None
    time_slot: str | None = None
    route: str | None = None
    driver_id: int | None = None
    delivery_fee: float | None = Field(default=None, ge=0)
    estimated_delivery_time: datetime | None = None
    actual_delivery_time: datetime | None = None
    delivered_to: str | None = None
    notes: str | None = None


@router.get("/logistics/deliveries")
def list_deliveries(
    status: DeliveryStatus | None = None,
    driver_id: int | None = None,
    sales_order_id: int | None = None,
    limit: int = Query(default=100, le=500),
    offset: int = 0,
):
    db = Database()
    rows = db.fetch_all(
        """
        SELECT d.*, o.status AS order_status, o.grand_total,
               c.name AS customer_name, c.phone AS customer_phone, u.name AS driver_name
        FROM deliveries d
        JOIN sales_orders o ON o.id = d.sales_order_id
        JOIN customers c ON c.id = o.customer_id
        LEFT JOIN users u ON u.id = d.driver_id
        WHERE (%(status)s::text IS NULL OR d.status = %(status)s)
          AND (%(driver)s::int IS NULL OR d.driver_id = %(driver)s)
          AND (%(order)s::int IS NULL OR d.sales_order_id = %(order)s)
        ORDER BY d.created_at DESC, d.id DESC
        LIMIT %(limit)s OFFSET %(offset)s
        """,
        {
            "status": status.value if status else None,
            "driver": driver_id,
            "order": sales_order_id,
            "limit": limit,
            "offset": offset,
        },
    )
    return {"success": True, "data": rows}


@router.post("/logistics/deliveries", status_code=201)
def create_delivery(request: DeliveryCreate):
    """Schedule a delivery for an order; the customer's address is the default."""
    db = Database()
    with db.transaction() as conn:
        order = conn.execute(
            """
            SELECT o.id, o.status, c.address AS customer_address
            FROM sales_orders o JOIN customers c ON c.id = o.customer_id
            WHERE o.id = %s
            FOR UPDATE OF o
            """,
            (request.sales_order_id,),
        ).fetchone()
        if order is None:
            raise NotFoundError("Sales order", request.sales_order_id)
        if order["status"] in (OrderStatus.CANCELLED.value, OrderStatus.DELIVERED.value, OrderStatus.DRAFT.value):
            raise ConflictError(f"A {order['status']} order cannot be scheduled for delivery")

        delivery = conn.execute(
            """
            INSERT INTO deliveries (
                sales_order_id, status, delivery_address, time_slot, route,
                driver_id, delivery_fee, estimated_delivery_time, notes
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (sales_order_id) DO NOTHING
            RETURNING *
            """,
            (
                request.sales_order_id,
                DeliveryStatus.SCHEDULED.value if request.driver_id else DeliveryStatus.PENDING.value,
                request.delivery_address or order["customer_address"],
                request.time_slot,
                request.route,
                request.driver_id,
                request.delivery_fee,
                request.estimated_delivery_time,
                request.notes,
            ),
        ).fetchone()
        if delivery is None:
            raise ConflictError(f"Sales order {request.sales_order_id} already has a delivery")

    cache.invalidate_prefix("dashboard")
    log.info("delivery_created", delivery_id=delivery["id"], order_id=request.sales_order_id, status=delivery["status"])
    return {"success": True, "data": delivery}


@router.get("/logistics/deliveries/{delivery_id}")
def get_delivery(delivery_id: int):
    db = Database()
    delivery = db.fetch_one(
        """
        SELECT d.*, o.status AS order_status, o.grand_total, c.name AS customer_name, c.phone AS customer_phone
        FROM deliveries d
        JOIN sales_orders o ON o.id = d.sales_order_id
        JOIN customers c ON c.id = o.customer_id
        WHERE d.id = %s
        """,
        (delivery_id,),
    )
    if delivery is None:
        raise NotFoundError("Delivery", delivery_id)
    items = db.fetch_all(
        "SELECT name, quantity, final_price FROM sales_order_items WHERE order_id = %s ORDER BY id",
        (delivery["sales_order_id"],),
    )
    return {"success": True, "data": {**delivery, "items": items}}


@router.patch("/logistics/deliveries/{delivery_id}")
def update_delivery(delivery_id: int, request: DeliveryUpdate):
    """
    Edit a delivery or move it along.

    Going in transit ships the order and delivering it delivers the order,
    billing it if it was never invoiced.
    """
    values = request.model_dump(exclude_unset=True)
    db = Database()
    order_status = None
    with db.transaction() as conn:
        delivery = conn.execute("SELECT * FROM deliveries WHERE id = %s FOR UPDATE", (delivery_id,)).fetchone()
        if delivery is None:
            raise NotFoundError("Delivery", delivery_id)

        target = values.get("status")
        if target is not None:
            current = DeliveryStatus(delivery["status"])
            if target != current and not current.can_transition_to(target):
                raise ConflictError(f"Cannot move a delivery from {current.value} to {target.value}")
            values["status"] = target.value
            if target == DeliveryStatus.DELIVERED and values.get("actual_delivery_time") is None:
                values["actual_delivery_time"] = datetime.now().astimezone()

        sql, params = build_update("deliveries", values, DELIVERY_FIELDS, touch=True)
        updated = conn.execute(sql, {**params, "id": delivery_id}).fetchone()

        if target is not None:
            order = conn.execute(
                """
                SELECT o.*, c.name AS customer_name
                FROM sales_orders o JOIN customers c ON c.id = o.customer_id
                WHERE o.id = %s
                FOR UPDATE OF o
                """,
                (delivery["sales_order_id"],),
            ).fetchone()
            order_status = logistics.order_status_after(target, OrderStatus(order["status"]))
            if order_status is not None:
                invoicing.ensure_invoice(conn, order, date.today())
                conn.execute(
                    "UPDATE sales_orders SET status = %s, updated_at = NOW() WHERE id = %s",
                    (order_status.value, order["id"]),
                )

    cache.invalidate_prefix("dashboard")
    log.info(
        "delivery_updated",
        delivery_id=delivery_id,
        status=updated["status"],
        order_status=order_status.value if order_status else None,
    )
    return {
        "success": True,
        "data": updated,
        "order_status": order_status.value if order_status else None,
    }


@router.get("/logistics/ready-for-delivery")
def ready_for_delivery():
    """Orders packed for delivery, with their delivery if one is open."""
    db = Database()
    rows = db.fetch_all(
        """
        SELECT o.id, o.status, o.grand_total, o.created_at,
               c.name AS customer_name, c.phone AS customer_phone, c.address AS customer_address,
               d.id AS delivery_id, d.status AS delivery_status, d.time_slot
        FROM sales_orders o
        JOIN customers c ON c.id = o.customer_id
        LEFT JOIN deliveries d ON d.sales_order_id = o.id
        WHERE o.status = ANY(%s)
        ORDER BY o.created_at
        """,
        ([OrderStatus.READY_FOR_DELIVERY.value, OrderStatus.PARTIAL_DELIVERY_READY.value],),
    )
    return {
        "success": True,
        "data": rows,
        "summary": {
            "count": len(rows),
            "unscheduled": sum(1 for r in rows if r["delivery_id"] is None),
        },
    }


@router.get("/dashboard/logistics")
def logistics_dashboard(start_date: date | None = None, end_date: date | None = None):
    """Delivery KPIs for deliveries created in the period (default: this month to date)."""
    end = end_date or date.today()
    start = start_date or end.replace(day=1)
    if start > end:
        raise ValidationError(
            "start_date must not be after end_date",
            details={"start_date": start.isoformat(), "end_date": end.isoformat()},
        )

    db = Database()

    def build():
        rows = db.fetch_all(
            """
            SELECT id, status, delivery_fee, route, driver_id, created_at,
                   estimated_delivery_time, actual_delivery_time
            FROM deliveries
            WHERE created_at::date BETWEEN %s AND %s
            """,
            (start, end),
        )
        return {"start_date": start.isoformat(), "end_date": end.isoformat(), **logistics.delivery_kpis(rows, end)}

    data = cache.get_or_set(f"dashboard:logistics:{start}:{end}", build)
    return {"success": True, "data": data}
