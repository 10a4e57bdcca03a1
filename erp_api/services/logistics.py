"""
Delivery bookkeeping and the logistics dashboard figures.

Deliveries hang off sales orders (one per order). Moving a delivery along
drags its order with it: in transit ships the order, delivered delivers it.
"""

from collections import defaultdict
from datetime import date, timedelta
from typing import Any, Iterable

import psycopg

from erp_api.core.logging import get_logger
from erp_api.core.models import DeliveryStatus, OrderStatus, money

log = get_logger(__name__)

TREND_DAYS = 7

ORDER_STATUS_FOR_DELIVERY = {
    DeliveryStatus.IN_TRANSIT: OrderStatus.SHIPPED,
    DeliveryStatus.DELIVERED: OrderStatus.DELIVERED,
}


def open_delivery(
    conn: psycopg.Connection,
    order_id: int,
    address: str | None = None,
    time_slot: str | None = None,
) -> dict[str, Any] | None:
    """Insert a pending delivery for an order; returns None if it already has one."""
    delivery = conn.execute(
        """
        INSERT INTO deliveries (sales_order_id, status, delivery_address, time_slot)
        VALUES (%s, %s, %s, %s)
        ON CONFLICT (sales_order_id) DO NOTHING
        RETURNING *
        """,
        (order_id, DeliveryStatus.PENDING.value, address, time_slot),
    ).fetchone()
    if delivery is not None:
        log.info("delivery_opened", delivery_id=delivery["id"], order_id=order_id)
    return delivery


def order_status_after(delivery_status: DeliveryStatus, order_status: OrderStatus) -> OrderStatus | None:
    """Order status implied by a delivery move, or None when the order stays put."""
    target = ORDER_STATUS_FOR_DELIVERY.get(delivery_status)
    if target is None or target == order_status:
        return None
    return target if order_status.can_transition_to(target) else None


def is_on_time(delivery: dict[str, Any]) -> bool:
    actual = delivery.get("actual_delivery_time")
    estimated = delivery.get("estimated_delivery_time")
    if actual is None or estimated is None:
        return False
    return actual <= estimated


def _percent(part: int, whole: int) -> float:
    return round(part * 100 / whole, 1) if whole else 0.0


def delivery_kpis(deliveries: Iterable[dict[str, Any]], end: date) -> dict[str, Any]:
    """
    Dashboard figures for the deliveries created in a period.

    Args:
        deliveries: rows with status, delivery_fee, route, driver_id,
            created_at, estimated_delivery_time and actual_delivery_time
        end: last day of the period; the daily trend covers the week up to it
    """
    deliveries = list(deliveries)
    completed = [d for d in deliveries if d["status"] == DeliveryStatus.DELIVERED.value]
    on_time = [d for d in completed if is_on_time(d)]
    total_cost = sum(d["delivery_fee"] or 0 for d in deliveries)

    by_status: dict[str, int] = defaultdict(int)
    for delivery in deliveries:
        by_status[delivery["status"]] += 1

    trend = []
    for offset in range(TREND_DAYS - 1, -1, -1):
        day = end - timedelta(days=offset)
        created = [d for d in deliveries if d["created_at"].date() == day]
        trend.append({
            "date": day.isoformat(),
            "completed": sum(1 for d in created if d["status"] == DeliveryStatus.DELIVERED.value),
            "pending": sum(1 for d in created if d["status"] == DeliveryStatus.PENDING.value),
            "failed": sum(1 for d in created if d["status"] == DeliveryStatus.FAILED.value),
        })

    routes: dict[str, dict[str, Any]] = {}
    drivers: dict[Any, dict[str, Any]] = {}
    for delivery in deliveries:
        done = delivery["status"] == DeliveryStatus.DELIVERED.value
        fee = delivery["delivery_fee"] or 0
        route = routes.setdefault(delivery["route"] or "Unassigned", {"deliveries": 0, "completed": 0, "fees": 0.0})
        driver = drivers.setdefault(delivery["driver_id"], {"trips": 0, "completed": 0, "fees": 0.0})
        route["deliveries"] += 1
        driver["trips"] += 1
        for group in (route, driver):
            group["completed"] += done
            group["fees"] += fee

    return {
        "total_deliveries": len(completed),
        "on_time_percentage": _percent(len(on_time), len(completed)),
        "avg_delivery_fee": money(total_cost / len(deliveries)) if deliveries else 0.0,
        "pending_deliveries": by_status[DeliveryStatus.PENDING.value] + by_status[DeliveryStatus.SCHEDULED.value],
        "in_transit": by_status[DeliveryStatus.IN_TRANSIT.value],
        "delivery_trend": trend,
        "route_efficiency": [
            {
                "route": name,
                "deliveries": data["deliveries"],
                "completed": data["completed"],
                "efficiency": _percent(data["completed"], data["deliveries"]),
                "avg_fee": money(data["fees"] / data["deliveries"]),
            }
            for name, data in sorted(routes.items())
        ],
        "driver_performance": sorted(
            (
                {
                    "driver_id": driver_id,
                    "trips": data["trips"],
                    "completed": data["completed"],
                    "completion_rate": _percent(data["completed"], data["trips"]),
                    "total_fees": money(data["fees"]),
                }
                for driver_id, data in drivers.items()
            ),
            key=lambda row: row["trips"],
            reverse=True,
        ),
        "status_distribution": [
            {
                "status": status.value,
                "count": by_status[status.value],
                "percentage": _percent(by_status[status.value], len(deliveries)),
            }
            for status in DeliveryStatus
        ],
        "summary": {
            "deliveries": len(deliveries),
            "total_cost": money(total_cost),
            "on_time_count": len(on_time),
            "late_count": len(completed) - len(on_time),
            "routes": len(routes),
        },
    }
