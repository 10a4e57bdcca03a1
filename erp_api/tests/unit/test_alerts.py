"""Unit tests for dashboard alert prioritisation."""

from datetime import date

from erp_api.routers.dashboard import build_alerts

TODAY = date(2026, 3, 31)


def test_empty():
    assert build_alerts([], [], [], [], TODAY) == []


def test_out_of_stock_is_high_priority():
    alerts = build_alerts(
        [
            {"id": 1, "sku": "SAR-01", "name": "Silk Saree", "quantity": 2, "reorder_level": 5},
            {"id": 2, "sku": "DUP-01", "name": "Dupatta", "quantity": 0, "reorder_level": 5},
        ],
        [], [], [], TODAY,
    )
    assert [(a["title"], a["priority"]) for a in alerts] == [
        ("Low stock: Dupatta", "high"),
        ("Low stock: Silk Saree", "medium"),
    ]
    assert alerts[0]["metadata"] == {"product_id": 2, "sku": "DUP-01"}


def test_overdue_thresholds():
    bills = [
        {"id": 1, "bill_number": "B-1", "due_date": date(2026, 3, 1), "outstanding": 100, "supplier_name": "Loom"},
        {"id": 2, "bill_number": "B-2", "due_date": date(2026, 2, 1), "outstanding": 200, "supplier_name": "Loom"},
    ]
    invoices = [
        {"id": 7, "customer_name": "Asha", "invoice_date": date(2026, 2, 1), "outstanding": 50},
        {"id": 8, "customer_name": "Ravi", "invoice_date": date(2026, 1, 1), "outstanding": 75},
    ]
    alerts = build_alerts([], bills, invoices, [], TODAY)
    priorities = {a["title"]: a["priority"] for a in alerts}
    assert priorities == {
        "Overdue bill B-1": "medium",
        "Overdue bill B-2": "high",
        "Overdue invoice #7": "medium",
        "Overdue invoice #8": "high",
    }
    b2 = next(a for a in alerts if a["title"] == "Overdue bill B-2")
    assert b2["metadata"]["days_overdue"] == 58


def test_sorted_high_medium_low():
    leaves = [
        {"id": 1, "employee_name": "Kavya", "leave_type": "casual",
         "start_date": date(2026, 4, 10), "end_date": date(2026, 4, 11)},
        {"id": 2, "employee_name": "Nikhil", "leave_type": "sick",
         "start_date": date(2026, 3, 30), "end_date": date(2026, 4, 1)},
    ]
    low_stock = [{"id": 3, "sku": None, "name": "Kurta", "quantity": 1, "reorder_level": 4}]
    alerts = build_alerts(low_stock, [], [], leaves, TODAY)
    assert [a["priority"] for a in alerts] == ["high", "medium", "low"]
    assert alerts[0]["type"] == "hr"
    assert alerts[-1]["metadata"] == {"leave_id": 1}
