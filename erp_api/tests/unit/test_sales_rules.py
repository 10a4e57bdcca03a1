"""Unit tests for order pricing and representative rankings."""

import pytest

from erp_api.core.errors import ValidationError
from erp_api.routers.sales import compute_totals, rank_representatives


class TestComputeTotals:
    def items(self):
        return [
            {"quantity": 2, "unit_price": 100, "discount_percent": 10},
            {"quantity": 1, "unit_price": 50, "discount_percent": 0},
        ]

    def test_discount_before_tax(self):
        items = self.items()
        totals = compute_totals(items, discount_amount=30, tax_percent=18)
        assert totals == {"subtotal": 230, "discount_amount": 30, "tax_amount": 36, "grand_total": 236}
        assert [item["final_price"] for item in items] == [180, 50]

    def test_rounding_to_cents(self):
        totals = compute_totals([{"quantity": 3, "unit_price": 33.333, "discount_percent": 0}], 0, 5)
        assert totals["subtotal"] == 100.0
        assert totals["tax_amount"] == 5.0

    def test_discount_above_subtotal_rejected(self):
        with pytest.raises(ValidationError, match="cannot exceed"):
            compute_totals(self.items(), discount_amount=500, tax_percent=0)


class TestRankRepresentatives:
    def rows(self):
        return [
            {"rep_id": 1, "rep_name": "Meera", "customer_id": 10, "grand_total": 1000, "subtotal": 1100,
             "discount_amount": 100, "item_cost": 600, "collected": 1000},
            {"rep_id": 1, "rep_name": "Meera", "customer_id": 10, "grand_total": 500, "subtotal": 500,
             "discount_amount": 0, "item_cost": 300, "collected": 0},
            {"rep_id": 2, "rep_name": "Arjun", "customer_id": 11, "grand_total": 2000, "subtotal": 2000,
             "discount_amount": 0, "item_cost": 1800, "collected": 2000},
        ]

    def test_metrics(self):
        rankings = rank_representatives(self.rows())
        meera = next(m for m in rankings["most_sales"] if m["id"] == 1)
        assert meera["total_orders"] == 2
        assert meera["unique_customers"] == 1
        assert meera["total_revenue"] == 1500
        assert meera["total_profit"] == 600
        assert meera["profit_margin"] == 40
        assert meera["average_order_value"] == 750
        assert meera["discount_rate"] == 6.25
        assert meera["total_pending"] == 500
        assert meera["collection_rate"] == 66.67

    def test_orderings(self):
        rankings = rank_representatives(self.rows())
        assert [m["name"] for m in rankings["most_profitable"]] == ["Meera", "Arjun"]
        assert [m["name"] for m in rankings["highest_revenue"]] == ["Arjun", "Meera"]
        assert [m["name"] for m in rankings["discount_control"]] == ["Arjun", "Meera"]
        assert [m["name"] for m in rankings["best_collection"]] == ["Arjun", "Meera"]

    def test_no_orders(self):
        assert rank_representatives([])["most_sales"] == []
