"""Unit tests for receivable and payable aging."""

from datetime import date, datetime

import pytest

from erp_api.services.aging import age_payables, age_receivables, bucket_for

AS_OF = date(2026, 3, 31)


@pytest.mark.parametrize(
    "days, bucket",
    [
        (-5, "current"),
        (0, "current"),
        (1, "days_1_30"),
        (30, "days_1_30"),
        (31, "days_31_60"),
        (60, "days_31_60"),
        (61, "days_61_90"),
        (90, "days_61_90"),
        (91, "days_90_plus"),
    ],
)
def test_bucket_boundaries(days, bucket):
    assert bucket_for(days) == bucket


class TestReceivables:
    def orders(self):
        return [
            {"id": 1, "customer_id": 10, "customer_name": "Asha", "customer_phone": "98450",
             "grand_total": 1000, "created_at": datetime(2026, 3, 31, 11, 0)},
            {"id": 2, "customer_id": 10, "customer_name": "Asha", "customer_phone": "98450",
             "grand_total": 500, "created_at": datetime(2026, 2, 15, 9, 0)},
            {"id": 3, "customer_id": 20, "customer_name": "Ravi", "customer_email": "ravi@example.com",
             "grand_total": 300, "created_at": datetime(2025, 12, 1, 9, 0)},
            {"id": 4, "customer_id": 20, "customer_name": "Ravi",
             "grand_total": 200, "created_at": datetime(2025, 11, 1, 9, 0)},
        ]

    def invoices(self):
        return [
            {"sales_order_id": 1, "paid_amount": 400, "waived_amount": 0},
            {"sales_order_id": 4, "paid_amount": 150, "waived_amount": 50},
        ]

    def test_summary_buckets(self):
        report = age_receivables(self.orders(), self.invoices(), AS_OF)
        assert report["summary"] == {
            "current": 600,
            "days_1_30": 0,
            "days_31_60": 500,
            "days_61_90": 0,
            "days_90_plus": 300,
            "total": 1400,
        }

    def test_settled_orders_excluded(self):
        report = age_receivables(self.orders(), self.invoices(), AS_OF)
        ravi = next(d for d in report["details"] if d["id"] == 20)
        assert ravi["total_due"] == 300
        assert ravi["document_total"] == 300

    def test_details_sorted_by_total_due(self):
        report = age_receivables(self.orders(), self.invoices(), AS_OF)
        assert [d["name"] for d in report["details"]] == ["Asha", "Ravi"]
        assert report["details"][0]["contact"] == "98450"
        assert report["details"][1]["contact"] == "ravi@example.com"

    def test_oldest_document(self):
        report = age_receivables(self.orders(), self.invoices(), AS_OF)
        asha = report["details"][0]
        assert asha["oldest_date"] == "2026-02-15"
        assert asha["oldest_days"] == 44

    def test_empty(self):
        report = age_receivables([], [], AS_OF)
        assert report["summary"]["total"] == 0
        assert report["details"] == []


class TestPayables:
    def test_payment_history_counts_when_bill_not_updated(self):
        bills = [
            {"id": 1, "supplier_id": 5, "supplier_name": "Textiles Co", "total_amount": 1000,
             "paid_amount": 0, "bill_date": date(2026, 3, 1)},
            {"id": 2, "supplier_id": 5, "supplier_name": "Textiles Co", "total_amount": 500,
             "paid_amount": 500, "bill_date": date(2026, 1, 1)},
        ]
        payments = [{"vendor_bill_id": 1, "amount": 300}]
        report = age_payables(bills, payments, AS_OF)

        assert report["summary"]["days_1_30"] == 700
        assert report["summary"]["total"] == 700
        vendor = report["details"][0]
        assert vendor["paid_amount"] == 300
        assert vendor["contact"] == "N/A"

    def test_bill_paid_amount_wins_when_larger(self):
        bills = [{"id": 1, "supplier_id": 5, "total_amount": 1000, "paid_amount": 600, "bill_date": "2026-03-31"}]
        report = age_payables(bills, [{"vendor_bill_id": 1, "amount": 100}], AS_OF)
        assert report["summary"]["current"] == 400
        assert report["details"][0]["name"] == "Unknown Vendor"
