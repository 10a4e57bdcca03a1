"""Unit tests for leave and payroll arithmetic."""

from datetime import date

from erp_api.services import hr


def test_working_days_skip_sundays():
    # January 2026 has four Sundays
    assert hr.working_days(date(2026, 1, 1), date(2026, 1, 31)) == 27
    assert hr.working_days(date(2026, 1, 4), date(2026, 1, 4)) == 0


def test_present_days_credit_half_days():
    records = [{"status": "present"}, {"status": "late"}, {"status": "half_day"}, {"status": "absent"}]
    assert hr.present_days(records) == 2.5


class TestSalary:
    def test_prorated_basic(self):
        assert hr.prorated_basic(27000, 20.5, 27) == 20500

    def test_prorated_basic_capped_at_full_month(self):
        assert hr.prorated_basic(27000, 30, 27) == 27000

    def test_prorated_basic_without_working_days(self):
        assert hr.prorated_basic(27000, 0, 0) == 0

    def test_net_salary(self):
        assert hr.net_salary(20000, 1500.5, 2500.25) == 19000.25


class TestLeaveSpans:
    def test_inclusive_days(self):
        assert hr.leave_days(date(2026, 2, 10), date(2026, 2, 10)) == 1
        assert hr.leave_days(date(2026, 2, 10), date(2026, 2, 12)) == 3

    def test_overlap_on_shared_day(self):
        assert hr.overlaps(date(2026, 2, 10), date(2026, 2, 12), date(2026, 2, 12), date(2026, 2, 15))

    def test_adjacent_ranges_do_not_overlap(self):
        assert not hr.overlaps(date(2026, 2, 10), date(2026, 2, 12), date(2026, 2, 13), date(2026, 2, 15))

    def test_containment(self):
        assert hr.overlaps(date(2026, 2, 1), date(2026, 2, 28), date(2026, 2, 10), date(2026, 2, 11))
