"""Unit tests for attendance processing."""

from datetime import datetime

from erp_api.core.models import AttendanceStatus, PunchType
from erp_api.services.attendance import classify, process_date, summarize_day, summarize_punches


class TestClassify:
    def test_on_time_full_day(self):
        assert classify(datetime(2026, 1, 15, 9, 0), 8.5) == AttendanceStatus.PRESENT

    def test_late_after_cutoff(self):
        assert classify(datetime(2026, 1, 15, 9, 31), 8.0) == AttendanceStatus.LATE

    def test_seconds_past_cutoff_not_late(self):
        assert classify(datetime(2026, 1, 15, 9, 30, 45), 8.0) == AttendanceStatus.PRESENT

    def test_half_day_overrides_late(self):
        assert classify(datetime(2026, 1, 15, 10, 0), 2.0) == AttendanceStatus.HALF_DAY

    def test_zero_hours_is_not_half_day(self):
        assert classify(datetime(2026, 1, 15, 9, 0), 0.0) == AttendanceStatus.PRESENT


class TestSummarizeDay:
    def test_first_in_last_out(self, make_punch, work_date):
        punches = [
            make_punch(1, "18:00", PunchType.OUT),
            make_punch(1, "09:10"),
            make_punch(1, "13:00", PunchType.OUT),
            make_punch(1, "14:00"),
        ]
        summary = summarize_day(1, work_date, punches)
        assert summary.check_in == datetime(2026, 1, 15, 9, 10)
        assert summary.check_out == datetime(2026, 1, 15, 18, 0)
        assert summary.total_hours == 8.83
        assert summary.status == AttendanceStatus.PRESENT
        assert sorted(summary.punch_ids) == sorted(p.id for p in punches)

    def test_all_in_punches_use_first_and_last(self, make_punch, work_date):
        summary = summarize_day(5, work_date, [make_punch(5, "17:30"), make_punch(5, "09:00")])
        assert summary.check_in == datetime(2026, 1, 15, 9, 0)
        assert summary.check_out == datetime(2026, 1, 15, 17, 30)
        assert summary.total_hours == 8.5

    def test_single_in_has_no_check_out(self, make_punch, work_date):
        summary = summarize_day(2, work_date, [make_punch(2, "09:45")])
        assert summary.check_out is None
        assert summary.total_hours == 0
        assert summary.status == AttendanceStatus.LATE

    def test_no_in_punch_skipped(self, make_punch, work_date):
        assert summarize_day(4, work_date, [make_punch(4, "18:00", PunchType.OUT)]) is None

    def test_break_punches_ignored_for_pairing(self, make_punch, work_date):
        summary = summarize_day(
            3, work_date,
            [make_punch(3, "10:00"), make_punch(3, "11:00", PunchType.BREAK), make_punch(3, "12:00", PunchType.OUT)],
        )
        assert summary.total_hours == 2.0
        assert summary.status == AttendanceStatus.HALF_DAY


def test_summarize_punches_groups_by_employee(make_punch, work_date):
    punches = [
        make_punch(1, "09:00"), make_punch(1, "18:00", PunchType.OUT),
        make_punch(2, "09:45"), make_punch(2, "17:00", PunchType.OUT),
        make_punch(4, "18:00", PunchType.OUT),
    ]
    summaries = {s.employee_id: s for s in summarize_punches(punches, work_date)}
    assert set(summaries) == {1, 2}
    assert summaries[2].status == AttendanceStatus.LATE
    assert summaries[2].total_hours == 7.25


def test_process_date_upserts_and_marks_processed(mock_db, work_date):
    mock_db.conn.execute.return_value.fetchall.return_value = [
        {"id": 11, "employee_id": 1, "device_id": 1, "punch_time": datetime(2026, 1, 15, 9, 5),
         "punch_type": "IN", "verification_method": "face"},
        {"id": 12, "employee_id": 1, "device_id": 1, "punch_time": datetime(2026, 1, 15, 18, 5),
         "punch_type": "OUT", "verification_method": "face"},
    ]

    assert process_date(mock_db, work_date) == 1

    statements = [c[0][0] for c in mock_db.conn.execute.call_args_list]
    assert any("INSERT INTO attendance_records" in sql for sql in statements)
    mark = mock_db.conn.execute.call_args_list[-1]
    assert "processed = TRUE" in mark[0][0]
    assert mark[0][1] == ([11, 12],)
