"""Attendance-to-pay tests — LOP, overtime, pro-rata and the attendance summary
read from attendance records and approved leave.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest

from payroll_backend.attendance.service import AttendanceService, working_days_between
from payroll_backend.common.exceptions import UpstreamUnavailableException
from payroll_backend.leave.models import LeaveRequest, LeaveType
from payroll_backend.payroll.attendance_pay import (
    AttendanceSummary,
    apply_attendance,
    full_attendance,
)
from tests.conftest import seed_attendance


# ── Helpers ─────────────────────────────────────────────────────────


async def _create_leave(db, employee_id, *, start, end, is_paid, code):
    leave_type = LeaveType(id=uuid.uuid4(), code=code, name=f"{code} leave", is_paid=is_paid)
    db.add(leave_type)
    await db.flush()
    request = LeaveRequest(
        id=uuid.uuid4(),
        employee_id=employee_id,
        leave_type_id=leave_type.id,
        start_date=start,
        end_date=end,
        total_days=Decimal((end - start).days + 1),
        status="approved",
    )
    db.add(request)
    await db.flush()
    return request


# ═════════════════════════════════════════════════════════════════════
# 1. PURE ADJUSTMENTS
# ═════════════════════════════════════════════════════════════════════


class TestApplyAttendance:

    def test_summary_derived_days(self):
        summary = AttendanceSummary(
            total_working_days=Decimal("21"),
            present_days=Decimal("16"),
            half_days=Decimal("1"),
            absent_days=Decimal("1"),
            unpaid_leave_days=Decimal("1"),
        )
        assert summary.actual_working_days == Decimal("16.5")
        assert summary.lop_days == Decimal("2")

    def test_lop_uses_daily_rate(self):
        summary = AttendanceSummary(
            total_working_days=Decimal("21"),
            present_days=Decimal("19"),
            absent_days=Decimal("2"),
        )
        adj = apply_attendance(summary, Decimal("21000"), working_days_in_period=21)
        assert adj.daily_rate == Decimal("1000")
        assert adj.lop_days == Decimal("2")
        assert adj.lop_amount == Decimal("2000")
        assert adj.basic == Decimal("21000")

    def test_lop_disabled(self):
        summary = AttendanceSummary(total_working_days=Decimal("21"), absent_days=Decimal("2"))
        adj = apply_attendance(summary, Decimal("21000"), working_days_in_period=21, lop_enabled=False)
        assert adj.lop_days == Decimal("0")
        assert adj.lop_amount == Decimal("0")

    def test_overtime_at_one_and_a_half(self):
        summary = full_attendance(21, Decimal("4"))
        adj = apply_attendance(summary, Decimal("21000"), working_days_in_period=21)
        assert adj.overtime_rate == Decimal("187.5")
        assert adj.overtime_amount == Decimal("750")

    def test_pro_rata_for_partial_period(self):
        summary = AttendanceSummary(
            total_working_days=Decimal("21"),
            present_days=Decimal("10"),
            half_days=Decimal("1"),
            partial_period=True,
        )
        adj = apply_attendance(
            summary, Decimal("21000"), Decimal("8400"), Decimal("3000"), 21,
        )
        assert adj.pro_rata_ratio == Decimal("0.5")
        assert adj.basic == Decimal("10500")
        assert adj.hra == Decimal("4200")
        assert adj.special_allowance == Decimal("1500")

    def test_pro_rata_skipped_for_full_period(self):
        summary = AttendanceSummary(total_working_days=Decimal("21"), present_days=Decimal("10"))
        adj = apply_attendance(summary, Decimal("21000"), Decimal("8400"), working_days_in_period=21)
        assert adj.pro_rata_ratio == Decimal("1")
        assert adj.basic == Decimal("21000")

    def test_pro_rata_disabled(self):
        summary = AttendanceSummary(
            total_working_days=Decimal("21"), present_days=Decimal("10"), partial_period=True,
        )
        adj = apply_attendance(
            summary, Decimal("21000"), working_days_in_period=21, pro_rata_enabled=False,
        )
        assert adj.basic == Decimal("21000")

    def test_to_dict(self):
        data = full_attendance(21).to_dict()
        assert data["present_days"] == 21.0
        assert data["actual_working_days"] == 21.0
        assert data["lop_days"] == 0.0


@pytest.mark.parametrize(
    "start, end, expected",
    [
        (date(2025, 3, 1), date(2025, 3, 31), 21),
        (date(2024, 2, 1), date(2024, 2, 29), 21),
        (date(2025, 3, 1), date(2025, 3, 2), 0),
        (date(2025, 3, 10), date(2025, 3, 1), 0),
    ],
)
def test_working_days_between(start, end, expected):
    assert working_days_between(start, end) == expected


# ═════════════════════════════════════════════════════════════════════
# 2. ATTENDANCE SUMMARY — Service Layer
# ═════════════════════════════════════════════════════════════════════


async def test_summary_counts_statuses_and_unpaid_leave(db, test_employee):
    emp_id = test_employee["id"]
    await seed_attendance(
        db, emp_id, 3, 2025,
        statuses={3: "absent", 4: "half_day", 5: "on_leave", 6: "on_leave", 7: "holiday", 12: "work_from_home"},
        overtime_minutes={10: 90, 11: 30},
    )
    await _create_leave(db, emp_id, start=date(2025, 3, 5), end=date(2025, 3, 5), is_paid=False, code="LWP")
    await _create_leave(db, emp_id, start=date(2025, 3, 6), end=date(2025, 3, 6), is_paid=True, code="CL")

    summary = await AttendanceService.get_summary(db, emp_id, date(2025, 3, 1), date(2025, 3, 31))

    assert summary.total_working_days == Decimal("21")
    assert summary.present_days == Decimal("16")
    assert summary.half_days == Decimal("1")
    assert summary.absent_days == Decimal("1")
    assert summary.unpaid_leave_days == Decimal("1")
    assert summary.paid_leave_days == Decimal("1")
    assert summary.holiday_days == Decimal("1")
    assert summary.overtime_hours == Decimal("2")
    assert summary.lop_days == Decimal("2")


async def test_summary_without_records_is_upstream_unavailable(db, test_employee):
    with pytest.raises(UpstreamUnavailableException):
        await AttendanceService.get_summary(
            db, test_employee["id"], date(2025, 3, 1), date(2025, 3, 31),
        )


async def test_has_records(db, test_employee):
    assert await AttendanceService.has_records(db, date(2025, 3, 1), date(2025, 3, 31)) is False
    await seed_attendance(db, test_employee["id"], 3, 2025)
    assert await AttendanceService.has_records(db, date(2025, 3, 1), date(2025, 3, 31)) is True
    assert await AttendanceService.has_records(db, date(2025, 4, 1), date(2025, 4, 30)) is False
