"""Attendance aggregation for payroll — per-employee period summaries."""

from __future__ import annotations

import logging
import uuid
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_backend.common.constants import AttendanceStatus, LeaveStatus
from payroll_backend.common.exceptions import UpstreamUnavailableException
from payroll_backend.attendance.models import AttendanceRecord
from payroll_backend.leave.models import LeaveRequest
from payroll_backend.payroll.attendance_pay import AttendanceSummary

logger = logging.getLogger(__name__)

_PRESENT_STATUSES = {
    AttendanceStatus.present,
    AttendanceStatus.work_from_home,
    AttendanceStatus.on_duty,
}


def working_days_between(start: date, end: date) -> int:
    """Count Monday–Friday days in ``[start, end]``."""
    if end < start:
        return 0
    days = 0
    current = start
    while current <= end:
        if current.weekday() < 5:
            days += 1
        current += timedelta(days=1)
    return days


class AttendanceService:
    """Read-only view of attendance and approved leave for payroll."""

    @staticmethod
    async def has_records(
        db: AsyncSession,
        start: date,
        end: date,
    ) -> bool:
        count = (
            await db.execute(
                select(func.count())
                .select_from(AttendanceRecord)
                .where(AttendanceRecord.date >= start, AttendanceRecord.date <= end)
            )
        ).scalar_one()
        return count > 0

    @staticmethod
    async def get_summary(
        db: AsyncSession,
        employee_id: uuid.UUID,
        start: date,
        end: date,
        *,
        partial_period: bool = False,
    ) -> AttendanceSummary:
        """Aggregate attendance rows for one employee over ``[start, end]``.

        On-leave days count as unpaid when an approved leave request of an
        unpaid leave type covers the day; otherwise they are paid leave.

        Raises:
            UpstreamUnavailableException: no attendance rows exist for the period.
        """
        records = (
            await db.execute(
                select(AttendanceRecord).where(
                    AttendanceRecord.employee_id == employee_id,
                    AttendanceRecord.date >= start,
                    AttendanceRecord.date <= end,
                )
            )
        ).scalars().all()

        if not records:
            raise UpstreamUnavailableException(
                "attendance",
                f"No attendance records for employee '{employee_id}' "
                f"between {start.isoformat()} and {end.isoformat()}.",
            )

        unpaid_leaves = (
            await db.execute(
                select(LeaveRequest).where(
                    LeaveRequest.employee_id == employee_id,
                    LeaveRequest.status == LeaveStatus.approved,
                    LeaveRequest.start_date <= end,
                    LeaveRequest.end_date >= start,
                )
            )
        ).unique().scalars().all()
        unpaid_leaves = [lr for lr in unpaid_leaves if not lr.leave_type.is_paid]

        present = half = absent = paid_leave = unpaid_leave = holiday = 0
        overtime_minutes = 0
        for record in records:
            status = AttendanceStatus(record.status)
            if status in _PRESENT_STATUSES:
                present += 1
            elif status is AttendanceStatus.half_day:
                half += 1
            elif status is AttendanceStatus.absent:
                absent += 1
            elif status is AttendanceStatus.on_leave:
                if any(lr.covers(record.date) for lr in unpaid_leaves):
                    unpaid_leave += 1
                else:
                    paid_leave += 1
            elif status is AttendanceStatus.holiday:
                holiday += 1
            overtime_minutes += record.overtime_minutes or 0

        summary = AttendanceSummary(
            total_working_days=Decimal(working_days_between(start, end)),
            present_days=Decimal(present),
            half_days=Decimal(half),
            absent_days=Decimal(absent),
            paid_leave_days=Decimal(paid_leave),
            unpaid_leave_days=Decimal(unpaid_leave),
            holiday_days=Decimal(holiday),
            overtime_hours=Decimal(overtime_minutes) / Decimal(60),
            partial_period=partial_period,
        )
        logger.debug("Attendance summary for %s %s..%s: %s", employee_id, start, end, summary)
        return summary
