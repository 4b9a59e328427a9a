"""Attendance → pay adjustments: loss of pay, overtime and pro-rata earnings."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Optional

from payroll_backend.common.money import ZERO, as_number, round_rupee, to_decimal


@dataclass(frozen=True)
class AttendanceSummary:
    """Aggregated attendance for one employee over one pay period."""

    total_working_days: Decimal
    present_days: Decimal = ZERO
    half_days: Decimal = ZERO
    absent_days: Decimal = ZERO
    paid_leave_days: Decimal = ZERO
    unpaid_leave_days: Decimal = ZERO
    holiday_days: Decimal = ZERO
    overtime_hours: Decimal = ZERO
    partial_period: bool = False

    @property
    def actual_working_days(self) -> Decimal:
        return to_decimal(self.present_days) + Decimal("0.5") * to_decimal(self.half_days)

    @property
    def lop_days(self) -> Decimal:
        return to_decimal(self.absent_days) + to_decimal(self.unpaid_leave_days)

    def to_dict(self) -> dict:
        data = {k: (float(v) if isinstance(v, Decimal) else v) for k, v in asdict(self).items()}
        data["actual_working_days"] = float(self.actual_working_days)
        data["lop_days"] = float(self.lop_days)
        return data


@dataclass
class AttendanceAdjustment:
    basic: Decimal
    hra: Decimal
    special_allowance: Decimal
    pro_rata_ratio: Decimal
    lop_days: Decimal
    lop_amount: Decimal
    daily_rate: Decimal
    overtime_hours: Decimal
    overtime_rate: Decimal
    overtime_amount: Decimal

    def to_dict(self) -> dict:
        return {
            "basic": as_number(self.basic),
            "hra": as_number(self.hra),
            "special_allowance": as_number(self.special_allowance),
            "pro_rata_ratio": float(self.pro_rata_ratio),
            "lop_days": float(self.lop_days),
            "lop_amount": as_number(self.lop_amount),
            "daily_rate": float(self.daily_rate),
            "overtime_hours": float(self.overtime_hours),
            "overtime_rate": float(self.overtime_rate),
            "overtime_amount": as_number(self.overtime_amount),
        }


def apply_attendance(
    summary: AttendanceSummary,
    basic_salary,
    hra=ZERO,
    special_allowance=ZERO,
    working_days_in_period=None,
    *,
    lop_enabled: bool = True,
    pro_rata_enabled: bool = True,
    overtime_multiplier=Decimal("1.5"),
    hours_per_day: int = 8,
) -> AttendanceAdjustment:
    """Derive LOP, overtime and pro-rated earnings for one period.

    Precondition: ``working_days_in_period > 0``; callers validate it.
    Rates are kept unrounded and only the final amounts are rounded.
    """
    basic = to_decimal(basic_salary)
    hra = to_decimal(hra)
    special = to_decimal(special_allowance)
    working_days = to_decimal(
        working_days_in_period
        if working_days_in_period is not None
        else summary.total_working_days
    )

    daily_rate = basic / working_days
    hourly_rate = basic / (working_days * hours_per_day)

    ratio = Decimal("1")
    if pro_rata_enabled and summary.partial_period and summary.total_working_days:
        ratio = min(
            summary.actual_working_days / to_decimal(summary.total_working_days),
            Decimal("1"),
        )
        basic = round_rupee(basic * ratio)
        hra = round_rupee(hra * ratio)
        special = round_rupee(special * ratio)

    lop_days = summary.lop_days if lop_enabled else ZERO
    overtime_hours = to_decimal(summary.overtime_hours)
    overtime_rate = hourly_rate * to_decimal(overtime_multiplier)

    return AttendanceAdjustment(
        basic=round_rupee(basic),
        hra=round_rupee(hra),
        special_allowance=round_rupee(special),
        pro_rata_ratio=ratio,
        lop_days=lop_days,
        lop_amount=round_rupee(daily_rate * lop_days),
        daily_rate=daily_rate,
        overtime_hours=overtime_hours,
        overtime_rate=overtime_rate,
        overtime_amount=round_rupee(overtime_rate * overtime_hours),
    )


def full_attendance(working_days: int, overtime_hours: Optional[Decimal] = None) -> AttendanceSummary:
    """Summary for an employee present on every working day."""
    return AttendanceSummary(
        total_working_days=to_decimal(working_days),
        present_days=to_decimal(working_days),
        overtime_hours=to_decimal(overtime_hours),
    )
