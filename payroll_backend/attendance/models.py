"""Attendance ORM model read by payroll: AttendanceRecord (one row per employee-day)."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_backend.common.constants import AttendanceStatus
from payroll_backend.database import Base


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"
    __table_args__ = (
        sa.UniqueConstraint("employee_id", "date", name="uq_attendance_emp_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    status: Mapped[AttendanceStatus] = mapped_column(
        sa.Enum(AttendanceStatus, name="attendance_status", create_type=False),
        nullable=False,
        default="absent",
    )
    total_work_minutes: Mapped[Optional[int]] = mapped_column(sa.Integer)
    overtime_minutes: Mapped[int] = mapped_column(
        sa.Integer, default=0
    )
    is_regularized: Mapped[bool] = mapped_column(
        sa.Boolean, default=False
    )
    source: Mapped[str] = mapped_column(sa.String(50), default="system")
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    employee: Mapped["payroll_backend.core_hr.models.Employee"] = relationship()
