"""Core HR ORM models: Location, Department, Employee.

The payroll core reads these as master data. Only the columns payroll
needs are mapped: org placement (department / location for PT state),
employment dates for pro-rata, statutory identifiers and bank details.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_backend.common.constants import EmploymentStatus
from payroll_backend.database import Base

if TYPE_CHECKING:
    from payroll_backend.auth.models import UserSession
    from payroll_backend.leave.models import LeaveRequest
    from payroll_backend.notifications.models import Notification


# ═════════════════════════════════════════════════════════════════════
# Location
# ═════════════════════════════════════════════════════════════════════


class Location(Base):
    """Office location / work-site (its state drives professional tax)."""

    __tablename__ = "locations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(sa.String(100), unique=True, nullable=False)
    address: Mapped[Optional[str]] = mapped_column(sa.Text)
    city: Mapped[Optional[str]] = mapped_column(sa.String(100))
    state: Mapped[Optional[str]] = mapped_column(sa.String(100))
    pincode: Mapped[Optional[str]] = mapped_column(sa.String(10))
    country: Mapped[str] = mapped_column(sa.String(100), server_default="India")
    timezone: Mapped[str] = mapped_column(
        sa.String(50), server_default="Asia/Kolkata",
    )
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, server_default=sa.text("TRUE"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    # ── Relationships ───────────────────────────────────────────────
    departments: Mapped[list[Department]] = relationship(
        back_populates="location", foreign_keys="Department.location_id",
    )
    employees: Mapped[list[Employee]] = relationship(
        back_populates="location", foreign_keys="Employee.location_id",
    )

    @property
    def pt_state(self) -> Optional[str]:
        """State name normalised to a professional-tax table key."""
        if not self.state:
            return None
        return self.state.strip().lower().replace(" ", "_")

    def __repr__(self) -> str:
        return f"<Location {self.name!r}>"


# ═════════════════════════════════════════════════════════════════════
# Department
# ═════════════════════════════════════════════════════════════════════


class Department(Base):
    """Organisational department — used for payroll cost breakdowns."""

    __tablename__ = "departments"
    __table_args__ = (
        sa.UniqueConstraint("name", "location_id", name="uq_dept_name_location"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(sa.String(150), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(sa.String(20), unique=True)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    location_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("locations.id"),
    )
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, server_default=sa.text("TRUE"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    # ── Relationships ───────────────────────────────────────────────
    location: Mapped[Optional[Location]] = relationship(
        back_populates="departments", foreign_keys=[location_id],
    )
    employees: Mapped[list[Employee]] = relationship(
        back_populates="department", foreign_keys="Employee.department_id",
    )

    def __repr__(self) -> str:
        return f"<Department {self.name!r} ({self.code})>"


# ═════════════════════════════════════════════════════════════════════
# Employee
# ═════════════════════════════════════════════════════════════════════


class Employee(Base):
    """Employee master record as seen by payroll."""

    __tablename__ = "employees"

    # ── Primary key ─────────────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # ── Identifiers ─────────────────────────────────────────────────
    employee_code: Mapped[str] = mapped_column(
        sa.String(20), unique=True, nullable=False,
    )

    # ── Name / Contact ──────────────────────────────────────────────
    first_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    middle_name: Mapped[Optional[str]] = mapped_column(sa.String(100))
    last_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(sa.String(255))
    email: Mapped[str] = mapped_column(
        sa.String(255), unique=True, nullable=False,
    )
    phone: Mapped[Optional[str]] = mapped_column(sa.String(20))

    # ── Org placement ───────────────────────────────────────────────
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("departments.id"),
    )
    location_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("locations.id"),
    )
    designation: Mapped[Optional[str]] = mapped_column(sa.String(150))
    reporting_manager_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )

    # ── Employment lifecycle ────────────────────────────────────────
    employment_status: Mapped[EmploymentStatus] = mapped_column(
        sa.Enum(EmploymentStatus, name="employment_status", create_type=False),
        server_default="active",
    )
    date_of_joining: Mapped[date] = mapped_column(sa.Date, nullable=False)
    last_working_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    date_of_exit: Mapped[Optional[date]] = mapped_column(sa.Date)

    # ── Statutory identifiers / payout ──────────────────────────────
    pan_number: Mapped[Optional[str]] = mapped_column(sa.String(10))
    uan_number: Mapped[Optional[str]] = mapped_column(sa.String(12))
    esi_number: Mapped[Optional[str]] = mapped_column(sa.String(17))
    # {"account_number", "ifsc_code", "bank_name", "branch_name",
    #  "account_holder_name", "account_type"}
    bank_details: Mapped[Optional[dict]] = mapped_column(JSONB)

    # ── Status / Timestamps ─────────────────────────────────────────
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, server_default=sa.text("TRUE"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    # ── Relationships ───────────────────────────────────────────────

    department: Mapped[Optional[Department]] = relationship(
        back_populates="employees", foreign_keys=[department_id],
    )
    location: Mapped[Optional[Location]] = relationship(
        back_populates="employees", foreign_keys=[location_id],
    )
    reporting_manager: Mapped[Optional[Employee]] = relationship(
        remote_side=[id], foreign_keys=[reporting_manager_id],
    )

    # Auth
    sessions: Mapped[list["UserSession"]] = relationship(
        back_populates="employee",
    )

    # Leave
    leave_requests: Mapped[list["LeaveRequest"]] = relationship(
        back_populates="employee",
        foreign_keys="LeaveRequest.employee_id",
    )

    # Notifications
    notifications: Mapped[list["Notification"]] = relationship(
        back_populates="recipient",
    )

    # ── Helpers ─────────────────────────────────────────────────────

    @property
    def full_name(self) -> str:
        """Build display name from name parts."""
        parts = [self.first_name, self.middle_name, self.last_name]
        return " ".join(p for p in parts if p)

    def is_payable_in(self, period_start: date, period_end: date) -> bool:
        """True if any day of the period falls inside the employment window."""
        if self.date_of_joining and self.date_of_joining > period_end:
            return False
        exit_date = self.date_of_exit or self.last_working_date
        if exit_date and exit_date < period_start:
            return False
        return True

    def is_partial_period(self, period_start: date, period_end: date) -> bool:
        """Joined or exited within the period."""
        exit_date = self.date_of_exit or self.last_working_date
        joined_mid = self.date_of_joining is not None and period_start < self.date_of_joining <= period_end
        exited_mid = exit_date is not None and period_start <= exit_date < period_end
        return joined_mid or exited_mid

    def __repr__(self) -> str:
        return (
            f"<Employee {self.employee_code} "
            f"{self.first_name} {self.last_name}>"
        )
