"""Payroll cycle ORM models: PayrollCycle, PayrollProcessingError, CycleApprovalStep."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_backend.common.constants import (
    CYCLE_STAGES,
    ApprovalStepStatus,
    CycleStatus,
)
from payroll_backend.database import Base

# stage → column holding the time the cycle entered it
STAGE_TIMESTAMPS: dict[CycleStatus, str] = {
    CycleStatus.attendance_locked: "attendance_locked_at",
    CycleStatus.calculated: "calculated_at",
    CycleStatus.reviewed: "reviewed_at",
    CycleStatus.approved: "approved_at",
    CycleStatus.processed: "processed_at",
    CycleStatus.disbursed: "disbursed_at",
    CycleStatus.completed: "completed_at",
}


class PayrollCycle(Base):
    """One monthly payroll run across the organisation."""

    __tablename__ = "payroll_cycles"
    __table_args__ = (
        sa.UniqueConstraint("month", "year", name="uq_payroll_cycle_period"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    cycle_code: Mapped[str] = mapped_column(sa.String(20), unique=True, nullable=False)
    month: Mapped[int] = mapped_column(sa.SmallInteger, nullable=False)
    year: Mapped[int] = mapped_column(sa.SmallInteger, nullable=False)
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)

    status: Mapped[str] = mapped_column(
        sa.String(30), nullable=False, default=CycleStatus.draft.value,
    )

    # ── Stage timestamps ────────────────────────────────────────────
    attendance_locked_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    calculated_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    approved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    processed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    disbursed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    # {total_employees, active_employees, processed_employees, total_gross,
    #  total_deductions, total_net, statutory: {...}, departments: [...]}
    summary: Mapped[dict] = mapped_column(JSONB, default=dict)
    processing_rules: Mapped[dict] = mapped_column(JSONB, default=dict)
    batch_id: Mapped[Optional[str]] = mapped_column(sa.String(50))

    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    processing_errors: Mapped[list[PayrollProcessingError]] = relationship(
        back_populates="cycle",
        order_by="PayrollProcessingError.created_at",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    approval_steps: Mapped[list[CycleApprovalStep]] = relationship(
        back_populates="cycle",
        order_by="CycleApprovalStep.level",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    # ── Helpers ─────────────────────────────────────────────────────

    @property
    def current_step(self) -> int:
        """1-based position of the current stage (1..8)."""
        return CYCLE_STAGES.index(CycleStatus(self.status)) + 1

    @property
    def total_steps(self) -> int:
        return len(CYCLE_STAGES)

    @property
    def unresolved_errors(self) -> list[PayrollProcessingError]:
        return [e for e in self.processing_errors if not e.is_resolved]

    def can_process(self) -> bool:
        return self.status == CycleStatus.approved.value and not self.unresolved_errors

    def __repr__(self) -> str:
        return f"<PayrollCycle {self.cycle_code} status={self.status}>"


class PayrollProcessingError(Base):
    """A per-employee failure recorded while processing a cycle."""

    __tablename__ = "payroll_processing_errors"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    cycle_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("payroll_cycles.id", ondelete="CASCADE"), nullable=False,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False,
    )
    error_type: Mapped[str] = mapped_column(sa.String(30), nullable=False)
    message: Mapped[str] = mapped_column(sa.Text, nullable=False)
    is_resolved: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    resolved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    cycle: Mapped[PayrollCycle] = relationship(back_populates="processing_errors")


class CycleApprovalStep(Base):
    __tablename__ = "payroll_cycle_approval_steps"
    __table_args__ = (
        sa.UniqueConstraint("cycle_id", "level", name="uq_cycle_approval_level"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    cycle_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("payroll_cycles.id", ondelete="CASCADE"), nullable=False,
    )
    level: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    approver_role: Mapped[str] = mapped_column(sa.String(30), nullable=False)
    approver_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    status: Mapped[str] = mapped_column(
        sa.String(20), nullable=False, default=ApprovalStepStatus.pending.value,
    )
    action_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    remarks: Mapped[Optional[str]] = mapped_column(sa.Text)

    cycle: Mapped[PayrollCycle] = relationship(back_populates="approval_steps")
