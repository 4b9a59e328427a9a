"""Payroll ORM models: Payroll (one per employee per month), PayrollApprovalStep.

Breakdowns are JSONB blobs of whole-rupee numbers; the scalar totals
(``gross_pay``, ``total_deductions``, ``net_pay``) are written together
with them on every calculation. ``version_id`` is SQLAlchemy's optimistic
lock counter.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_backend.common.constants import ApprovalStepStatus, PayrollStatus
from payroll_backend.common.money import ZERO, to_decimal
from payroll_backend.database import Base
from payroll_backend.payroll.aggregator import earnings_total


class Payroll(Base):
    """Monthly payroll of one employee."""

    __tablename__ = "payrolls"
    __table_args__ = (
        sa.UniqueConstraint("employee_id", "month", "year", name="uq_payroll_employee_period"),
        sa.Index("ix_payrolls_period_status", "year", "month", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    payroll_code: Mapped[str] = mapped_column(sa.String(50), unique=True, nullable=False)
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False,
    )
    month: Mapped[int] = mapped_column(sa.SmallInteger, nullable=False)
    year: Mapped[int] = mapped_column(sa.SmallInteger, nullable=False)
    pay_period_start: Mapped[date] = mapped_column(sa.Date, nullable=False)
    pay_period_end: Mapped[date] = mapped_column(sa.Date, nullable=False)
    working_days: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    actual_working_days: Mapped[Decimal] = mapped_column(sa.Numeric(5, 1), default=Decimal("0"))

    structure_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("salary_structures.id"),
    )
    structure_snapshot: Mapped[Optional[dict]] = mapped_column(JSONB)

    # ── Breakdowns ──────────────────────────────────────────────────
    earnings: Mapped[dict] = mapped_column(JSONB, default=dict)
    statutory_deductions: Mapped[dict] = mapped_column(JSONB, default=dict)
    other_deductions: Mapped[dict] = mapped_column(JSONB, default=dict)
    # manual inputs: bonus, incentives, arrears, loan, advance, disciplinary, other
    adjustments: Mapped[dict] = mapped_column(JSONB, default=dict)
    # ProcessingRules used for the last calculation
    processing_rules: Mapped[dict] = mapped_column(JSONB, default=dict)
    attendance_data: Mapped[dict] = mapped_column(JSONB, default=dict)
    # {pf_applicable, esi_applicable, pt_state, tax_regime}
    compliance: Mapped[dict] = mapped_column(JSONB, default=dict)

    gross_pay: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_deductions: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2), nullable=False, default=Decimal("0"))
    net_pay: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2), nullable=False, default=Decimal("0"))

    # ── Payment sub-state ───────────────────────────────────────────
    payment_status: Mapped[Optional[str]] = mapped_column(sa.String(30))
    transaction_id: Mapped[Optional[str]] = mapped_column(sa.String(100))
    utr_number: Mapped[Optional[str]] = mapped_column(sa.String(50))
    payment_date: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    # ── Payslip sub-state ───────────────────────────────────────────
    payslip_path: Mapped[Optional[str]] = mapped_column(sa.String(500))
    payslip_generated_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    # ── Lifecycle ───────────────────────────────────────────────────
    status: Mapped[str] = mapped_column(
        sa.String(30), nullable=False, default=PayrollStatus.draft.value,
    )
    calculated_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    processed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    paid_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    cancelled_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    cancellation_reason: Mapped[Optional[str]] = mapped_column(sa.Text)

    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc),
    )
    version_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    # Relationships
    employee = relationship("Employee", foreign_keys=[employee_id], lazy="joined")
    approval_steps: Mapped[list[PayrollApprovalStep]] = relationship(
        back_populates="payroll",
        order_by="PayrollApprovalStep.level",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    # ── Helpers ─────────────────────────────────────────────────────

    @property
    def period_label(self) -> str:
        return f"{self.year}-{self.month:02d}"

    def step(self, level: int) -> Optional[PayrollApprovalStep]:
        for step in self.approval_steps:
            if step.level == level:
                return step
        return None

    @property
    def workflow_complete(self) -> bool:
        return all(s.status == ApprovalStepStatus.approved.value for s in self.approval_steps)

    def totals_consistent(self) -> bool:
        """gross = Σ earnings, deductions = statutory + other, net = gross − deductions."""
        gross = to_decimal(self.gross_pay)
        deductions = to_decimal(self.total_deductions)
        statutory = to_decimal((self.statutory_deductions or {}).get("total", ZERO))
        other = to_decimal((self.other_deductions or {}).get("total", ZERO))
        return (
            earnings_total(self.earnings or {}) == gross
            and statutory + other == deductions
            and gross - deductions == to_decimal(self.net_pay)
        )

    def __repr__(self) -> str:
        return f"<Payroll {self.payroll_code} status={self.status} net={self.net_pay}>"


class PayrollApprovalStep(Base):
    """One level of a payroll's sequential approval workflow."""

    __tablename__ = "payroll_approval_steps"
    __table_args__ = (
        sa.UniqueConstraint("payroll_id", "level", name="uq_payroll_approval_level"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    payroll_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("payrolls.id", ondelete="CASCADE"), nullable=False,
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
    comments: Mapped[Optional[str]] = mapped_column(sa.Text)

    payroll: Mapped[Payroll] = relationship(back_populates="approval_steps")
