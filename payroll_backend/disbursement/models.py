"""Disbursement ORM models: SalaryDisbursement (one per payroll), DisbursementStatusHistory.

``version_id`` is SQLAlchemy's optimistic lock counter; every status write
goes through a ``SELECT … FOR UPDATE`` load as well.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_backend.common.constants import PaymentMethod, TransactionStatus
from payroll_backend.database import Base


class SalaryDisbursement(Base):
    """Salary transfer of one payroll to the employee's bank account."""

    __tablename__ = "salary_disbursements"
    __table_args__ = (
        sa.UniqueConstraint("payroll_id", name="uq_disbursement_payroll"),
        sa.Index("ix_disbursements_batch", "batch_id"),
        sa.Index("ix_disbursements_status_retry", "status", "next_retry_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    disbursement_code: Mapped[str] = mapped_column(sa.String(50), unique=True, nullable=False)
    batch_id: Mapped[Optional[str]] = mapped_column(sa.String(50))

    payroll_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("payrolls.id"), nullable=False,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False,
    )
    month: Mapped[int] = mapped_column(sa.SmallInteger, nullable=False)
    year: Mapped[int] = mapped_column(sa.SmallInteger, nullable=False)
    pay_period_start: Mapped[Optional[date]] = mapped_column(sa.Date)
    pay_period_end: Mapped[Optional[date]] = mapped_column(sa.Date)

    # ── Payment details ─────────────────────────────────────────────
    gross_amount: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_deductions: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2), nullable=False, default=Decimal("0"))
    net_amount: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2), nullable=False, default=Decimal("0"))
    # Snapshot at batch creation:
    # {account_number, ifsc_code, bank_name, branch_name, account_holder_name, account_type}
    bank_account: Mapped[dict] = mapped_column(JSONB, default=dict)
    payment_method: Mapped[str] = mapped_column(
        sa.String(20), nullable=False, default=PaymentMethod.neft.value,
    )
    gateway_provider: Mapped[str] = mapped_column(sa.String(30), nullable=False, default="manual")
    payout_id: Mapped[Optional[str]] = mapped_column(sa.String(100))

    # ── Transaction ─────────────────────────────────────────────────
    status: Mapped[str] = mapped_column(
        sa.String(20), nullable=False, default=TransactionStatus.pending.value,
    )
    transaction_id: Mapped[Optional[str]] = mapped_column(sa.String(100))
    utr_number: Mapped[Optional[str]] = mapped_column(sa.String(50))
    reference_number: Mapped[Optional[str]] = mapped_column(sa.String(100))
    transaction_date: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    failure_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    failure_code: Mapped[Optional[str]] = mapped_column(sa.String(50))
    gateway_response: Mapped[Optional[dict]] = mapped_column(JSONB)
    retry_count: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=3)
    next_retry_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    last_retry_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    # ── Processing ──────────────────────────────────────────────────
    validated: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    validation_errors: Mapped[list] = mapped_column(JSONB, default=list)
    validated_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    initiated_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    initiated_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    processed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    # {tds, pf, esi, professional_tax}
    compliance: Mapped[dict] = mapped_column(JSONB, default=dict)
    employee_notified: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    notified_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    # ── Reconciliation ──────────────────────────────────────────────
    reconciled: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    reconciled_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    reconciled_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    # {date, amount, reference, matched}
    statement_entry: Mapped[Optional[dict]] = mapped_column(JSONB)
    # {found, amount, reason, resolved, resolved_at, resolved_by}
    discrepancy: Mapped[Optional[dict]] = mapped_column(JSONB)

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
    status_history: Mapped[list[DisbursementStatusHistory]] = relationship(
        back_populates="disbursement",
        order_by="DisbursementStatusHistory.changed_at",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    # ── Helpers ─────────────────────────────────────────────────────

    @property
    def can_retry(self) -> bool:
        return self.status == TransactionStatus.failed.value and self.retry_count < self.max_retries

    @property
    def has_open_discrepancy(self) -> bool:
        return bool(self.discrepancy) and not self.discrepancy.get("resolved", False)

    def __repr__(self) -> str:
        return f"<SalaryDisbursement {self.disbursement_code} status={self.status}>"


class DisbursementStatusHistory(Base):
    """Append-only log of disbursement status changes."""

    __tablename__ = "disbursement_status_history"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    disbursement_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("salary_disbursements.id", ondelete="CASCADE"), nullable=False,
    )
    from_status: Mapped[Optional[str]] = mapped_column(sa.String(20))
    to_status: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    changed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    remarks: Mapped[Optional[str]] = mapped_column(sa.Text)
    changed_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    disbursement: Mapped[SalaryDisbursement] = relationship(back_populates="status_history")
