"""Expenses ORM models: ExpenseClaim.

Approved claims are reimbursed through payroll; ``payroll_id`` links a
claim to the payroll that paid it out.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_backend.database import Base


class ExpenseClaim(Base):
    """Employee expense claim / reimbursement request."""

    __tablename__ = "expense_claims"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("employees.id"),
        nullable=False,
    )
    claim_number: Mapped[Optional[str]] = mapped_column(sa.String(50))
    title: Mapped[str] = mapped_column(sa.String(500), nullable=False)
    amount: Mapped[Decimal] = mapped_column(
        sa.Numeric(12, 2), nullable=False, default=0,
    )
    # pending | approved | rejected
    approval_status: Mapped[str] = mapped_column(
        sa.String(50), nullable=False, default="pending",
    )
    # None until reimbursed, then "paid"
    payment_status: Mapped[Optional[str]] = mapped_column(sa.String(50))
    submitted_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=True,
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True),
    )
    payroll_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("payrolls.id"), nullable=True,
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True),
    )
    remarks: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    employee = relationship(
        "Employee", foreign_keys=[employee_id], lazy="joined",
    )

    def __repr__(self) -> str:
        return f"<ExpenseClaim #{self.claim_number} '{self.title[:30]}' ₹{self.amount}>"
