"""Tax ORM models: TaxManagement (one per employee per financial year),
InvestmentProof, MonthlyTDS.

Financial years run 1 April – 31 March and are keyed by the starting
calendar year (``fy_start_year``).
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_backend.common.constants import ProofStatus, TaxRecordStatus, TaxRegime
from payroll_backend.database import Base


def _money():
    return mapped_column(sa.Numeric(14, 2), nullable=False, default=Decimal("0"))


class TaxManagement(Base):
    """Employee's declarations, computed liability and TDS postings for a year."""

    __tablename__ = "tax_records"
    __table_args__ = (
        sa.UniqueConstraint("employee_id", "fy_start_year", name="uq_tax_record_employee_fy"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    tax_code: Mapped[str] = mapped_column(sa.String(50), unique=True, nullable=False)
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False,
    )
    fy_start_year: Mapped[int] = mapped_column(sa.SmallInteger, nullable=False)
    fy_start: Mapped[date] = mapped_column(sa.Date, nullable=False)
    fy_end: Mapped[date] = mapped_column(sa.Date, nullable=False)
    tax_regime: Mapped[str] = mapped_column(
        sa.String(10), nullable=False, default=TaxRegime.new.value,
    )

    # ── Income ──────────────────────────────────────────────────────
    # {basic, hra, special_allowance, other_allowances, bonus, ...} annualised
    annual_salary: Mapped[dict] = mapped_column(JSONB, default=dict)
    gross_annual_salary: Mapped[Decimal] = _money()

    # ── Declarations ────────────────────────────────────────────────
    # {section_80c: {...}, section_80d: {...}, section_80e, section_80g,
    #  section_24, hra: {rent_paid, hra_received, exempted_amount}}
    declarations: Mapped[dict] = mapped_column(JSONB, default=dict)
    total_declared_deductions: Mapped[Decimal] = _money()
    hra_exemption: Mapped[Decimal] = _money()

    # ── Computation ─────────────────────────────────────────────────
    # {old: {...}, new: {...}, recommended, savings}
    tax_calculation: Mapped[dict] = mapped_column(JSONB, default=dict)
    taxable_income: Mapped[Decimal] = _money()
    applicable_tax: Mapped[Decimal] = _money()
    cess: Mapped[Decimal] = _money()
    total_tax_liability: Mapped[Decimal] = _money()
    monthly_tds: Mapped[Decimal] = _money()
    calculated_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    # ── Form 16 ─────────────────────────────────────────────────────
    form16_path: Mapped[Optional[str]] = mapped_column(sa.String(500))
    form16_generated_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    # ── Workflow ────────────────────────────────────────────────────
    status: Mapped[str] = mapped_column(
        sa.String(20), nullable=False, default=TaxRecordStatus.draft.value,
    )
    submitted_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    reviewed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    comments: Mapped[Optional[str]] = mapped_column(sa.Text)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    employee = relationship("Employee", foreign_keys=[employee_id], lazy="joined")
    proofs: Mapped[list[InvestmentProof]] = relationship(
        back_populates="tax_record",
        order_by="InvestmentProof.created_at",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    monthly_postings: Mapped[list[MonthlyTDS]] = relationship(
        back_populates="tax_record",
        order_by=lambda: [MonthlyTDS.year, MonthlyTDS.month],
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def tds_deducted(self) -> Decimal:
        return sum((p.tds_amount for p in self.monthly_postings), Decimal("0"))

    def __repr__(self) -> str:
        return f"<TaxManagement {self.tax_code} regime={self.tax_regime} status={self.status}>"


class InvestmentProof(Base):
    __tablename__ = "tax_investment_proofs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    tax_record_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("tax_records.id", ondelete="CASCADE"), nullable=False,
    )
    section: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    description: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    amount: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2), nullable=False)
    document_path: Mapped[Optional[str]] = mapped_column(sa.String(500))
    status: Mapped[str] = mapped_column(
        sa.String(20), nullable=False, default=ProofStatus.pending.value,
    )
    verified_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    verified_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    remarks: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    tax_record: Mapped[TaxManagement] = relationship(back_populates="proofs")


class MonthlyTDS(Base):
    """TDS withheld in one month; posting the same month again replaces it."""

    __tablename__ = "tax_monthly_tds"
    __table_args__ = (
        sa.UniqueConstraint("tax_record_id", "month", "year", name="uq_tax_monthly_tds_period"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    tax_record_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("tax_records.id", ondelete="CASCADE"), nullable=False,
    )
    payroll_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    month: Mapped[int] = mapped_column(sa.SmallInteger, nullable=False)
    year: Mapped[int] = mapped_column(sa.SmallInteger, nullable=False)
    gross_income: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2), nullable=False, default=Decimal("0"))
    tds_amount: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2), nullable=False, default=Decimal("0"))
    cumulative_income: Mapped[Decimal] = mapped_column(sa.Numeric(14, 2), nullable=False, default=Decimal("0"))
    cumulative_tds: Mapped[Decimal] = mapped_column(sa.Numeric(14, 2), nullable=False, default=Decimal("0"))
    posted_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    tax_record: Mapped[TaxManagement] = relationship(back_populates="monthly_postings")
