"""Salary ORM model: SalaryStructure (effective-dated, per employee).

SQLAlchemy 2.0 async-compatible model. Derived columns (HRA amount,
statutory contributions, gross / deductions / net) are written only by
``SalaryStructure.recalculate``, which the service calls on every save
path.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_backend.common.constants import StructureStatus
from payroll_backend.database import Base
from payroll_backend.salary.calculator import (
    ResolvedStructure,
    StructureInput,
    resolve_structure,
)
from payroll_backend.payroll.statutory import StatutoryConfig


def _money(default: int | str = 0):
    return mapped_column(sa.Numeric(12, 2), nullable=False, default=Decimal(str(default)))


class SalaryStructure(Base):
    """One version of an employee's pay structure."""

    __tablename__ = "salary_structures"
    __table_args__ = (
        sa.Index("ix_salary_structures_employee_effective", "employee_id", "effective_date"),
        sa.Index("ix_salary_structures_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("employees.id"),
        nullable=False,
    )
    effective_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)

    # ── Basic structure (ctc annual, everything else monthly) ──────
    ctc: Mapped[Decimal] = mapped_column(sa.Numeric(14, 2), nullable=False)
    basic_salary: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2), nullable=False)

    # ── Earnings ────────────────────────────────────────────────────
    hra_is_percentage: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    hra_percentage: Mapped[Decimal] = mapped_column(sa.Numeric(5, 2), default=Decimal("40"))
    hra_amount: Mapped[Decimal] = _money()
    special_allowance: Mapped[Decimal] = _money()
    transport_allowance: Mapped[Decimal] = _money(1600)
    medical_allowance: Mapped[Decimal] = _money(1250)
    lunch_allowance: Mapped[Decimal] = _money()
    phone_allowance: Mapped[Decimal] = _money()
    internet_allowance: Mapped[Decimal] = _money()
    performance_bonus: Mapped[Decimal] = _money()
    incentives: Mapped[Decimal] = _money()
    overtime_pay: Mapped[Decimal] = _money()
    arrears: Mapped[Decimal] = _money()
    # ordered list: [{name, amount, is_percentage, percentage_of, percentage, is_taxable}]
    custom_earnings: Mapped[list] = mapped_column(JSONB, default=list)

    # ── Statutory deduction config ─────────────────────────────────
    pf_is_percentage: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    pf_percentage: Mapped[Decimal] = mapped_column(sa.Numeric(5, 2), default=Decimal("12"))
    pf_employee_contribution: Mapped[Decimal] = _money()
    pf_employer_contribution: Mapped[Decimal] = _money()
    esi_is_percentage: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    esi_employee_percentage: Mapped[Decimal] = mapped_column(sa.Numeric(5, 2), default=Decimal("0.75"))
    esi_employer_percentage: Mapped[Decimal] = mapped_column(sa.Numeric(5, 2), default=Decimal("3.25"))
    esi_employee_contribution: Mapped[Decimal] = _money()
    esi_employer_contribution: Mapped[Decimal] = _money()
    professional_tax: Mapped[Decimal] = _money()
    income_tax: Mapped[Decimal] = _money()

    # ── Other deductions ───────────────────────────────────────────
    loan_deduction: Mapped[Decimal] = _money()
    advance_deduction: Mapped[Decimal] = _money()
    late_coming_fine: Mapped[Decimal] = _money()
    # ordered list: [{name, amount, is_percentage, percentage_of (basic|gross), percentage}]
    custom_deductions: Mapped[list] = mapped_column(JSONB, default=list)

    # {pf_ceiling, esi_ceiling, pt_state, gratuity_eligible, bonus_eligible}
    calculation_rules: Mapped[dict] = mapped_column(JSONB, default=dict)

    # ── Derived totals ──────────────────────────────────────────────
    gross_salary: Mapped[Decimal] = _money()
    total_deductions: Mapped[Decimal] = _money()
    net_salary: Mapped[Decimal] = _money()

    # ── Approval ────────────────────────────────────────────────────
    status: Mapped[str] = mapped_column(
        sa.String(30), nullable=False, default=StructureStatus.draft.value,
    )
    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    remarks: Mapped[Optional[str]] = mapped_column(sa.Text)

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
    employee = relationship("Employee", foreign_keys=[employee_id], lazy="joined")

    # ── Explicit recompute ──────────────────────────────────────────

    def recalculate(self, config: Optional[StatutoryConfig] = None) -> ResolvedStructure:
        """Resolve the structure and overwrite every derived column."""
        resolved = resolve_structure(StructureInput.from_model(self), config)
        self.hra_amount = resolved.hra
        self.pf_employee_contribution = resolved.statutory.pf.employee
        self.pf_employer_contribution = resolved.statutory.pf.employer
        self.esi_employee_contribution = resolved.statutory.esi.employee
        self.esi_employer_contribution = resolved.statutory.esi.employer
        self.professional_tax = resolved.statutory.professional_tax
        self.gross_salary = resolved.gross_salary
        self.total_deductions = resolved.total_deductions
        self.net_salary = resolved.net_salary
        return resolved

    def resolve(self, config: Optional[StatutoryConfig] = None) -> ResolvedStructure:
        """Resolve without touching stored columns."""
        return resolve_structure(StructureInput.from_model(self), config)

    def is_effective_on(self, day: date) -> bool:
        return self.effective_date <= day and (self.end_date is None or self.end_date >= day)

    def __repr__(self) -> str:
        return (
            f"<SalaryStructure employee_id={self.employee_id} "
            f"effective={self.effective_date} ctc={self.ctc} status={self.status}>"
        )
