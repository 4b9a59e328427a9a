"""Tax service layer — declarations, regime computation, TDS postings, Form 16."""

from __future__ import annotations

import calendar
import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_backend.common.audit import create_audit_entry
from payroll_backend.common.constants import ProofStatus, TaxRecordStatus, TaxRegime
from payroll_backend.common.exceptions import (
    ConflictError,
    NotFoundException,
    StateConflictException,
    ValidationException,
)
from payroll_backend.common.money import ZERO, as_number, to_decimal
from payroll_backend.config import settings
from payroll_backend.core_hr.models import Employee
from payroll_backend.payroll.aggregator import TaxInputs
from payroll_backend.payroll.documents import DocumentSink, FileDocumentSink
from payroll_backend.salary.service import SalaryStructureService
from payroll_backend.tax.calculator import (
    TaxConfig,
    calculate_hra_exemption,
    compare_regimes,
    total_declared_deductions,
)
from payroll_backend.tax.models import InvestmentProof, MonthlyTDS, TaxManagement

logger = logging.getLogger(__name__)

# Declarations can change until the record is approved.
_EDITABLE = {
    TaxRecordStatus.draft.value,
    TaxRecordStatus.submitted.value,
    TaxRecordStatus.under_review.value,
}

_WORKFLOW: dict[str, tuple[set[str], TaxRecordStatus]] = {
    "submit": ({TaxRecordStatus.draft.value}, TaxRecordStatus.submitted),
    "review": ({TaxRecordStatus.submitted.value}, TaxRecordStatus.under_review),
    "approve": (
        {TaxRecordStatus.submitted.value, TaxRecordStatus.under_review.value},
        TaxRecordStatus.approved,
    ),
    "complete": ({TaxRecordStatus.approved.value}, TaxRecordStatus.completed),
}


def financial_year_for(month: int, year: int) -> int:
    """Starting calendar year of the April–March financial year."""
    return year if month >= 4 else year - 1


def _tax_config() -> TaxConfig:
    return TaxConfig.from_settings(settings)


class TaxService:
    """Business logic for employee tax records."""

    # ── Lookup ────────────────────────────────────────────────────────

    @staticmethod
    async def get_record(
        db: AsyncSession,
        record_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> TaxManagement:
        stmt = select(TaxManagement).where(TaxManagement.id == record_id)
        if for_update:
            stmt = stmt.with_for_update(of=TaxManagement)
        record = (await db.execute(stmt)).unique().scalar_one_or_none()
        if record is None:
            raise NotFoundException("TaxManagement", str(record_id))
        return record

    @staticmethod
    async def find_record(
        db: AsyncSession,
        employee_id: uuid.UUID,
        fy_start_year: int,
    ) -> Optional[TaxManagement]:
        result = await db.execute(
            select(TaxManagement).where(
                TaxManagement.employee_id == employee_id,
                TaxManagement.fy_start_year == fy_start_year,
            )
        )
        return result.unique().scalar_one_or_none()

    @staticmethod
    async def list_records(
        db: AsyncSession,
        *,
        fy_start_year: Optional[int] = None,
        status: Optional[TaxRecordStatus] = None,
        employee_id: Optional[uuid.UUID] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[TaxManagement], int]:
        stmt = select(TaxManagement)
        if fy_start_year is not None:
            stmt = stmt.where(TaxManagement.fy_start_year == fy_start_year)
        if status is not None:
            stmt = stmt.where(TaxManagement.status == status.value)
        if employee_id is not None:
            stmt = stmt.where(TaxManagement.employee_id == employee_id)

        count_q = stmt.with_only_columns(func.count(), maintain_column_froms=True).order_by(None)
        total = (await db.execute(count_q)).scalar_one()
        stmt = (
            stmt.order_by(TaxManagement.fy_start_year.desc(), TaxManagement.tax_code)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await db.execute(stmt)
        return list(result.unique().scalars().all()), total

    @staticmethod
    async def get_tax_summary(db: AsyncSession, fy_start_year: int) -> dict:
        """Liability, TDS and regime split over a financial year's records."""
        records = (
            await db.execute(
                select(TaxManagement).where(TaxManagement.fy_start_year == fy_start_year)
            )
        ).unique().scalars().all()

        liability = deducted = ZERO
        regimes = {TaxRegime.new.value: 0, TaxRegime.old.value: 0}
        form16 = 0
        for r in records:
            liability += to_decimal(r.total_tax_liability)
            deducted += r.tds_deducted
            regimes[r.tax_regime] = regimes.get(r.tax_regime, 0) + 1
            if r.form16_path:
                form16 += 1

        return {
            "fy_start_year": fy_start_year,
            "total_employees": len({r.employee_id for r in records}),
            "total_tax_liability": as_number(liability),
            "total_tds_deducted": as_number(deducted),
            "new_regime_count": regimes[TaxRegime.new.value],
            "old_regime_count": regimes[TaxRegime.old.value],
            "form16_generated": form16,
        }

    @staticmethod
    async def create_record(
        db: AsyncSession,
        employee_id: uuid.UUID,
        fy_start_year: int,
        *,
        regime: TaxRegime = TaxRegime.new,
        actor_id: Optional[uuid.UUID] = None,
    ) -> TaxManagement:
        """Open the employee's tax record for a financial year."""
        employee = await db.get(Employee, employee_id)
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))
        if await TaxService.find_record(db, employee_id, fy_start_year) is not None:
            raise ConflictError("fy_start_year", fy_start_year)

        record = TaxManagement(
            tax_code=f"TAX-{fy_start_year}-{employee.employee_code}",
            employee_id=employee_id,
            employee=employee,
            fy_start_year=fy_start_year,
            fy_start=date(fy_start_year, 4, 1),
            fy_end=date(fy_start_year + 1, 3, 31),
            tax_regime=TaxRegime(regime).value,
            declarations={},
            annual_salary={},
            tax_calculation={},
            status=TaxRecordStatus.draft.value,
            proofs=[],
            monthly_postings=[],
        )
        try:
            async with db.begin_nested():
                db.add(record)
                await db.flush()
        except IntegrityError:
            raise ConflictError("fy_start_year", fy_start_year)

        await create_audit_entry(
            db,
            action="create",
            entity_type="tax_record",
            entity_id=record.id,
            actor_id=actor_id,
            new_values={"tax_code": record.tax_code, "regime": record.tax_regime},
        )
        return record

    @staticmethod
    async def get_or_create_record(
        db: AsyncSession,
        employee_id: uuid.UUID,
        fy_start_year: int,
        actor_id: Optional[uuid.UUID] = None,
    ) -> TaxManagement:
        record = await TaxService.find_record(db, employee_id, fy_start_year)
        if record is None:
            record = await TaxService.create_record(
                db, employee_id, fy_start_year, actor_id=actor_id,
            )
        return record

    # ── Declarations ──────────────────────────────────────────────────

    @staticmethod
    async def update_declarations(
        db: AsyncSession,
        record_id: uuid.UUID,
        declarations: dict,
        *,
        regime: Optional[TaxRegime] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> TaxManagement:
        """Replace the declarations (and optionally the regime), then recompute."""
        record = await TaxService.get_record(db, record_id, for_update=True)
        if record.status not in _EDITABLE:
            raise StateConflictException("TaxManagement", record.status)

        old_values = {
            "regime": record.tax_regime,
            "total_declared_deductions": as_number(record.total_declared_deductions),
        }
        record.declarations = declarations
        if regime is not None:
            record.tax_regime = TaxRegime(regime).value
        await TaxService._recompute(db, record)
        await db.flush()

        await create_audit_entry(
            db,
            action="declare",
            entity_type="tax_record",
            entity_id=record.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values={
                "regime": record.tax_regime,
                "total_declared_deductions": as_number(record.total_declared_deductions),
            },
        )
        return record

    # ── Computation ───────────────────────────────────────────────────

    @staticmethod
    async def _salary_anchor(db: AsyncSession, record: TaxManagement) -> date:
        """Last day of the latest posted payroll month, else the end of the year."""
        last = (
            await db.execute(
                select(MonthlyTDS.year, MonthlyTDS.month)
                .where(MonthlyTDS.tax_record_id == record.id)
                .order_by(MonthlyTDS.year.desc(), MonthlyTDS.month.desc())
                .limit(1)
            )
        ).first()
        if last is None:
            return record.fy_end
        year, month = last
        return date(year, month, calendar.monthrange(year, month)[1])

    @staticmethod
    async def _annual_salary(db: AsyncSession, record: TaxManagement) -> tuple[Decimal, Decimal, dict]:
        """(gross annual, annual basic, breakdown) from the effective structure."""
        on_date = await TaxService._salary_anchor(db, record)
        structure = await SalaryStructureService.get_effective_structure(
            db, record.employee_id, on_date,
        )
        if structure is None:
            return to_decimal(record.gross_annual_salary), ZERO, dict(record.annual_salary or {})

        resolved = structure.resolve()
        breakdown = {
            "basic_salary": as_number(resolved.basic_salary * 12),
            "hra": as_number(resolved.hra * 12),
            "allowances": as_number(sum(resolved.allowances.values(), ZERO) * 12),
            "variable": as_number(sum(resolved.variable.values(), ZERO) * 12),
            "custom_earnings": as_number(sum((c.amount for c in resolved.custom_earnings), ZERO) * 12),
        }
        return resolved.gross_salary * 12, resolved.basic_salary * 12, breakdown

    @staticmethod
    async def _recompute(
        db: AsyncSession,
        record: TaxManagement,
        annual_income: Optional[Decimal] = None,
    ) -> None:
        config = _tax_config()
        gross_annual, basic_annual, breakdown = await TaxService._annual_salary(db, record)
        if annual_income is not None:
            gross_annual = to_decimal(annual_income)
            breakdown = {"declared_income": as_number(gross_annual)}

        declarations = dict(record.declarations or {})
        deductions = total_declared_deductions(declarations, config)

        hra_decl = dict(declarations.get("hra") or {})
        hra_exemption = ZERO
        if hra_decl:
            hra_exemption = calculate_hra_exemption(
                hra_decl.get("hra_received", 0),
                hra_decl.get("rent_paid", 0),
                basic_annual,
                config,
            )
            hra_decl["exempted_amount"] = as_number(hra_exemption)
            declarations["hra"] = hra_decl
            record.declarations = declarations

        comparison = compare_regimes(gross_annual, deductions, hra_exemption, config)
        selected = comparison[TaxRegime(record.tax_regime).value]

        record.gross_annual_salary = gross_annual
        record.annual_salary = breakdown
        record.total_declared_deductions = deductions
        record.hra_exemption = hra_exemption
        record.tax_calculation = {
            "old": comparison["old"].to_dict(),
            "new": comparison["new"].to_dict(),
            "recommended": comparison["recommended"].value,
            "savings": as_number(comparison["savings"]),
        }
        record.taxable_income = selected.taxable_income
        record.applicable_tax = selected.slab_tax
        record.cess = selected.cess
        record.total_tax_liability = selected.total_tax
        record.monthly_tds = selected.monthly_tds
        record.calculated_at = datetime.now(timezone.utc)

    @staticmethod
    async def calculate_tax(
        db: AsyncSession,
        record_id: uuid.UUID,
        *,
        annual_income: Optional[Decimal] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> TaxManagement:
        """Recompute both regimes from the effective salary structure (or an
        explicit ``annual_income``) and the current declarations."""
        record = await TaxService.get_record(db, record_id, for_update=True)
        old_total = as_number(record.total_tax_liability)
        await TaxService._recompute(db, record, annual_income)
        await db.flush()

        await create_audit_entry(
            db,
            action="calculate",
            entity_type="tax_record",
            entity_id=record.id,
            actor_id=actor_id,
            old_values={"total_tax_liability": old_total},
            new_values={
                "regime": record.tax_regime,
                "taxable_income": as_number(record.taxable_income),
                "total_tax_liability": as_number(record.total_tax_liability),
                "monthly_tds": as_number(record.monthly_tds),
            },
        )
        logger.info(
            "Tax computed for %s: liability %s, monthly TDS %s",
            record.tax_code, record.total_tax_liability, record.monthly_tds,
        )
        return record

    @staticmethod
    async def tax_inputs_for(
        db: AsyncSession,
        employee_id: uuid.UUID,
        month: int,
        year: int,
    ) -> TaxInputs:
        """Tax inputs a payroll for ``month/year`` should use.

        Without a tax record the new regime is applied to the structure's
        annualised gross.
        """
        record = await TaxService.find_record(db, employee_id, financial_year_for(month, year))
        if record is None:
            return TaxInputs()
        annual = to_decimal(record.gross_annual_salary)
        return TaxInputs(
            regime=TaxRegime(record.tax_regime),
            annual_income=annual if annual > ZERO else None,
            declared_deductions=to_decimal(record.total_declared_deductions),
            hra_exemption=to_decimal(record.hra_exemption),
        )

    # ── Monthly TDS postings ──────────────────────────────────────────

    @staticmethod
    async def post_monthly_tds(
        db: AsyncSession,
        employee_id: uuid.UUID,
        month: int,
        year: int,
        *,
        gross_income,
        tds_amount,
        payroll_id: Optional[uuid.UUID] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> MonthlyTDS:
        """Record TDS withheld for a month; re-posting the month replaces it.

        Cumulative income / TDS are recomputed across the year's postings in
        period order.
        """
        record = await TaxService.get_or_create_record(
            db, employee_id, financial_year_for(month, year), actor_id=actor_id,
        )
        posting = next(
            (p for p in record.monthly_postings if p.month == month and p.year == year),
            None,
        )
        if posting is None:
            posting = MonthlyTDS(month=month, year=year)
            record.monthly_postings.append(posting)
        posting.payroll_id = payroll_id
        posting.gross_income = to_decimal(gross_income)
        posting.tds_amount = to_decimal(tds_amount)
        posting.posted_at = datetime.now(timezone.utc)

        running_income = ZERO
        running_tds = ZERO
        for p in sorted(record.monthly_postings, key=lambda p: (p.year, p.month)):
            running_income += to_decimal(p.gross_income)
            running_tds += to_decimal(p.tds_amount)
            p.cumulative_income = running_income
            p.cumulative_tds = running_tds
        await db.flush()

        await create_audit_entry(
            db,
            action="post_tds",
            entity_type="tax_record",
            entity_id=record.id,
            actor_id=actor_id,
            new_values={
                "period": f"{year}-{month:02d}",
                "tds_amount": as_number(posting.tds_amount),
                "cumulative_tds": as_number(posting.cumulative_tds),
            },
        )
        return posting

    # ── Investment proofs ─────────────────────────────────────────────

    @staticmethod
    async def add_proof(
        db: AsyncSession,
        record_id: uuid.UUID,
        *,
        section: str,
        description: str,
        amount,
        document_path: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> InvestmentProof:
        record = await TaxService.get_record(db, record_id)
        if record.status not in _EDITABLE:
            raise StateConflictException("TaxManagement", record.status)
        proof = InvestmentProof(
            section=section,
            description=description,
            amount=to_decimal(amount),
            document_path=document_path,
            status=ProofStatus.pending.value,
        )
        record.proofs.append(proof)
        await db.flush()

        await create_audit_entry(
            db,
            action="add_proof",
            entity_type="tax_record",
            entity_id=record.id,
            actor_id=actor_id,
            new_values={"section": section, "amount": as_number(proof.amount)},
        )
        return proof

    @staticmethod
    async def verify_proof(
        db: AsyncSession,
        proof_id: uuid.UUID,
        verifier_id: uuid.UUID,
        *,
        approve: bool = True,
        remarks: Optional[str] = None,
    ) -> InvestmentProof:
        proof = (
            await db.execute(
                select(InvestmentProof).where(InvestmentProof.id == proof_id)
            )
        ).scalar_one_or_none()
        if proof is None:
            raise NotFoundException("InvestmentProof", str(proof_id))
        if proof.status != ProofStatus.pending.value:
            raise StateConflictException("InvestmentProof", proof.status)

        proof.status = (ProofStatus.verified if approve else ProofStatus.rejected).value
        proof.verified_by_id = verifier_id
        proof.verified_at = datetime.now(timezone.utc)
        proof.remarks = remarks
        await db.flush()

        await create_audit_entry(
            db,
            action="verify_proof" if approve else "reject_proof",
            entity_type="tax_record",
            entity_id=proof.tax_record_id,
            actor_id=verifier_id,
            old_values={"proof_id": str(proof.id), "status": ProofStatus.pending.value},
            new_values={"proof_id": str(proof.id), "status": proof.status},
        )
        return proof

    # ── Workflow ──────────────────────────────────────────────────────

    @staticmethod
    async def transition(
        db: AsyncSession,
        record_id: uuid.UUID,
        action: str,
        actor_id: uuid.UUID,
        *,
        comments: Optional[str] = None,
    ) -> TaxManagement:
        """submit | review | approve | complete."""
        if action not in _WORKFLOW:
            raise ValidationException({"action": [f"Unknown tax workflow action '{action}'."]})
        allowed, target = _WORKFLOW[action]

        record = await TaxService.get_record(db, record_id, for_update=True)
        if record.status not in allowed:
            raise StateConflictException("TaxManagement", record.status)

        now = datetime.now(timezone.utc)
        old_status = record.status
        record.status = target.value
        if action == "submit":
            record.submitted_at = now
        elif action == "review":
            record.reviewed_by_id = actor_id
            record.reviewed_at = now
        elif action == "approve":
            record.approved_by_id = actor_id
            record.approved_at = now
        if comments:
            record.comments = comments
        await db.flush()

        await create_audit_entry(
            db,
            action=action,
            entity_type="tax_record",
            entity_id=record.id,
            actor_id=actor_id,
            old_values={"status": old_status},
            new_values={"status": record.status, "comments": comments},
        )
        logger.info("Tax record %s: %s → %s", record.tax_code, old_status, record.status)
        return record

    # ── Form 16 ───────────────────────────────────────────────────────

    @staticmethod
    async def generate_form16(
        db: AsyncSession,
        record_id: uuid.UUID,
        *,
        sink: Optional[DocumentSink] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> TaxManagement:
        """Render Form 16 for an approved or completed record."""
        record = await TaxService.get_record(db, record_id, for_update=True)
        if record.status not in (TaxRecordStatus.approved.value, TaxRecordStatus.completed.value):
            raise StateConflictException("TaxManagement", record.status)

        artifact = (sink or FileDocumentSink()).render_form16(record)
        record.form16_path = artifact.path
        record.form16_generated_at = artifact.generated_at
        await db.flush()

        await create_audit_entry(
            db,
            action="generate_form16",
            entity_type="tax_record",
            entity_id=record.id,
            actor_id=actor_id,
            new_values={"form16_path": artifact.path},
        )
        return record
