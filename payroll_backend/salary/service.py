"""Salary structure service layer — versioned structures and their approval."""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_backend.common.audit import create_audit_entry
from payroll_backend.common.constants import StructureStatus
from payroll_backend.common.exceptions import (
    NotFoundException,
    StateConflictException,
    ValidationException,
)
from payroll_backend.common.money import as_number
from payroll_backend.core_hr.models import Employee
from payroll_backend.payroll.statutory import StatutoryConfig
from payroll_backend.salary.calculator import (
    ResolvedStructure,
    StructureInput,
    resolve_structure,
    validate_structure_input,
)
from payroll_backend.salary.models import SalaryStructure
from payroll_backend.salary.schemas import (
    SalaryStructureCreate,
    SalaryStructureRevise,
    SalaryStructureUpdate,
)

logger = logging.getLogger(__name__)

# Columns copied from the previous version on revision.
_VERSIONED_COLUMNS = (
    "ctc", "basic_salary",
    "hra_is_percentage", "hra_percentage", "hra_amount",
    "special_allowance", "transport_allowance", "medical_allowance",
    "lunch_allowance", "phone_allowance", "internet_allowance",
    "performance_bonus", "incentives", "overtime_pay", "arrears",
    "custom_earnings",
    "pf_is_percentage", "pf_percentage", "pf_employee_contribution",
    "esi_is_percentage", "esi_employee_percentage", "esi_employer_percentage",
    "income_tax", "loan_deduction", "advance_deduction", "late_coming_fine",
    "custom_deductions", "calculation_rules",
)


def _snapshot(structure: SalaryStructure) -> dict:
    return {
        "status": structure.status,
        "version": structure.version,
        "ctc": as_number(structure.ctc),
        "basic_salary": as_number(structure.basic_salary),
        "gross_salary": as_number(structure.gross_salary),
        "net_salary": as_number(structure.net_salary),
    }


class SalaryStructureService:
    """Business logic for salary structures."""

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    async def _get_structure(
        db: AsyncSession,
        structure_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> SalaryStructure:
        stmt = select(SalaryStructure).where(SalaryStructure.id == structure_id)
        if for_update:
            stmt = stmt.with_for_update(of=SalaryStructure)
        structure = (await db.execute(stmt)).unique().scalar_one_or_none()
        if structure is None:
            raise NotFoundException("SalaryStructure", str(structure_id))
        return structure

    @staticmethod
    def _validate_and_recalculate(
        structure: SalaryStructure,
        config: Optional[StatutoryConfig] = None,
    ) -> ResolvedStructure:
        errors = validate_structure_input(StructureInput.from_model(structure))
        if errors:
            raise ValidationException(errors)
        return structure.recalculate(config)

    @staticmethod
    def _require_status(structure: SalaryStructure, *allowed: StructureStatus) -> None:
        if structure.status not in {s.value for s in allowed}:
            raise StateConflictException(
                "SalaryStructure",
                structure.status,
                f"Salary structure is {structure.status}; expected one of "
                f"{', '.join(s.value for s in allowed)}.",
            )

    # ── Create / update ───────────────────────────────────────────────

    @staticmethod
    async def create_structure(
        db: AsyncSession,
        data: SalaryStructureCreate,
        actor_id: Optional[uuid.UUID] = None,
    ) -> SalaryStructure:
        """Create a draft structure for an employee."""
        employee = await db.get(Employee, data.employee_id)
        if employee is None:
            raise NotFoundException("Employee", str(data.employee_id))

        latest_version = (
            await db.execute(
                select(func.max(SalaryStructure.version)).where(
                    SalaryStructure.employee_id == data.employee_id
                )
            )
        ).scalar()

        structure = SalaryStructure(
            employee_id=data.employee_id,
            effective_date=data.effective_date,
            version=(latest_version or 0) + 1,
            status=StructureStatus.draft.value,
            created_by_id=actor_id,
            **data.column_values(),
        )
        SalaryStructureService._validate_and_recalculate(structure)
        db.add(structure)
        await db.flush()

        await create_audit_entry(
            db,
            action="create",
            entity_type="salary_structure",
            entity_id=structure.id,
            actor_id=actor_id,
            new_values=_snapshot(structure),
        )
        logger.info(
            "Salary structure v%s created for employee %s (gross %s)",
            structure.version, structure.employee_id, structure.gross_salary,
        )
        return structure

    @staticmethod
    async def update_structure(
        db: AsyncSession,
        structure_id: uuid.UUID,
        data: SalaryStructureUpdate,
        actor_id: Optional[uuid.UUID] = None,
    ) -> SalaryStructure:
        """Edit a structure in place. Editing an approved structure sends it
        back to ``pending_approval``."""
        structure = await SalaryStructureService._get_structure(
            db, structure_id, for_update=True,
        )
        old_values = _snapshot(structure)

        for column, value in data.column_values().items():
            setattr(structure, column, value)

        if structure.status == StructureStatus.approved.value:
            structure.status = StructureStatus.pending_approval.value
            structure.approved_by_id = None
            structure.approved_at = None

        SalaryStructureService._validate_and_recalculate(structure)
        await db.flush()

        await create_audit_entry(
            db,
            action="update",
            entity_type="salary_structure",
            entity_id=structure.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values=_snapshot(structure),
        )
        return structure

    # ── Approval workflow ─────────────────────────────────────────────

    @staticmethod
    async def submit_for_approval(
        db: AsyncSession,
        structure_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
    ) -> SalaryStructure:
        structure = await SalaryStructureService._get_structure(
            db, structure_id, for_update=True,
        )
        SalaryStructureService._require_status(
            structure, StructureStatus.draft, StructureStatus.rejected,
        )
        old_status = structure.status
        structure.status = StructureStatus.pending_approval.value
        await db.flush()

        await create_audit_entry(
            db,
            action="submit",
            entity_type="salary_structure",
            entity_id=structure.id,
            actor_id=actor_id,
            old_values={"status": old_status},
            new_values={"status": structure.status},
        )
        return structure

    @staticmethod
    async def approve_structure(
        db: AsyncSession,
        structure_id: uuid.UUID,
        approver_id: uuid.UUID,
        *,
        remarks: Optional[str] = None,
    ) -> SalaryStructure:
        """Approve a structure and close the employee's earlier approved
        version(s) the day before this one takes effect."""
        structure = await SalaryStructureService._get_structure(
            db, structure_id, for_update=True,
        )
        SalaryStructureService._require_status(
            structure, StructureStatus.draft, StructureStatus.pending_approval,
        )

        previous = (
            await db.execute(
                select(SalaryStructure).where(
                    SalaryStructure.employee_id == structure.employee_id,
                    SalaryStructure.id != structure.id,
                    SalaryStructure.status == StructureStatus.approved.value,
                    SalaryStructure.effective_date < structure.effective_date,
                    or_(
                        SalaryStructure.end_date.is_(None),
                        SalaryStructure.end_date >= structure.effective_date,
                    ),
                )
            )
        ).unique().scalars().all()
        closing_date = structure.effective_date - timedelta(days=1)
        for old in previous:
            old.end_date = closing_date
            await create_audit_entry(
                db,
                action="close",
                entity_type="salary_structure",
                entity_id=old.id,
                actor_id=approver_id,
                new_values={"end_date": closing_date.isoformat()},
            )

        old_status = structure.status
        structure.status = StructureStatus.approved.value
        structure.approved_by_id = approver_id
        structure.approved_at = datetime.now(timezone.utc)
        if remarks:
            structure.remarks = remarks
        await db.flush()

        await create_audit_entry(
            db,
            action="approve",
            entity_type="salary_structure",
            entity_id=structure.id,
            actor_id=approver_id,
            old_values={"status": old_status},
            new_values={"status": structure.status, "remarks": remarks},
        )
        logger.info("Salary structure %s approved by %s", structure.id, approver_id)
        return structure

    @staticmethod
    async def reject_structure(
        db: AsyncSession,
        structure_id: uuid.UUID,
        approver_id: uuid.UUID,
        *,
        remarks: Optional[str] = None,
    ) -> SalaryStructure:
        structure = await SalaryStructureService._get_structure(
            db, structure_id, for_update=True,
        )
        SalaryStructureService._require_status(
            structure, StructureStatus.draft, StructureStatus.pending_approval,
        )
        old_status = structure.status
        structure.status = StructureStatus.rejected.value
        structure.remarks = remarks
        await db.flush()

        await create_audit_entry(
            db,
            action="reject",
            entity_type="salary_structure",
            entity_id=structure.id,
            actor_id=approver_id,
            old_values={"status": old_status},
            new_values={"status": structure.status, "remarks": remarks},
        )
        return structure

    # ── Revision ──────────────────────────────────────────────────────

    @staticmethod
    async def revise_structure(
        db: AsyncSession,
        structure_id: uuid.UUID,
        data: SalaryStructureRevise,
        actor_id: Optional[uuid.UUID] = None,
    ) -> SalaryStructure:
        """Create the next effective-dated version of an approved structure.

        The new version starts in ``pending_approval``; the previous one is
        closed when the new one is approved.
        """
        current = await SalaryStructureService._get_structure(db, structure_id)
        SalaryStructureService._require_status(current, StructureStatus.approved)
        if data.effective_date <= current.effective_date:
            raise ValidationException(
                {"effective_date": ["Revision must take effect after the current version."]}
            )

        latest_version = (
            await db.execute(
                select(func.max(SalaryStructure.version)).where(
                    SalaryStructure.employee_id == current.employee_id
                )
            )
        ).scalar() or current.version

        values = {column: getattr(current, column) for column in _VERSIONED_COLUMNS}
        values.update(data.column_values())
        revision = SalaryStructure(
            employee_id=current.employee_id,
            effective_date=data.effective_date,
            version=latest_version + 1,
            status=StructureStatus.pending_approval.value,
            created_by_id=actor_id,
            **values,
        )
        SalaryStructureService._validate_and_recalculate(revision)
        db.add(revision)
        await db.flush()

        await create_audit_entry(
            db,
            action="revise",
            entity_type="salary_structure",
            entity_id=revision.id,
            actor_id=actor_id,
            old_values={"previous_id": str(current.id), **_snapshot(current)},
            new_values=_snapshot(revision),
        )
        return revision

    # ── Queries ───────────────────────────────────────────────────────

    @staticmethod
    async def get_structure(db: AsyncSession, structure_id: uuid.UUID) -> SalaryStructure:
        return await SalaryStructureService._get_structure(db, structure_id)

    @staticmethod
    async def get_effective_structure(
        db: AsyncSession,
        employee_id: uuid.UUID,
        on_date: date,
    ) -> Optional[SalaryStructure]:
        """Approved structure whose effective window contains ``on_date``."""
        result = await db.execute(
            select(SalaryStructure)
            .where(
                SalaryStructure.employee_id == employee_id,
                SalaryStructure.status == StructureStatus.approved.value,
                SalaryStructure.effective_date <= on_date,
                or_(
                    SalaryStructure.end_date.is_(None),
                    SalaryStructure.end_date >= on_date,
                ),
            )
            .order_by(SalaryStructure.effective_date.desc(), SalaryStructure.version.desc())
            .limit(1)
        )
        return result.unique().scalar_one_or_none()

    @staticmethod
    async def list_structures(
        db: AsyncSession,
        *,
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[StructureStatus] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[SalaryStructure], int]:
        stmt = select(SalaryStructure)
        count_stmt = select(func.count()).select_from(SalaryStructure)
        if employee_id:
            stmt = stmt.where(SalaryStructure.employee_id == employee_id)
            count_stmt = count_stmt.where(SalaryStructure.employee_id == employee_id)
        if status:
            stmt = stmt.where(SalaryStructure.status == status.value)
            count_stmt = count_stmt.where(SalaryStructure.status == status.value)

        total = (await db.execute(count_stmt)).scalar() or 0
        stmt = (
            stmt.order_by(SalaryStructure.effective_date.desc(), SalaryStructure.version.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await db.execute(stmt)
        return list(result.unique().scalars().all()), total

    @staticmethod
    def preview(data: SalaryStructureCreate) -> ResolvedStructure:
        """Resolve a structure without persisting anything."""
        structure = SalaryStructure(
            employee_id=data.employee_id,
            effective_date=data.effective_date,
            **data.column_values(),
        )
        structure_input = StructureInput.from_model(structure)
        errors = validate_structure_input(structure_input)
        if errors:
            raise ValidationException(errors)
        return resolve_structure(structure_input)
