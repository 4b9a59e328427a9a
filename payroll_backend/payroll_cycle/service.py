"""Payroll cycle service layer — the monthly eight-stage run.

draft → attendance_locked → calculated → reviewed → approved → processed
→ disbursed → completed. Only the next stage is ever reachable; each stage
change stamps its timestamp and appends one audit entry. Per-employee
failures while processing are recorded on the cycle and never abort it.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_backend.attendance.service import AttendanceService
from payroll_backend.auth.dependencies import role_satisfies
from payroll_backend.common.audit import create_audit_entry
from payroll_backend.common.constants import (
    CYCLE_STAGES,
    ApprovalStepStatus,
    CycleStatus,
    PaymentMethod,
    PayrollStatus,
    ProcessingErrorType,
    UserRole,
)
from payroll_backend.common.exceptions import (
    AppException,
    ConflictError,
    DuplicatePayrollException,
    ForbiddenException,
    NotFoundException,
    StateConflictException,
    UpstreamUnavailableException,
    ValidationException,
    WorkflowIncompleteException,
)
from payroll_backend.common.money import ZERO, as_number, to_decimal
from payroll_backend.config import settings
from payroll_backend.core_hr.models import Department, Employee
from payroll_backend.disbursement.service import BatchResult, DisbursementService
from payroll_backend.payroll.aggregator import ProcessingRules
from payroll_backend.payroll.models import Payroll
from payroll_backend.payroll.service import PayrollService, period_bounds
from payroll_backend.payroll_cycle.models import (
    STAGE_TIMESTAMPS,
    CycleApprovalStep,
    PayrollCycle,
    PayrollProcessingError,
)

logger = logging.getLogger(__name__)

_RERUNNABLE = {PayrollStatus.draft.value, PayrollStatus.calculated.value}


@dataclass
class CycleProcessingResult:
    """Outcome of one ``process_cycle`` run; failures are data, not exceptions."""

    cycle_id: uuid.UUID
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    payroll_ids: list[uuid.UUID] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        return self.failed > 0


def _error_type(exc: AppException) -> ProcessingErrorType:
    if isinstance(exc, UpstreamUnavailableException):
        if exc.source == "salary_structure":
            return ProcessingErrorType.missing_structure
        if exc.source == "attendance":
            return ProcessingErrorType.missing_attendance
    if isinstance(exc, DuplicatePayrollException):
        return ProcessingErrorType.duplicate_payroll
    if isinstance(exc, StateConflictException):
        return ProcessingErrorType.invalid_state
    return ProcessingErrorType.calculation_error


class PayrollCycleService:
    """Business logic for payroll cycles."""

    # ── Loading ───────────────────────────────────────────────────────

    @staticmethod
    async def get_cycle(
        db: AsyncSession,
        cycle_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> PayrollCycle:
        stmt = select(PayrollCycle).where(PayrollCycle.id == cycle_id)
        if for_update:
            stmt = stmt.with_for_update(of=PayrollCycle).execution_options(populate_existing=True)
        cycle = (await db.execute(stmt)).scalar_one_or_none()
        if cycle is None:
            raise NotFoundException("PayrollCycle", str(cycle_id))
        return cycle

    @staticmethod
    async def find_cycle(db: AsyncSession, month: int, year: int) -> Optional[PayrollCycle]:
        result = await db.execute(
            select(PayrollCycle).where(PayrollCycle.month == month, PayrollCycle.year == year)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_current_cycle(db: AsyncSession, today: Optional[date] = None) -> PayrollCycle:
        """The cycle for the calendar month containing ``today``."""
        today = today or date.today()
        cycle = await PayrollCycleService.find_cycle(db, today.month, today.year)
        if cycle is None:
            raise NotFoundException("PayrollCycle", f"{today.year}-{today.month:02d}")
        return cycle

    @staticmethod
    async def list_cycle_payrolls(
        db: AsyncSession,
        cycle_id: uuid.UUID,
        *,
        status: Optional[PayrollStatus] = None,
        department_id: Optional[uuid.UUID] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[Payroll], int]:
        """Payrolls (and so payslips) belonging to a cycle's period."""
        cycle = await PayrollCycleService.get_cycle(db, cycle_id)
        return await PayrollService.list_payrolls(
            db,
            month=cycle.month,
            year=cycle.year,
            status=status,
            department_id=department_id,
            page=page,
            page_size=page_size,
        )

    @staticmethod
    async def list_cycles(
        db: AsyncSession,
        *,
        year: Optional[int] = None,
        status: Optional[CycleStatus] = None,
    ) -> list[PayrollCycle]:
        stmt = select(PayrollCycle)
        if year is not None:
            stmt = stmt.where(PayrollCycle.year == year)
        if status is not None:
            stmt = stmt.where(PayrollCycle.status == status.value)
        stmt = stmt.order_by(PayrollCycle.year.desc(), PayrollCycle.month.desc())
        return list((await db.execute(stmt)).scalars().all())

    # ── Stage bookkeeping ─────────────────────────────────────────────

    @staticmethod
    async def _enter_stage(
        db: AsyncSession,
        cycle: PayrollCycle,
        target: CycleStatus,
        actor_id: Optional[uuid.UUID],
        *,
        remarks: Optional[str] = None,
        extra: Optional[dict] = None,
    ) -> None:
        old_status = cycle.status
        cycle.status = target.value
        column = STAGE_TIMESTAMPS.get(target)
        if column is not None:
            setattr(cycle, column, datetime.now(timezone.utc))
        await db.flush()
        await create_audit_entry(
            db,
            action="stage_change",
            entity_type="payroll_cycle",
            entity_id=cycle.id,
            actor_id=actor_id,
            old_values={"status": old_status},
            new_values={"status": cycle.status, "remarks": remarks, **(extra or {})},
        )
        logger.info("Payroll cycle %s: %s → %s", cycle.cycle_code, old_status, cycle.status)

    @staticmethod
    def _require_status(cycle: PayrollCycle, *allowed: CycleStatus) -> None:
        if cycle.status not in {s.value for s in allowed}:
            raise StateConflictException(
                "PayrollCycle",
                cycle.status,
                f"Cycle {cycle.cycle_code} is {cycle.status}; expected "
                f"{' or '.join(s.value for s in allowed)}.",
            )

    # ── Create ────────────────────────────────────────────────────────

    @staticmethod
    async def create_cycle(
        db: AsyncSession,
        month: int,
        year: int,
        *,
        actor_id: Optional[uuid.UUID] = None,
        rules: Optional[ProcessingRules] = None,
    ) -> PayrollCycle:
        start, end = period_bounds(month, year)
        code = f"PAY-{year}-{month:02d}"
        if await PayrollCycleService.find_cycle(db, month, year) is not None:
            raise ConflictError("cycle_code", code)

        cycle = PayrollCycle(
            cycle_code=code,
            month=month,
            year=year,
            start_date=start,
            end_date=end,
            status=CycleStatus.draft.value,
            summary={},
            processing_rules=(rules or ProcessingRules()).to_dict(),
            created_by_id=actor_id,
            processing_errors=[],
            approval_steps=[
                CycleApprovalStep(level=level, approver_role=role)
                for level, role in enumerate(settings.cycle_approval_levels, start=1)
            ],
        )
        db.add(cycle)
        await db.flush()

        await create_audit_entry(
            db,
            action="create",
            entity_type="payroll_cycle",
            entity_id=cycle.id,
            actor_id=actor_id,
            new_values={"cycle_code": code, "status": cycle.status},
        )
        logger.info("Payroll cycle %s created", code)
        return cycle

    # ── Attendance lock ───────────────────────────────────────────────

    @staticmethod
    async def lock_attendance(
        db: AsyncSession,
        cycle_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
    ) -> PayrollCycle:
        cycle = await PayrollCycleService.get_cycle(db, cycle_id, for_update=True)
        PayrollCycleService._require_status(cycle, CycleStatus.draft)
        if not await AttendanceService.has_records(db, cycle.start_date, cycle.end_date):
            raise ValidationException(
                {"attendance": [f"No attendance records between {cycle.start_date} and {cycle.end_date}."]}
            )
        await PayrollCycleService._enter_stage(db, cycle, CycleStatus.attendance_locked, actor_id)
        return cycle

    # ── Processing ────────────────────────────────────────────────────

    @staticmethod
    async def _eligible_employees(
        db: AsyncSession,
        cycle: PayrollCycle,
        rules: ProcessingRules,
        employee_ids: Optional[Iterable[uuid.UUID]],
    ) -> list[tuple[uuid.UUID, str]]:
        stmt = select(Employee).where(Employee.is_active.is_(True))
        if employee_ids is not None:
            stmt = stmt.where(Employee.id.in_(list(employee_ids)))
        employees = (await db.execute(stmt.order_by(Employee.employee_code))).scalars().all()

        eligible: list[tuple[uuid.UUID, str]] = []
        for emp in employees:
            if not emp.is_payable_in(cycle.start_date, cycle.end_date):
                continue
            joined_mid = emp.date_of_joining is not None and emp.date_of_joining > cycle.start_date
            exit_date = emp.date_of_exit or emp.last_working_date
            exited_mid = exit_date is not None and exit_date < cycle.end_date
            if joined_mid and not rules.include_new_joiners:
                continue
            if exited_mid and not rules.include_exited_employees:
                continue
            eligible.append((emp.id, emp.employee_code))
        return eligible

    @staticmethod
    def _record_error(
        cycle: PayrollCycle,
        employee_id: uuid.UUID,
        error_type: ProcessingErrorType,
        message: str,
    ) -> None:
        for error in cycle.unresolved_errors:
            if error.employee_id == employee_id:
                error.error_type = error_type.value
                error.message = message
                return
        cycle.processing_errors.append(
            PayrollProcessingError(
                employee_id=employee_id,
                error_type=error_type.value,
                message=message,
                is_resolved=False,
            )
        )

    @staticmethod
    def _resolve_employee_errors(
        cycle: PayrollCycle,
        employee_id: uuid.UUID,
        actor_id: Optional[uuid.UUID],
    ) -> None:
        now = datetime.now(timezone.utc)
        for error in cycle.unresolved_errors:
            if error.employee_id == employee_id:
                error.is_resolved = True
                error.resolved_at = now
                error.resolved_by_id = actor_id

    @staticmethod
    async def process_cycle(
        db: AsyncSession,
        cycle_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
        employee_ids: Optional[Iterable[uuid.UUID]] = None,
    ) -> CycleProcessingResult:
        """Generate (or recalculate) every eligible employee's payroll.

        Each employee runs inside its own SAVEPOINT; a failure is rolled back,
        recorded as a processing error, and the loop continues.
        """
        cycle = await PayrollCycleService.get_cycle(db, cycle_id, for_update=True)
        PayrollCycleService._require_status(
            cycle, CycleStatus.attendance_locked, CycleStatus.calculated,
        )
        rules = ProcessingRules.from_dict(cycle.processing_rules)
        result = CycleProcessingResult(cycle_id=cycle.id)

        for employee_id, employee_code in await PayrollCycleService._eligible_employees(
            db, cycle, rules, employee_ids,
        ):
            try:
                async with db.begin_nested():
                    existing = await PayrollService.find_payroll(
                        db, employee_id, cycle.month, cycle.year,
                    )
                    if existing is None:
                        payroll = await PayrollService.generate_payroll(
                            db, employee_id, cycle.month, cycle.year,
                            actor_id=actor_id, rules=rules,
                        )
                    elif existing.status in _RERUNNABLE:
                        payroll = await PayrollService.recalculate(
                            db, existing.id, actor_id=actor_id, rules=rules,
                        )
                    elif existing.status == PayrollStatus.cancelled.value:
                        raise StateConflictException(
                            "Payroll", existing.status,
                            f"Payroll {existing.payroll_code} is cancelled.",
                        )
                    else:
                        # approved or later: already through the workflow
                        result.skipped += 1
                        continue
            except AppException as exc:
                error_type = _error_type(exc)
                PayrollCycleService._record_error(cycle, employee_id, error_type, exc.detail)
                result.failed += 1
                result.errors.append({
                    "employee_id": str(employee_id),
                    "employee_code": employee_code,
                    "error_type": error_type.value,
                    "message": exc.detail,
                })
                logger.warning(
                    "Cycle %s: payroll failed for %s (%s): %s",
                    cycle.cycle_code, employee_code, error_type.value, exc.detail,
                )
                continue

            PayrollCycleService._resolve_employee_errors(cycle, employee_id, actor_id)
            result.processed += 1
            result.payroll_ids.append(payroll.id)

        await db.flush()
        await PayrollCycleService.refresh_summary(db, cycle)
        await PayrollCycleService._enter_stage(
            db, cycle, CycleStatus.calculated, actor_id,
            extra={
                "processed": result.processed,
                "skipped": result.skipped,
                "failed": result.failed,
            },
        )
        return result

    @staticmethod
    async def resolve_error(
        db: AsyncSession,
        error_id: uuid.UUID,
        actor_id: uuid.UUID,
    ) -> PayrollProcessingError:
        error = await db.get(PayrollProcessingError, error_id)
        if error is None:
            raise NotFoundException("PayrollProcessingError", str(error_id))
        if error.is_resolved:
            raise StateConflictException("PayrollProcessingError", "resolved")
        error.is_resolved = True
        error.resolved_at = datetime.now(timezone.utc)
        error.resolved_by_id = actor_id
        await db.flush()
        await create_audit_entry(
            db,
            action="resolve_error",
            entity_type="payroll_cycle",
            entity_id=error.cycle_id,
            actor_id=actor_id,
            new_values={"error_id": str(error.id), "employee_id": str(error.employee_id)},
        )
        return error

    # ── Stage transitions ─────────────────────────────────────────────

    @staticmethod
    async def advance_stage(
        db: AsyncSession,
        cycle_id: uuid.UUID,
        target: CycleStatus,
        actor_id: Optional[uuid.UUID] = None,
        *,
        remarks: Optional[str] = None,
    ) -> PayrollCycle:
        """Move to the next stage. Skipping or going backwards is rejected."""
        target = CycleStatus(target)
        cycle = await PayrollCycleService.get_cycle(db, cycle_id, for_update=True)
        current = CYCLE_STAGES.index(CycleStatus(cycle.status))
        if current + 1 >= len(CYCLE_STAGES) or CYCLE_STAGES[current + 1] is not target:
            raise StateConflictException(
                "PayrollCycle",
                cycle.status,
                f"Cycle {cycle.cycle_code} cannot move from {cycle.status} to {target.value}.",
            )

        if target is CycleStatus.attendance_locked:
            return await PayrollCycleService.lock_attendance(db, cycle.id, actor_id)
        if target is CycleStatus.calculated:
            raise StateConflictException(
                "PayrollCycle", cycle.status,
                "Cycles reach 'calculated' by processing payrolls.",
            )
        if target is CycleStatus.approved and cycle.approval_steps:
            pending = [s.level for s in cycle.approval_steps if s.status != ApprovalStepStatus.approved.value]
            raise WorkflowIncompleteException(
                "PayrollCycle", cycle.status, f"Cycle approval levels {pending} are not approved.",
            )
        if target is CycleStatus.processed and not cycle.can_process():
            raise StateConflictException(
                "PayrollCycle",
                cycle.status,
                f"Cycle {cycle.cycle_code} has {len(cycle.unresolved_errors)} unresolved processing errors.",
            )
        if target is CycleStatus.disbursed:
            raise StateConflictException(
                "PayrollCycle", cycle.status,
                "Cycles reach 'disbursed' through a disbursement run.",
            )

        await PayrollCycleService._enter_stage(db, cycle, target, actor_id, remarks=remarks)
        return cycle

    @staticmethod
    async def approve_step(
        db: AsyncSession,
        cycle_id: uuid.UUID,
        level: int,
        approver_id: uuid.UUID,
        approver_role: UserRole | str,
        *,
        approve: bool = True,
        remarks: Optional[str] = None,
    ) -> PayrollCycle:
        """Act on one cycle approval level; the last approval moves the cycle to approved."""
        cycle = await PayrollCycleService.get_cycle(db, cycle_id, for_update=True)
        PayrollCycleService._require_status(cycle, CycleStatus.reviewed)

        step = next((s for s in cycle.approval_steps if s.level == level), None)
        if step is None:
            raise ValidationException({"level": [f"Cycle has no approval level {level}."]})
        lower_pending = [
            s.level for s in cycle.approval_steps
            if s.level < level and s.status != ApprovalStepStatus.approved.value
        ]
        if lower_pending:
            raise WorkflowIncompleteException(
                "PayrollCycle", cycle.status,
                f"Levels {lower_pending} must be approved before level {level}.",
            )
        if not role_satisfies(approver_role, [step.approver_role]):
            raise ForbiddenException(
                detail=f"Approval level {level} requires role '{step.approver_role}'.",
            )

        old_status = step.status
        step.status = (ApprovalStepStatus.approved if approve else ApprovalStepStatus.rejected).value
        step.approver_id = approver_id
        step.action_at = datetime.now(timezone.utc)
        step.remarks = remarks
        await db.flush()
        await create_audit_entry(
            db,
            action="approve_step" if approve else "reject_step",
            entity_type="payroll_cycle",
            entity_id=cycle.id,
            actor_id=approver_id,
            old_values={"level": level, "status": old_status},
            new_values={"level": level, "status": step.status, "remarks": remarks},
        )

        if approve and all(s.status == ApprovalStepStatus.approved.value for s in cycle.approval_steps):
            await PayrollCycleService._enter_stage(
                db, cycle, CycleStatus.approved, approver_id, remarks=remarks,
            )
        return cycle

    @staticmethod
    async def disburse_cycle(
        db: AsyncSession,
        cycle_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
        payment_method: PaymentMethod = PaymentMethod.neft,
    ) -> tuple[PayrollCycle, BatchResult]:
        """Create and process one disbursement batch for the period's approved payrolls."""
        cycle = await PayrollCycleService.get_cycle(db, cycle_id, for_update=True)
        PayrollCycleService._require_status(cycle, CycleStatus.processed)

        payroll_ids = (
            await db.execute(
                select(Payroll.id)
                .where(
                    Payroll.month == cycle.month,
                    Payroll.year == cycle.year,
                    Payroll.status == PayrollStatus.approved.value,
                )
                .order_by(Payroll.payroll_code)
            )
        ).scalars().all()
        if not payroll_ids:
            raise StateConflictException(
                "PayrollCycle", cycle.status,
                f"Cycle {cycle.cycle_code} has no approved payrolls to disburse.",
            )

        created = await DisbursementService.create_batch(
            db, list(payroll_ids), payment_method=payment_method, actor_id=actor_id,
        )
        result = await DisbursementService.process_batch(db, created.batch_id, actor_id=actor_id)
        result.failed += created.failed
        result.items = created.failed_items + result.items

        cycle.batch_id = created.batch_id
        await PayrollCycleService.refresh_summary(db, cycle)
        await PayrollCycleService._enter_stage(
            db, cycle, CycleStatus.disbursed, actor_id,
            extra={"batch_id": created.batch_id, "processed": result.processed, "failed": result.failed},
        )
        return cycle, result

    # ── Summary ───────────────────────────────────────────────────────

    @staticmethod
    async def refresh_summary(db: AsyncSession, cycle: PayrollCycle) -> dict:
        """Recompute employee counts, money totals and the department breakdown."""
        rows = (
            await db.execute(
                select(
                    Payroll.gross_pay,
                    Payroll.total_deductions,
                    Payroll.net_pay,
                    Payroll.statutory_deductions,
                    Department.name,
                )
                .join(Employee, Employee.id == Payroll.employee_id)
                .outerjoin(Department, Department.id == Employee.department_id)
                .where(
                    Payroll.month == cycle.month,
                    Payroll.year == cycle.year,
                    Payroll.status != PayrollStatus.cancelled.value,
                )
            )
        ).all()

        total_employees = (
            await db.execute(select(func.count()).select_from(Employee))
        ).scalar_one()
        active_employees = (
            await db.execute(
                select(func.count()).select_from(Employee).where(Employee.is_active.is_(True))
            )
        ).scalar_one()

        gross = deductions = net = pf = esi = pt = tds = ZERO
        departments: dict[str, dict] = {}
        for row_gross, row_deductions, row_net, stat, dept_name in rows:
            stat = stat or {}
            gross += to_decimal(row_gross)
            deductions += to_decimal(row_deductions)
            net += to_decimal(row_net)
            pf += to_decimal((stat.get("pf") or {}).get("total"))
            esi += to_decimal((stat.get("esi") or {}).get("total"))
            pt += to_decimal((stat.get("professional_tax") or {}).get("amount"))
            tds += to_decimal((stat.get("income_tax") or {}).get("tax_deducted"))

            dept = departments.setdefault(
                dept_name or "Unassigned",
                {"employee_count": 0, "gross": ZERO, "net": ZERO},
            )
            dept["employee_count"] += 1
            dept["gross"] += to_decimal(row_gross)
            dept["net"] += to_decimal(row_net)

        summary = {
            "total_employees": total_employees,
            "active_employees": active_employees,
            "processed_employees": len(rows),
            "total_gross": as_number(gross),
            "total_deductions": as_number(deductions),
            "total_net": as_number(net),
            "statutory": {
                "pf": as_number(pf),
                "esi": as_number(esi),
                "professional_tax": as_number(pt),
                "tds": as_number(tds),
            },
            "departments": [
                {
                    "department": name,
                    "employee_count": d["employee_count"],
                    "gross": as_number(d["gross"]),
                    "net": as_number(d["net"]),
                }
                for name, d in sorted(departments.items())
            ],
        }
        cycle.summary = summary
        await db.flush()
        return summary

    @staticmethod
    def get_current_step(cycle: PayrollCycle) -> dict:
        return {
            "status": cycle.status,
            "current_step": cycle.current_step,
            "total_steps": cycle.total_steps,
        }
