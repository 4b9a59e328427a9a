"""Payroll service layer — generation, calculation and the payroll state machine.

States: draft → calculated → approved → processed → paid, plus cancelled
from any non-terminal state. Every transition re-reads the row under a
row lock, appends one audit entry and flushes through SQLAlchemy's
``version_id`` counter, so a concurrent writer fails with a state conflict
instead of overwriting.
"""

from __future__ import annotations

import calendar
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from payroll_backend.attendance.service import AttendanceService, working_days_between
from payroll_backend.auth.dependencies import role_satisfies
from payroll_backend.common.audit import create_audit_entry
from payroll_backend.common.constants import (
    ApprovalStepStatus,
    ChallanType,
    PayrollStatus,
    TransactionStatus,
    UserRole,
)
from payroll_backend.common.exceptions import (
    AppException,
    DuplicatePayrollException,
    ForbiddenException,
    ImmutableRecordException,
    NotFoundException,
    StateConflictException,
    UpstreamUnavailableException,
    ValidationException,
    WorkflowIncompleteException,
)
from payroll_backend.common.money import ZERO, as_number, to_decimal
from payroll_backend.config import settings
from payroll_backend.core_hr.models import Employee
from payroll_backend.expenses.service import ExpenseService
from payroll_backend.payroll.aggregator import (
    ManualAdjustments,
    PayrollInputs,
    ProcessingRules,
    compute_payroll,
)
from payroll_backend.payroll.documents import DocumentSink, FileDocumentSink
from payroll_backend.payroll.models import Payroll, PayrollApprovalStep
from payroll_backend.payroll.statutory import StatutoryConfig, build_challan
from payroll_backend.salary.calculator import StructureInput, structure_statutory_config
from payroll_backend.salary.service import SalaryStructureService
from payroll_backend.tax.calculator import TaxConfig
from payroll_backend.tax.service import TaxService

logger = logging.getLogger(__name__)

_CHALLAN_STATUSES = (
    PayrollStatus.approved.value,
    PayrollStatus.processed.value,
    PayrollStatus.paid.value,
)

_CANCELLABLE_TRANSACTIONS = (
    TransactionStatus.pending,
    TransactionStatus.queued,
    TransactionStatus.failed,
)


def period_bounds(month: int, year: int) -> tuple[date, date]:
    """First and last calendar day of ``month/year``."""
    if not 1 <= month <= 12:
        raise ValidationException({"month": ["Month must be between 1 and 12."]})
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


@dataclass
class BulkGenerationResult:
    month: int
    year: int
    payrolls: list[Payroll] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def generated(self) -> int:
        return len(self.payrolls)

    @property
    def failed(self) -> int:
        return len(self.errors)


def _status_values(payroll: Payroll) -> dict[str, Any]:
    return {
        "status": payroll.status,
        "gross_pay": as_number(payroll.gross_pay),
        "total_deductions": as_number(payroll.total_deductions),
        "net_pay": as_number(payroll.net_pay),
    }


class PayrollService:
    """Business logic for monthly payrolls."""

    # ─────────────────────────────────────────────────────────────────
    # Loading & guards
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_payroll(
        db: AsyncSession,
        payroll_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> Payroll:
        """Load a payroll. ``for_update`` takes a row lock and refreshes the
        identity-map copy so the caller sees the committed state."""
        stmt = select(Payroll).where(Payroll.id == payroll_id)
        if for_update:
            stmt = stmt.with_for_update(of=Payroll).execution_options(populate_existing=True)
        payroll = (await db.execute(stmt)).unique().scalar_one_or_none()
        if payroll is None:
            raise NotFoundException("Payroll", str(payroll_id))
        return payroll

    @staticmethod
    def _ensure_mutable(payroll: Payroll) -> None:
        if payroll.status == PayrollStatus.paid.value:
            raise ImmutableRecordException(
                "Payroll", payroll.status, f"Payroll {payroll.payroll_code} is paid and immutable.",
            )
        if payroll.status == PayrollStatus.cancelled.value:
            raise StateConflictException(
                "Payroll", payroll.status, f"Payroll {payroll.payroll_code} is cancelled.",
            )

    @staticmethod
    def _require_status(payroll: Payroll, *allowed: PayrollStatus) -> None:
        PayrollService._ensure_mutable(payroll)
        if payroll.status not in {s.value for s in allowed}:
            raise StateConflictException(
                "Payroll",
                payroll.status,
                f"Payroll {payroll.payroll_code} is {payroll.status}; expected "
                f"{' or '.join(s.value for s in allowed)}.",
            )

    @staticmethod
    async def _flush(db: AsyncSession, payroll: Payroll) -> None:
        try:
            await db.flush()
        except StaleDataError:
            raise StateConflictException(
                "Payroll",
                payroll.status,
                f"Payroll {payroll.payroll_code} was modified concurrently.",
            )

    @staticmethod
    async def _transition(
        db: AsyncSession,
        payroll: Payroll,
        target: PayrollStatus,
        *,
        action: str,
        actor_id: Optional[uuid.UUID],
        extra: Optional[dict[str, Any]] = None,
    ) -> None:
        old_status = payroll.status
        payroll.status = target.value
        await PayrollService._flush(db, payroll)
        await create_audit_entry(
            db,
            action=action,
            entity_type="payroll",
            entity_id=payroll.id,
            actor_id=actor_id,
            old_values={"status": old_status},
            new_values={"status": payroll.status, **(extra or {})},
        )
        logger.info("Payroll %s: %s → %s", payroll.payroll_code, old_status, payroll.status)

    @staticmethod
    def _reset_approval_steps(payroll: Payroll) -> None:
        """Reset the workflow to one pending step per configured level.

        Existing rows are reused in place so the (payroll, level) unique key
        never sees a delete and insert of the same level in one flush.
        """
        roles = settings.payroll_approval_levels
        steps = {s.level: s for s in payroll.approval_steps}
        for level, role in enumerate(roles, start=1):
            step = steps.pop(level, None)
            if step is None:
                payroll.approval_steps.append(
                    PayrollApprovalStep(level=level, approver_role=role)
                )
                continue
            step.approver_role = role
            step.status = ApprovalStepStatus.pending.value
            step.approver_id = None
            step.action_at = None
            step.comments = None
        for step in steps.values():
            payroll.approval_steps.remove(step)

    # ─────────────────────────────────────────────────────────────────
    # Calculation
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _load_employee(db: AsyncSession, employee_id: uuid.UUID) -> Employee:
        employee = (
            await db.execute(
                select(Employee)
                .where(Employee.id == employee_id)
                .options(selectinload(Employee.location), selectinload(Employee.department))
                .execution_options(populate_existing=True)
            )
        ).scalars().first()
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))
        return employee

    @staticmethod
    async def _calculate(
        db: AsyncSession,
        payroll: Payroll,
        employee: Employee,
        rules: ProcessingRules,
        adjustments: ManualAdjustments,
    ) -> None:
        """Compute every derived field of ``payroll`` in place."""
        start, end = payroll.pay_period_start, payroll.pay_period_end

        structure = await SalaryStructureService.get_effective_structure(db, employee.id, end)
        if structure is None:
            structure = await SalaryStructureService.get_effective_structure(db, employee.id, start)
        if structure is None:
            raise UpstreamUnavailableException(
                "salary_structure",
                f"No approved salary structure for employee '{employee.employee_code}' "
                f"in {payroll.period_label}.",
            )

        working_days = working_days_between(start, end)
        if working_days <= 0:
            raise ValidationException({"working_days": ["Pay period has no working days."]})

        structure_input = StructureInput.from_model(structure)
        statutory_config = structure_statutory_config(
            structure_input, StatutoryConfig.from_settings(settings),
        )
        resolved = structure.resolve(StatutoryConfig.from_settings(settings))

        partial = employee.is_partial_period(start, end)
        attendance = None
        if rules.attendance_based_salary:
            attendance = await AttendanceService.get_summary(
                db, employee.id, start, end, partial_period=partial,
            )

        if rules.include_reimbursements:
            reimbursements = await ExpenseService.reserve_reimbursements(
                db, employee.id, payroll.id, end,
            )
        else:
            await ExpenseService.release_reimbursements(db, payroll.id)
            reimbursements = ZERO
        adjustments = ManualAdjustments(
            **{**{k: getattr(adjustments, k) for k in adjustments.__dataclass_fields__},
               "reimbursements": reimbursements},
        )

        tax_inputs = await TaxService.tax_inputs_for(db, employee.id, payroll.month, payroll.year)
        pt_state = (structure.calculation_rules or {}).get("pt_state") or (
            employee.location.pt_state if employee.location is not None else None
        )

        computation = compute_payroll(
            PayrollInputs(
                structure=resolved,
                working_days=working_days,
                attendance=attendance,
                rules=rules,
                tax=tax_inputs,
                adjustments=adjustments,
                pt_state=pt_state,
            ),
            statutory_config,
            TaxConfig.from_settings(settings),
            overtime_multiplier=to_decimal(settings.OVERTIME_MULTIPLIER),
            hours_per_day=settings.STANDARD_HOURS_PER_DAY,
        )

        payroll.structure_id = structure.id
        payroll.structure_snapshot = {"structure_version": structure.version, **resolved.to_dict()}
        payroll.working_days = working_days
        payroll.actual_working_days = computation.attendance.actual_working_days
        payroll.earnings = computation.earnings
        payroll.statutory_deductions = computation.statutory_deductions
        payroll.other_deductions = computation.other_deductions
        payroll.adjustments = {
            k: v for k, v in adjustments.to_dict().items() if k != "reimbursements"
        }
        payroll.processing_rules = rules.to_dict()
        payroll.attendance_data = {
            **computation.attendance.to_dict(),
            "adjustment": computation.adjustment.to_dict(),
        }
        payroll.compliance = {
            "pf_applicable": computation.statutory.pf.employee > ZERO,
            "esi_applicable": computation.statutory.esi.applicable,
            "pt_state": computation.statutory.pt_state,
            "tax_regime": computation.tax.regime.value,
        }
        payroll.gross_pay = computation.gross_pay
        payroll.total_deductions = computation.total_deductions
        payroll.net_pay = computation.net_pay
        payroll.calculated_at = datetime.now(timezone.utc)

    # ─────────────────────────────────────────────────────────────────
    # Generate / recalculate
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def generate_payroll(
        db: AsyncSession,
        employee_id: uuid.UUID,
        month: int,
        year: int,
        *,
        actor_id: Optional[uuid.UUID] = None,
        rules: Optional[ProcessingRules] = None,
        adjustments: Optional[ManualAdjustments] = None,
    ) -> Payroll:
        """Create and calculate the payroll for one employee and month.

        Raises:
            DuplicatePayrollException: a payroll already exists for the period.
            UpstreamUnavailableException: no structure / attendance for the period.
        """
        start, end = period_bounds(month, year)
        employee = await PayrollService._load_employee(db, employee_id)
        if not employee.is_payable_in(start, end):
            raise ValidationException(
                {"employee_id": [f"Employee {employee.employee_code} is not employed in {year}-{month:02d}."]}
            )

        existing = (
            await db.execute(
                select(Payroll.id).where(
                    Payroll.employee_id == employee_id,
                    Payroll.month == month,
                    Payroll.year == year,
                )
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicatePayrollException(employee_id, month, year)

        rules = rules or ProcessingRules()
        adjustments = adjustments or ManualAdjustments()

        payroll = Payroll(
            id=uuid.uuid4(),
            payroll_code=f"PAY-{year}{month:02d}-{employee.employee_code}",
            employee_id=employee.id,
            employee=employee,
            month=month,
            year=year,
            pay_period_start=start,
            pay_period_end=end,
            status=PayrollStatus.draft.value,
            created_by_id=actor_id,
            earnings={},
            statutory_deductions={},
            other_deductions={},
            approval_steps=[],
        )
        try:
            async with db.begin_nested():
                db.add(payroll)
                await db.flush()
        except IntegrityError:
            raise DuplicatePayrollException(employee_id, month, year)

        await create_audit_entry(
            db,
            action="create",
            entity_type="payroll",
            entity_id=payroll.id,
            actor_id=actor_id,
            new_values={"status": payroll.status, "period": payroll.period_label},
        )

        await PayrollService._calculate(db, payroll, employee, rules, adjustments)
        PayrollService._reset_approval_steps(payroll)
        await PayrollService._transition(
            db, payroll, PayrollStatus.calculated,
            action="calculate", actor_id=actor_id, extra=_status_values(payroll),
        )
        return payroll

    @staticmethod
    async def generate_bulk(
        db: AsyncSession,
        employee_ids: Iterable[uuid.UUID],
        month: int,
        year: int,
        *,
        actor_id: Optional[uuid.UUID] = None,
        rules: Optional[ProcessingRules] = None,
        adjustments: Optional[ManualAdjustments] = None,
    ) -> BulkGenerationResult:
        """Generate payrolls for several employees at once.

        Each employee runs in its own savepoint; a failure is collected on
        the result and the remaining employees still get their payroll.
        """
        period_bounds(month, year)
        result = BulkGenerationResult(month=month, year=year)
        for employee_id in dict.fromkeys(employee_ids):
            try:
                async with db.begin_nested():
                    payroll = await PayrollService.generate_payroll(
                        db, employee_id, month, year,
                        actor_id=actor_id, rules=rules, adjustments=adjustments,
                    )
            except AppException as exc:
                result.errors.append({
                    "employee_id": employee_id,
                    "error_type": exc.error_type,
                    "detail": exc.detail,
                })
                continue
            result.payrolls.append(payroll)

        logger.info(
            "Bulk payroll %d-%02d: generated=%d failed=%d",
            year, month, result.generated, result.failed,
        )
        return result

    @staticmethod
    async def recalculate(
        db: AsyncSession,
        payroll_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
        rules: Optional[ProcessingRules] = None,
        adjustments: Optional[ManualAdjustments] = None,
    ) -> Payroll:
        """Recompute a draft/calculated payroll in place and restart its approvals.

        Unspecified rules / adjustments reuse the ones stored on the payroll,
        so recalculating with unchanged inputs yields identical values.
        """
        payroll = await PayrollService.get_payroll(db, payroll_id, for_update=True)
        PayrollService._require_status(payroll, PayrollStatus.draft, PayrollStatus.calculated)

        employee = await PayrollService._load_employee(db, payroll.employee_id)
        rules = rules or ProcessingRules.from_dict(payroll.processing_rules)
        adjustments = adjustments or ManualAdjustments.from_dict(payroll.adjustments)
        old_values = _status_values(payroll)

        await PayrollService._calculate(db, payroll, employee, rules, adjustments)
        PayrollService._reset_approval_steps(payroll)
        payroll.approved_by_id = None
        payroll.approved_at = None
        old_status = payroll.status
        payroll.status = PayrollStatus.calculated.value
        await PayrollService._flush(db, payroll)

        await create_audit_entry(
            db,
            action="recalculate",
            entity_type="payroll",
            entity_id=payroll.id,
            actor_id=actor_id,
            old_values={**old_values, "status": old_status},
            new_values=_status_values(payroll),
        )
        return payroll

    # ─────────────────────────────────────────────────────────────────
    # Approval workflow
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _get_step(payroll: Payroll, level: int) -> PayrollApprovalStep:
        step = payroll.step(level)
        if step is None:
            raise ValidationException(
                {"level": [f"Payroll {payroll.payroll_code} has no approval level {level}."]}
            )
        return step

    @staticmethod
    async def approve_level(
        db: AsyncSession,
        payroll_id: uuid.UUID,
        level: int,
        approver_id: uuid.UUID,
        approver_role: UserRole | str,
        *,
        comments: Optional[str] = None,
    ) -> Payroll:
        """Approve one workflow level; approving the last one approves the payroll."""
        payroll = await PayrollService.get_payroll(db, payroll_id, for_update=True)
        PayrollService._require_status(payroll, PayrollStatus.calculated)
        step = PayrollService._get_step(payroll, level)

        pending_below = [
            s.level for s in payroll.approval_steps
            if s.level < level and s.status != ApprovalStepStatus.approved.value
        ]
        if pending_below:
            raise WorkflowIncompleteException(
                "Payroll",
                payroll.status,
                f"Levels {pending_below} must be approved before level {level}.",
            )
        if step.status != ApprovalStepStatus.pending.value:
            raise StateConflictException(
                "PayrollApprovalStep", step.status,
                f"Approval level {level} is already {step.status}.",
            )
        if not role_satisfies(approver_role, [step.approver_role]):
            raise ForbiddenException(
                detail=f"Approval level {level} requires role '{step.approver_role}'.",
            )

        step.status = ApprovalStepStatus.approved.value
        step.approver_id = approver_id
        step.action_at = datetime.now(timezone.utc)
        step.comments = comments
        await PayrollService._flush(db, payroll)
        await create_audit_entry(
            db,
            action="approve_level",
            entity_type="payroll",
            entity_id=payroll.id,
            actor_id=approver_id,
            old_values={"level": level, "status": ApprovalStepStatus.pending.value},
            new_values={"level": level, "status": step.status, "comments": comments},
        )

        if payroll.workflow_complete:
            payroll.approved_by_id = approver_id
            payroll.approved_at = step.action_at
            await PayrollService._transition(
                db, payroll, PayrollStatus.approved, action="approve", actor_id=approver_id,
            )
        return payroll

    @staticmethod
    async def reject_level(
        db: AsyncSession,
        payroll_id: uuid.UUID,
        level: int,
        approver_id: uuid.UUID,
        approver_role: UserRole | str,
        *,
        comments: Optional[str] = None,
    ) -> Payroll:
        """Reject one level. The payroll itself stays ``calculated``."""
        payroll = await PayrollService.get_payroll(db, payroll_id, for_update=True)
        PayrollService._require_status(payroll, PayrollStatus.calculated)
        step = PayrollService._get_step(payroll, level)
        if step.status != ApprovalStepStatus.pending.value:
            raise StateConflictException(
                "PayrollApprovalStep", step.status,
                f"Approval level {level} is already {step.status}.",
            )
        if not role_satisfies(approver_role, [step.approver_role]):
            raise ForbiddenException(
                detail=f"Approval level {level} requires role '{step.approver_role}'.",
            )

        step.status = ApprovalStepStatus.rejected.value
        step.approver_id = approver_id
        step.action_at = datetime.now(timezone.utc)
        step.comments = comments
        await PayrollService._flush(db, payroll)
        await create_audit_entry(
            db,
            action="reject_level",
            entity_type="payroll",
            entity_id=payroll.id,
            actor_id=approver_id,
            old_values={"level": level, "status": ApprovalStepStatus.pending.value},
            new_values={"level": level, "status": step.status, "comments": comments},
        )
        return payroll

    @staticmethod
    async def reroute_level(
        db: AsyncSession,
        payroll_id: uuid.UUID,
        level: int,
        approver_role: UserRole | str,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Payroll:
        """Re-open a level (typically after rejection), optionally for another role."""
        role = UserRole(approver_role).value
        payroll = await PayrollService.get_payroll(db, payroll_id, for_update=True)
        PayrollService._require_status(payroll, PayrollStatus.calculated)
        step = PayrollService._get_step(payroll, level)

        old_values = {"level": level, "status": step.status, "approver_role": step.approver_role}
        step.approver_role = role
        step.status = ApprovalStepStatus.pending.value
        step.approver_id = None
        step.action_at = None
        await PayrollService._flush(db, payroll)
        await create_audit_entry(
            db,
            action="reroute_level",
            entity_type="payroll",
            entity_id=payroll.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values={"level": level, "status": step.status, "approver_role": role},
        )
        return payroll

    @staticmethod
    async def approve_payroll(
        db: AsyncSession,
        payroll_id: uuid.UUID,
        approver_id: uuid.UUID,
    ) -> Payroll:
        """Explicit calculated → approved once every level is approved."""
        payroll = await PayrollService.get_payroll(db, payroll_id, for_update=True)
        PayrollService._require_status(payroll, PayrollStatus.calculated)
        if not payroll.workflow_complete:
            pending = [s.level for s in payroll.approval_steps if s.status != ApprovalStepStatus.approved.value]
            raise WorkflowIncompleteException(
                "Payroll", payroll.status, f"Approval levels {pending} are not approved.",
            )
        payroll.approved_by_id = approver_id
        payroll.approved_at = datetime.now(timezone.utc)
        await PayrollService._transition(
            db, payroll, PayrollStatus.approved, action="approve", actor_id=approver_id,
        )
        return payroll

    # ─────────────────────────────────────────────────────────────────
    # Processing / payment (driven by the disbursement engine)
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def mark_processed(
        db: AsyncSession,
        payroll_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Payroll:
        """approved → processed; posts the month's TDS to the tax record."""
        payroll = await PayrollService.get_payroll(db, payroll_id, for_update=True)
        PayrollService._require_status(payroll, PayrollStatus.approved)

        payroll.processed_by_id = actor_id
        payroll.processed_at = datetime.now(timezone.utc)
        payroll.payment_status = "processing"
        await PayrollService._transition(
            db, payroll, PayrollStatus.processed, action="process", actor_id=actor_id,
        )

        tds = (payroll.statutory_deductions or {}).get("income_tax", {}).get("tax_deducted", 0)
        await TaxService.post_monthly_tds(
            db,
            payroll.employee_id,
            payroll.month,
            payroll.year,
            gross_income=payroll.gross_pay,
            tds_amount=tds,
            payroll_id=payroll.id,
            actor_id=actor_id,
        )
        return payroll

    @staticmethod
    async def mark_paid(
        db: AsyncSession,
        payroll_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
        transaction_id: Optional[str] = None,
        utr_number: Optional[str] = None,
        payment_date: Optional[datetime] = None,
    ) -> Payroll:
        """processed → paid. After this the payroll is immutable."""
        payroll = await PayrollService.get_payroll(db, payroll_id, for_update=True)
        PayrollService._require_status(payroll, PayrollStatus.processed)

        now = datetime.now(timezone.utc)
        payroll.payment_status = "paid"
        payroll.transaction_id = transaction_id
        payroll.utr_number = utr_number
        payroll.payment_date = payment_date or now
        payroll.paid_at = now
        await PayrollService._transition(
            db, payroll, PayrollStatus.paid, action="pay", actor_id=actor_id,
            extra={"transaction_id": transaction_id, "utr_number": utr_number},
        )
        await ExpenseService.mark_reimbursed(db, payroll.id, actor_id)
        return payroll

    @staticmethod
    async def cancel_payroll(
        db: AsyncSession,
        payroll_id: uuid.UUID,
        actor_id: uuid.UUID,
        reason: str,
    ) -> Payroll:
        """Cancel from any non-terminal state. Irreversible.

        A disbursement that has not reached the rail (pending, queued or
        failed) is cancelled with the payroll. While one is ``processing``
        the payroll cannot be cancelled.
        """
        payroll = await PayrollService.get_payroll(db, payroll_id, for_update=True)
        PayrollService._ensure_mutable(payroll)
        await PayrollService._cancel_open_disbursement(db, payroll, actor_id, reason)

        payroll.cancelled_by_id = actor_id
        payroll.cancelled_at = datetime.now(timezone.utc)
        payroll.cancellation_reason = reason
        await PayrollService._transition(
            db, payroll, PayrollStatus.cancelled, action="cancel", actor_id=actor_id,
            extra={"reason": reason},
        )
        await ExpenseService.release_reimbursements(db, payroll.id)
        return payroll

    @staticmethod
    async def _cancel_open_disbursement(
        db: AsyncSession,
        payroll: Payroll,
        actor_id: Optional[uuid.UUID],
        reason: str,
    ) -> None:
        from payroll_backend.disbursement.models import SalaryDisbursement
        from payroll_backend.disbursement.service import DisbursementService

        disbursement = (
            await db.execute(
                select(SalaryDisbursement)
                .where(SalaryDisbursement.payroll_id == payroll.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if disbursement is None:
            return

        status = TransactionStatus(disbursement.status)
        if status is TransactionStatus.processing:
            raise StateConflictException(
                "Payroll",
                payroll.status,
                f"Payroll {payroll.payroll_code} has disbursement "
                f"{disbursement.disbursement_code} with the payment rail; "
                "wait for its outcome before cancelling.",
            )
        if status in _CANCELLABLE_TRANSACTIONS:
            await DisbursementService.update_payment_status(
                db,
                disbursement.id,
                TransactionStatus.cancelled,
                actor_id=actor_id,
                remarks=f"Payroll cancelled: {reason}",
            )

    # ─────────────────────────────────────────────────────────────────
    # Payslips
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def generate_payslip(
        db: AsyncSession,
        payroll_id: uuid.UUID,
        *,
        sink: Optional[DocumentSink] = None,
    ) -> Payroll:
        """Render the payslip. Sink failures are logged and leave the payroll as is."""
        payroll = await PayrollService.get_payroll(db, payroll_id)
        if payroll.status in (PayrollStatus.draft.value, PayrollStatus.cancelled.value):
            raise StateConflictException("Payroll", payroll.status)

        try:
            artifact = (sink or FileDocumentSink()).render_payslip(payroll)
        except Exception:
            logger.warning("Payslip generation failed for %s", payroll.payroll_code, exc_info=True)
            return payroll

        if payroll.status == PayrollStatus.paid.value:
            # paid rows are immutable; the payslip path lives on the artifact only
            return payroll
        payroll.payslip_path = artifact.path
        payroll.payslip_generated_at = artifact.generated_at
        await PayrollService._flush(db, payroll)
        return payroll

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def find_payroll(
        db: AsyncSession,
        employee_id: uuid.UUID,
        month: int,
        year: int,
    ) -> Optional[Payroll]:
        result = await db.execute(
            select(Payroll).where(
                Payroll.employee_id == employee_id,
                Payroll.month == month,
                Payroll.year == year,
            )
        )
        return result.unique().scalar_one_or_none()

    @staticmethod
    async def list_payrolls(
        db: AsyncSession,
        *,
        month: Optional[int] = None,
        year: Optional[int] = None,
        status: Optional[PayrollStatus] = None,
        employee_id: Optional[uuid.UUID] = None,
        department_id: Optional[uuid.UUID] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[Payroll], int]:
        stmt = select(Payroll)
        if month is not None:
            stmt = stmt.where(Payroll.month == month)
        if year is not None:
            stmt = stmt.where(Payroll.year == year)
        if status is not None:
            stmt = stmt.where(Payroll.status == status.value)
        if employee_id is not None:
            stmt = stmt.where(Payroll.employee_id == employee_id)
        if department_id is not None:
            stmt = stmt.where(
                Payroll.employee_id.in_(
                    select(Employee.id).where(Employee.department_id == department_id)
                )
            )

        count_q = stmt.with_only_columns(func.count(), maintain_column_froms=True).order_by(None)
        total = (await db.execute(count_q)).scalar_one()
        stmt = (
            stmt.order_by(Payroll.year.desc(), Payroll.month.desc(), Payroll.payroll_code)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await db.execute(stmt)
        return list(result.unique().scalars().all()), total

    @staticmethod
    async def get_payroll_summary(db: AsyncSession, month: int, year: int) -> dict:
        """Counts per status and money totals for a period (cancelled excluded)."""
        payrolls = (
            await db.execute(
                select(Payroll).where(Payroll.month == month, Payroll.year == year)
            )
        ).unique().scalars().all()

        by_status: dict[str, int] = {s.value: 0 for s in PayrollStatus}
        gross = deductions = net = pf = esi = pt = tds = ZERO
        for p in payrolls:
            by_status[p.status] = by_status.get(p.status, 0) + 1
            if p.status == PayrollStatus.cancelled.value:
                continue
            gross += to_decimal(p.gross_pay)
            deductions += to_decimal(p.total_deductions)
            net += to_decimal(p.net_pay)
            stat = p.statutory_deductions or {}
            pf += to_decimal((stat.get("pf") or {}).get("total"))
            esi += to_decimal((stat.get("esi") or {}).get("total"))
            pt += to_decimal((stat.get("professional_tax") or {}).get("amount"))
            tds += to_decimal((stat.get("income_tax") or {}).get("tax_deducted"))

        return {
            "month": month,
            "year": year,
            "total_payrolls": len(payrolls),
            "by_status": by_status,
            "total_gross": as_number(gross),
            "total_deductions": as_number(deductions),
            "total_net": as_number(net),
            "statutory": {
                "pf": as_number(pf),
                "esi": as_number(esi),
                "professional_tax": as_number(pt),
                "tds": as_number(tds),
            },
        }

    @staticmethod
    async def get_challan(
        db: AsyncSession,
        kind: ChallanType,
        month: int,
        year: int,
    ) -> dict:
        """PF / ESI / PT remittance totals over the period's approved,
        processed and paid payrolls."""
        payrolls = (
            await db.execute(
                select(Payroll)
                .where(
                    Payroll.month == month,
                    Payroll.year == year,
                    Payroll.status.in_(_CHALLAN_STATUSES),
                )
                .order_by(Payroll.payroll_code)
            )
        ).unique().scalars().all()
        challan = build_challan(
            ChallanType(kind).value,
            (
                {
                    "employee_id": p.employee_id,
                    "employee_code": p.employee.employee_code if p.employee else None,
                    "statutory_deductions": p.statutory_deductions,
                }
                for p in payrolls
            ),
        )
        return {"month": month, "year": year, **challan}
