"""Payroll cycle router — the monthly run from attendance lock to completion."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_backend.auth.dependencies import get_current_role, require_role
from payroll_backend.common.constants import CycleStatus, PayrollStatus, UserRole
from payroll_backend.core_hr.models import Employee
from payroll_backend.database import get_db
from payroll_backend.disbursement.schemas import BatchResultOut
from payroll_backend.payroll.schemas import PayrollListResponse, PayrollOut
from payroll_backend.payroll_cycle.schemas import (
    CycleCreate,
    CycleDisburse,
    CycleDisbursementOut,
    CycleOut,
    CycleProcess,
    CycleProcessingResultOut,
    CycleStepDecision,
    CycleStepOut,
    ProcessingErrorOut,
    StageAdvance,
)
from payroll_backend.payroll_cycle.service import PayrollCycleService

router = APIRouter(prefix="", tags=["payroll-cycles"])

_READERS = (UserRole.hr_admin, UserRole.finance_admin)
_RUNNERS = (UserRole.hr_admin,)


# ── GET / ────────────────────────────────────────────────────────────

@router.get("", response_model=list[CycleOut])
async def list_cycles(
    year: Optional[int] = Query(None),
    status: Optional[CycleStatus] = Query(None),
    employee: Employee = Depends(require_role(*_READERS)),
    db: AsyncSession = Depends(get_db),
):
    cycles = await PayrollCycleService.list_cycles(db, year=year, status=status)
    return [CycleOut.model_validate(c) for c in cycles]


# ── POST / ───────────────────────────────────────────────────────────

@router.post("", response_model=CycleOut, status_code=201)
async def create_cycle(
    data: CycleCreate,
    employee: Employee = Depends(require_role(*_RUNNERS)),
    db: AsyncSession = Depends(get_db),
):
    cycle = await PayrollCycleService.create_cycle(
        db,
        data.month,
        data.year,
        actor_id=employee.id,
        rules=data.processing_rules.to_rules() if data.processing_rules else None,
    )
    return CycleOut.model_validate(cycle)


# ── POST /errors/{error_id}/resolve ──────────────────────────────────

@router.post("/errors/{error_id}/resolve", response_model=ProcessingErrorOut)
async def resolve_processing_error(
    error_id: uuid.UUID,
    employee: Employee = Depends(require_role(*_RUNNERS)),
    db: AsyncSession = Depends(get_db),
):
    error = await PayrollCycleService.resolve_error(db, error_id, employee.id)
    return ProcessingErrorOut.model_validate(error)


# ── GET /current ─────────────────────────────────────────────────────

@router.get("/current", response_model=CycleOut)
async def current_cycle(
    employee: Employee = Depends(require_role(*_READERS)),
    db: AsyncSession = Depends(get_db),
):
    cycle = await PayrollCycleService.get_current_cycle(db)
    return CycleOut.model_validate(cycle)


# ── GET /{cycle_id} ──────────────────────────────────────────────────

@router.get("/{cycle_id}", response_model=CycleOut)
async def get_cycle(
    cycle_id: uuid.UUID,
    employee: Employee = Depends(require_role(*_READERS)),
    db: AsyncSession = Depends(get_db),
):
    cycle = await PayrollCycleService.get_cycle(db, cycle_id)
    return CycleOut.model_validate(cycle)


@router.get("/{cycle_id}/step", response_model=CycleStepOut)
async def current_step(
    cycle_id: uuid.UUID,
    employee: Employee = Depends(require_role(*_READERS)),
    db: AsyncSession = Depends(get_db),
):
    cycle = await PayrollCycleService.get_cycle(db, cycle_id)
    return PayrollCycleService.get_current_step(cycle)


@router.get("/{cycle_id}/payslips", response_model=PayrollListResponse)
async def cycle_payslips(
    cycle_id: uuid.UUID,
    status: Optional[PayrollStatus] = Query(None),
    department_id: Optional[uuid.UUID] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    employee: Employee = Depends(require_role(*_READERS)),
    db: AsyncSession = Depends(get_db),
):
    payrolls, total = await PayrollCycleService.list_cycle_payrolls(
        db,
        cycle_id,
        status=status,
        department_id=department_id,
        page=page,
        page_size=page_size,
    )
    return PayrollListResponse(
        data=[PayrollOut.model_validate(p) for p in payrolls],
        total=total,
        page=page,
        page_size=page_size,
    )


# ── POST /{cycle_id}/lock-attendance ─────────────────────────────────

@router.post("/{cycle_id}/lock-attendance", response_model=CycleOut)
async def lock_attendance(
    cycle_id: uuid.UUID,
    employee: Employee = Depends(require_role(*_RUNNERS)),
    db: AsyncSession = Depends(get_db),
):
    cycle = await PayrollCycleService.lock_attendance(db, cycle_id, employee.id)
    return CycleOut.model_validate(cycle)


# ── POST /{cycle_id}/process ─────────────────────────────────────────

@router.post("/{cycle_id}/process", response_model=CycleProcessingResultOut)
async def process_cycle(
    cycle_id: uuid.UUID,
    data: CycleProcess = CycleProcess(),
    employee: Employee = Depends(require_role(*_RUNNERS)),
    db: AsyncSession = Depends(get_db),
):
    """Generate or recalculate payrolls; per-employee failures come back in ``errors``."""
    result = await PayrollCycleService.process_cycle(
        db, cycle_id, actor_id=employee.id, employee_ids=data.employee_ids,
    )
    cycle = await PayrollCycleService.get_cycle(db, cycle_id)
    return CycleProcessingResultOut(
        cycle=CycleOut.model_validate(cycle),
        processed=result.processed,
        skipped=result.skipped,
        failed=result.failed,
        payroll_ids=result.payroll_ids,
        errors=result.errors,
    )


# ── POST /{cycle_id}/advance ─────────────────────────────────────────

@router.post("/{cycle_id}/advance", response_model=CycleOut)
async def advance_stage(
    cycle_id: uuid.UUID,
    data: StageAdvance,
    employee: Employee = Depends(require_role(*_READERS)),
    db: AsyncSession = Depends(get_db),
):
    cycle = await PayrollCycleService.advance_stage(
        db, cycle_id, data.target, employee.id, remarks=data.remarks,
    )
    return CycleOut.model_validate(cycle)


# ── POST /{cycle_id}/approvals/{level} ───────────────────────────────

@router.post("/{cycle_id}/approvals/{level}", response_model=CycleOut)
async def decide_approval_step(
    cycle_id: uuid.UUID,
    level: int,
    request: Request,
    data: CycleStepDecision = CycleStepDecision(),
    employee: Employee = Depends(require_role(*_READERS)),
    db: AsyncSession = Depends(get_db),
):
    cycle = await PayrollCycleService.approve_step(
        db,
        cycle_id,
        level,
        employee.id,
        get_current_role(request),
        approve=data.approve,
        remarks=data.remarks,
    )
    return CycleOut.model_validate(cycle)


# ── POST /{cycle_id}/disburse ────────────────────────────────────────

@router.post("/{cycle_id}/disburse", response_model=CycleDisbursementOut)
async def disburse_cycle(
    cycle_id: uuid.UUID,
    data: CycleDisburse = CycleDisburse(),
    employee: Employee = Depends(require_role(UserRole.finance_admin)),
    db: AsyncSession = Depends(get_db),
):
    cycle, batch = await PayrollCycleService.disburse_cycle(
        db, cycle_id, actor_id=employee.id, payment_method=data.payment_method,
    )
    return CycleDisbursementOut(
        cycle=CycleOut.model_validate(cycle),
        batch=BatchResultOut.model_validate(batch),
    )


# ── POST /{cycle_id}/refresh-summary ─────────────────────────────────

@router.post("/{cycle_id}/refresh-summary", response_model=CycleOut)
async def refresh_summary(
    cycle_id: uuid.UUID,
    employee: Employee = Depends(require_role(*_READERS)),
    db: AsyncSession = Depends(get_db),
):
    cycle = await PayrollCycleService.get_cycle(db, cycle_id, for_update=True)
    await PayrollCycleService.refresh_summary(db, cycle)
    return CycleOut.model_validate(cycle)
