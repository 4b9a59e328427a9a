"""Payroll router — generation, approval workflow, payslips and challans.

All endpoints require authentication. Employees can read their own
payrolls; everything else is HR / Finance.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_backend.auth.dependencies import (
    get_current_role,
    get_current_user,
    require_role,
    role_satisfies,
)
from payroll_backend.common.constants import ChallanType, PayrollStatus, UserRole
from payroll_backend.common.exceptions import ForbiddenException
from payroll_backend.core_hr.models import Employee
from payroll_backend.database import get_db
from payroll_backend.payroll.documents import DocumentSink, get_document_sink
from payroll_backend.payroll.schemas import (
    BulkGenerateOut,
    ChallanOut,
    LevelDecision,
    LevelReroute,
    PayrollBulkGenerate,
    PayrollCancel,
    PayrollGenerate,
    PayrollListResponse,
    PayrollOut,
    PayrollRecalculate,
    PayrollSummaryOut,
)
from payroll_backend.payroll.service import PayrollService

router = APIRouter(prefix="", tags=["payroll"])

_READERS = (UserRole.hr_admin, UserRole.finance_admin)
_GENERATORS = (UserRole.hr_admin,)
_APPROVERS = (UserRole.hr_admin, UserRole.finance_admin)


# ── GET / ────────────────────────────────────────────────────────────

@router.get("", response_model=PayrollListResponse)
async def list_payrolls(
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None),
    status: Optional[PayrollStatus] = Query(None),
    employee_id: Optional[uuid.UUID] = Query(None),
    department_id: Optional[uuid.UUID] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    employee: Employee = Depends(require_role(*_READERS)),
    db: AsyncSession = Depends(get_db),
):
    payrolls, total = await PayrollService.list_payrolls(
        db,
        month=month,
        year=year,
        status=status,
        employee_id=employee_id,
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


# ── GET /my-payrolls ─────────────────────────────────────────────────

@router.get("/my-payrolls", response_model=PayrollListResponse)
async def my_payrolls(
    year: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(12, ge=1, le=100),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Own payrolls; drafts and cancelled payrolls are hidden."""
    payrolls, total = await PayrollService.list_payrolls(
        db, year=year, employee_id=employee.id, page=page, page_size=page_size,
    )
    hidden = (PayrollStatus.draft.value, PayrollStatus.cancelled.value)
    return PayrollListResponse(
        data=[PayrollOut.model_validate(p) for p in payrolls if p.status not in hidden],
        total=total,
        page=page,
        page_size=page_size,
    )


# ── GET /summary ─────────────────────────────────────────────────────

@router.get("/summary", response_model=PayrollSummaryOut)
async def payroll_summary(
    month: int = Query(..., ge=1, le=12),
    year: int = Query(...),
    employee: Employee = Depends(require_role(*_READERS)),
    db: AsyncSession = Depends(get_db),
):
    return await PayrollService.get_payroll_summary(db, month, year)


# ── GET /challans/{kind} ─────────────────────────────────────────────

@router.get("/challans/{kind}", response_model=ChallanOut)
async def statutory_challan(
    kind: ChallanType,
    month: int = Query(..., ge=1, le=12),
    year: int = Query(...),
    employee: Employee = Depends(require_role(UserRole.finance_admin)),
    db: AsyncSession = Depends(get_db),
):
    """PF / ESI / PT remittance totals for a month."""
    return await PayrollService.get_challan(db, kind, month, year)


# ── POST /generate ───────────────────────────────────────────────────

@router.post("/generate", response_model=PayrollOut, status_code=201)
async def generate_payroll(
    data: PayrollGenerate,
    employee: Employee = Depends(require_role(*_GENERATORS)),
    db: AsyncSession = Depends(get_db),
):
    payroll = await PayrollService.generate_payroll(
        db,
        data.employee_id,
        data.month,
        data.year,
        actor_id=employee.id,
        rules=data.processing_rules.to_rules() if data.processing_rules else None,
        adjustments=data.adjustments.to_adjustments() if data.adjustments else None,
    )
    return PayrollOut.model_validate(payroll)


# ── POST /generate-bulk ──────────────────────────────────────────────

@router.post("/generate-bulk", response_model=BulkGenerateOut)
async def generate_payrolls_bulk(
    data: PayrollBulkGenerate,
    employee: Employee = Depends(require_role(*_GENERATORS)),
    db: AsyncSession = Depends(get_db),
):
    """Per-employee outcome; one employee's failure does not stop the rest."""
    result = await PayrollService.generate_bulk(
        db,
        data.employee_ids,
        data.month,
        data.year,
        actor_id=employee.id,
        rules=data.processing_rules.to_rules() if data.processing_rules else None,
        adjustments=data.adjustments.to_adjustments() if data.adjustments else None,
    )
    return BulkGenerateOut.model_validate(result)


# ── GET /{payroll_id} ────────────────────────────────────────────────

@router.get("/{payroll_id}", response_model=PayrollOut)
async def get_payroll(
    payroll_id: uuid.UUID,
    request: Request,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    payroll = await PayrollService.get_payroll(db, payroll_id)
    if payroll.employee_id != employee.id and not role_satisfies(
        get_current_role(request), _READERS,
    ):
        raise ForbiddenException()
    return PayrollOut.model_validate(payroll)


# ── POST /{payroll_id}/recalculate ───────────────────────────────────

@router.post("/{payroll_id}/recalculate", response_model=PayrollOut)
async def recalculate_payroll(
    payroll_id: uuid.UUID,
    data: PayrollRecalculate = PayrollRecalculate(),
    employee: Employee = Depends(require_role(*_GENERATORS)),
    db: AsyncSession = Depends(get_db),
):
    payroll = await PayrollService.recalculate(
        db,
        payroll_id,
        actor_id=employee.id,
        rules=data.processing_rules.to_rules() if data.processing_rules else None,
        adjustments=data.adjustments.to_adjustments() if data.adjustments else None,
    )
    return PayrollOut.model_validate(payroll)


# ── POST /{payroll_id}/levels/{level}/approve | reject | reroute ────

@router.post("/{payroll_id}/levels/{level}/approve", response_model=PayrollOut)
async def approve_level(
    payroll_id: uuid.UUID,
    level: int,
    request: Request,
    body: LevelDecision = LevelDecision(),
    employee: Employee = Depends(require_role(*_APPROVERS)),
    db: AsyncSession = Depends(get_db),
):
    payroll = await PayrollService.approve_level(
        db, payroll_id, level, employee.id, get_current_role(request), comments=body.comments,
    )
    return PayrollOut.model_validate(payroll)


@router.post("/{payroll_id}/levels/{level}/reject", response_model=PayrollOut)
async def reject_level(
    payroll_id: uuid.UUID,
    level: int,
    request: Request,
    body: LevelDecision = LevelDecision(),
    employee: Employee = Depends(require_role(*_APPROVERS)),
    db: AsyncSession = Depends(get_db),
):
    payroll = await PayrollService.reject_level(
        db, payroll_id, level, employee.id, get_current_role(request), comments=body.comments,
    )
    return PayrollOut.model_validate(payroll)


@router.post("/{payroll_id}/levels/{level}/reroute", response_model=PayrollOut)
async def reroute_level(
    payroll_id: uuid.UUID,
    level: int,
    body: LevelReroute,
    employee: Employee = Depends(require_role(UserRole.hr_admin)),
    db: AsyncSession = Depends(get_db),
):
    payroll = await PayrollService.reroute_level(
        db, payroll_id, level, body.approver_role, actor_id=employee.id,
    )
    return PayrollOut.model_validate(payroll)


# ── POST /{payroll_id}/approve ───────────────────────────────────────

@router.post("/{payroll_id}/approve", response_model=PayrollOut)
async def approve_payroll(
    payroll_id: uuid.UUID,
    employee: Employee = Depends(require_role(*_APPROVERS)),
    db: AsyncSession = Depends(get_db),
):
    payroll = await PayrollService.approve_payroll(db, payroll_id, employee.id)
    return PayrollOut.model_validate(payroll)


# ── POST /{payroll_id}/cancel ────────────────────────────────────────

@router.post("/{payroll_id}/cancel", response_model=PayrollOut)
async def cancel_payroll(
    payroll_id: uuid.UUID,
    body: PayrollCancel,
    employee: Employee = Depends(require_role(UserRole.system_admin)),
    db: AsyncSession = Depends(get_db),
):
    payroll = await PayrollService.cancel_payroll(db, payroll_id, employee.id, body.reason)
    return PayrollOut.model_validate(payroll)


# ── POST /{payroll_id}/payslip ───────────────────────────────────────

@router.post("/{payroll_id}/payslip", response_model=PayrollOut)
async def generate_payslip(
    payroll_id: uuid.UUID,
    employee: Employee = Depends(require_role(*_READERS)),
    sink: DocumentSink = Depends(get_document_sink),
    db: AsyncSession = Depends(get_db),
):
    """Render the payslip document; a failed render leaves the payroll unchanged."""
    payroll = await PayrollService.generate_payslip(db, payroll_id, sink=sink)
    return PayrollOut.model_validate(payroll)
