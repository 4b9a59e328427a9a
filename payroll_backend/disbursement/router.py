"""Disbursement router — batches, payment status callbacks, retries, reconciliation.

Finance owns disbursements; HR may read them; employees see their own.
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
from payroll_backend.common.constants import TransactionStatus, UserRole
from payroll_backend.common.exceptions import ForbiddenException
from payroll_backend.core_hr.models import Employee
from payroll_backend.database import get_db
from payroll_backend.disbursement.schemas import (
    BatchCreate,
    BatchResultOut,
    DisbursementListResponse,
    DisbursementOut,
    DisbursementSummaryOut,
    DiscrepancyResolve,
    PaymentStatusUpdate,
    ReconcileRequest,
)
from payroll_backend.disbursement.service import DisbursementService

router = APIRouter(prefix="", tags=["disbursements"])

_READERS = (UserRole.hr_admin, UserRole.finance_admin)
_OPERATORS = (UserRole.finance_admin,)


# ── GET / ────────────────────────────────────────────────────────────

@router.get("", response_model=DisbursementListResponse)
async def list_disbursements(
    batch_id: Optional[str] = Query(None),
    status: Optional[TransactionStatus] = Query(None),
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None),
    employee_id: Optional[uuid.UUID] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    employee: Employee = Depends(require_role(*_READERS)),
    db: AsyncSession = Depends(get_db),
):
    items, total = await DisbursementService.list_disbursements(
        db,
        batch_id=batch_id,
        status=status,
        month=month,
        year=year,
        employee_id=employee_id,
        page=page,
        page_size=page_size,
    )
    return DisbursementListResponse(
        data=[DisbursementOut.model_validate(d) for d in items],
        total=total,
        page=page,
        page_size=page_size,
    )


# ── GET /summary ─────────────────────────────────────────────────────

@router.get("/summary", response_model=DisbursementSummaryOut)
async def disbursement_summary(
    year: Optional[int] = Query(None),
    month: Optional[int] = Query(None, ge=1, le=12),
    batch_id: Optional[str] = Query(None),
    employee: Employee = Depends(require_role(*_READERS)),
    db: AsyncSession = Depends(get_db),
):
    return await DisbursementService.get_disbursement_summary(
        db, year=year, month=month, batch_id=batch_id,
    )


# ── GET /retry-eligible ──────────────────────────────────────────────

@router.get("/retry-eligible", response_model=list[DisbursementOut])
async def retry_eligible(
    employee: Employee = Depends(require_role(*_OPERATORS)),
    db: AsyncSession = Depends(get_db),
):
    """Failed disbursements whose next retry time has passed."""
    items = await DisbursementService.find_retry_eligible(db)
    return [DisbursementOut.model_validate(d) for d in items]


# ── POST /batches ────────────────────────────────────────────────────

@router.post("/batches", response_model=BatchResultOut, status_code=201)
async def create_batch(
    data: BatchCreate,
    employee: Employee = Depends(require_role(*_OPERATORS)),
    db: AsyncSession = Depends(get_db),
):
    """Create one disbursement per approved payroll; ``process`` also initiates them."""
    created = await DisbursementService.create_batch(
        db,
        data.payroll_ids,
        payment_method=data.payment_method,
        provider=data.gateway_provider,
        actor_id=employee.id,
    )
    if not data.process:
        return BatchResultOut.model_validate(created)
    result = await DisbursementService.process_batch(db, created.batch_id, actor_id=employee.id)
    result.failed += created.failed
    result.items = created.failed_items + result.items
    return BatchResultOut.model_validate(result)


# ── POST /batches/{batch_id}/process ─────────────────────────────────

@router.post("/batches/{batch_id}/process", response_model=BatchResultOut)
async def process_batch(
    batch_id: str,
    employee: Employee = Depends(require_role(*_OPERATORS)),
    db: AsyncSession = Depends(get_db),
):
    result = await DisbursementService.process_batch(db, batch_id, actor_id=employee.id)
    return BatchResultOut.model_validate(result)


# ── GET /{disbursement_id} ───────────────────────────────────────────

@router.get("/{disbursement_id}", response_model=DisbursementOut)
async def get_disbursement(
    disbursement_id: uuid.UUID,
    request: Request,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    disbursement = await DisbursementService.get_disbursement(db, disbursement_id)
    if disbursement.employee_id != employee.id and not role_satisfies(
        get_current_role(request), _READERS,
    ):
        raise ForbiddenException()
    return DisbursementOut.model_validate(disbursement)


# ── POST /{disbursement_id}/validate | initiate ─────────────────────

@router.post("/{disbursement_id}/validate", response_model=DisbursementOut)
async def validate_disbursement(
    disbursement_id: uuid.UUID,
    employee: Employee = Depends(require_role(*_OPERATORS)),
    db: AsyncSession = Depends(get_db),
):
    disbursement = await DisbursementService.validate(db, disbursement_id, actor_id=employee.id)
    return DisbursementOut.model_validate(disbursement)


@router.post("/{disbursement_id}/initiate", response_model=DisbursementOut)
async def initiate_payment(
    disbursement_id: uuid.UUID,
    employee: Employee = Depends(require_role(*_OPERATORS)),
    db: AsyncSession = Depends(get_db),
):
    disbursement = await DisbursementService.initiate_payment(db, disbursement_id, actor_id=employee.id)
    return DisbursementOut.model_validate(disbursement)


# ── POST /{disbursement_id}/status ───────────────────────────────────

@router.post("/{disbursement_id}/status", response_model=DisbursementOut)
async def update_payment_status(
    disbursement_id: uuid.UUID,
    data: PaymentStatusUpdate,
    employee: Employee = Depends(require_role(*_OPERATORS)),
    db: AsyncSession = Depends(get_db),
):
    disbursement = await DisbursementService.update_payment_status(
        db,
        disbursement_id,
        data.status,
        actor_id=employee.id,
        transaction_id=data.transaction_id,
        utr_number=data.utr_number,
        reference_number=data.reference_number,
        failure_reason=data.failure_reason,
        failure_code=data.failure_code,
        gateway_response=data.gateway_response,
        remarks=data.remarks,
    )
    return DisbursementOut.model_validate(disbursement)


# ── POST /{disbursement_id}/retry ────────────────────────────────────

@router.post("/{disbursement_id}/retry", response_model=DisbursementOut)
async def retry_payment(
    disbursement_id: uuid.UUID,
    employee: Employee = Depends(require_role(*_OPERATORS)),
    db: AsyncSession = Depends(get_db),
):
    disbursement = await DisbursementService.retry_payment(db, disbursement_id, actor_id=employee.id)
    return DisbursementOut.model_validate(disbursement)


# ── POST /{disbursement_id}/reconcile | resolve-discrepancy ─────────

@router.post("/{disbursement_id}/reconcile", response_model=DisbursementOut)
async def reconcile_payment(
    disbursement_id: uuid.UUID,
    data: ReconcileRequest,
    employee: Employee = Depends(require_role(*_OPERATORS)),
    db: AsyncSession = Depends(get_db),
):
    disbursement = await DisbursementService.reconcile_payment(
        db,
        disbursement_id,
        statement_amount=data.statement_amount,
        statement_date=data.statement_date,
        reference=data.reference,
        actor_id=employee.id,
    )
    return DisbursementOut.model_validate(disbursement)


@router.post("/{disbursement_id}/resolve-discrepancy", response_model=DisbursementOut)
async def resolve_discrepancy(
    disbursement_id: uuid.UUID,
    data: DiscrepancyResolve,
    employee: Employee = Depends(require_role(*_OPERATORS)),
    db: AsyncSession = Depends(get_db),
):
    disbursement = await DisbursementService.resolve_discrepancy(
        db, disbursement_id, actor_id=employee.id, reason=data.reason,
    )
    return DisbursementOut.model_validate(disbursement)
