"""Tax router — yearly tax records, declarations, proofs, TDS and Form 16.

Employees manage their own declarations; HR reviews and Finance approves.
"""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_backend.auth.dependencies import (
    get_current_role,
    get_current_user,
    require_role,
    role_satisfies,
)
from payroll_backend.common.constants import TaxRecordStatus, UserRole
from payroll_backend.common.exceptions import ForbiddenException, NotFoundException
from payroll_backend.core_hr.models import Employee
from payroll_backend.database import get_db
from payroll_backend.payroll.documents import DocumentSink, get_document_sink
from payroll_backend.tax.models import TaxManagement
from payroll_backend.tax.schemas import (
    DeclarationUpdate,
    InvestmentProofCreate,
    InvestmentProofOut,
    ProofVerify,
    TaxCalculateRequest,
    TaxRecordCreate,
    TaxRecordListResponse,
    TaxRecordOut,
    TaxSummaryOut,
    TaxWorkflowAction,
)
from payroll_backend.tax.service import TaxService, financial_year_for

router = APIRouter(prefix="", tags=["tax"])

_REVIEWERS = (UserRole.hr_admin, UserRole.finance_admin)

# action → roles allowed to perform it
_ACTION_ROLES: dict[str, tuple[UserRole, ...]] = {
    "submit": (UserRole.employee,),
    "review": (UserRole.hr_admin,),
    "approve": (UserRole.finance_admin,),
    "complete": (UserRole.finance_admin,),
}


async def _owned_record(
    db: AsyncSession,
    record_id: uuid.UUID,
    employee: Employee,
    request: Request,
) -> TaxManagement:
    """Load a record the caller owns or may review."""
    record = await TaxService.get_record(db, record_id)
    if record.employee_id != employee.id and not role_satisfies(
        get_current_role(request), _REVIEWERS,
    ):
        raise ForbiddenException()
    return record


# ── GET / ────────────────────────────────────────────────────────────

@router.get("", response_model=TaxRecordListResponse)
async def list_tax_records(
    fy_start_year: Optional[int] = Query(None),
    status: Optional[TaxRecordStatus] = Query(None),
    employee_id: Optional[uuid.UUID] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    employee: Employee = Depends(require_role(*_REVIEWERS)),
    db: AsyncSession = Depends(get_db),
):
    records, total = await TaxService.list_records(
        db,
        fy_start_year=fy_start_year,
        status=status,
        employee_id=employee_id,
        page=page,
        page_size=page_size,
    )
    return TaxRecordListResponse(
        data=[TaxRecordOut.model_validate(r) for r in records],
        total=total,
        page=page,
        page_size=page_size,
    )


# ── GET /my-record ───────────────────────────────────────────────────

@router.get("/my-record", response_model=TaxRecordOut)
async def my_tax_record(
    fy_start_year: Optional[int] = Query(None),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Own record for a financial year (current year by default), created on first access."""
    if fy_start_year is None:
        today = date.today()
        fy_start_year = financial_year_for(today.month, today.year)
    record = await TaxService.get_or_create_record(
        db, employee.id, fy_start_year, actor_id=employee.id,
    )
    return TaxRecordOut.model_validate(record)


# ── GET /summary ─────────────────────────────────────────────────────

@router.get("/summary", response_model=TaxSummaryOut)
async def tax_summary(
    fy_start_year: Optional[int] = Query(None),
    employee: Employee = Depends(require_role(*_REVIEWERS)),
    db: AsyncSession = Depends(get_db),
):
    """Liability, TDS and regime split for a financial year (current by default)."""
    if fy_start_year is None:
        today = date.today()
        fy_start_year = financial_year_for(today.month, today.year)
    return await TaxService.get_tax_summary(db, fy_start_year)


# ── POST / ───────────────────────────────────────────────────────────

@router.post("", response_model=TaxRecordOut, status_code=201)
async def create_tax_record(
    data: TaxRecordCreate,
    employee: Employee = Depends(require_role(UserRole.hr_admin)),
    db: AsyncSession = Depends(get_db),
):
    record = await TaxService.create_record(
        db, data.employee_id, data.fy_start_year, regime=data.tax_regime, actor_id=employee.id,
    )
    return TaxRecordOut.model_validate(record)


# ── GET /employee/{employee_id}/{fy_start_year} ─────────────────────

@router.get("/employee/{employee_id}/{fy_start_year}", response_model=TaxRecordOut)
async def employee_tax_record(
    employee_id: uuid.UUID,
    fy_start_year: int,
    employee: Employee = Depends(require_role(*_REVIEWERS)),
    db: AsyncSession = Depends(get_db),
):
    record = await TaxService.find_record(db, employee_id, fy_start_year)
    if record is None:
        raise NotFoundException("TaxManagement", f"{employee_id}/{fy_start_year}")
    return TaxRecordOut.model_validate(record)


# ── GET /{record_id} ─────────────────────────────────────────────────

@router.get("/{record_id}", response_model=TaxRecordOut)
async def get_tax_record(
    record_id: uuid.UUID,
    request: Request,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    record = await _owned_record(db, record_id, employee, request)
    return TaxRecordOut.model_validate(record)


# ── PUT /{record_id}/declarations ────────────────────────────────────

@router.put("/{record_id}/declarations", response_model=TaxRecordOut)
async def update_declarations(
    record_id: uuid.UUID,
    data: DeclarationUpdate,
    request: Request,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _owned_record(db, record_id, employee, request)
    record = await TaxService.update_declarations(
        db,
        record_id,
        data.declarations.to_json(),
        regime=data.tax_regime,
        actor_id=employee.id,
    )
    return TaxRecordOut.model_validate(record)


# ── POST /{record_id}/calculate ──────────────────────────────────────

@router.post("/{record_id}/calculate", response_model=TaxRecordOut)
async def calculate_tax(
    record_id: uuid.UUID,
    data: TaxCalculateRequest = TaxCalculateRequest(),
    employee: Employee = Depends(require_role(*_REVIEWERS)),
    db: AsyncSession = Depends(get_db),
):
    record = await TaxService.calculate_tax(
        db, record_id, annual_income=data.annual_income, actor_id=employee.id,
    )
    return TaxRecordOut.model_validate(record)


# ── POST /{record_id}/proofs ─────────────────────────────────────────

@router.post("/{record_id}/proofs", response_model=InvestmentProofOut, status_code=201)
async def add_investment_proof(
    record_id: uuid.UUID,
    data: InvestmentProofCreate,
    request: Request,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _owned_record(db, record_id, employee, request)
    proof = await TaxService.add_proof(
        db,
        record_id,
        section=data.section,
        description=data.description,
        amount=data.amount,
        document_path=data.document_path,
        actor_id=employee.id,
    )
    return InvestmentProofOut.model_validate(proof)


# ── POST /proofs/{proof_id}/verify ───────────────────────────────────

@router.post("/proofs/{proof_id}/verify", response_model=InvestmentProofOut)
async def verify_investment_proof(
    proof_id: uuid.UUID,
    data: ProofVerify,
    employee: Employee = Depends(require_role(UserRole.hr_admin)),
    db: AsyncSession = Depends(get_db),
):
    proof = await TaxService.verify_proof(
        db, proof_id, employee.id, approve=data.approve, remarks=data.remarks,
    )
    return InvestmentProofOut.model_validate(proof)


# ── POST /{record_id}/workflow ───────────────────────────────────────

@router.post("/{record_id}/workflow", response_model=TaxRecordOut)
async def tax_workflow(
    record_id: uuid.UUID,
    data: TaxWorkflowAction,
    request: Request,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """submit (owner) → review (HR) → approve / complete (Finance)."""
    role = get_current_role(request)
    if data.action == "submit":
        await _owned_record(db, record_id, employee, request)
    elif not role_satisfies(role, _ACTION_ROLES[data.action]):
        raise ForbiddenException(
            detail=f"Role '{role.value}' cannot perform '{data.action}'.",
        )
    record = await TaxService.transition(
        db, record_id, data.action, employee.id, comments=data.comments,
    )
    return TaxRecordOut.model_validate(record)


# ── POST /{record_id}/form16 ─────────────────────────────────────────

@router.post("/{record_id}/form16", response_model=TaxRecordOut)
async def generate_form16(
    record_id: uuid.UUID,
    employee: Employee = Depends(require_role(UserRole.finance_admin)),
    sink: DocumentSink = Depends(get_document_sink),
    db: AsyncSession = Depends(get_db),
):
    record = await TaxService.generate_form16(db, record_id, sink=sink, actor_id=employee.id)
    return TaxRecordOut.model_validate(record)
