"""Salary structure router — versioned pay structures and their approval.

All endpoints require authentication.
"""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_backend.auth.dependencies import get_current_user, require_role
from payroll_backend.common.constants import StructureStatus, UserRole
from payroll_backend.common.exceptions import NotFoundException
from payroll_backend.core_hr.models import Employee
from payroll_backend.database import get_db
from payroll_backend.salary.schemas import (
    ResolvedStructureOut,
    SalaryStructureCreate,
    SalaryStructureListResponse,
    SalaryStructureOut,
    SalaryStructureRevise,
    SalaryStructureUpdate,
    StructureDecision,
)
from payroll_backend.salary.service import SalaryStructureService

router = APIRouter(prefix="", tags=["salary-structures"])

_EDITORS = (UserRole.hr_admin, UserRole.system_admin)
_APPROVERS = (UserRole.hr_admin, UserRole.finance_admin)


# ── GET / ────────────────────────────────────────────────────────────

@router.get("", response_model=SalaryStructureListResponse)
async def list_structures(
    employee_id: Optional[uuid.UUID] = Query(None),
    status: Optional[StructureStatus] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    employee: Employee = Depends(require_role(*_APPROVERS)),
    db: AsyncSession = Depends(get_db),
):
    """List salary structures (HR/Finance only)."""
    structures, total = await SalaryStructureService.list_structures(
        db, employee_id=employee_id, status=status, page=page, page_size=page_size,
    )
    return SalaryStructureListResponse(
        data=[SalaryStructureOut.model_validate(s) for s in structures],
        total=total,
        page=page,
        page_size=page_size,
    )


# ── GET /my-structure ────────────────────────────────────────────────

@router.get("/my-structure", response_model=SalaryStructureOut)
async def my_structure(
    on_date: Optional[date] = Query(None),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Effective structure of the authenticated user."""
    structure = await SalaryStructureService.get_effective_structure(
        db, employee.id, on_date or date.today(),
    )
    if structure is None:
        raise NotFoundException("SalaryStructure", str(employee.id))
    return SalaryStructureOut.model_validate(structure)


# ── POST /preview ────────────────────────────────────────────────────

@router.post("/preview", response_model=ResolvedStructureOut)
async def preview_structure(
    data: SalaryStructureCreate,
    employee: Employee = Depends(require_role(*_EDITORS)),
):
    """Resolve a structure without saving it."""
    return ResolvedStructureOut(**SalaryStructureService.preview(data).to_dict())


# ── GET /employee/{employee_id}/effective ───────────────────────────

@router.get("/employee/{employee_id}/effective", response_model=SalaryStructureOut)
async def effective_structure(
    employee_id: uuid.UUID,
    on_date: Optional[date] = Query(None),
    employee: Employee = Depends(require_role(*_APPROVERS)),
    db: AsyncSession = Depends(get_db),
):
    structure = await SalaryStructureService.get_effective_structure(
        db, employee_id, on_date or date.today(),
    )
    if structure is None:
        raise NotFoundException("SalaryStructure", str(employee_id))
    return SalaryStructureOut.model_validate(structure)


# ── POST / ───────────────────────────────────────────────────────────

@router.post("", response_model=SalaryStructureOut, status_code=201)
async def create_structure(
    data: SalaryStructureCreate,
    employee: Employee = Depends(require_role(*_EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    structure = await SalaryStructureService.create_structure(db, data, actor_id=employee.id)
    return SalaryStructureOut.model_validate(structure)


# ── GET /{structure_id} ──────────────────────────────────────────────

@router.get("/{structure_id}", response_model=SalaryStructureOut)
async def get_structure(
    structure_id: uuid.UUID,
    employee: Employee = Depends(require_role(*_APPROVERS)),
    db: AsyncSession = Depends(get_db),
):
    structure = await SalaryStructureService.get_structure(db, structure_id)
    return SalaryStructureOut.model_validate(structure)


# ── PATCH /{structure_id} ────────────────────────────────────────────

@router.patch("/{structure_id}", response_model=SalaryStructureOut)
async def update_structure(
    structure_id: uuid.UUID,
    data: SalaryStructureUpdate,
    employee: Employee = Depends(require_role(*_EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    structure = await SalaryStructureService.update_structure(
        db, structure_id, data, actor_id=employee.id,
    )
    return SalaryStructureOut.model_validate(structure)


# ── POST /{structure_id}/revise ──────────────────────────────────────

@router.post("/{structure_id}/revise", response_model=SalaryStructureOut, status_code=201)
async def revise_structure(
    structure_id: uuid.UUID,
    data: SalaryStructureRevise,
    employee: Employee = Depends(require_role(*_EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    """Create the next effective-dated version of an approved structure."""
    structure = await SalaryStructureService.revise_structure(
        db, structure_id, data, actor_id=employee.id,
    )
    return SalaryStructureOut.model_validate(structure)


# ── POST /{structure_id}/submit | approve | reject ──────────────────

@router.post("/{structure_id}/submit", response_model=SalaryStructureOut)
async def submit_structure(
    structure_id: uuid.UUID,
    employee: Employee = Depends(require_role(*_EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    structure = await SalaryStructureService.submit_for_approval(
        db, structure_id, actor_id=employee.id,
    )
    return SalaryStructureOut.model_validate(structure)


@router.post("/{structure_id}/approve", response_model=SalaryStructureOut)
async def approve_structure(
    structure_id: uuid.UUID,
    body: StructureDecision = StructureDecision(),
    employee: Employee = Depends(require_role(*_APPROVERS)),
    db: AsyncSession = Depends(get_db),
):
    structure = await SalaryStructureService.approve_structure(
        db, structure_id, employee.id, remarks=body.remarks,
    )
    return SalaryStructureOut.model_validate(structure)


@router.post("/{structure_id}/reject", response_model=SalaryStructureOut)
async def reject_structure(
    structure_id: uuid.UUID,
    body: StructureDecision = StructureDecision(),
    employee: Employee = Depends(require_role(*_APPROVERS)),
    db: AsyncSession = Depends(get_db),
):
    structure = await SalaryStructureService.reject_structure(
        db, structure_id, employee.id, remarks=body.remarks,
    )
    return SalaryStructureOut.model_validate(structure)
