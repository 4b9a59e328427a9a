"""Payroll cycle Pydantic v2 schemas."""

import uuid
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from payroll_backend.common.constants import (
    ApprovalStepStatus,
    CycleStatus,
    PaymentMethod,
    ProcessingErrorType,
)
from payroll_backend.disbursement.schemas import BatchResultOut
from payroll_backend.payroll.schemas import ProcessingRulesIn


class CycleCreate(BaseModel):
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000, le=2100)
    processing_rules: Optional[ProcessingRulesIn] = None


class CycleProcess(BaseModel):
    """Restrict a (re-)run to these employees; all eligible employees when omitted."""

    employee_ids: Optional[List[uuid.UUID]] = None


class StageAdvance(BaseModel):
    target: CycleStatus
    remarks: Optional[str] = Field(None, max_length=1000)


class CycleStepDecision(BaseModel):
    approve: bool = True
    remarks: Optional[str] = Field(None, max_length=1000)


class CycleDisburse(BaseModel):
    payment_method: PaymentMethod = PaymentMethod.neft


# ── Outputs ─────────────────────────────────────────────────────────


class ProcessingErrorOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    error_type: ProcessingErrorType
    message: str
    is_resolved: bool
    resolved_at: Optional[datetime] = None
    resolved_by_id: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None


class CycleApprovalStepOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    level: int
    approver_role: str
    approver_id: Optional[uuid.UUID] = None
    status: ApprovalStepStatus
    action_at: Optional[datetime] = None
    remarks: Optional[str] = None


class CycleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    cycle_code: str
    month: int
    year: int
    start_date: date
    end_date: date
    status: CycleStatus
    current_step: int
    total_steps: int
    attendance_locked_at: Optional[datetime] = None
    calculated_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    disbursed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    summary: dict = {}
    processing_rules: dict = {}
    batch_id: Optional[str] = None
    processing_errors: List[ProcessingErrorOut] = []
    approval_steps: List[CycleApprovalStepOut] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CycleProcessingResultOut(BaseModel):
    cycle: CycleOut
    processed: int
    skipped: int
    failed: int
    payroll_ids: List[uuid.UUID] = []
    errors: List[dict] = []


class CycleDisbursementOut(BaseModel):
    cycle: CycleOut
    batch: BatchResultOut


class CycleStepOut(BaseModel):
    status: CycleStatus
    current_step: int
    total_steps: int
