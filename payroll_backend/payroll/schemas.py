"""Payroll Pydantic v2 schemas — request/response validation."""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from payroll_backend.common.constants import ApprovalStepStatus, PayrollStatus, UserRole
from payroll_backend.payroll.aggregator import ManualAdjustments, ProcessingRules


# ═════════════════════════════════════════════════════════════════════
# Inputs
# ═════════════════════════════════════════════════════════════════════


class ProcessingRulesIn(BaseModel):
    include_new_joiners: bool = True
    include_exited_employees: bool = True
    pro_rata_calculation: bool = True
    attendance_based_salary: bool = True
    lop_deduction: bool = True
    include_reimbursements: bool = True

    def to_rules(self) -> ProcessingRules:
        return ProcessingRules(**self.model_dump())


class AdjustmentsIn(BaseModel):
    """Manual one-off amounts for the month (non-negative rupees)."""

    bonus: Decimal = Field(Decimal("0"), ge=0)
    incentives: Decimal = Field(Decimal("0"), ge=0)
    arrears: Decimal = Field(Decimal("0"), ge=0)
    loan: Decimal = Field(Decimal("0"), ge=0)
    advance: Decimal = Field(Decimal("0"), ge=0)
    disciplinary: Decimal = Field(Decimal("0"), ge=0)
    other: Decimal = Field(Decimal("0"), ge=0)

    def to_adjustments(self) -> ManualAdjustments:
        return ManualAdjustments(**self.model_dump())


class PayrollGenerate(BaseModel):
    employee_id: uuid.UUID
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000, le=2100)
    processing_rules: Optional[ProcessingRulesIn] = None
    adjustments: Optional[AdjustmentsIn] = None


class PayrollBulkGenerate(BaseModel):
    employee_ids: List[uuid.UUID] = Field(..., min_length=1, max_length=500)
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000, le=2100)
    processing_rules: Optional[ProcessingRulesIn] = None
    adjustments: Optional[AdjustmentsIn] = None


class PayrollRecalculate(BaseModel):
    processing_rules: Optional[ProcessingRulesIn] = None
    adjustments: Optional[AdjustmentsIn] = None


class LevelDecision(BaseModel):
    comments: Optional[str] = Field(None, max_length=1000)


class LevelReroute(BaseModel):
    approver_role: UserRole


class PayrollCancel(BaseModel):
    reason: str = Field(..., min_length=3, max_length=1000)


# ═════════════════════════════════════════════════════════════════════
# Outputs
# ═════════════════════════════════════════════════════════════════════


class ApprovalStepOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    level: int
    approver_role: str
    approver_id: Optional[uuid.UUID] = None
    status: ApprovalStepStatus
    action_at: Optional[datetime] = None
    comments: Optional[str] = None


class PayrollOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    payroll_code: str
    employee_id: uuid.UUID
    month: int
    year: int
    pay_period_start: date
    pay_period_end: date
    working_days: int
    actual_working_days: Decimal
    structure_id: Optional[uuid.UUID] = None
    earnings: dict = {}
    statutory_deductions: dict = {}
    other_deductions: dict = {}
    adjustments: dict = {}
    processing_rules: dict = {}
    attendance_data: dict = {}
    compliance: dict = {}
    gross_pay: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    status: PayrollStatus
    payment_status: Optional[str] = None
    transaction_id: Optional[str] = None
    utr_number: Optional[str] = None
    payment_date: Optional[datetime] = None
    payslip_path: Optional[str] = None
    payslip_generated_at: Optional[datetime] = None
    calculated_at: Optional[datetime] = None
    approved_by_id: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    approval_steps: List[ApprovalStepOut] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PayrollListResponse(BaseModel):
    data: List[PayrollOut]
    total: int
    page: int = 1
    page_size: int = 50


class BulkGenerateError(BaseModel):
    employee_id: uuid.UUID
    error_type: str
    detail: str


class BulkGenerateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    month: int
    year: int
    generated: int
    failed: int
    payrolls: List[PayrollOut]
    errors: List[BulkGenerateError]


class StatutoryTotals(BaseModel):
    pf: int = 0
    esi: int = 0
    professional_tax: int = 0
    tds: int = 0


class PayrollSummaryOut(BaseModel):
    month: int
    year: int
    total_payrolls: int
    by_status: dict[str, int]
    total_gross: int
    total_deductions: int
    total_net: int
    statutory: StatutoryTotals


class ChallanOut(BaseModel):
    month: int
    year: int
    challan_type: str
    employee_count: int
    totals: dict[str, int]
    employees: List[dict]
