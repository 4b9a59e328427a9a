"""Tax Pydantic v2 schemas — declarations, records, proofs."""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from payroll_backend.common.constants import ProofStatus, TaxRecordStatus, TaxRegime


def _amount() -> Any:
    return Field(Decimal("0"), ge=0)


def _json(model: BaseModel) -> dict[str, Any]:
    return {
        k: float(v) if isinstance(v, Decimal) else v
        for k, v in model.model_dump(exclude_none=True).items()
    }


# ═════════════════════════════════════════════════════════════════════
# Declarations
# ═════════════════════════════════════════════════════════════════════


class Section80C(BaseModel):
    ppf: Decimal = _amount()
    elss: Decimal = _amount()
    life_premium: Decimal = _amount()
    nsc: Decimal = _amount()
    fixed_deposit: Decimal = _amount()
    home_loan_principal: Decimal = _amount()
    tuition_fees: Decimal = _amount()
    other: Decimal = _amount()
    max_limit: Optional[Decimal] = Field(None, ge=0)


class Section80D(BaseModel):
    self_and_family: Decimal = _amount()
    parents: Decimal = _amount()
    senior_citizen_parents: Decimal = _amount()
    preventive_health_checkup: Decimal = _amount()


class HRADeclaration(BaseModel):
    """Annual rent paid and HRA received."""

    rent_paid: Decimal = _amount()
    hra_received: Decimal = _amount()


class TaxDeclarations(BaseModel):
    section_80c: Section80C = Section80C()
    section_80d: Section80D = Section80D()
    section_80e: Decimal = _amount()
    section_80g: Decimal = _amount()
    section_24: Decimal = _amount()
    hra: Optional[HRADeclaration] = None

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "section_80c": _json(self.section_80c),
            "section_80d": _json(self.section_80d),
            "section_80e": float(self.section_80e),
            "section_80g": float(self.section_80g),
            "section_24": float(self.section_24),
        }
        if self.hra is not None:
            data["hra"] = _json(self.hra)
        return data


class DeclarationUpdate(BaseModel):
    declarations: TaxDeclarations
    tax_regime: Optional[TaxRegime] = None


class TaxRecordCreate(BaseModel):
    employee_id: uuid.UUID
    fy_start_year: int = Field(..., ge=2000, le=2100)
    tax_regime: TaxRegime = TaxRegime.new


class TaxCalculateRequest(BaseModel):
    """Optional override of the annual income; defaults to the salary structure."""

    annual_income: Optional[Decimal] = Field(None, ge=0)


class TaxWorkflowAction(BaseModel):
    action: Literal["submit", "review", "approve", "complete"]
    comments: Optional[str] = Field(None, max_length=1000)


class InvestmentProofCreate(BaseModel):
    section: str = Field(..., min_length=2, max_length=20)
    description: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., gt=0)
    document_path: Optional[str] = Field(None, max_length=500)


class ProofVerify(BaseModel):
    approve: bool = True
    remarks: Optional[str] = Field(None, max_length=1000)


# ═════════════════════════════════════════════════════════════════════
# Outputs
# ═════════════════════════════════════════════════════════════════════


class InvestmentProofOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tax_record_id: uuid.UUID
    section: str
    description: str
    amount: Decimal
    document_path: Optional[str] = None
    status: ProofStatus
    verified_by_id: Optional[uuid.UUID] = None
    verified_at: Optional[datetime] = None
    remarks: Optional[str] = None
    created_at: Optional[datetime] = None


class MonthlyTDSOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    month: int
    year: int
    payroll_id: Optional[uuid.UUID] = None
    gross_income: Decimal
    tds_amount: Decimal
    cumulative_income: Decimal
    cumulative_tds: Decimal
    posted_at: Optional[datetime] = None


class TaxRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tax_code: str
    employee_id: uuid.UUID
    fy_start_year: int
    fy_start: date
    fy_end: date
    tax_regime: TaxRegime
    annual_salary: dict = {}
    gross_annual_salary: Decimal
    declarations: dict = {}
    total_declared_deductions: Decimal
    hra_exemption: Decimal
    tax_calculation: dict = {}
    taxable_income: Decimal
    applicable_tax: Decimal
    cess: Decimal
    total_tax_liability: Decimal
    monthly_tds: Decimal
    tds_deducted: Decimal
    calculated_at: Optional[datetime] = None
    form16_path: Optional[str] = None
    form16_generated_at: Optional[datetime] = None
    status: TaxRecordStatus
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    comments: Optional[str] = None
    proofs: List[InvestmentProofOut] = []
    monthly_postings: List[MonthlyTDSOut] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TaxRecordListResponse(BaseModel):
    data: List[TaxRecordOut]
    total: int
    page: int = 1
    page_size: int = 50


class TaxSummaryOut(BaseModel):
    fy_start_year: int
    total_employees: int
    total_tax_liability: int
    total_tds_deducted: int
    new_regime_count: int
    old_regime_count: int
    form16_generated: int
