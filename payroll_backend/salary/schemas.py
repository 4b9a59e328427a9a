"""Salary structure Pydantic v2 schemas — request/response validation."""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from payroll_backend.common.constants import ComponentBase, StructureStatus


# ═════════════════════════════════════════════════════════════════════
# Components
# ═════════════════════════════════════════════════════════════════════


class CustomComponent(BaseModel):
    """Custom earning or deduction, evaluated in list order."""

    name: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(Decimal("0"), ge=0)
    is_percentage: bool = False
    percentage_of: ComponentBase = ComponentBase.basic
    percentage: Decimal = Field(Decimal("0"), ge=0, le=100)
    is_taxable: bool = True

    def to_json(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "amount": float(self.amount),
            "is_percentage": self.is_percentage,
            "percentage_of": self.percentage_of.value,
            "percentage": float(self.percentage),
            "is_taxable": self.is_taxable,
        }


class CalculationRules(BaseModel):
    pf_ceiling: Optional[Decimal] = Field(None, ge=0)
    esi_ceiling: Optional[Decimal] = Field(None, ge=0)
    pt_state: Optional[str] = None
    gratuity_eligible: bool = True
    bonus_eligible: bool = True

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "gratuity_eligible": self.gratuity_eligible,
            "bonus_eligible": self.bonus_eligible,
        }
        if self.pf_ceiling is not None:
            data["pf_ceiling"] = float(self.pf_ceiling)
        if self.esi_ceiling is not None:
            data["esi_ceiling"] = float(self.esi_ceiling)
        if self.pt_state:
            data["pt_state"] = self.pt_state.lower()
        return data


# ═════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════


class _StructureFields(BaseModel):
    """Editable fields shared by create / update / revise (all optional)."""

    ctc: Optional[Decimal] = Field(None, gt=0)
    basic_salary: Optional[Decimal] = Field(None, gt=0)
    hra_is_percentage: Optional[bool] = None
    hra_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    hra_amount: Optional[Decimal] = Field(None, ge=0)
    special_allowance: Optional[Decimal] = Field(None, ge=0)
    transport_allowance: Optional[Decimal] = Field(None, ge=0)
    medical_allowance: Optional[Decimal] = Field(None, ge=0)
    lunch_allowance: Optional[Decimal] = Field(None, ge=0)
    phone_allowance: Optional[Decimal] = Field(None, ge=0)
    internet_allowance: Optional[Decimal] = Field(None, ge=0)
    performance_bonus: Optional[Decimal] = Field(None, ge=0)
    incentives: Optional[Decimal] = Field(None, ge=0)
    overtime_pay: Optional[Decimal] = Field(None, ge=0)
    arrears: Optional[Decimal] = Field(None, ge=0)
    custom_earnings: Optional[List[CustomComponent]] = None
    pf_is_percentage: Optional[bool] = None
    pf_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    pf_employee_contribution: Optional[Decimal] = Field(None, ge=0)
    esi_is_percentage: Optional[bool] = None
    esi_employee_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    esi_employer_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    income_tax: Optional[Decimal] = Field(None, ge=0)
    loan_deduction: Optional[Decimal] = Field(None, ge=0)
    advance_deduction: Optional[Decimal] = Field(None, ge=0)
    late_coming_fine: Optional[Decimal] = Field(None, ge=0)
    custom_deductions: Optional[List[CustomComponent]] = None
    calculation_rules: Optional[CalculationRules] = None
    remarks: Optional[str] = None

    def column_values(self) -> dict[str, Any]:
        """Set fields as ORM column values (components / rules as JSON)."""
        values: dict[str, Any] = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            if name in ("custom_earnings", "custom_deductions"):
                value = [c.to_json() for c in (value or [])]
            elif name == "calculation_rules":
                value = value.to_json() if value is not None else {}
            elif value is None:
                continue
            values[name] = value
        return values


class SalaryStructureCreate(_StructureFields):
    employee_id: uuid.UUID
    effective_date: date
    ctc: Decimal = Field(..., gt=0)
    basic_salary: Decimal = Field(..., gt=0)

    def column_values(self) -> dict[str, Any]:
        values = super().column_values()
        values.pop("employee_id", None)
        values.pop("effective_date", None)
        return values


class SalaryStructureUpdate(_StructureFields):
    pass


class SalaryStructureRevise(_StructureFields):
    effective_date: date

    def column_values(self) -> dict[str, Any]:
        values = super().column_values()
        values.pop("effective_date", None)
        return values


class StructureDecision(BaseModel):
    remarks: Optional[str] = Field(None, max_length=1000)


# ═════════════════════════════════════════════════════════════════════
# Responses
# ═════════════════════════════════════════════════════════════════════


class SalaryStructureOut(BaseModel):
    """Full salary structure representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    effective_date: date
    end_date: Optional[date] = None
    version: int = 1
    ctc: Decimal
    basic_salary: Decimal
    hra_is_percentage: bool = True
    hra_percentage: Decimal = Decimal("40")
    hra_amount: Decimal = Decimal("0")
    special_allowance: Decimal = Decimal("0")
    transport_allowance: Decimal = Decimal("0")
    medical_allowance: Decimal = Decimal("0")
    lunch_allowance: Decimal = Decimal("0")
    phone_allowance: Decimal = Decimal("0")
    internet_allowance: Decimal = Decimal("0")
    performance_bonus: Decimal = Decimal("0")
    incentives: Decimal = Decimal("0")
    overtime_pay: Decimal = Decimal("0")
    arrears: Decimal = Decimal("0")
    custom_earnings: List[dict] = []
    pf_employee_contribution: Decimal = Decimal("0")
    pf_employer_contribution: Decimal = Decimal("0")
    esi_employee_contribution: Decimal = Decimal("0")
    esi_employer_contribution: Decimal = Decimal("0")
    professional_tax: Decimal = Decimal("0")
    income_tax: Decimal = Decimal("0")
    loan_deduction: Decimal = Decimal("0")
    advance_deduction: Decimal = Decimal("0")
    late_coming_fine: Decimal = Decimal("0")
    custom_deductions: List[dict] = []
    calculation_rules: dict = {}
    gross_salary: Decimal = Decimal("0")
    total_deductions: Decimal = Decimal("0")
    net_salary: Decimal = Decimal("0")
    status: StructureStatus
    approved_by_id: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    remarks: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SalaryStructureListResponse(BaseModel):
    data: List[SalaryStructureOut]
    total: int
    page: int = 1
    page_size: int = 50


class ResolvedStructureOut(BaseModel):
    """Preview of a resolved structure (nothing persisted)."""

    basic_salary: int
    hra: int
    allowances: dict[str, int]
    variable: dict[str, int]
    custom_earnings: List[dict]
    gross_salary: int
    statutory: dict
    income_tax: int
    other_deductions: dict[str, int]
    custom_deductions: List[dict]
    total_deductions: int
    net_salary: int
