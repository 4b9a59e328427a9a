"""Pure payroll computation: structure + attendance + tax → earnings, deductions, net.

No database access. ``compute_payroll`` is deterministic; the service layer
persists its output and drives the status transitions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from payroll_backend.common.constants import TaxRegime
from payroll_backend.common.money import ZERO, as_number, clamp_zero, round_rupee, to_decimal
from payroll_backend.payroll.attendance_pay import (
    AttendanceAdjustment,
    AttendanceSummary,
    apply_attendance,
    full_attendance,
)
from payroll_backend.payroll.statutory import (
    StatutoryBreakdown,
    StatutoryConfig,
    calculate_statutory,
)
from payroll_backend.salary.calculator import ResolvedStructure
from payroll_backend.tax.calculator import TaxComputation, TaxConfig, calculate_income_tax


@dataclass(frozen=True)
class ProcessingRules:
    include_new_joiners: bool = True
    include_exited_employees: bool = True
    pro_rata_calculation: bool = True
    attendance_based_salary: bool = True
    lop_deduction: bool = True
    include_reimbursements: bool = True

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ProcessingRules":
        data = data or {}
        return cls(**{k: bool(data[k]) for k in cls.__dataclass_fields__ if k in data})

    def to_dict(self) -> dict:
        return {k: getattr(self, k) for k in self.__dataclass_fields__}


@dataclass(frozen=True)
class TaxInputs:
    regime: TaxRegime = TaxRegime.new
    annual_income: Optional[Decimal] = None
    declared_deductions: Decimal = ZERO
    hra_exemption: Decimal = ZERO


@dataclass(frozen=True)
class ManualAdjustments:
    bonus: Decimal = ZERO
    incentives: Decimal = ZERO
    arrears: Decimal = ZERO
    reimbursements: Decimal = ZERO
    loan: Decimal = ZERO
    advance: Decimal = ZERO
    disciplinary: Decimal = ZERO
    other: Decimal = ZERO

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ManualAdjustments":
        data = data or {}
        return cls(**{k: to_decimal(data[k]) for k in cls.__dataclass_fields__ if data.get(k) is not None})

    def to_dict(self) -> dict:
        return {k: as_number(getattr(self, k)) for k in self.__dataclass_fields__}


@dataclass
class PayrollInputs:
    structure: ResolvedStructure
    working_days: int
    attendance: Optional[AttendanceSummary] = None
    rules: ProcessingRules = field(default_factory=ProcessingRules)
    tax: TaxInputs = field(default_factory=TaxInputs)
    adjustments: ManualAdjustments = field(default_factory=ManualAdjustments)
    pt_state: Optional[str] = None


@dataclass
class PayrollComputation:
    earnings: dict
    statutory_deductions: dict
    other_deductions: dict
    gross_pay: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    attendance: AttendanceSummary
    adjustment: AttendanceAdjustment
    statutory: StatutoryBreakdown
    tax: TaxComputation

    @property
    def tds(self) -> Decimal:
        return self.tax.monthly_tds


def compute_payroll(
    inputs: PayrollInputs,
    statutory_config: Optional[StatutoryConfig] = None,
    tax_config: Optional[TaxConfig] = None,
    *,
    overtime_multiplier=Decimal("1.5"),
    hours_per_day: int = 8,
) -> PayrollComputation:
    structure = inputs.structure
    rules = inputs.rules

    attendance = inputs.attendance
    if attendance is None or not rules.attendance_based_salary:
        attendance = full_attendance(
            inputs.working_days,
            attendance.overtime_hours if attendance is not None else None,
        )

    adj = apply_attendance(
        attendance,
        structure.basic_salary,
        structure.hra,
        structure.allowances.get("special_allowance", ZERO),
        inputs.working_days,
        lop_enabled=rules.lop_deduction and rules.attendance_based_salary,
        pro_rata_enabled=rules.pro_rata_calculation,
        overtime_multiplier=overtime_multiplier,
        hours_per_day=hours_per_day,
    )

    a = structure.allowances
    v = structure.variable
    m = inputs.adjustments
    other_allowances = (
        a.get("lunch_allowance", ZERO)
        + a.get("phone_allowance", ZERO)
        + a.get("internet_allowance", ZERO)
        + sum((c.amount for c in structure.custom_earnings), ZERO)
    )
    earnings_amounts = {
        "basic_salary": adj.basic,
        "hra": adj.hra,
        "special_allowance": adj.special_allowance,
        "transport_allowance": a.get("transport_allowance", ZERO),
        "medical_allowance": a.get("medical_allowance", ZERO),
        "other_allowances": other_allowances,
        "overtime": adj.overtime_amount + v.get("overtime_pay", ZERO),
        "bonus": v.get("performance_bonus", ZERO) + clamp_zero(m.bonus),
        "incentives": v.get("incentives", ZERO) + clamp_zero(m.incentives),
        "arrears": v.get("arrears", ZERO) + clamp_zero(m.arrears),
        "reimbursements": clamp_zero(m.reimbursements) if rules.include_reimbursements else ZERO,
    }
    earnings_amounts = {k: round_rupee(val) for k, val in earnings_amounts.items()}
    gross = sum(earnings_amounts.values(), ZERO)

    statutory = calculate_statutory(adj.basic, gross, statutory_config, inputs.pt_state)
    if not structure.pf_is_percentage:
        statutory.pf = structure.statutory.pf
    if not structure.esi_is_percentage:
        statutory.esi = structure.statutory.esi

    annual_income = inputs.tax.annual_income
    if annual_income is None:
        annual_income = structure.gross_salary * 12
    tax = calculate_income_tax(
        annual_income,
        inputs.tax.regime,
        inputs.tax.declared_deductions,
        inputs.tax.hra_exemption,
        tax_config,
    )
    tds = tax.monthly_tds

    od = structure.other_deductions
    other_amounts = {
        "loan_deduction": od.get("loan_deduction", ZERO) + clamp_zero(m.loan),
        "advance_deduction": od.get("advance_deduction", ZERO) + clamp_zero(m.advance),
        "loss_of_pay": adj.lop_amount,
        "disciplinary_deduction": od.get("late_coming_fine", ZERO) + clamp_zero(m.disciplinary),
        "other_deductions": sum((c.amount for c in structure.custom_deductions), ZERO) + clamp_zero(m.other),
    }
    other_amounts = {k: round_rupee(val) for k, val in other_amounts.items()}
    other_total = sum(other_amounts.values(), ZERO)

    statutory_total = statutory.total + tds
    total_deductions = statutory_total + other_total

    earnings = {k: as_number(val) for k, val in earnings_amounts.items()}
    earnings["overtime"] = {
        "hours": float(adj.overtime_hours),
        "rate": float(round(adj.overtime_rate, 2)),
        "amount": as_number(earnings_amounts["overtime"]),
    }
    earnings["total"] = as_number(gross)

    statutory_json = statutory.to_dict()
    statutory_json["income_tax"] = {
        "regime": tax.regime.value,
        "taxable_income": as_number(tax.taxable_income),
        "annual_tax": as_number(tax.total_tax),
        "cess": as_number(tax.cess),
        "tax_deducted": as_number(tds),
        "exemptions": as_number(tax.exemptions),
        "deductions": as_number(tax.deductions),
    }
    statutory_json["total"] = as_number(statutory_total)

    other_json = {k: as_number(val) for k, val in other_amounts.items()}
    other_json["loss_of_pay"] = {
        "days": float(adj.lop_days),
        "amount": as_number(adj.lop_amount),
    }
    other_json["total"] = as_number(other_total)

    return PayrollComputation(
        earnings=earnings,
        statutory_deductions=statutory_json,
        other_deductions=other_json,
        gross_pay=gross,
        total_deductions=total_deductions,
        net_pay=gross - total_deductions,
        attendance=attendance,
        adjustment=adj,
        statutory=statutory,
        tax=tax,
    )


def earnings_total(earnings: dict) -> Decimal:
    """Sum of earning heads in a stored ``earnings`` blob (excluding ``total``)."""
    total = ZERO
    for key, value in earnings.items():
        if key == "total":
            continue
        if isinstance(value, dict):
            total += to_decimal(value.get("amount"))
        else:
            total += to_decimal(value)
    return total
