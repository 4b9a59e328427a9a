"""Salary structure resolution: CTC + components → monthly gross / deductions / net.

Custom components are evaluated as an ordered fold. A percentage-of-gross
earning sees only the gross accumulated *before* it in declared order, so
reordering components can change the result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

from payroll_backend.common.constants import ComponentBase
from payroll_backend.common.money import (
    ZERO,
    as_number,
    clamp_zero,
    percent_of,
    round_rupee,
    to_decimal,
)
from payroll_backend.payroll.statutory import (
    ESIContribution,
    StatutoryBreakdown,
    StatutoryConfig,
    calculate_statutory,
)

NAMED_ALLOWANCES = (
    "special_allowance",
    "transport_allowance",
    "medical_allowance",
    "lunch_allowance",
    "phone_allowance",
    "internet_allowance",
)

VARIABLE_COMPONENTS = (
    "performance_bonus",
    "incentives",
    "overtime_pay",
    "arrears",
)

OTHER_DEDUCTIONS = (
    "loan_deduction",
    "advance_deduction",
    "late_coming_fine",
)

# Column defaults of ``SalaryStructure`` for attributes not yet populated.
MODEL_DEFAULTS: dict[str, Any] = {
    "hra_is_percentage": True,
    "hra_percentage": Decimal("40"),
    "transport_allowance": Decimal("1600"),
    "medical_allowance": Decimal("1250"),
    "pf_is_percentage": True,
    "pf_percentage": Decimal("12"),
    "esi_is_percentage": True,
    "esi_employee_percentage": Decimal("0.75"),
    "esi_employer_percentage": Decimal("3.25"),
}


@dataclass
class StructureInput:
    """Everything the resolver needs; amounts are monthly except ``ctc`` (annual)."""

    ctc: Decimal
    basic_salary: Decimal
    hra_is_percentage: bool = True
    hra_percentage: Decimal = Decimal("40")
    hra_amount: Decimal = ZERO
    allowances: dict[str, Decimal] = field(default_factory=dict)
    variable: dict[str, Decimal] = field(default_factory=dict)
    custom_earnings: list[dict] = field(default_factory=list)
    pf_is_percentage: bool = True
    pf_percentage: Decimal = Decimal("12")
    pf_employee_amount: Decimal = ZERO
    esi_is_percentage: bool = True
    esi_employee_percentage: Decimal = Decimal("0.75")
    esi_employer_percentage: Decimal = Decimal("3.25")
    income_tax: Decimal = ZERO
    other_deductions: dict[str, Decimal] = field(default_factory=dict)
    custom_deductions: list[dict] = field(default_factory=list)
    calculation_rules: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_model(cls, structure) -> "StructureInput":
        """Build from a ``SalaryStructure`` row (or anything with the same attributes).

        Unset attributes (e.g. before the first flush) fall back to the
        column defaults.
        """

        def _get(name: str):
            value = getattr(structure, name, None)
            return MODEL_DEFAULTS.get(name) if value is None else value

        return cls(
            ctc=to_decimal(structure.ctc),
            basic_salary=to_decimal(structure.basic_salary),
            hra_is_percentage=bool(_get("hra_is_percentage")),
            hra_percentage=to_decimal(_get("hra_percentage")),
            hra_amount=to_decimal(_get("hra_amount")),
            allowances={k: to_decimal(_get(k)) for k in NAMED_ALLOWANCES},
            variable={k: to_decimal(_get(k)) for k in VARIABLE_COMPONENTS},
            custom_earnings=list(structure.custom_earnings or []),
            pf_is_percentage=bool(_get("pf_is_percentage")),
            pf_percentage=to_decimal(_get("pf_percentage")),
            pf_employee_amount=to_decimal(_get("pf_employee_contribution")),
            esi_is_percentage=bool(_get("esi_is_percentage")),
            esi_employee_percentage=to_decimal(_get("esi_employee_percentage")),
            esi_employer_percentage=to_decimal(_get("esi_employer_percentage")),
            income_tax=to_decimal(_get("income_tax")),
            other_deductions={k: to_decimal(_get(k)) for k in OTHER_DEDUCTIONS},
            custom_deductions=list(structure.custom_deductions or []),
            calculation_rules=dict(structure.calculation_rules or {}),
        )


@dataclass
class ResolvedComponent:
    name: str
    amount: Decimal
    taxable: bool = True

    def to_dict(self) -> dict:
        return {"name": self.name, "amount": as_number(self.amount), "is_taxable": self.taxable}


@dataclass
class ResolvedStructure:
    basic_salary: Decimal
    hra: Decimal
    allowances: dict[str, Decimal]
    variable: dict[str, Decimal]
    custom_earnings: list[ResolvedComponent]
    gross_salary: Decimal
    statutory: StatutoryBreakdown
    income_tax: Decimal
    other_deductions: dict[str, Decimal]
    custom_deductions: list[ResolvedComponent]
    total_deductions: Decimal
    net_salary: Decimal
    pf_is_percentage: bool = True
    esi_is_percentage: bool = True

    @property
    def monthly_ctc_components(self) -> Decimal:
        """Gross plus employer-side statutory contributions."""
        return self.gross_salary + self.statutory.pf.employer + self.statutory.esi.employer

    def to_dict(self) -> dict:
        return {
            "basic_salary": as_number(self.basic_salary),
            "hra": as_number(self.hra),
            "allowances": {k: as_number(v) for k, v in self.allowances.items()},
            "variable": {k: as_number(v) for k, v in self.variable.items()},
            "custom_earnings": [c.to_dict() for c in self.custom_earnings],
            "gross_salary": as_number(self.gross_salary),
            "statutory": self.statutory.to_dict(),
            "income_tax": as_number(self.income_tax),
            "other_deductions": {k: as_number(v) for k, v in self.other_deductions.items()},
            "custom_deductions": [c.to_dict() for c in self.custom_deductions],
            "total_deductions": as_number(self.total_deductions),
            "net_salary": as_number(self.net_salary),
        }


# ── Validation ──────────────────────────────────────────────────────

def validate_structure_input(data: StructureInput) -> dict[str, list[str]]:
    """Return field errors; empty when the input is resolvable."""
    errors: dict[str, list[str]] = {}
    if data.ctc <= ZERO:
        errors.setdefault("ctc", []).append("CTC must be greater than zero.")
    if data.basic_salary <= ZERO:
        errors.setdefault("basic_salary", []).append("Basic salary must be greater than zero.")
    elif data.basic_salary * 12 > data.ctc:
        errors.setdefault("basic_salary", []).append(
            "Annualised basic salary cannot exceed CTC."
        )
    for idx, comp in enumerate(data.custom_earnings):
        _validate_component(comp, f"custom_earnings[{idx}]", {b.value for b in ComponentBase}, errors)
    for idx, comp in enumerate(data.custom_deductions):
        _validate_component(
            comp, f"custom_deductions[{idx}]",
            {ComponentBase.basic.value, ComponentBase.gross.value}, errors,
        )
    return errors


def _validate_component(comp: dict, key: str, bases: set[str], errors: dict) -> None:
    if not comp.get("name"):
        errors.setdefault(key, []).append("Component name is required.")
    if comp.get("is_percentage") and comp.get("percentage_of", "basic") not in bases:
        errors.setdefault(key, []).append(
            f"percentage_of must be one of {sorted(bases)}."
        )


# ── Resolver ────────────────────────────────────────────────────────

def _component_amount(comp: dict, bases: dict[str, Decimal]) -> Decimal:
    if comp.get("is_percentage"):
        base = bases.get(comp.get("percentage_of") or "basic", bases["basic"])
        return percent_of(base, comp.get("percentage") or 0)
    return round_rupee(clamp_zero(comp.get("amount") or 0))


def structure_statutory_config(
    data: StructureInput,
    config: Optional[StatutoryConfig] = None,
) -> StatutoryConfig:
    """Apply the structure's PF / ESI rates and ceiling / PT-state rules."""
    config = config or StatutoryConfig()
    rules = data.calculation_rules or {}
    return config.with_overrides(
        pf_ceiling=rules.get("pf_ceiling"),
        esi_ceiling=rules.get("esi_ceiling"),
        pf_rate=data.pf_percentage if data.pf_is_percentage else None,
        esi_employee_rate=data.esi_employee_percentage if data.esi_is_percentage else None,
        esi_employer_rate=data.esi_employer_percentage if data.esi_is_percentage else None,
        pt_state=rules.get("pt_state"),
    )


def resolve_structure(
    data: StructureInput,
    config: Optional[StatutoryConfig] = None,
) -> ResolvedStructure:
    config = structure_statutory_config(data, config)

    basic = round_rupee(clamp_zero(data.basic_salary))
    monthly_ctc = to_decimal(data.ctc) / 12

    if data.hra_is_percentage:
        hra = percent_of(basic, data.hra_percentage)
    else:
        hra = round_rupee(clamp_zero(data.hra_amount))

    allowances = {k: round_rupee(clamp_zero(data.allowances.get(k))) for k in NAMED_ALLOWANCES}
    variable = {k: round_rupee(clamp_zero(data.variable.get(k))) for k in VARIABLE_COMPONENTS}

    gross = basic + hra + sum(allowances.values(), ZERO) + sum(variable.values(), ZERO)

    # ordered fold: the accumulator is the running gross
    custom_earnings: list[ResolvedComponent] = []
    for comp in data.custom_earnings:
        amount = _component_amount(
            comp, {"basic": basic, "gross": gross, "ctc": monthly_ctc},
        )
        custom_earnings.append(
            ResolvedComponent(comp.get("name", ""), amount, bool(comp.get("is_taxable", True)))
        )
        gross += amount

    statutory = calculate_statutory(basic, gross, config)
    if not data.pf_is_percentage:
        statutory.pf.employee = round_rupee(clamp_zero(data.pf_employee_amount))
        statutory.pf.employer = statutory.pf.employee
    if not data.esi_is_percentage:
        statutory.esi = ESIContribution()

    income_tax = round_rupee(clamp_zero(data.income_tax))
    other = {k: round_rupee(clamp_zero(data.other_deductions.get(k))) for k in OTHER_DEDUCTIONS}

    custom_deductions = [
        ResolvedComponent(
            comp.get("name", ""),
            _component_amount(comp, {"basic": basic, "gross": gross}),
        )
        for comp in data.custom_deductions
    ]

    total_deductions = (
        statutory.pf.employee
        + statutory.esi.employee
        + statutory.professional_tax
        + income_tax
        + sum(other.values(), ZERO)
        + sum((c.amount for c in custom_deductions), ZERO)
    )

    return ResolvedStructure(
        basic_salary=basic,
        hra=hra,
        allowances=allowances,
        variable=variable,
        custom_earnings=custom_earnings,
        gross_salary=gross,
        statutory=statutory,
        income_tax=income_tax,
        other_deductions=other,
        custom_deductions=custom_deductions,
        total_deductions=total_deductions,
        net_salary=gross - total_deductions,
        pf_is_percentage=data.pf_is_percentage,
        esi_is_percentage=data.esi_is_percentage,
    )
