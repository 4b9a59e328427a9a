"""Income tax (TDS) computation for the old and new regimes.

All functions are pure and deterministic. Slabs are applied marginally
from the top bracket down; the tax for each slab is rounded half-up to
a rupee before summing, and cess is 4% of the summed slab tax.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Sequence

from payroll_backend.common.constants import TaxRegime
from payroll_backend.common.money import (
    HUNDRED,
    ZERO,
    as_number,
    clamp_zero,
    percent_of,
    round_rupee,
    to_decimal,
)


@dataclass(frozen=True)
class TaxSlab:
    lower: Decimal
    upper: Optional[Decimal]
    rate: Decimal

    @property
    def label(self) -> str:
        if self.upper is None:
            return f"{int(self.lower):,}+"
        return f"{int(self.lower):,}-{int(self.upper):,}"


NEW_REGIME_SLABS: tuple[TaxSlab, ...] = (
    TaxSlab(Decimal("0"), Decimal("300000"), Decimal("0")),
    TaxSlab(Decimal("300000"), Decimal("600000"), Decimal("5")),
    TaxSlab(Decimal("600000"), Decimal("900000"), Decimal("10")),
    TaxSlab(Decimal("900000"), Decimal("1200000"), Decimal("15")),
    TaxSlab(Decimal("1200000"), Decimal("1500000"), Decimal("20")),
    TaxSlab(Decimal("1500000"), None, Decimal("30")),
)

OLD_REGIME_SLABS: tuple[TaxSlab, ...] = (
    TaxSlab(Decimal("0"), Decimal("250000"), Decimal("0")),
    TaxSlab(Decimal("250000"), Decimal("500000"), Decimal("5")),
    TaxSlab(Decimal("500000"), Decimal("1000000"), Decimal("20")),
    TaxSlab(Decimal("1000000"), None, Decimal("30")),
)


@dataclass(frozen=True)
class TaxConfig:
    standard_deduction: Decimal = Decimal("50000")
    cess_rate: Decimal = Decimal("4")
    section_80c_limit: Decimal = Decimal("150000")
    hra_metro_percent: Decimal = Decimal("50")

    @classmethod
    def from_settings(cls, settings) -> "TaxConfig":
        return cls(
            standard_deduction=to_decimal(settings.NEW_REGIME_STANDARD_DEDUCTION),
            cess_rate=to_decimal(settings.CESS_RATE),
            section_80c_limit=to_decimal(settings.SECTION_80C_LIMIT),
            hra_metro_percent=to_decimal(settings.HRA_METRO_PERCENT),
        )


@dataclass
class SlabTax:
    slab: TaxSlab
    taxable_amount: Decimal
    tax: Decimal

    def to_dict(self) -> dict:
        return {
            "range": self.slab.label,
            "rate": float(self.slab.rate),
            "taxable_amount": as_number(self.taxable_amount),
            "tax": as_number(self.tax),
        }


@dataclass
class TaxComputation:
    regime: TaxRegime
    annual_income: Decimal
    taxable_income: Decimal
    slab_tax: Decimal
    cess: Decimal
    total_tax: Decimal
    monthly_tds: Decimal
    slabs: list[SlabTax] = field(default_factory=list)
    deductions: Decimal = ZERO
    exemptions: Decimal = ZERO

    def to_dict(self) -> dict:
        return {
            "regime": self.regime.value,
            "annual_income": as_number(self.annual_income),
            "taxable_income": as_number(self.taxable_income),
            "slab_tax": as_number(self.slab_tax),
            "cess": as_number(self.cess),
            "total_tax": as_number(self.total_tax),
            "monthly_tds": as_number(self.monthly_tds),
            "deductions": as_number(self.deductions),
            "exemptions": as_number(self.exemptions),
            "slabs": [s.to_dict() for s in self.slabs],
        }


def apply_slabs(taxable_income, slabs: Sequence[TaxSlab]) -> list[SlabTax]:
    """Marginal slab application, highest bracket first."""
    remaining = clamp_zero(taxable_income)
    out: list[SlabTax] = []
    for slab in sorted(slabs, key=lambda s: s.lower, reverse=True):
        portion = ZERO
        if remaining > slab.lower:
            portion = remaining - slab.lower
            remaining = slab.lower
        out.append(SlabTax(slab=slab, taxable_amount=portion, tax=percent_of(portion, slab.rate)))
    out.reverse()
    return out


def calculate_income_tax(
    annual_salary,
    regime: TaxRegime | str = TaxRegime.new,
    declared_deductions=ZERO,
    hra_exemption=ZERO,
    config: Optional[TaxConfig] = None,
) -> TaxComputation:
    """Annual tax liability and monthly TDS for one employee.

    Declared deductions and HRA exemption only apply under the old regime;
    the new regime allows the standard deduction alone.
    """
    config = config or TaxConfig()
    regime = TaxRegime(regime)
    annual = clamp_zero(annual_salary)

    if regime is TaxRegime.old:
        deductions = clamp_zero(declared_deductions)
        exemptions = clamp_zero(hra_exemption)
        taxable = clamp_zero(annual - deductions - exemptions)
        slabs = apply_slabs(taxable, OLD_REGIME_SLABS)
    else:
        deductions = config.standard_deduction
        exemptions = ZERO
        taxable = clamp_zero(annual - config.standard_deduction)
        slabs = apply_slabs(taxable, NEW_REGIME_SLABS)

    slab_tax = sum((s.tax for s in slabs), ZERO)
    cess = percent_of(slab_tax, config.cess_rate)
    total = slab_tax + cess
    return TaxComputation(
        regime=regime,
        annual_income=annual,
        taxable_income=taxable,
        slab_tax=slab_tax,
        cess=cess,
        total_tax=total,
        monthly_tds=round_rupee(total / 12),
        slabs=slabs,
        deductions=deductions,
        exemptions=exemptions,
    )


def calculate_hra_exemption(
    hra_received,
    rent_paid,
    basic_salary,
    config: Optional[TaxConfig] = None,
) -> Decimal:
    """Minimum of: HRA received, rent − 10% of basic, 50% of basic (metro)."""
    config = config or TaxConfig()
    basic = clamp_zero(basic_salary)
    received = clamp_zero(hra_received)
    rent_excess = clamp_zero(clamp_zero(rent_paid) - basic * Decimal("10") / HUNDRED)
    metro_cap = clamp_zero(basic * config.hra_metro_percent / HUNDRED)
    return round_rupee(min(received, rent_excess, metro_cap))


def total_declared_deductions(declarations: Optional[dict], config: Optional[TaxConfig] = None) -> Decimal:
    """Chapter VI-A total: 80C (capped) + 80D + 80E + 80G + section 24."""
    config = config or TaxConfig()
    declarations = declarations or {}

    def _section_total(section) -> Decimal:
        if isinstance(section, dict):
            return sum(
                (clamp_zero(v) for k, v in section.items()
                 if k not in ("total", "max_limit") and not isinstance(v, (dict, list, bool))),
                ZERO,
            )
        return clamp_zero(section)

    sec_80c = declarations.get("section_80c") or {}
    limit = config.section_80c_limit
    if isinstance(sec_80c, dict) and sec_80c.get("max_limit") is not None:
        limit = min(limit, to_decimal(sec_80c["max_limit"]))
    total = min(_section_total(sec_80c), limit)
    for key in ("section_80d", "section_80e", "section_80g", "section_24"):
        total += _section_total(declarations.get(key))
    return round_rupee(total)


def compare_regimes(
    annual_salary,
    declared_deductions=ZERO,
    hra_exemption=ZERO,
    config: Optional[TaxConfig] = None,
) -> dict:
    old = calculate_income_tax(annual_salary, TaxRegime.old, declared_deductions, hra_exemption, config)
    new = calculate_income_tax(annual_salary, TaxRegime.new, config=config)
    recommended = TaxRegime.old if old.total_tax < new.total_tax else TaxRegime.new
    return {
        "old": old,
        "new": new,
        "recommended": recommended,
        "savings": abs(old.total_tax - new.total_tax),
    }
