"""Indian statutory deductions: Provident Fund, ESI and Professional Tax.

Pure functions over Decimal amounts. Every amount is rounded half-up to a
whole rupee; nothing here raises for out-of-range input (negatives clamp
to zero).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

from payroll_backend.common.money import (
    ZERO,
    as_number,
    clamp_zero,
    percent_of,
    to_decimal,
)

# ── Professional tax slabs ──────────────────────────────────────────
# (gross strictly above threshold, monthly amount), highest threshold first.

PT_SLABS: dict[str, tuple[tuple[Decimal, Decimal], ...]] = {
    "karnataka": (
        (Decimal("15000"), Decimal("200")),
        (Decimal("10000"), Decimal("150")),
    ),
    "maharashtra": (
        (Decimal("10000"), Decimal("200")),
        (Decimal("7500"), Decimal("175")),
    ),
    "west_bengal": (
        (Decimal("40000"), Decimal("200")),
        (Decimal("25000"), Decimal("150")),
        (Decimal("15000"), Decimal("130")),
        (Decimal("10000"), Decimal("110")),
    ),
}

DEFAULT_PT_STATE = "karnataka"


@dataclass(frozen=True)
class StatutoryConfig:
    """Rates and ceilings; defaults are the statutory values."""

    pf_rate: Decimal = Decimal("12")
    pf_ceiling: Decimal = Decimal("15000")
    pension_rate: Decimal = Decimal("8.33")
    admin_rate: Decimal = Decimal("0.67")
    esi_employee_rate: Decimal = Decimal("0.75")
    esi_employer_rate: Decimal = Decimal("3.25")
    esi_ceiling: Decimal = Decimal("21000")
    pt_state: str = DEFAULT_PT_STATE

    @classmethod
    def from_settings(cls, settings) -> "StatutoryConfig":
        return cls(
            pf_rate=to_decimal(settings.PF_RATE),
            pf_ceiling=to_decimal(settings.PF_WAGE_CEILING),
            pension_rate=to_decimal(settings.PF_PENSION_RATE),
            admin_rate=to_decimal(settings.PF_ADMIN_RATE),
            esi_employee_rate=to_decimal(settings.ESI_EMPLOYEE_RATE),
            esi_employer_rate=to_decimal(settings.ESI_EMPLOYER_RATE),
            esi_ceiling=to_decimal(settings.ESI_GROSS_CEILING),
            pt_state=(settings.DEFAULT_PT_STATE or DEFAULT_PT_STATE).lower(),
        )

    def with_overrides(
        self,
        *,
        pf_ceiling=None,
        esi_ceiling=None,
        pf_rate=None,
        esi_employee_rate=None,
        esi_employer_rate=None,
        pt_state: Optional[str] = None,
    ) -> "StatutoryConfig":
        """Per-structure overrides; ``None`` keeps the current value."""
        return StatutoryConfig(
            pf_rate=self.pf_rate if pf_rate is None else to_decimal(pf_rate),
            pf_ceiling=self.pf_ceiling if pf_ceiling is None else to_decimal(pf_ceiling),
            pension_rate=self.pension_rate,
            admin_rate=self.admin_rate,
            esi_employee_rate=(
                self.esi_employee_rate if esi_employee_rate is None
                else to_decimal(esi_employee_rate)
            ),
            esi_employer_rate=(
                self.esi_employer_rate if esi_employer_rate is None
                else to_decimal(esi_employer_rate)
            ),
            esi_ceiling=self.esi_ceiling if esi_ceiling is None else to_decimal(esi_ceiling),
            pt_state=(pt_state or self.pt_state).lower(),
        )


@dataclass
class PFContribution:
    employee: Decimal = ZERO
    employer: Decimal = ZERO
    pension: Decimal = ZERO
    admin: Decimal = ZERO
    wage_base: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        """Amount recovered from the employee's pay (employee share + admin charge)."""
        return self.employee + self.admin


@dataclass
class ESIContribution:
    employee: Decimal = ZERO
    employer: Decimal = ZERO
    applicable: bool = False

    @property
    def total(self) -> Decimal:
        return self.employee


@dataclass
class StatutoryBreakdown:
    pf: PFContribution = field(default_factory=PFContribution)
    esi: ESIContribution = field(default_factory=ESIContribution)
    professional_tax: Decimal = ZERO
    pt_state: str = DEFAULT_PT_STATE

    @property
    def total(self) -> Decimal:
        """PF (employee + admin) + ESI employee + PT; TDS is added by the aggregator."""
        return self.pf.total + self.esi.total + self.professional_tax

    def to_dict(self) -> dict:
        pf = {k: as_number(v) for k, v in asdict(self.pf).items()}
        pf["total"] = as_number(self.pf.total)
        return {
            "pf": pf,
            "esi": {
                "employee": as_number(self.esi.employee),
                "employer": as_number(self.esi.employer),
                "applicable": self.esi.applicable,
                "total": as_number(self.esi.total),
            },
            "professional_tax": {
                "amount": as_number(self.professional_tax),
                "state": self.pt_state,
            },
        }


# ── Calculators ─────────────────────────────────────────────────────

def calculate_pf(basic_salary, config: Optional[StatutoryConfig] = None) -> PFContribution:
    """PF on min(basic, ceiling); employer share mirrors the employee share."""
    config = config or StatutoryConfig()
    base = min(clamp_zero(basic_salary), config.pf_ceiling)
    employee = percent_of(base, config.pf_rate)
    return PFContribution(
        employee=employee,
        employer=employee,
        pension=percent_of(base, config.pension_rate),
        admin=percent_of(base, config.admin_rate),
        wage_base=base,
    )


def calculate_esi(gross_pay, config: Optional[StatutoryConfig] = None) -> ESIContribution:
    """ESI on the full gross only while gross ≤ ceiling; nothing above it."""
    config = config or StatutoryConfig()
    gross = clamp_zero(gross_pay)
    if gross > config.esi_ceiling:
        return ESIContribution()
    return ESIContribution(
        employee=percent_of(gross, config.esi_employee_rate),
        employer=percent_of(gross, config.esi_employer_rate),
        applicable=True,
    )


def professional_tax(gross_pay, state: Optional[str] = None) -> Decimal:
    """Flat monthly PT for the gross bracket; unknown states use the default table."""
    gross = clamp_zero(gross_pay)
    slabs = PT_SLABS.get((state or DEFAULT_PT_STATE).lower(), PT_SLABS[DEFAULT_PT_STATE])
    for threshold, amount in slabs:
        if gross > threshold:
            return amount
    return ZERO


def calculate_statutory(
    basic_salary,
    gross_pay,
    config: Optional[StatutoryConfig] = None,
    state: Optional[str] = None,
) -> StatutoryBreakdown:
    config = config or StatutoryConfig()
    pt_state = (state or config.pt_state).lower()
    if pt_state not in PT_SLABS:
        pt_state = DEFAULT_PT_STATE
    return StatutoryBreakdown(
        pf=calculate_pf(basic_salary, config),
        esi=calculate_esi(gross_pay, config),
        professional_tax=professional_tax(gross_pay, pt_state),
        pt_state=pt_state,
    )


# ── Challans ────────────────────────────────────────────────────────

def build_challan(kind: str, rows: Iterable[dict]) -> dict:
    """Aggregate PF / ESI / PT remittance totals from payroll breakdown rows.

    Each row is ``{"employee_id", "employee_code", "statutory_deductions"}``
    where ``statutory_deductions`` is the JSON produced by ``to_dict``.
    """
    employees: list[dict] = []
    totals: dict[str, Decimal] = {}

    def _add(key: str, value) -> None:
        totals[key] = totals.get(key, ZERO) + to_decimal(value)

    for row in rows:
        stat = row.get("statutory_deductions") or {}
        if kind == "pf":
            pf = stat.get("pf") or {}
            if not pf.get("employee"):
                continue
            entry = {
                "employee": pf.get("employee", 0),
                "employer": pf.get("employer", 0),
                "pension": pf.get("pension", 0),
                "admin": pf.get("admin", 0),
            }
        elif kind == "esi":
            esi = stat.get("esi") or {}
            if not esi.get("applicable"):
                continue
            entry = {
                "employee": esi.get("employee", 0),
                "employer": esi.get("employer", 0),
            }
        elif kind == "pt":
            pt = stat.get("professional_tax") or {}
            if not pt.get("amount"):
                continue
            entry = {"amount": pt.get("amount", 0), "state": pt.get("state")}
        else:
            raise ValueError(f"Unknown challan type '{kind}'")

        for key, value in entry.items():
            if key != "state":
                _add(key, value)
        employees.append({
            "employee_id": str(row.get("employee_id")),
            "employee_code": row.get("employee_code"),
            **entry,
        })

    summary = {key: as_number(value) for key, value in totals.items()}
    if kind == "pf":
        # pension is carved out of the employer share, not remitted on top
        summary["total"] = as_number(
            totals.get("employee", ZERO) + totals.get("employer", ZERO) + totals.get("admin", ZERO)
        )
    elif kind == "esi":
        summary["total"] = as_number(totals.get("employee", ZERO) + totals.get("employer", ZERO))
    else:
        summary["total"] = summary.get("amount", 0)
    return {
        "challan_type": kind,
        "employee_count": len(employees),
        "totals": summary,
        "employees": employees,
    }
