"""Statutory deduction tests — PF, ESI, professional tax and challans.

Pure-function tests; no database needed.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from payroll_backend.common.money import percent_of, round_rupee, to_decimal
from payroll_backend.config import settings
from payroll_backend.payroll.statutory import (
    StatutoryConfig,
    build_challan,
    calculate_esi,
    calculate_pf,
    calculate_statutory,
    professional_tax,
)


# ═════════════════════════════════════════════════════════════════════
# MONEY HELPERS
# ═════════════════════════════════════════════════════════════════════


class TestMoney:

    def test_round_rupee_half_up(self):
        assert round_rupee(Decimal("100.5")) == Decimal("101")
        assert round_rupee(Decimal("100.49")) == Decimal("100")

    def test_to_decimal_handles_none_and_float(self):
        assert to_decimal(None) == Decimal("0")
        assert to_decimal(0.1) == Decimal("0.1")

    def test_percent_of_rounds(self):
        assert percent_of(15000, Decimal("8.33")) == Decimal("1250")


# ═════════════════════════════════════════════════════════════════════
# PROVIDENT FUND
# ═════════════════════════════════════════════════════════════════════


class TestProvidentFund:

    def test_basic_above_ceiling_uses_ceiling(self):
        pf = calculate_pf(Decimal("20000"))
        assert pf.wage_base == Decimal("15000")
        assert pf.employee == Decimal("1800")
        assert pf.employer == Decimal("1800")
        assert pf.pension == Decimal("1250")
        assert pf.admin == Decimal("101")
        assert pf.total == Decimal("1901")

    def test_basic_below_ceiling(self):
        pf = calculate_pf(Decimal("10000"))
        assert pf.wage_base == Decimal("10000")
        assert pf.employee == Decimal("1200")
        assert pf.pension == Decimal("833")
        assert pf.admin == Decimal("67")

    def test_negative_basic_clamps_to_zero(self):
        pf = calculate_pf(Decimal("-500"))
        assert pf.employee == Decimal("0")
        assert pf.total == Decimal("0")

    def test_ceiling_override(self):
        config = StatutoryConfig().with_overrides(pf_ceiling=20000)
        assert calculate_pf(Decimal("25000"), config).employee == Decimal("2400")

    def test_wage_base_never_exceeds_ceiling(self):
        ceiling = StatutoryConfig().pf_ceiling
        bases = [Decimal(b) for b in range(0, 10_000_001, 2_500)]
        bases += [Decimal("14999.99"), Decimal("15000.01"), Decimal("15000.50")]
        for basic in bases:
            pf = calculate_pf(basic)
            assert Decimal("0") <= pf.wage_base <= ceiling, basic
            assert pf.employee <= Decimal("1800"), basic
            assert pf.employer <= Decimal("1800"), basic


# ═════════════════════════════════════════════════════════════════════
# ESI
# ═════════════════════════════════════════════════════════════════════


class TestESI:

    def test_applicable_below_ceiling(self):
        esi = calculate_esi(Decimal("20000"))
        assert esi.applicable is True
        assert esi.employee == Decimal("150")
        assert esi.employer == Decimal("650")

    def test_applicable_at_exact_ceiling(self):
        esi = calculate_esi(Decimal("21000"))
        assert esi.applicable is True
        assert esi.employee == Decimal("158")
        assert esi.employer == Decimal("683")

    def test_not_applicable_above_ceiling(self):
        esi = calculate_esi(Decimal("21001"))
        assert esi.applicable is False
        assert esi.employee == Decimal("0")
        assert esi.employer == Decimal("0")


# ═════════════════════════════════════════════════════════════════════
# PROFESSIONAL TAX
# ═════════════════════════════════════════════════════════════════════


@pytest.mark.parametrize(
    "gross, state, expected",
    [
        (Decimal("15000"), "karnataka", Decimal("150")),
        (Decimal("15001"), "karnataka", Decimal("200")),
        (Decimal("10000"), "karnataka", Decimal("0")),
        (Decimal("8000"), "maharashtra", Decimal("175")),
        (Decimal("43000"), "maharashtra", Decimal("200")),
        (Decimal("30000"), "west_bengal", Decimal("150")),
        (Decimal("12000"), "west_bengal", Decimal("110")),
    ],
)
def test_professional_tax_slabs(gross, state, expected):
    assert professional_tax(gross, state) == expected


def test_professional_tax_unknown_state_uses_default_table():
    assert professional_tax(Decimal("20000"), "goa") == Decimal("200")
    assert professional_tax(Decimal("12000"), None) == Decimal("150")


# ═════════════════════════════════════════════════════════════════════
# COMBINED BREAKDOWN
# ═════════════════════════════════════════════════════════════════════


def test_calculate_statutory_breakdown():
    breakdown = calculate_statutory(Decimal("25000"), Decimal("43000"), state="Maharashtra")
    assert breakdown.pt_state == "maharashtra"
    assert breakdown.pf.total == Decimal("1901")
    assert breakdown.esi.applicable is False
    assert breakdown.professional_tax == Decimal("200")
    assert breakdown.total == Decimal("2101")

    data = breakdown.to_dict()
    assert data["pf"]["employee"] == 1800
    assert data["pf"]["total"] == 1901
    assert data["esi"]["applicable"] is False
    assert data["professional_tax"] == {"amount": 200, "state": "maharashtra"}


def test_calculate_statutory_unknown_state_falls_back():
    breakdown = calculate_statutory(Decimal("10000"), Decimal("18000"), state="atlantis")
    assert breakdown.pt_state == "karnataka"
    assert breakdown.esi.applicable is True


def test_config_from_settings_matches_statutory_defaults():
    config = StatutoryConfig.from_settings(settings)
    assert config.pf_ceiling == Decimal("15000")
    assert config.esi_ceiling == Decimal("21000")
    assert config.pt_state == "karnataka"


# ═════════════════════════════════════════════════════════════════════
# CHALLANS
# ═════════════════════════════════════════════════════════════════════


def _rows():
    return [
        {
            "employee_id": "e1",
            "employee_code": "CF-001",
            "statutory_deductions": calculate_statutory(
                Decimal("25000"), Decimal("43000"), state="karnataka",
            ).to_dict(),
        },
        {
            "employee_id": "e2",
            "employee_code": "CF-002",
            "statutory_deductions": calculate_statutory(
                Decimal("10000"), Decimal("18000"), state="karnataka",
            ).to_dict(),
        },
    ]


def test_pf_challan_totals():
    challan = build_challan("pf", _rows())
    assert challan["employee_count"] == 2
    assert challan["totals"]["employee"] == 3000
    assert challan["totals"]["employer"] == 3000
    assert challan["totals"]["admin"] == 168
    # pension is part of the employer share
    assert challan["totals"]["total"] == 6168


def test_esi_challan_skips_non_applicable():
    challan = build_challan("esi", _rows())
    assert challan["employee_count"] == 1
    assert challan["employees"][0]["employee_code"] == "CF-002"
    assert challan["totals"]["total"] == 135 + 585


def test_pt_challan():
    challan = build_challan("pt", _rows())
    assert challan["employee_count"] == 2
    assert challan["totals"]["total"] == 400


def test_unknown_challan_type_raises():
    with pytest.raises(ValueError):
        build_challan("gratuity", _rows())
