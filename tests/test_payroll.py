"""Payroll module test suite — aggregation, generation, the approval workflow,
state machine, payslips, summaries, challans and API endpoints.

Pay period used throughout: March 2025 (21 working days). The default
structure is CTC 6,00,000 with basic 25,000 → monthly gross 43,000.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest

from payroll_backend.common.audit import get_entity_history
from payroll_backend.common.constants import PayrollStatus, UserRole
from payroll_backend.common.exceptions import (
    DuplicatePayrollException,
    ForbiddenException,
    ImmutableRecordException,
    StateConflictException,
    UpstreamUnavailableException,
    ValidationException,
    WorkflowIncompleteException,
)
from payroll_backend.core_hr.models import Employee
from payroll_backend.expenses.models import ExpenseClaim
from payroll_backend.payroll.aggregator import (
    ManualAdjustments,
    PayrollInputs,
    ProcessingRules,
    TaxInputs,
    compute_payroll,
    earnings_total,
)
from payroll_backend.payroll.attendance_pay import AttendanceSummary
from payroll_backend.payroll.documents import FileDocumentSink
from payroll_backend.payroll.service import PayrollService, period_bounds
from payroll_backend.salary.calculator import StructureInput, resolve_structure
from payroll_backend.tax.service import TaxService
from tests.conftest import (
    _make_employee,
    create_approved_structure,
    make_auth_headers,
    seed_attendance,
)


MONTH, YEAR = 3, 2025


# ── Helpers ─────────────────────────────────────────────────────────


async def _prepare_inputs(db, employee_id, **attendance):
    """Approved structure plus a month of attendance."""
    await create_approved_structure(db, employee_id)
    await seed_attendance(db, employee_id, MONTH, YEAR, **attendance)


async def _generate(db, employee_id, **kwargs):
    return await PayrollService.generate_payroll(db, employee_id, MONTH, YEAR, **kwargs)


async def _approve_all(db, payroll, hr_id, finance_id):
    await PayrollService.approve_level(db, payroll.id, 1, hr_id, UserRole.hr_admin)
    return await PayrollService.approve_level(db, payroll.id, 2, finance_id, UserRole.finance_admin)


class _BrokenSink:
    def render_payslip(self, payroll):
        raise OSError("disk full")

    def render_form16(self, tax_record):
        raise OSError("disk full")


# ═════════════════════════════════════════════════════════════════════
# 1. AGGREGATOR (pure)
# ═════════════════════════════════════════════════════════════════════


def _resolved():
    return resolve_structure(StructureInput(
        ctc=Decimal("600000"),
        basic_salary=Decimal("21000"),
        allowances={"special_allowance": Decimal("5000")},
    ))


class TestComputePayroll:

    def test_full_month_totals(self):
        result = compute_payroll(PayrollInputs(
            structure=_resolved(),
            working_days=21,
            rules=ProcessingRules(attendance_based_salary=False),
            pt_state="karnataka",
        ))
        # 21,000 + 8,400 HRA + 5,000 special
        assert result.gross_pay == Decimal("34400")
        assert result.earnings["total"] == 34400
        assert result.statutory_deductions["pf"]["total"] == 1901
        assert result.statutory_deductions["professional_tax"]["amount"] == 200
        assert result.gross_pay - result.total_deductions == result.net_pay
        assert earnings_total(result.earnings) == result.gross_pay

    def test_lop_goes_to_other_deductions(self):
        result = compute_payroll(PayrollInputs(
            structure=_resolved(),
            working_days=21,
            attendance=AttendanceSummary(
                total_working_days=Decimal("21"),
                present_days=Decimal("19"),
                absent_days=Decimal("2"),
            ),
        ))
        assert result.other_deductions["loss_of_pay"] == {"days": 2.0, "amount": 2000}
        assert result.other_deductions["total"] == 2000
        assert result.earnings["basic_salary"] == 21000

    def test_attendance_ignored_when_rule_disabled(self):
        result = compute_payroll(PayrollInputs(
            structure=_resolved(),
            working_days=21,
            attendance=AttendanceSummary(total_working_days=Decimal("21"), absent_days=Decimal("5")),
            rules=ProcessingRules(attendance_based_salary=False),
        ))
        assert result.other_deductions["loss_of_pay"]["amount"] == 0

    def test_manual_adjustments(self):
        result = compute_payroll(PayrollInputs(
            structure=_resolved(),
            working_days=21,
            rules=ProcessingRules(attendance_based_salary=False),
            adjustments=ManualAdjustments(bonus=Decimal("5000"), loan=Decimal("1000")),
        ))
        assert result.earnings["bonus"] == 5000
        assert result.other_deductions["loan_deduction"] == 1000
        assert result.gross_pay == Decimal("39400")

    def test_reimbursements_excluded_by_rule(self):
        result = compute_payroll(PayrollInputs(
            structure=_resolved(),
            working_days=21,
            rules=ProcessingRules(attendance_based_salary=False, include_reimbursements=False),
            adjustments=ManualAdjustments(reimbursements=Decimal("1500")),
        ))
        assert result.earnings["reimbursements"] == 0

    def test_tds_from_explicit_annual_income(self):
        result = compute_payroll(PayrollInputs(
            structure=_resolved(),
            working_days=21,
            rules=ProcessingRules(attendance_based_salary=False),
            tax=TaxInputs(annual_income=Decimal("1100000")),
        ))
        assert result.tds == Decimal("5850")
        assert result.statutory_deductions["income_tax"]["tax_deducted"] == 5850

    def test_rules_round_trip_through_dict(self):
        rules = ProcessingRules(lop_deduction=False)
        assert ProcessingRules.from_dict(rules.to_dict()) == rules


def test_period_bounds():
    assert period_bounds(2, 2024) == (date(2024, 2, 1), date(2024, 2, 29))
    with pytest.raises(ValidationException):
        period_bounds(13, 2024)


# ═════════════════════════════════════════════════════════════════════
# 2. GENERATION — Service Layer
# ═════════════════════════════════════════════════════════════════════


async def test_generate_full_attendance(db, test_employee):
    await _prepare_inputs(db, test_employee["id"])

    payroll = await _generate(db, test_employee["id"])

    assert payroll.status == PayrollStatus.calculated.value
    assert payroll.payroll_code == f"PAY-202503-{test_employee['employee_code']}"
    assert payroll.working_days == 21
    assert payroll.actual_working_days == Decimal("21")
    assert payroll.gross_pay == Decimal("43000")
    # PF 1,901 + PT (Maharashtra) 200 + TDS 719
    assert payroll.statutory_deductions["total"] == 2820
    assert payroll.statutory_deductions["professional_tax"]["state"] == "maharashtra"
    assert payroll.statutory_deductions["income_tax"]["tax_deducted"] == 719
    assert payroll.net_pay == Decimal("40180")
    assert payroll.totals_consistent()
    assert payroll.compliance["esi_applicable"] is False
    assert [s.approver_role for s in payroll.approval_steps] == ["hr_admin", "finance_admin"]

    history = await get_entity_history(db, "payroll", payroll.id)
    assert [h.action for h in history] == ["create", "calculate"]


async def test_generate_applies_loss_of_pay(db, test_employee):
    await _prepare_inputs(db, test_employee["id"], statuses={3: "absent", 4: "absent"})

    payroll = await _generate(db, test_employee["id"])

    assert payroll.other_deductions["loss_of_pay"]["days"] == 2.0
    assert payroll.other_deductions["loss_of_pay"]["amount"] == 2381
    assert payroll.total_deductions == Decimal("5201")
    assert payroll.net_pay == Decimal("37799")
    assert payroll.actual_working_days == Decimal("19")


async def test_generate_includes_approved_reimbursements(db, test_employee):
    await _prepare_inputs(db, test_employee["id"])
    claim = ExpenseClaim(
        id=uuid.uuid4(),
        employee_id=test_employee["id"],
        claim_number="EXP-001",
        title="Client travel",
        amount=Decimal("1500"),
        approval_status="approved",
        submitted_date=date(2025, 3, 10),
    )
    db.add(claim)
    await db.flush()

    payroll = await _generate(db, test_employee["id"])

    assert payroll.earnings["reimbursements"] == 1500
    assert payroll.gross_pay == Decimal("44500")
    assert claim.payroll_id == payroll.id


async def test_generate_with_manual_adjustments(db, test_employee):
    await _prepare_inputs(db, test_employee["id"])
    payroll = await _generate(
        db, test_employee["id"], adjustments=ManualAdjustments(bonus=Decimal("5000")),
    )
    assert payroll.earnings["bonus"] == 5000
    assert payroll.gross_pay == Decimal("48000")
    assert payroll.adjustments["bonus"] == 5000


async def test_generate_uses_tax_record_regime(db, test_employee):
    await _prepare_inputs(db, test_employee["id"])
    record = await TaxService.create_record(db, test_employee["id"], 2024)
    await TaxService.calculate_tax(db, record.id, annual_income=Decimal("1100000"))

    payroll = await _generate(db, test_employee["id"])
    assert payroll.statutory_deductions["income_tax"]["tax_deducted"] == 5850


async def test_generate_duplicate_period(db, test_employee):
    await _prepare_inputs(db, test_employee["id"])
    await _generate(db, test_employee["id"])
    with pytest.raises(DuplicatePayrollException):
        await _generate(db, test_employee["id"])


async def test_generate_without_structure(db, test_employee):
    await seed_attendance(db, test_employee["id"], MONTH, YEAR)
    with pytest.raises(UpstreamUnavailableException) as exc_info:
        await _generate(db, test_employee["id"])
    assert exc_info.value.source == "salary_structure"


async def test_generate_without_attendance(db, test_employee):
    await create_approved_structure(db, test_employee["id"])
    with pytest.raises(UpstreamUnavailableException) as exc_info:
        await _generate(db, test_employee["id"])
    assert exc_info.value.source == "attendance"


async def test_generate_without_attendance_when_not_required(db, test_employee):
    await create_approved_structure(db, test_employee["id"])
    payroll = await _generate(
        db, test_employee["id"], rules=ProcessingRules(attendance_based_salary=False),
    )
    assert payroll.gross_pay == Decimal("43000")


async def test_generate_for_employee_not_yet_joined(db, test_department, test_location):
    data = _make_employee(
        email="late.joiner@creativefuel.io",
        department_id=test_department["id"],
        location_id=test_location["id"],
        date_of_joining=date(2025, 6, 1),
    )
    db.add(Employee(**data))
    await db.flush()
    with pytest.raises(ValidationException):
        await _generate(db, data["id"])


async def test_recalculate_is_stable(db, test_employee):
    await _prepare_inputs(db, test_employee["id"])
    payroll = await _generate(db, test_employee["id"])
    net = payroll.net_pay

    payroll = await PayrollService.recalculate(db, payroll.id)
    assert payroll.net_pay == net
    assert payroll.status == PayrollStatus.calculated.value


async def test_recalculate_resets_approvals(db, test_employee, hr_admin):
    await _prepare_inputs(db, test_employee["id"])
    payroll = await _generate(db, test_employee["id"])
    await PayrollService.approve_level(db, payroll.id, 1, hr_admin["id"], UserRole.hr_admin)

    payroll = await PayrollService.recalculate(
        db, payroll.id, adjustments=ManualAdjustments(arrears=Decimal("2000")),
    )
    assert payroll.earnings["arrears"] == 2000
    assert all(s.status == "pending" for s in payroll.approval_steps)


async def test_generate_bulk_isolates_failures(db, test_employee, hr_admin):
    await _prepare_inputs(db, test_employee["id"])
    await seed_attendance(db, hr_admin["id"], MONTH, YEAR)

    result = await PayrollService.generate_bulk(
        db, [test_employee["id"], hr_admin["id"]], MONTH, YEAR,
    )

    assert result.generated == 1
    assert result.failed == 1
    assert result.payrolls[0].employee_id == test_employee["id"]
    assert result.payrolls[0].status == PayrollStatus.calculated.value
    [error] = result.errors
    assert error["employee_id"] == hr_admin["id"]
    assert error["error_type"] == "upstream-unavailable"
    assert await PayrollService.find_payroll(db, hr_admin["id"], MONTH, YEAR) is None


async def test_generate_bulk_repeated_and_existing(db, test_employee):
    await _prepare_inputs(db, test_employee["id"])
    await _generate(db, test_employee["id"])

    result = await PayrollService.generate_bulk(
        db, [test_employee["id"], test_employee["id"]], MONTH, YEAR,
    )

    assert result.generated == 0
    assert [e["error_type"] for e in result.errors] == ["duplicate-payroll"]


# ═════════════════════════════════════════════════════════════════════
# 3. APPROVAL WORKFLOW & STATE MACHINE
# ═════════════════════════════════════════════════════════════════════


async def test_levels_approve_in_order(db, test_employee, hr_admin, finance_admin):
    await _prepare_inputs(db, test_employee["id"])
    payroll = await _generate(db, test_employee["id"])

    payroll = await PayrollService.approve_level(
        db, payroll.id, 1, hr_admin["id"], UserRole.hr_admin, comments="checked",
    )
    assert payroll.status == PayrollStatus.calculated.value
    assert payroll.step(1).status == "approved"

    payroll = await PayrollService.approve_level(
        db, payroll.id, 2, finance_admin["id"], UserRole.finance_admin,
    )
    assert payroll.status == PayrollStatus.approved.value
    assert payroll.approved_by_id == finance_admin["id"]


async def test_level_two_before_level_one(db, test_employee, finance_admin):
    await _prepare_inputs(db, test_employee["id"])
    payroll = await _generate(db, test_employee["id"])
    with pytest.raises(WorkflowIncompleteException):
        await PayrollService.approve_level(
            db, payroll.id, 2, finance_admin["id"], UserRole.finance_admin,
        )


async def test_level_requires_matching_role(db, test_employee, finance_admin):
    await _prepare_inputs(db, test_employee["id"])
    payroll = await _generate(db, test_employee["id"])
    with pytest.raises(ForbiddenException):
        await PayrollService.approve_level(
            db, payroll.id, 1, finance_admin["id"], UserRole.finance_admin,
        )


async def test_system_admin_can_approve_any_level(db, test_employee, hr_admin):
    await _prepare_inputs(db, test_employee["id"])
    payroll = await _generate(db, test_employee["id"])
    await PayrollService.approve_level(db, payroll.id, 1, hr_admin["id"], UserRole.system_admin)
    payroll = await PayrollService.approve_level(
        db, payroll.id, 2, hr_admin["id"], UserRole.system_admin,
    )
    assert payroll.status == PayrollStatus.approved.value


async def test_reject_then_reroute(db, test_employee, hr_admin):
    await _prepare_inputs(db, test_employee["id"])
    payroll = await _generate(db, test_employee["id"])

    payroll = await PayrollService.reject_level(
        db, payroll.id, 1, hr_admin["id"], UserRole.hr_admin, comments="wrong LOP",
    )
    assert payroll.status == PayrollStatus.calculated.value
    assert payroll.step(1).status == "rejected"

    with pytest.raises(StateConflictException):
        await PayrollService.approve_level(db, payroll.id, 1, hr_admin["id"], UserRole.hr_admin)

    payroll = await PayrollService.reroute_level(
        db, payroll.id, 1, UserRole.system_admin, actor_id=hr_admin["id"],
    )
    assert payroll.step(1).status == "pending"
    assert payroll.step(1).approver_role == "system_admin"


async def test_approve_payroll_requires_complete_workflow(db, test_employee, hr_admin):
    await _prepare_inputs(db, test_employee["id"])
    payroll = await _generate(db, test_employee["id"])
    await PayrollService.approve_level(db, payroll.id, 1, hr_admin["id"], UserRole.hr_admin)
    with pytest.raises(WorkflowIncompleteException):
        await PayrollService.approve_payroll(db, payroll.id, hr_admin["id"])


async def test_unknown_level(db, test_employee, hr_admin):
    await _prepare_inputs(db, test_employee["id"])
    payroll = await _generate(db, test_employee["id"])
    with pytest.raises(ValidationException):
        await PayrollService.approve_level(db, payroll.id, 5, hr_admin["id"], UserRole.hr_admin)


async def test_process_and_pay(db, test_employee, hr_admin, finance_admin):
    await _prepare_inputs(db, test_employee["id"])
    payroll = await _generate(db, test_employee["id"])
    await _approve_all(db, payroll, hr_admin["id"], finance_admin["id"])

    payroll = await PayrollService.mark_processed(db, payroll.id, actor_id=finance_admin["id"])
    assert payroll.status == PayrollStatus.processed.value

    record = await TaxService.find_record(db, test_employee["id"], 2024)
    assert record is not None
    assert record.monthly_postings[0].tds_amount == Decimal("719")
    assert record.monthly_postings[0].payroll_id == payroll.id

    payroll = await PayrollService.mark_paid(db, payroll.id, utr_number="UTR123")
    assert payroll.status == PayrollStatus.paid.value
    assert payroll.utr_number == "UTR123"
    assert payroll.paid_at is not None


async def test_paid_payroll_is_immutable(db, test_employee, hr_admin, finance_admin):
    await _prepare_inputs(db, test_employee["id"])
    payroll = await _generate(db, test_employee["id"])
    await _approve_all(db, payroll, hr_admin["id"], finance_admin["id"])
    await PayrollService.mark_processed(db, payroll.id)
    await PayrollService.mark_paid(db, payroll.id)

    with pytest.raises(ImmutableRecordException):
        await PayrollService.cancel_payroll(db, payroll.id, hr_admin["id"], "too late")
    with pytest.raises(ImmutableRecordException):
        await PayrollService.recalculate(db, payroll.id)


async def test_cannot_process_unapproved(db, test_employee):
    await _prepare_inputs(db, test_employee["id"])
    payroll = await _generate(db, test_employee["id"])
    with pytest.raises(StateConflictException):
        await PayrollService.mark_processed(db, payroll.id)


async def test_cancel_releases_reimbursements(db, test_employee, hr_admin):
    await _prepare_inputs(db, test_employee["id"])
    claim = ExpenseClaim(
        id=uuid.uuid4(),
        employee_id=test_employee["id"],
        title="Internet",
        amount=Decimal("800"),
        approval_status="approved",
    )
    db.add(claim)
    await db.flush()
    payroll = await _generate(db, test_employee["id"])
    assert claim.payroll_id == payroll.id

    payroll = await PayrollService.cancel_payroll(db, payroll.id, hr_admin["id"], "duplicate run")
    assert payroll.status == PayrollStatus.cancelled.value
    assert payroll.cancellation_reason == "duplicate run"

    await db.refresh(claim)
    assert claim.payroll_id is None

    with pytest.raises(StateConflictException):
        await PayrollService.cancel_payroll(db, payroll.id, hr_admin["id"], "again")


# ═════════════════════════════════════════════════════════════════════
# 4. PAYSLIPS, SUMMARY, CHALLANS
# ═════════════════════════════════════════════════════════════════════


async def test_payslip_written(db, test_employee, tmp_path):
    await _prepare_inputs(db, test_employee["id"])
    payroll = await _generate(db, test_employee["id"])

    payroll = await PayrollService.generate_payslip(
        db, payroll.id, sink=FileDocumentSink(str(tmp_path)),
    )
    assert payroll.payslip_path is not None
    with open(payroll.payslip_path, encoding="utf-8") as f:
        content = f.read()
    assert payroll.payroll_code in content
    assert "₹43,000" in content


async def test_payslip_sink_failure_is_swallowed(db, test_employee):
    await _prepare_inputs(db, test_employee["id"])
    payroll = await _generate(db, test_employee["id"])

    payroll = await PayrollService.generate_payslip(db, payroll.id, sink=_BrokenSink())
    assert payroll.payslip_path is None
    assert payroll.status == PayrollStatus.calculated.value


async def test_payslip_not_for_cancelled(db, test_employee, hr_admin, tmp_path):
    await _prepare_inputs(db, test_employee["id"])
    payroll = await _generate(db, test_employee["id"])
    await PayrollService.cancel_payroll(db, payroll.id, hr_admin["id"], "mistake")
    with pytest.raises(StateConflictException):
        await PayrollService.generate_payslip(db, payroll.id, sink=FileDocumentSink(str(tmp_path)))


async def test_summary_excludes_cancelled(db, test_employee, hr_admin):
    await _prepare_inputs(db, test_employee["id"])
    await _prepare_inputs(db, hr_admin["id"])
    await _generate(db, test_employee["id"])
    cancelled = await _generate(db, hr_admin["id"])
    await PayrollService.cancel_payroll(db, cancelled.id, hr_admin["id"], "left org")

    summary = await PayrollService.get_payroll_summary(db, MONTH, YEAR)
    assert summary["total_payrolls"] == 2
    assert summary["by_status"]["calculated"] == 1
    assert summary["by_status"]["cancelled"] == 1
    assert summary["total_gross"] == 43000
    assert summary["total_net"] == 40180
    assert summary["statutory"] == {"pf": 1901, "esi": 0, "professional_tax": 200, "tds": 719}


async def test_challan_counts_only_approved_payrolls(db, test_employee, hr_admin, finance_admin):
    await _prepare_inputs(db, test_employee["id"])
    await _prepare_inputs(db, hr_admin["id"])
    approved = await _generate(db, test_employee["id"])
    await _generate(db, hr_admin["id"])
    await _approve_all(db, approved, hr_admin["id"], finance_admin["id"])

    challan = await PayrollService.get_challan(db, "pf", MONTH, YEAR)
    assert challan["employee_count"] == 1
    assert challan["totals"]["employee"] == 1800
    assert challan["employees"][0]["employee_code"] == test_employee["employee_code"]

    pt = await PayrollService.get_challan(db, "pt", MONTH, YEAR)
    assert pt["totals"]["total"] == 200


async def test_list_payrolls_filters(db, test_employee, hr_admin):
    await _prepare_inputs(db, test_employee["id"])
    await _prepare_inputs(db, hr_admin["id"])
    await _generate(db, test_employee["id"])
    await _generate(db, hr_admin["id"])

    payrolls, total = await PayrollService.list_payrolls(db, month=MONTH, year=YEAR)
    assert total == 2
    mine, total = await PayrollService.list_payrolls(db, employee_id=test_employee["id"])
    assert total == 1
    assert mine[0].employee_id == test_employee["id"]


# ═════════════════════════════════════════════════════════════════════
# 5. API ENDPOINTS
# ═════════════════════════════════════════════════════════════════════


async def test_api_generate_as_hr(client, db, test_employee, hr_admin):
    await _prepare_inputs(db, test_employee["id"])
    headers = await make_auth_headers(db, hr_admin["id"], UserRole.hr_admin)
    await db.commit()

    resp = await client.post(
        "/api/v1/payroll/generate",
        json={"employee_id": str(test_employee["id"]), "month": MONTH, "year": YEAR},
        headers=headers,
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["status"] == "calculated"
    assert float(data["gross_pay"]) == 43000
    assert float(data["net_pay"]) == 40180
    assert len(data["approval_steps"]) == 2


async def test_api_generate_duplicate_is_conflict(client, db, test_employee, hr_admin):
    await _prepare_inputs(db, test_employee["id"])
    await _generate(db, test_employee["id"])
    headers = await make_auth_headers(db, hr_admin["id"], UserRole.hr_admin)
    await db.commit()

    resp = await client.post(
        "/api/v1/payroll/generate",
        json={"employee_id": str(test_employee["id"]), "month": MONTH, "year": YEAR},
        headers=headers,
    )
    assert resp.status_code == 409
    assert resp.json()["type"].endswith("duplicate-payroll")


async def test_api_generate_without_structure_is_503(client, db, test_employee, hr_admin):
    headers = await make_auth_headers(db, hr_admin["id"], UserRole.hr_admin)
    await db.commit()

    resp = await client.post(
        "/api/v1/payroll/generate",
        json={"employee_id": str(test_employee["id"]), "month": MONTH, "year": YEAR},
        headers=headers,
    )
    assert resp.status_code == 503


async def test_api_generate_forbidden_for_employee(client, db, test_employee, auth_headers):
    await db.commit()
    resp = await client.post(
        "/api/v1/payroll/generate",
        json={"employee_id": str(test_employee["id"]), "month": MONTH, "year": YEAR},
        headers=auth_headers,
    )
    assert resp.status_code == 403


async def test_api_owner_can_read_payroll(client, db, test_employee, auth_headers):
    await _prepare_inputs(db, test_employee["id"])
    payroll = await _generate(db, test_employee["id"])
    await db.commit()

    resp = await client.get(f"/api/v1/payroll/{payroll.id}", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["payroll_code"] == payroll.payroll_code


async def test_api_other_employee_cannot_read_payroll(client, db, test_employee, hr_admin):
    await _prepare_inputs(db, hr_admin["id"])
    payroll = await _generate(db, hr_admin["id"])
    headers = await make_auth_headers(db, test_employee["id"])
    await db.commit()

    resp = await client.get(f"/api/v1/payroll/{payroll.id}", headers=headers)
    assert resp.status_code == 403


async def test_api_level_approval_role_mismatch(client, db, test_employee, finance_admin):
    await _prepare_inputs(db, test_employee["id"])
    payroll = await _generate(db, test_employee["id"])
    headers = await make_auth_headers(db, finance_admin["id"], UserRole.finance_admin)
    await db.commit()

    resp = await client.post(
        f"/api/v1/payroll/{payroll.id}/levels/1/approve", json={}, headers=headers,
    )
    assert resp.status_code == 403


async def test_api_cancel_requires_reason(client, db, test_employee, hr_admin):
    await _prepare_inputs(db, test_employee["id"])
    payroll = await _generate(db, test_employee["id"])
    headers = await make_auth_headers(db, hr_admin["id"], UserRole.system_admin)
    await db.commit()

    resp = await client.post(
        f"/api/v1/payroll/{payroll.id}/cancel", json={"reason": ""}, headers=headers,
    )
    assert resp.status_code == 422

    resp = await client.post(
        f"/api/v1/payroll/{payroll.id}/cancel", json={"reason": "duplicate run"}, headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"


async def test_api_summary(client, db, test_employee, finance_admin):
    await _prepare_inputs(db, test_employee["id"])
    await _generate(db, test_employee["id"])
    headers = await make_auth_headers(db, finance_admin["id"], UserRole.finance_admin)
    await db.commit()

    resp = await client.get(f"/api/v1/payroll/summary?month={MONTH}&year={YEAR}", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["total_gross"] == 43000


async def test_api_generate_bulk(client, db, test_employee, hr_admin):
    await _prepare_inputs(db, test_employee["id"])
    headers = await make_auth_headers(db, hr_admin["id"], UserRole.hr_admin)
    await db.commit()

    resp = await client.post(
        "/api/v1/payroll/generate-bulk",
        json={
            "employee_ids": [str(test_employee["id"]), str(hr_admin["id"])],
            "month": MONTH,
            "year": YEAR,
        },
        headers=headers,
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["generated"] == 1
    assert data["failed"] == 1
    assert data["payrolls"][0]["employee_id"] == str(test_employee["id"])
    assert data["errors"][0]["employee_id"] == str(hr_admin["id"])

    resp = await client.post(
        "/api/v1/payroll/generate-bulk",
        json={"employee_ids": [], "month": MONTH, "year": YEAR},
        headers=headers,
    )
    assert resp.status_code == 422
