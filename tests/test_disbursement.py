"""Disbursement tests — batches, validation, the transaction state machine,
bounded retries, reconciliation, notifications and API endpoints.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from payroll_backend.common.constants import PayrollStatus, TransactionStatus, UserRole
from payroll_backend.common.exceptions import (
    InvalidStateException,
    RetryExhaustedException,
    StateConflictException,
    ValidationException,
)
from payroll_backend.core_hr.models import Employee
from payroll_backend.disbursement.models import SalaryDisbursement
from payroll_backend.disbursement.payment_rail import SimulatedPaymentRail, get_payment_rail
from payroll_backend.disbursement.service import DisbursementService, validation_errors_for
from payroll_backend.notifications.models import Notification
from payroll_backend.payroll.service import PayrollService
from tests.conftest import (
    _make_employee,
    create_approved_structure,
    make_auth_headers,
    seed_attendance,
)


MONTH, YEAR = 3, 2025


# ── Helpers ─────────────────────────────────────────────────────────


async def _create_approved_payroll(db, employee_id):
    await create_approved_structure(db, employee_id)
    await seed_attendance(db, employee_id, MONTH, YEAR)
    payroll = await PayrollService.generate_payroll(db, employee_id, MONTH, YEAR)
    await PayrollService.approve_level(db, payroll.id, 1, employee_id, UserRole.system_admin)
    return await PayrollService.approve_level(db, payroll.id, 2, employee_id, UserRole.system_admin)


async def _create_disbursement(db, employee_id):
    payroll = await _create_approved_payroll(db, employee_id)
    result = await DisbursementService.create_batch(db, [payroll.id])
    return await DisbursementService.get_disbursement(db, result.items[0].disbursement_id)


async def _create_initiated(db, employee_id, rail=None):
    disbursement = await _create_disbursement(db, employee_id)
    await DisbursementService.validate(db, disbursement.id)
    return await DisbursementService.initiate_payment(
        db, disbursement.id, rail=rail or SimulatedPaymentRail(),
    )


async def _create_successful(db, employee_id):
    disbursement = await _create_initiated(db, employee_id)
    return await DisbursementService.update_payment_status(
        db, disbursement.id, TransactionStatus.success, utr_number="UTR0001",
    )


async def _fail(db, disbursement_id):
    return await DisbursementService.update_payment_status(
        db, disbursement_id, TransactionStatus.failed,
        failure_reason="Beneficiary bank offline", failure_code="BANK_DOWN",
    )


# ═════════════════════════════════════════════════════════════════════
# 1. BATCH CREATION & VALIDATION
# ═════════════════════════════════════════════════════════════════════


async def test_create_batch(db, test_employee):
    payroll = await _create_approved_payroll(db, test_employee["id"])

    result = await DisbursementService.create_batch(db, [payroll.id])

    assert result.batch_id.startswith("BATCH-")
    assert result.processed == 1
    assert result.failed == 0
    disbursement = await DisbursementService.get_disbursement(db, result.items[0].disbursement_id)
    assert disbursement.disbursement_code == f"DSB-202503-{test_employee['employee_code']}"
    assert disbursement.status == TransactionStatus.pending.value
    assert disbursement.net_amount == Decimal("40180")
    assert disbursement.gross_amount == Decimal("43000")
    assert disbursement.bank_account["ifsc_code"] == "HDFC0001234"
    assert disbursement.compliance == {"tds": 719, "pf": 1800, "esi": 0, "professional_tax": 200}
    assert disbursement.max_retries == 3
    assert [h.to_status for h in disbursement.status_history] == ["pending"]


async def test_create_batch_rejects_unapproved_and_duplicate(db, test_employee, hr_admin):
    approved = await _create_approved_payroll(db, test_employee["id"])
    await create_approved_structure(db, hr_admin["id"])
    await seed_attendance(db, hr_admin["id"], MONTH, YEAR)
    calculated = await PayrollService.generate_payroll(db, hr_admin["id"], MONTH, YEAR)
    await DisbursementService.create_batch(db, [approved.id])

    result = await DisbursementService.create_batch(db, [approved.id, calculated.id])

    assert result.processed == 0
    assert result.failed == 2
    assert all(item.errors for item in result.items)
    assert len(result.failed_items) == 2
    _, total = await DisbursementService.list_disbursements(db)
    assert total == 1


async def test_validate_passes_for_good_bank_details(db, test_employee):
    disbursement = await _create_disbursement(db, test_employee["id"])
    disbursement = await DisbursementService.validate(db, disbursement.id)
    assert disbursement.validated is True
    assert disbursement.validation_errors == []


async def test_validate_flags_bad_ifsc(db, test_department, test_location):
    data = _make_employee(
        email="bad.bank@creativefuel.io",
        department_id=test_department["id"],
        location_id=test_location["id"],
        bank_details={"account_number": "1234567890", "ifsc_code": "HDFC1234"},
    )
    db.add(Employee(**data))
    await db.flush()
    disbursement = await _create_disbursement(db, data["id"])

    disbursement = await DisbursementService.validate(db, disbursement.id)

    assert disbursement.validated is False
    assert "IFSC code 'HDFC1234' is invalid." in disbursement.validation_errors
    with pytest.raises(ValidationException):
        await DisbursementService.initiate_payment(db, disbursement.id)


def test_validation_errors_for_amounts_and_missing_account():
    disbursement = SalaryDisbursement(
        bank_account={},
        gross_amount=Decimal("100"),
        net_amount=Decimal("0"),
    )
    errors = validation_errors_for(disbursement)
    assert "Bank account number is missing." in errors
    assert "IFSC code is missing." in errors
    assert "Net amount must be greater than zero." in errors


def test_validation_errors_for_gross_below_net():
    disbursement = SalaryDisbursement(
        bank_account={"account_number": "1", "ifsc_code": "SBIN0000001"},
        gross_amount=Decimal("100"),
        net_amount=Decimal("200"),
    )
    assert validation_errors_for(disbursement) == ["Gross amount cannot be less than net amount."]


# ═════════════════════════════════════════════════════════════════════
# 2. INITIATION & STATUS UPDATES
# ═════════════════════════════════════════════════════════════════════


async def test_initiate_payment(db, test_employee):
    rail = SimulatedPaymentRail()
    disbursement = await _create_initiated(db, test_employee["id"], rail)

    assert disbursement.status == TransactionStatus.processing.value
    assert disbursement.payout_id.startswith("SIM-")
    assert len(rail.submitted) == 1
    assert rail.submitted[0].amount == Decimal("40180")
    assert rail.submitted[0].reference == disbursement.disbursement_code

    payroll = await PayrollService.get_payroll(db, disbursement.payroll_id)
    assert payroll.status == PayrollStatus.processed.value


async def test_initiate_requires_validation(db, test_employee):
    disbursement = await _create_disbursement(db, test_employee["id"])
    with pytest.raises(ValidationException):
        await DisbursementService.initiate_payment(db, disbursement.id)


async def test_success_marks_payroll_paid_and_notifies(db, test_employee):
    disbursement = await _create_successful(db, test_employee["id"])

    assert disbursement.status == TransactionStatus.success.value
    assert disbursement.utr_number == "UTR0001"
    assert disbursement.processed_at is not None
    assert disbursement.employee_notified is True
    assert [h.to_status for h in disbursement.status_history] == ["pending", "processing", "success"]

    payroll = await PayrollService.get_payroll(db, disbursement.payroll_id)
    assert payroll.status == PayrollStatus.paid.value
    assert payroll.utr_number == "UTR0001"

    notifications = (
        await db.execute(select(Notification).where(Notification.recipient_id == test_employee["id"]))
    ).scalars().all()
    assert len(notifications) == 1
    assert notifications[0].title == "Salary Credited"
    assert "₹40,180" in notifications[0].message


async def test_illegal_transition(db, test_employee):
    disbursement = await _create_disbursement(db, test_employee["id"])
    with pytest.raises(StateConflictException):
        await DisbursementService.update_payment_status(
            db, disbursement.id, TransactionStatus.success,
        )


async def test_reversal_leaves_payroll_paid(db, test_employee):
    disbursement = await _create_successful(db, test_employee["id"])
    disbursement = await DisbursementService.update_payment_status(
        db, disbursement.id, TransactionStatus.reversed, remarks="Returned by bank",
    )
    assert disbursement.status == TransactionStatus.reversed.value
    payroll = await PayrollService.get_payroll(db, disbursement.payroll_id)
    assert payroll.status == PayrollStatus.paid.value


# ═════════════════════════════════════════════════════════════════════
# 3. FAILURES & RETRIES
# ═════════════════════════════════════════════════════════════════════


async def test_failure_schedules_retry(db, test_employee):
    disbursement = await _create_initiated(db, test_employee["id"])
    disbursement = await _fail(db, disbursement.id)

    assert disbursement.status == TransactionStatus.failed.value
    assert disbursement.failure_code == "BANK_DOWN"
    assert disbursement.next_retry_at is not None
    assert disbursement.can_retry is True

    later = datetime.now(timezone.utc) + timedelta(hours=1)
    eligible = await DisbursementService.find_retry_eligible(db, later)
    assert [d.id for d in eligible] == [disbursement.id]
    assert await DisbursementService.find_retry_eligible(db, datetime.now(timezone.utc)) == []


async def test_failed_cannot_restart_without_retry(db, test_employee):
    disbursement = await _create_initiated(db, test_employee["id"])
    await _fail(db, disbursement.id)
    with pytest.raises(StateConflictException):
        await DisbursementService.update_payment_status(
            db, disbursement.id, TransactionStatus.processing,
        )


async def test_retry_payment(db, test_employee):
    disbursement = await _create_initiated(db, test_employee["id"])
    first_payout = disbursement.payout_id
    await _fail(db, disbursement.id)

    disbursement = await DisbursementService.retry_payment(
        db, disbursement.id, rail=SimulatedPaymentRail(),
    )

    assert disbursement.status == TransactionStatus.processing.value
    assert disbursement.retry_count == 1
    assert disbursement.last_retry_at is not None
    assert disbursement.next_retry_at is None
    assert disbursement.payout_id != first_payout


async def test_retry_only_failed(db, test_employee):
    disbursement = await _create_initiated(db, test_employee["id"])
    with pytest.raises(InvalidStateException):
        await DisbursementService.retry_payment(db, disbursement.id)


async def test_retries_are_bounded(db, test_employee):
    disbursement = await _create_initiated(db, test_employee["id"])
    for _ in range(3):
        await _fail(db, disbursement.id)
        await DisbursementService.retry_payment(db, disbursement.id, rail=SimulatedPaymentRail())
    disbursement = await _fail(db, disbursement.id)

    assert disbursement.retry_count == 3
    assert disbursement.next_retry_at is None
    assert disbursement.can_retry is False
    before = (disbursement.status, disbursement.retry_count, len(disbursement.status_history))
    with pytest.raises(RetryExhaustedException):
        await DisbursementService.retry_payment(db, disbursement.id)

    disbursement = await DisbursementService.get_disbursement(db, disbursement.id, for_update=True)
    after = (disbursement.status, disbursement.retry_count, len(disbursement.status_history))
    assert after == before == ("failed", 3, 9)


# ═════════════════════════════════════════════════════════════════════
# 4. RECONCILIATION
# ═════════════════════════════════════════════════════════════════════


async def test_reconcile_matching_statement(db, test_employee, finance_admin):
    disbursement = await _create_successful(db, test_employee["id"])

    disbursement = await DisbursementService.reconcile_payment(
        db, disbursement.id,
        statement_amount=Decimal("40180"),
        statement_date=date(2025, 4, 1),
        reference="STMT-1",
        actor_id=finance_admin["id"],
    )

    assert disbursement.reconciled is True
    assert disbursement.reconciled_by_id == finance_admin["id"]
    assert disbursement.statement_entry["matched"] is True
    assert disbursement.statement_entry["date"] == "2025-04-01"
    assert disbursement.discrepancy is None

    with pytest.raises(StateConflictException):
        await DisbursementService.reconcile_payment(
            db, disbursement.id, statement_amount=Decimal("40180"),
        )


async def test_reconcile_mismatch_opens_discrepancy(db, test_employee, finance_admin):
    disbursement = await _create_successful(db, test_employee["id"])

    disbursement = await DisbursementService.reconcile_payment(
        db, disbursement.id, statement_amount=Decimal("40000"),
    )
    assert disbursement.reconciled is False
    assert disbursement.has_open_discrepancy
    assert disbursement.discrepancy["amount"] == 180.0

    disbursement = await DisbursementService.resolve_discrepancy(
        db, disbursement.id, actor_id=finance_admin["id"], reason="Bank charge",
    )
    assert disbursement.reconciled is True
    assert disbursement.discrepancy["resolved"] is True
    assert disbursement.discrepancy["resolution"] == "Bank charge"

    with pytest.raises(StateConflictException):
        await DisbursementService.resolve_discrepancy(
            db, disbursement.id, actor_id=finance_admin["id"],
        )


async def test_reconcile_requires_success(db, test_employee):
    disbursement = await _create_initiated(db, test_employee["id"])
    with pytest.raises(StateConflictException):
        await DisbursementService.reconcile_payment(
            db, disbursement.id, statement_amount=Decimal("40180"),
        )


# ═════════════════════════════════════════════════════════════════════
# 5. BATCH PROCESSING, SUMMARY & RAILS
# ═════════════════════════════════════════════════════════════════════


async def test_process_batch_isolates_invalid_items(db, test_employee, test_department, test_location):
    data = _make_employee(
        email="no.bank@creativefuel.io",
        department_id=test_department["id"],
        location_id=test_location["id"],
        bank_details={},
    )
    db.add(Employee(**data))
    await db.flush()
    good = await _create_approved_payroll(db, test_employee["id"])
    bad = await _create_approved_payroll(db, data["id"])
    created = await DisbursementService.create_batch(db, [good.id, bad.id])

    result = await DisbursementService.process_batch(
        db, created.batch_id, rail=SimulatedPaymentRail(),
    )

    assert result.processed == 1
    assert result.failed == 1
    [failed] = result.failed_items
    assert failed.payroll_id == bad.id
    assert "Bank account number is missing." in failed.errors


async def test_process_batch_one_bad_ifsc_in_five(db, test_department, test_location):
    payroll_ids = []
    for n in range(1, 6):
        bank = None
        if n == 3:
            bank = {"account_number": "50100099999999", "ifsc_code": "BAD-IFSC"}
        data = _make_employee(
            email=f"batch.{n}@creativefuel.io",
            department_id=test_department["id"],
            location_id=test_location["id"],
            bank_details=bank,
        )
        db.add(Employee(**data))
        await db.flush()
        payroll = await _create_approved_payroll(db, data["id"])
        payroll_ids.append(payroll.id)
    created = await DisbursementService.create_batch(db, payroll_ids)

    result = await DisbursementService.process_batch(
        db, created.batch_id, rail=SimulatedPaymentRail(),
    )

    assert result.processed == 4
    assert result.failed == 1
    [failed] = result.failed_items
    assert failed.payroll_id == payroll_ids[2]
    assert "IFSC code 'BAD-IFSC' is invalid." in failed.errors

    by_payroll = {item.payroll_id: item for item in result.items}
    for position in (0, 1, 3, 4):
        item = by_payroll[payroll_ids[position]]
        assert item.status == TransactionStatus.processing.value
        disbursement = await DisbursementService.get_disbursement(db, item.disbursement_id)
        assert disbursement.status == TransactionStatus.processing.value
    bad = await DisbursementService.get_disbursement(db, failed.disbursement_id)
    assert bad.status == TransactionStatus.pending.value
    assert bad.validated is False


async def test_disbursement_summary(db, test_employee):
    disbursement = await _create_successful(db, test_employee["id"])
    await DisbursementService.reconcile_payment(
        db, disbursement.id, statement_amount=Decimal("40180"),
    )

    summary = await DisbursementService.get_disbursement_summary(db, year=YEAR, month=MONTH)

    assert summary["total_disbursements"] == 1
    assert summary["total_amount"] == 40180
    assert summary["by_status"] == {"success": {"count": 1, "amount": 40180}}
    assert summary["reconciled"] == 1


def test_payment_rail_lookup():
    assert isinstance(get_payment_rail("simulated"), SimulatedPaymentRail)
    assert isinstance(get_payment_rail(), SimulatedPaymentRail)
    with pytest.raises(ValidationException):
        get_payment_rail("swift")


# ═════════════════════════════════════════════════════════════════════
# 6. PAYROLL CANCELLATION
# ═════════════════════════════════════════════════════════════════════


async def test_cancel_payroll_cancels_pending_disbursement(db, test_employee, hr_admin):
    disbursement = await _create_disbursement(db, test_employee["id"])

    payroll = await PayrollService.cancel_payroll(
        db, disbursement.payroll_id, hr_admin["id"], "Employee left before payout",
    )

    assert payroll.status == PayrollStatus.cancelled.value
    disbursement = await DisbursementService.get_disbursement(db, disbursement.id, for_update=True)
    assert disbursement.status == TransactionStatus.cancelled.value
    assert [h.to_status for h in disbursement.status_history] == ["pending", "cancelled"]
    with pytest.raises(StateConflictException):
        await DisbursementService.initiate_payment(db, disbursement.id)


async def test_cancel_payroll_cancels_failed_disbursement(db, test_employee, hr_admin):
    disbursement = await _create_initiated(db, test_employee["id"])
    await _fail(db, disbursement.id)

    await PayrollService.cancel_payroll(
        db, disbursement.payroll_id, hr_admin["id"], "Duplicate payout request",
    )

    disbursement = await DisbursementService.get_disbursement(db, disbursement.id, for_update=True)
    assert disbursement.status == TransactionStatus.cancelled.value
    later = datetime.now(timezone.utc) + timedelta(hours=1)
    assert await DisbursementService.find_retry_eligible(db, later) == []
    with pytest.raises(InvalidStateException):
        await DisbursementService.retry_payment(db, disbursement.id)


async def test_cancel_refused_while_payment_in_flight(db, test_employee, hr_admin):
    disbursement = await _create_initiated(db, test_employee["id"])

    with pytest.raises(StateConflictException):
        await PayrollService.cancel_payroll(
            db, disbursement.payroll_id, hr_admin["id"], "Too late to stop",
        )

    payroll = await PayrollService.get_payroll(db, disbursement.payroll_id)
    assert payroll.status == PayrollStatus.processed.value
    disbursement = await DisbursementService.update_payment_status(
        db, disbursement.id, TransactionStatus.success, utr_number="UTR0002",
    )
    payroll = await PayrollService.get_payroll(db, disbursement.payroll_id, for_update=True)
    assert payroll.status == PayrollStatus.paid.value


# ═════════════════════════════════════════════════════════════════════
# 7. API ENDPOINTS
# ═════════════════════════════════════════════════════════════════════


async def test_api_create_batch_as_finance(client, db, test_employee, finance_admin):
    payroll = await _create_approved_payroll(db, test_employee["id"])
    headers = await make_auth_headers(db, finance_admin["id"], UserRole.finance_admin)
    await db.commit()

    resp = await client.post(
        "/api/v1/disbursements/batches",
        json={"payroll_ids": [str(payroll.id)]},
        headers=headers,
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["processed"] == 1
    assert data["failed"] == 0


async def test_api_create_batch_forbidden_for_hr(client, db, test_employee, hr_admin):
    payroll = await _create_approved_payroll(db, test_employee["id"])
    headers = await make_auth_headers(db, hr_admin["id"], UserRole.hr_admin)
    await db.commit()

    resp = await client.post(
        "/api/v1/disbursements/batches",
        json={"payroll_ids": [str(payroll.id)]},
        headers=headers,
    )
    assert resp.status_code == 403


async def test_api_status_callback(client, db, test_employee, finance_admin):
    disbursement = await _create_initiated(db, test_employee["id"])
    headers = await make_auth_headers(db, finance_admin["id"], UserRole.finance_admin)
    await db.commit()

    resp = await client.post(
        f"/api/v1/disbursements/{disbursement.id}/status",
        json={"status": "success", "utr_number": "UTR777"},
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "success"
    assert resp.json()["utr_number"] == "UTR777"


async def test_api_retry_exhausted_is_conflict(client, db, test_employee, finance_admin):
    disbursement = await _create_initiated(db, test_employee["id"])
    for _ in range(3):
        await _fail(db, disbursement.id)
        await DisbursementService.retry_payment(db, disbursement.id, rail=SimulatedPaymentRail())
    await _fail(db, disbursement.id)
    headers = await make_auth_headers(db, finance_admin["id"], UserRole.finance_admin)
    await db.commit()

    resp = await client.post(f"/api/v1/disbursements/{disbursement.id}/retry", headers=headers)
    assert resp.status_code == 409


async def test_api_employee_reads_own_disbursement(client, db, test_employee, auth_headers):
    disbursement = await _create_disbursement(db, test_employee["id"])
    await db.commit()

    resp = await client.get(f"/api/v1/disbursements/{disbursement.id}", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["disbursement_code"] == disbursement.disbursement_code
