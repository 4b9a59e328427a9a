"""Tests for common utilities — RFC 7807 exceptions, roles, audit trail,
employee period helpers and settings.
"""

from __future__ import annotations

import uuid
from datetime import date

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_backend.auth.dependencies import effective_roles, role_satisfies
from payroll_backend.common.audit import create_audit_entry, get_entity_history
from payroll_backend.common.constants import UserRole
from payroll_backend.common.exceptions import (
    AppException,
    DuplicatePayrollException,
    ImmutableRecordException,
    InvalidStateException,
    RetryExhaustedException,
    StateConflictException,
    UpstreamUnavailableException,
    WorkflowIncompleteException,
)
from payroll_backend.config import settings
from payroll_backend.core_hr.models import Employee
from tests.conftest import _make_employee, make_auth_headers


# ═════════════════════════════════════════════════════════════════════
# EXCEPTIONS
# ═════════════════════════════════════════════════════════════════════


class TestExceptions:
    """Status codes and problem types of the payroll exceptions."""

    def test_state_conflict_family(self):
        for exc_cls, error_type in [
            (StateConflictException, "state-conflict"),
            (InvalidStateException, "invalid-state"),
            (WorkflowIncompleteException, "workflow-incomplete"),
            (ImmutableRecordException, "immutable-record"),
        ]:
            exc = exc_cls("Payroll", "paid")
            assert exc.status_code == 409
            assert exc.error_type == error_type
            assert exc.current_state == "paid"
            assert isinstance(exc, StateConflictException)

    def test_state_conflict_accepts_enum_state(self):
        exc = StateConflictException("Payroll", UserRole.hr_admin)
        assert exc.current_state == "hr_admin"
        assert "hr_admin" in exc.detail

    def test_duplicate_payroll(self):
        exc = DuplicatePayrollException(uuid.uuid4(), 3, 2025)
        assert exc.status_code == 409
        assert exc.error_type == "duplicate-payroll"
        assert "2025-03" in exc.detail

    def test_retry_exhausted(self):
        exc = RetryExhaustedException(3, 3)
        assert exc.status_code == 409
        assert exc.errors == {"retry_count": ["3"], "max_retries": ["3"]}

    def test_upstream_unavailable_keeps_source(self):
        exc = UpstreamUnavailableException("attendance", "No attendance.")
        assert exc.status_code == 503
        assert exc.source == "attendance"
        assert isinstance(exc, AppException)


async def test_problem_detail_response(client, db, hr_admin):
    headers = await make_auth_headers(db, hr_admin["id"], UserRole.hr_admin)
    await db.commit()

    missing = uuid.uuid4()
    resp = await client.get(f"/api/v1/payroll/{missing}", headers=headers)

    assert resp.status_code == 404
    body = resp.json()
    assert body["type"].endswith("/not-found")
    assert body["title"] == "Payroll Not Found"
    assert body["status"] == 404
    assert body["instance"] == f"/api/v1/payroll/{missing}"


async def test_unauthenticated_request(client):
    resp = await client.get("/api/v1/payroll/my-payrolls")
    assert resp.status_code == 401


async def test_health(client):
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


# ═════════════════════════════════════════════════════════════════════
# ROLES
# ═════════════════════════════════════════════════════════════════════


@pytest.mark.parametrize(
    "role, required, expected",
    [
        (UserRole.system_admin, [UserRole.finance_admin], True),
        (UserRole.system_admin, [UserRole.hr_admin], True),
        (UserRole.hr_admin, [UserRole.finance_admin], False),
        (UserRole.finance_admin, [UserRole.hr_admin], False),
        (UserRole.hr_admin, [UserRole.employee], True),
        ("finance_admin", ["finance_admin"], True),
        (UserRole.employee, [UserRole.manager], False),
        (UserRole.hr_admin, ["not_a_role"], False),
    ],
)
def test_role_satisfies(role, required, expected):
    assert role_satisfies(role, required) is expected


def test_effective_roles_of_manager():
    assert effective_roles(UserRole.manager) == {UserRole.manager, UserRole.employee}


# ═════════════════════════════════════════════════════════════════════
# AUDIT TRAIL
# ═════════════════════════════════════════════════════════════════════


async def test_entity_history_oldest_first(db: AsyncSession, test_employee):
    entity_id = uuid.uuid4()
    for action in ("create", "calculate", "approve"):
        await create_audit_entry(
            db,
            action=action,
            entity_type="payroll",
            entity_id=entity_id,
            actor_id=test_employee["id"],
            new_values={"status": action},
        )
    await create_audit_entry(db, action="create", entity_type="payroll_cycle", entity_id=entity_id)

    history = await get_entity_history(db, "payroll", entity_id)

    assert [h.action for h in history] == ["create", "calculate", "approve"]
    assert history[-1].new_values == {"status": "approve"}
    assert history[0].actor_id == test_employee["id"]


# ═════════════════════════════════════════════════════════════════════
# EMPLOYEE PERIOD HELPERS
# ═════════════════════════════════════════════════════════════════════


class TestEmployeePeriod:

    START, END = date(2025, 3, 1), date(2025, 3, 31)

    def _employee(self, **fields) -> Employee:
        data = _make_employee()
        data.update(fields)
        return Employee(**data)

    def test_full_month(self):
        emp = self._employee(date_of_joining=date(2024, 1, 15))
        assert emp.is_payable_in(self.START, self.END)
        assert not emp.is_partial_period(self.START, self.END)

    def test_joined_mid_month(self):
        emp = self._employee(date_of_joining=date(2025, 3, 17))
        assert emp.is_payable_in(self.START, self.END)
        assert emp.is_partial_period(self.START, self.END)

    def test_joined_after_period(self):
        emp = self._employee(date_of_joining=date(2025, 4, 1))
        assert not emp.is_payable_in(self.START, self.END)

    def test_exited_mid_month(self):
        emp = self._employee(date_of_exit=date(2025, 3, 14))
        assert emp.is_payable_in(self.START, self.END)
        assert emp.is_partial_period(self.START, self.END)

    def test_exited_before_period(self):
        emp = self._employee(last_working_date=date(2025, 2, 28))
        assert not emp.is_payable_in(self.START, self.END)

    def test_full_name_skips_missing_parts(self):
        emp = self._employee(first_name="Asha", last_name="Kulkarni")
        assert emp.full_name == "Asha Kulkarni"


# ═════════════════════════════════════════════════════════════════════
# SETTINGS
# ═════════════════════════════════════════════════════════════════════


def test_approval_levels_parsed_from_settings():
    assert settings.payroll_approval_levels == ["hr_admin", "finance_admin"]
    assert settings.cycle_approval_levels == ["finance_admin"]
