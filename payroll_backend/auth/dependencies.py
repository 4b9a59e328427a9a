"""Auth dependencies — JWT validation, RBAC enforcement for payroll endpoints."""

from __future__ import annotations

import hashlib
import uuid
from datetime import datetime, timezone
from typing import Callable, Iterable

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from payroll_backend.auth.models import UserSession
from payroll_backend.common.constants import UserRole
from payroll_backend.common.exceptions import ForbiddenException
from payroll_backend.config import settings
from payroll_backend.core_hr.models import Employee
from payroll_backend.database import get_db

# Role hierarchy: each role implicitly includes lower roles
_ROLE_HIERARCHY: dict[UserRole, set[UserRole]] = {
    UserRole.system_admin: {
        UserRole.system_admin,
        UserRole.finance_admin,
        UserRole.hr_admin,
        UserRole.manager,
        UserRole.employee,
    },
    UserRole.hr_admin: {UserRole.hr_admin, UserRole.manager, UserRole.employee},
    UserRole.finance_admin: {UserRole.finance_admin, UserRole.manager, UserRole.employee},
    UserRole.manager: {UserRole.manager, UserRole.employee},
    UserRole.employee: {UserRole.employee},
}


def effective_roles(role: UserRole | str) -> set[UserRole]:
    """Expand a role through the hierarchy."""
    try:
        role = UserRole(role)
    except ValueError:
        role = UserRole.employee
    return _ROLE_HIERARCHY.get(role, {role})


def role_satisfies(role: UserRole | str, required: Iterable[UserRole | str]) -> bool:
    """True if *role* (or a role it includes) is among *required*."""
    wanted = set()
    for r in required:
        try:
            wanted.add(UserRole(r))
        except ValueError:
            continue
    return bool(effective_roles(role) & wanted)


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")
    return auth_header[7:]


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Employee:
    """Validate JWT, verify session, return the authenticated Employee."""
    token = _extract_bearer(request)

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired.")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token.")

    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type.")

    # Verify session exists, not revoked, not expired
    result = await db.execute(
        select(UserSession).where(
            UserSession.token_hash == _hash_token(token),
            UserSession.is_revoked.is_(False),
            UserSession.expires_at > datetime.now(timezone.utc),
        ),
    )
    session = result.scalars().first()
    if session is None:
        raise HTTPException(status_code=401, detail="Session invalid or expired.")

    employee_id = uuid.UUID(payload["sub"])
    emp_result = await db.execute(
        select(Employee)
        .where(Employee.id == employee_id, Employee.is_active.is_(True))
        .options(
            selectinload(Employee.department),
            selectinload(Employee.location),
        ),
    )
    employee = emp_result.scalars().first()
    if employee is None:
        raise HTTPException(status_code=401, detail="User account is inactive or not found.")

    role_str = session.role or payload.get("role", UserRole.employee.value)
    try:
        role = UserRole(role_str)
    except ValueError:
        role = UserRole.employee
    request.state.user_role = role

    return employee


def get_current_role(request: Request) -> UserRole:
    """Role resolved by ``get_current_user`` for this request."""
    return getattr(request.state, "user_role", UserRole.employee)


# ── Role-based dependency ───────────────────────────────────────────

def require_role(*allowed_roles: UserRole) -> Callable:
    """Return a FastAPI dependency that enforces role membership.

    Respects hierarchy — e.g. system_admin can access finance endpoints.
    """

    async def _check(
        request: Request,
        employee: Employee = Depends(get_current_user),
    ) -> Employee:
        user_role: UserRole = request.state.user_role
        if not role_satisfies(user_role, allowed_roles):
            raise ForbiddenException(
                detail=f"Role '{user_role.value}' is not permitted. Required: {[r.value for r in allowed_roles]}.",
            )
        return employee

    return _check
