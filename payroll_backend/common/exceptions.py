"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

BASE_ERROR_URI = "https://payroll.cfai.in/errors"


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON."""

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        super().__init__(detail)


class NotFoundException(AppException):
    """404 — entity not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


class ConflictError(AppException):
    """409 — unique-constraint / duplicate."""

    def __init__(self, field: str, value: Any) -> None:
        super().__init__(
            status_code=409,
            error_type="conflict",
            title="Conflict",
            detail=f"An entry with {field}='{value}' already exists.",
            errors={field: [f"'{value}' is already in use."]},
        )


# Keep the alias used elsewhere in the codebase
DuplicateException = ConflictError


class ForbiddenException(AppException):
    """403 — insufficient permissions."""

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="forbidden",
            title="Forbidden",
            detail=detail,
        )


class ValidationException(AppException):
    """422 — business-logic validation failures."""

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail="One or more fields failed validation.",
            errors=errors,
        )


# ── Payroll state-machine conditions ───────────────────────────────

class StateConflictException(AppException):
    """409 — transition not allowed from the record's current state."""

    error_type = "state-conflict"
    title = "State Conflict"

    def __init__(
        self,
        entity_type: str,
        current_state: Any,
        detail: Optional[str] = None,
    ) -> None:
        state = getattr(current_state, "value", current_state)
        self.current_state = state
        super().__init__(
            status_code=409,
            error_type=self.error_type,
            title=self.title,
            detail=detail or f"{entity_type} cannot be changed while in state '{state}'.",
            errors={"current_state": [str(state)]},
        )


class InvalidStateException(StateConflictException):
    """409 — operation requires a different state (e.g. retry on a non-failed payment)."""

    error_type = "invalid-state"
    title = "Invalid State"


class WorkflowIncompleteException(StateConflictException):
    """409 — approval workflow has levels that are not yet approved."""

    error_type = "workflow-incomplete"
    title = "Workflow Incomplete"


class ImmutableRecordException(StateConflictException):
    """409 — the record is paid and can no longer be mutated."""

    error_type = "immutable-record"
    title = "Immutable Record"


class DuplicatePayrollException(ConflictError):
    """409 — a payroll already exists for (employee, month, year)."""

    def __init__(self, employee_id: Any, month: int, year: int) -> None:
        super().__init__("period", f"{employee_id}:{year}-{month:02d}")
        self.error_type = "duplicate-payroll"
        self.title = "Duplicate Payroll"
        self.detail = (
            f"A payroll for employee '{employee_id}' and period "
            f"{year}-{month:02d} already exists."
        )


class RetryExhaustedException(AppException):
    """409 — retry budget is spent; the payment must be escalated manually."""

    def __init__(self, retry_count: int, max_retries: int) -> None:
        super().__init__(
            status_code=409,
            error_type="retry-exhausted",
            title="Retry Exhausted",
            detail=(
                f"Payment has already been retried {retry_count} of "
                f"{max_retries} times; escalate to manual payment."
            ),
            errors={"retry_count": [str(retry_count)], "max_retries": [str(max_retries)]},
        )


class UpstreamUnavailableException(AppException):
    """503 — a collaborator (attendance, salary structure) could not supply data."""

    def __init__(self, source: str, detail: str) -> None:
        self.source = source
        super().__init__(
            status_code=503,
            error_type="upstream-unavailable",
            title="Upstream Unavailable",
            detail=detail,
            errors={"source": [source]},
        )


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
    }
    if exc.errors:
        body["errors"] = exc.errors
    return body


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_build_problem_detail(exc, request),
        media_type="application/problem+json",
    )


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc", ())
        name = (
            ".".join(str(p) for p in loc[1:])
            if len(loc) > 1
            else str(loc[0]) if loc else "unknown"
        )
        field_errors.setdefault(name, []).append(err.get("msg", "Invalid value"))

    return JSONResponse(
        status_code=422,
        content={
            "type": f"{BASE_ERROR_URI}/validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": "Request validation failed.",
            "instance": str(request.url.path),
            "errors": field_errors,
        },
        media_type="application/problem+json",
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
