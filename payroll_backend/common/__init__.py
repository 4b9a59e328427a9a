"""Common module — shared utilities for the payroll platform."""

from payroll_backend.common.audit import AuditTrail, create_audit_entry
from payroll_backend.common.constants import (
    CycleStatus,
    PayrollStatus,
    TaxRegime,
    TransactionStatus,
    UserRole,
)
from payroll_backend.common.exceptions import (
    AppException,
    ConflictError,
    DuplicateException,
    DuplicatePayrollException,
    ForbiddenException,
    ImmutableRecordException,
    InvalidStateException,
    NotFoundException,
    RetryExhaustedException,
    StateConflictException,
    UpstreamUnavailableException,
    ValidationException,
    WorkflowIncompleteException,
    register_exception_handlers,
)
from payroll_backend.common.money import round_rupee, to_decimal

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "CycleStatus",
    "PayrollStatus",
    "TaxRegime",
    "TransactionStatus",
    "UserRole",
    # Exceptions
    "AppException",
    "ConflictError",
    "DuplicateException",
    "DuplicatePayrollException",
    "ForbiddenException",
    "ImmutableRecordException",
    "InvalidStateException",
    "NotFoundException",
    "RetryExhaustedException",
    "StateConflictException",
    "UpstreamUnavailableException",
    "ValidationException",
    "WorkflowIncompleteException",
    "register_exception_handlers",
    # Money
    "round_rupee",
    "to_decimal",
]
