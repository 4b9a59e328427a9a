"""Enums and constants for the payroll platform — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Employee / Core HR ──────────────────────────────────────────────

class EmploymentStatus(str, enum.Enum):
    active = "active"
    notice_period = "notice_period"
    relieved = "relieved"
    absconding = "absconding"


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    hr_admin = "hr_admin"
    finance_admin = "finance_admin"
    system_admin = "system_admin"


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"
    revoked = "revoked"


# ── Attendance ──────────────────────────────────────────────────────

class AttendanceStatus(str, enum.Enum):
    present = "present"
    absent = "absent"
    half_day = "half_day"
    weekend = "weekend"
    holiday = "holiday"
    on_leave = "on_leave"
    work_from_home = "work_from_home"
    on_duty = "on_duty"


# ── Notifications ───────────────────────────────────────────────────

class NotificationType(str, enum.Enum):
    info = "info"
    action_required = "action_required"
    approval = "approval"
    reminder = "reminder"
    alert = "alert"


# ── Salary structure ────────────────────────────────────────────────

class StructureStatus(str, enum.Enum):
    draft = "draft"
    pending_approval = "pending_approval"
    approved = "approved"
    rejected = "rejected"


class ComponentBase(str, enum.Enum):
    basic = "basic"
    gross = "gross"
    ctc = "ctc"


# ── Payroll ─────────────────────────────────────────────────────────

class PayrollStatus(str, enum.Enum):
    draft = "draft"
    calculated = "calculated"
    approved = "approved"
    processed = "processed"
    paid = "paid"
    cancelled = "cancelled"


class ApprovalStepStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class TaxRegime(str, enum.Enum):
    old = "old"
    new = "new"


class TaxRecordStatus(str, enum.Enum):
    draft = "draft"
    submitted = "submitted"
    under_review = "under_review"
    approved = "approved"
    completed = "completed"


class ProofStatus(str, enum.Enum):
    pending = "pending"
    verified = "verified"
    rejected = "rejected"


class ChallanType(str, enum.Enum):
    pf = "pf"
    esi = "esi"
    pt = "pt"


# ── Payroll cycle ───────────────────────────────────────────────────

class CycleStatus(str, enum.Enum):
    draft = "draft"
    attendance_locked = "attendance_locked"
    calculated = "calculated"
    reviewed = "reviewed"
    approved = "approved"
    processed = "processed"
    disbursed = "disbursed"
    completed = "completed"


CYCLE_STAGES: list[CycleStatus] = list(CycleStatus)


class ProcessingErrorType(str, enum.Enum):
    missing_structure = "missing_structure"
    missing_attendance = "missing_attendance"
    duplicate_payroll = "duplicate_payroll"
    calculation_error = "calculation_error"
    invalid_state = "invalid_state"


# ── Disbursement ────────────────────────────────────────────────────

class TransactionStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    queued = "queued"
    success = "success"
    failed = "failed"
    cancelled = "cancelled"
    reversed = "reversed"


class PaymentMethod(str, enum.Enum):
    neft = "neft"
    rtgs = "rtgs"
    imps = "imps"
    upi = "upi"
    cheque = "cheque"
    cash = "cash"


# Allowed disbursement transitions; failed → processing only through retry.
TRANSACTION_TRANSITIONS: dict[TransactionStatus, set[TransactionStatus]] = {
    TransactionStatus.pending: {TransactionStatus.processing, TransactionStatus.cancelled},
    TransactionStatus.processing: {
        TransactionStatus.queued,
        TransactionStatus.success,
        TransactionStatus.failed,
        TransactionStatus.cancelled,
    },
    TransactionStatus.queued: {
        TransactionStatus.processing,
        TransactionStatus.success,
        TransactionStatus.failed,
        TransactionStatus.cancelled,
    },
    TransactionStatus.failed: {TransactionStatus.processing, TransactionStatus.cancelled},
    TransactionStatus.success: {TransactionStatus.reversed},
    TransactionStatus.cancelled: set(),
    TransactionStatus.reversed: set(),
}

IFSC_PATTERN = r"^[A-Z]{4}0[A-Z0-9]{6}$"

