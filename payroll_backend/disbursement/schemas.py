"""Disbursement Pydantic v2 schemas — batches, status updates, reconciliation."""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from payroll_backend.common.constants import PaymentMethod, TransactionStatus


# ═════════════════════════════════════════════════════════════════════
# Inputs
# ═════════════════════════════════════════════════════════════════════


class BatchCreate(BaseModel):
    payroll_ids: List[uuid.UUID] = Field(..., min_length=1)
    payment_method: PaymentMethod = PaymentMethod.neft
    gateway_provider: Optional[str] = Field(None, max_length=30)
    process: bool = False


class PaymentStatusUpdate(BaseModel):
    """Outcome reported by the payment rail (or entered manually)."""

    status: TransactionStatus
    transaction_id: Optional[str] = Field(None, max_length=100)
    utr_number: Optional[str] = Field(None, max_length=50)
    reference_number: Optional[str] = Field(None, max_length=100)
    failure_reason: Optional[str] = Field(None, max_length=1000)
    failure_code: Optional[str] = Field(None, max_length=50)
    gateway_response: Optional[dict] = None
    remarks: Optional[str] = Field(None, max_length=1000)


class ReconcileRequest(BaseModel):
    statement_amount: Decimal = Field(..., ge=0)
    statement_date: Optional[date] = None
    reference: Optional[str] = Field(None, max_length=100)


class DiscrepancyResolve(BaseModel):
    reason: str = Field(..., min_length=3, max_length=1000)


# ═════════════════════════════════════════════════════════════════════
# Outputs
# ═════════════════════════════════════════════════════════════════════


class StatusHistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    from_status: Optional[TransactionStatus] = None
    to_status: TransactionStatus
    changed_by_id: Optional[uuid.UUID] = None
    remarks: Optional[str] = None
    changed_at: Optional[datetime] = None


class DisbursementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    disbursement_code: str
    batch_id: Optional[str] = None
    payroll_id: uuid.UUID
    employee_id: uuid.UUID
    month: int
    year: int
    gross_amount: Decimal
    total_deductions: Decimal
    net_amount: Decimal
    bank_account: dict = {}
    payment_method: PaymentMethod
    gateway_provider: str
    payout_id: Optional[str] = None
    status: TransactionStatus
    transaction_id: Optional[str] = None
    utr_number: Optional[str] = None
    reference_number: Optional[str] = None
    transaction_date: Optional[datetime] = None
    failure_reason: Optional[str] = None
    failure_code: Optional[str] = None
    retry_count: int
    max_retries: int
    next_retry_at: Optional[datetime] = None
    last_retry_at: Optional[datetime] = None
    validated: bool
    validation_errors: List[str] = []
    initiated_by_id: Optional[uuid.UUID] = None
    initiated_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    compliance: dict = {}
    employee_notified: bool
    reconciled: bool
    reconciled_at: Optional[datetime] = None
    statement_entry: Optional[dict] = None
    discrepancy: Optional[dict] = None
    status_history: List[StatusHistoryOut] = []
    created_at: Optional[datetime] = None


class DisbursementListResponse(BaseModel):
    data: List[DisbursementOut]
    total: int
    page: int = 1
    page_size: int = 50


class BatchItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    payroll_id: Optional[uuid.UUID] = None
    disbursement_id: Optional[uuid.UUID] = None
    status: str
    errors: List[str] = []


class BatchResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    batch_id: str
    processed: int
    failed: int
    items: List[BatchItemOut] = []


class StatusBucket(BaseModel):
    count: int
    amount: int


class DisbursementSummaryOut(BaseModel):
    year: Optional[int] = None
    month: Optional[int] = None
    batch_id: Optional[str] = None
    total_disbursements: int
    total_amount: int
    by_status: dict[str, StatusBucket] = {}
    reconciled: int
