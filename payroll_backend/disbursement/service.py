"""Disbursement service layer — salary transfers, retries and reconciliation.

Transaction states: pending → processing → (queued) → success | failed,
with cancelled and reversed as terminal exits. ``update_payment_status`` is
the one place a status changes; ``failed → processing`` is only reachable
through ``retry_payment``. Batch operations isolate each item in a
SAVEPOINT and report failures in a ``BatchResult``.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from payroll_backend.common.audit import create_audit_entry
from payroll_backend.common.constants import (
    IFSC_PATTERN,
    TRANSACTION_TRANSITIONS,
    PaymentMethod,
    PayrollStatus,
    TransactionStatus,
)
from payroll_backend.common.exceptions import (
    AppException,
    ConflictError,
    InvalidStateException,
    NotFoundException,
    RetryExhaustedException,
    StateConflictException,
    ValidationException,
)
from payroll_backend.common.money import ZERO, as_number, to_decimal
from payroll_backend.config import settings
from payroll_backend.disbursement.models import DisbursementStatusHistory, SalaryDisbursement
from payroll_backend.disbursement.payment_rail import (
    PaymentInstruction,
    PaymentRail,
    get_payment_rail,
)
from payroll_backend.notifications.service import notify_salary_credited
from payroll_backend.payroll.service import PayrollService

logger = logging.getLogger(__name__)

_IFSC_RE = re.compile(IFSC_PATTERN)


@dataclass
class BatchItem:
    payroll_id: Optional[uuid.UUID]
    disbursement_id: Optional[uuid.UUID] = None
    status: str = "error"
    errors: list[str] = field(default_factory=list)


@dataclass
class BatchResult:
    """Per-item outcome of a batch; a partial failure is data, not an exception."""

    batch_id: str
    processed: int = 0
    failed: int = 0
    items: list[BatchItem] = field(default_factory=list)

    @property
    def failed_items(self) -> list[BatchItem]:
        return [i for i in self.items if i.errors]


def validation_errors_for(disbursement: SalaryDisbursement) -> list[str]:
    """Pre-initiation checks on the bank snapshot and the amounts."""
    errors: list[str] = []
    account = disbursement.bank_account or {}
    account_number = (account.get("account_number") or "").strip()
    ifsc = (account.get("ifsc_code") or "").strip()

    if not account_number:
        errors.append("Bank account number is missing.")
    if not ifsc:
        errors.append("IFSC code is missing.")
    elif not _IFSC_RE.match(ifsc):
        errors.append(f"IFSC code '{ifsc}' is invalid.")

    net = to_decimal(disbursement.net_amount)
    gross = to_decimal(disbursement.gross_amount)
    if net <= ZERO:
        errors.append("Net amount must be greater than zero.")
    if gross < net:
        errors.append("Gross amount cannot be less than net amount.")
    return errors


class DisbursementService:
    """Business logic for salary disbursements."""

    # ─────────────────────────────────────────────────────────────────
    # Loading & bookkeeping
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_disbursement(
        db: AsyncSession,
        disbursement_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> SalaryDisbursement:
        stmt = select(SalaryDisbursement).where(SalaryDisbursement.id == disbursement_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        disbursement = (await db.execute(stmt)).scalar_one_or_none()
        if disbursement is None:
            raise NotFoundException("SalaryDisbursement", str(disbursement_id))
        return disbursement

    @staticmethod
    async def _flush(db: AsyncSession, disbursement: SalaryDisbursement) -> None:
        try:
            await db.flush()
        except StaleDataError:
            raise StateConflictException(
                "SalaryDisbursement",
                disbursement.status,
                f"Disbursement {disbursement.disbursement_code} was modified concurrently.",
            )

    @staticmethod
    async def _set_status(
        db: AsyncSession,
        disbursement: SalaryDisbursement,
        target: TransactionStatus,
        actor_id: Optional[uuid.UUID],
        *,
        remarks: Optional[str] = None,
        extra: Optional[dict[str, Any]] = None,
    ) -> None:
        old_status = disbursement.status
        disbursement.status = target.value
        disbursement.status_history.append(
            DisbursementStatusHistory(
                from_status=old_status,
                to_status=target.value,
                changed_by_id=actor_id,
                remarks=remarks,
            )
        )
        await DisbursementService._flush(db, disbursement)
        await create_audit_entry(
            db,
            action="status_change",
            entity_type="salary_disbursement",
            entity_id=disbursement.id,
            actor_id=actor_id,
            old_values={"status": old_status},
            new_values={"status": disbursement.status, "remarks": remarks, **(extra or {})},
        )
        logger.info(
            "Disbursement %s: %s → %s", disbursement.disbursement_code, old_status, disbursement.status,
        )

    @staticmethod
    def _submit(disbursement: SalaryDisbursement, rail: Optional[PaymentRail]) -> str:
        rail = rail or get_payment_rail(disbursement.gateway_provider)
        account = disbursement.bank_account or {}
        return rail.submit(
            PaymentInstruction(
                account_number=account.get("account_number", ""),
                ifsc_code=account.get("ifsc_code", ""),
                amount=to_decimal(disbursement.net_amount),
                reference=disbursement.disbursement_code,
                payment_method=disbursement.payment_method,
                beneficiary_name=account.get("account_holder_name"),
            )
        )

    # ─────────────────────────────────────────────────────────────────
    # Batch creation
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _create_one(
        db: AsyncSession,
        payroll_id: uuid.UUID,
        batch_id: str,
        payment_method: PaymentMethod,
        provider: str,
        actor_id: Optional[uuid.UUID],
    ) -> SalaryDisbursement:
        payroll = await PayrollService.get_payroll(db, payroll_id, for_update=True)
        if payroll.status != PayrollStatus.approved.value:
            raise StateConflictException(
                "Payroll",
                payroll.status,
                f"Payroll {payroll.payroll_code} is {payroll.status}; only approved payrolls are disbursed.",
            )

        employee = payroll.employee
        bank = dict(employee.bank_details or {})
        bank.setdefault("account_holder_name", employee.full_name)
        statutory = payroll.statutory_deductions or {}

        disbursement = SalaryDisbursement(
            disbursement_code=f"DSB-{payroll.year}{payroll.month:02d}-{employee.employee_code}",
            batch_id=batch_id,
            payroll_id=payroll.id,
            employee_id=payroll.employee_id,
            month=payroll.month,
            year=payroll.year,
            pay_period_start=payroll.pay_period_start,
            pay_period_end=payroll.pay_period_end,
            gross_amount=payroll.gross_pay,
            total_deductions=payroll.total_deductions,
            net_amount=payroll.net_pay,
            bank_account=bank,
            payment_method=PaymentMethod(payment_method).value,
            gateway_provider=provider,
            status=TransactionStatus.pending.value,
            max_retries=settings.DISBURSEMENT_MAX_RETRIES,
            validation_errors=[],
            compliance={
                "tds": (statutory.get("income_tax") or {}).get("tax_deducted", 0),
                "pf": (statutory.get("pf") or {}).get("employee", 0),
                "esi": (statutory.get("esi") or {}).get("employee", 0),
                "professional_tax": (statutory.get("professional_tax") or {}).get("amount", 0),
            },
            created_by_id=actor_id,
            status_history=[
                DisbursementStatusHistory(
                    from_status=None,
                    to_status=TransactionStatus.pending.value,
                    changed_by_id=actor_id,
                    remarks=f"Created in batch {batch_id}",
                )
            ],
        )
        db.add(disbursement)
        try:
            await db.flush()
        except IntegrityError:
            raise ConflictError("payroll_id", str(payroll_id))

        await create_audit_entry(
            db,
            action="create",
            entity_type="salary_disbursement",
            entity_id=disbursement.id,
            actor_id=actor_id,
            new_values={
                "disbursement_code": disbursement.disbursement_code,
                "batch_id": batch_id,
                "net_amount": as_number(to_decimal(disbursement.net_amount)),
            },
        )
        return disbursement

    @staticmethod
    async def create_batch(
        db: AsyncSession,
        payroll_ids: list[uuid.UUID],
        *,
        payment_method: PaymentMethod = PaymentMethod.neft,
        provider: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> BatchResult:
        """One pending disbursement per approved payroll, sharing a batch id."""
        now = datetime.now(timezone.utc)
        batch_id = f"BATCH-{now:%Y%m%d%H%M%S}-{uuid.uuid4().hex[:6].upper()}"
        provider = (provider or settings.PAYMENT_GATEWAY_PROVIDER).lower()
        result = BatchResult(batch_id=batch_id)

        for payroll_id in payroll_ids:
            item = BatchItem(payroll_id=payroll_id)
            try:
                async with db.begin_nested():
                    disbursement = await DisbursementService._create_one(
                        db, payroll_id, batch_id, payment_method, provider, actor_id,
                    )
            except AppException as exc:
                item.errors.append(exc.detail)
                result.failed += 1
                logger.warning("Batch %s: payroll %s not added: %s", batch_id, payroll_id, exc.detail)
            else:
                item.disbursement_id = disbursement.id
                item.status = disbursement.status
                result.processed += 1
            result.items.append(item)

        logger.info(
            "Batch %s created: %d disbursements, %d rejected",
            batch_id, result.processed, result.failed,
        )
        return result

    # ─────────────────────────────────────────────────────────────────
    # Validation & initiation
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def validate(
        db: AsyncSession,
        disbursement_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> SalaryDisbursement:
        disbursement = await DisbursementService.get_disbursement(db, disbursement_id, for_update=True)
        errors = validation_errors_for(disbursement)
        disbursement.validated = not errors
        disbursement.validation_errors = errors
        disbursement.validated_at = datetime.now(timezone.utc)
        await DisbursementService._flush(db, disbursement)
        if errors:
            logger.warning(
                "Disbursement %s failed validation: %s", disbursement.disbursement_code, "; ".join(errors),
            )
        return disbursement

    @staticmethod
    async def initiate_payment(
        db: AsyncSession,
        disbursement_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
        rail: Optional[PaymentRail] = None,
    ) -> SalaryDisbursement:
        """pending → processing; hands the transfer to the payment rail."""
        disbursement = await DisbursementService.get_disbursement(db, disbursement_id, for_update=True)
        if disbursement.status != TransactionStatus.pending.value:
            raise StateConflictException(
                "SalaryDisbursement",
                disbursement.status,
                f"Disbursement {disbursement.disbursement_code} is {disbursement.status}; expected pending.",
            )
        if not disbursement.validated:
            raise ValidationException(
                {"disbursement": disbursement.validation_errors or ["Disbursement has not been validated."]}
            )
        payroll = await PayrollService.get_payroll(db, disbursement.payroll_id, for_update=True)
        if payroll.status == PayrollStatus.cancelled.value:
            raise StateConflictException(
                "Payroll", payroll.status, f"Payroll {payroll.payroll_code} is cancelled.",
            )

        disbursement.initiated_by_id = actor_id
        disbursement.initiated_at = datetime.now(timezone.utc)
        await DisbursementService._set_status(
            db, disbursement, TransactionStatus.processing, actor_id, remarks="Payment initiated",
        )
        if payroll.status == PayrollStatus.approved.value:
            await PayrollService.mark_processed(db, payroll.id, actor_id=actor_id)

        disbursement.payout_id = DisbursementService._submit(disbursement, rail)
        await DisbursementService._flush(db, disbursement)
        return disbursement

    # ─────────────────────────────────────────────────────────────────
    # Status updates
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def update_payment_status(
        db: AsyncSession,
        disbursement_id: uuid.UUID,
        status: TransactionStatus,
        *,
        actor_id: Optional[uuid.UUID] = None,
        transaction_id: Optional[str] = None,
        utr_number: Optional[str] = None,
        reference_number: Optional[str] = None,
        failure_reason: Optional[str] = None,
        failure_code: Optional[str] = None,
        gateway_response: Optional[dict] = None,
        remarks: Optional[str] = None,
        retrying: bool = False,
    ) -> SalaryDisbursement:
        """Apply a rail outcome or a manual transition (see TRANSACTION_TRANSITIONS)."""
        target = TransactionStatus(status)
        disbursement = await DisbursementService.get_disbursement(db, disbursement_id, for_update=True)
        current = TransactionStatus(disbursement.status)

        if target not in TRANSACTION_TRANSITIONS[current] or (
            current is TransactionStatus.failed and target is TransactionStatus.processing and not retrying
        ):
            raise StateConflictException(
                "SalaryDisbursement",
                current.value,
                f"Disbursement {disbursement.disbursement_code} cannot move from "
                f"{current.value} to {target.value}.",
            )

        now = datetime.now(timezone.utc)
        if transaction_id is not None:
            disbursement.transaction_id = transaction_id
        if utr_number is not None:
            disbursement.utr_number = utr_number
        if reference_number is not None:
            disbursement.reference_number = reference_number
        if gateway_response is not None:
            disbursement.gateway_response = gateway_response

        if target is TransactionStatus.failed:
            disbursement.failure_reason = failure_reason or "Payment failed"
            disbursement.failure_code = failure_code
            if disbursement.retry_count < disbursement.max_retries:
                disbursement.next_retry_at = now + timedelta(
                    minutes=settings.DISBURSEMENT_RETRY_DELAY_MINUTES,
                )
            else:
                disbursement.next_retry_at = None
                logger.error(
                    "Disbursement %s failed after %d retries: %s",
                    disbursement.disbursement_code, disbursement.retry_count, disbursement.failure_reason,
                )
        elif target is TransactionStatus.success:
            disbursement.processed_at = now
            disbursement.transaction_date = now
            disbursement.failure_reason = None
            disbursement.failure_code = None
            disbursement.next_retry_at = None

        await DisbursementService._set_status(
            db, disbursement, target, actor_id,
            remarks=remarks or failure_reason,
            extra={"transaction_id": disbursement.transaction_id, "utr_number": disbursement.utr_number},
        )

        if target is TransactionStatus.success:
            await DisbursementService._settle_payroll(db, disbursement, actor_id)
            notification = await notify_salary_credited(db, disbursement)
            if notification is not None:
                disbursement.employee_notified = True
                disbursement.notified_at = now
                await DisbursementService._flush(db, disbursement)
        elif target is TransactionStatus.reversed:
            logger.warning(
                "Disbursement %s reversed; payroll %s stays paid",
                disbursement.disbursement_code, disbursement.payroll_id,
            )
        return disbursement

    @staticmethod
    async def _settle_payroll(
        db: AsyncSession,
        disbursement: SalaryDisbursement,
        actor_id: Optional[uuid.UUID],
    ) -> None:
        payroll = await PayrollService.get_payroll(db, disbursement.payroll_id, for_update=True)
        if payroll.status == PayrollStatus.approved.value:
            await PayrollService.mark_processed(db, payroll.id, actor_id=actor_id)
        await PayrollService.mark_paid(
            db,
            payroll.id,
            actor_id=actor_id,
            transaction_id=disbursement.transaction_id,
            utr_number=disbursement.utr_number,
            payment_date=disbursement.transaction_date,
        )

    @staticmethod
    async def retry_payment(
        db: AsyncSession,
        disbursement_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
        rail: Optional[PaymentRail] = None,
    ) -> SalaryDisbursement:
        """failed → processing, resubmitting to the rail. Bounded by ``max_retries``."""
        disbursement = await DisbursementService.get_disbursement(db, disbursement_id, for_update=True)
        if disbursement.status != TransactionStatus.failed.value:
            raise InvalidStateException(
                "SalaryDisbursement",
                disbursement.status,
                f"Only failed disbursements can be retried; {disbursement.disbursement_code} "
                f"is {disbursement.status}.",
            )
        if disbursement.retry_count >= disbursement.max_retries:
            raise RetryExhaustedException(disbursement.retry_count, disbursement.max_retries)

        disbursement.retry_count += 1
        disbursement.last_retry_at = datetime.now(timezone.utc)
        disbursement.next_retry_at = None
        await DisbursementService._flush(db, disbursement)
        await DisbursementService.update_payment_status(
            db,
            disbursement.id,
            TransactionStatus.processing,
            actor_id=actor_id,
            remarks=f"Retry {disbursement.retry_count} of {disbursement.max_retries}",
            retrying=True,
        )
        disbursement.payout_id = DisbursementService._submit(disbursement, rail)
        await DisbursementService._flush(db, disbursement)
        return disbursement

    # ─────────────────────────────────────────────────────────────────
    # Reconciliation
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def reconcile_payment(
        db: AsyncSession,
        disbursement_id: uuid.UUID,
        *,
        statement_amount: Decimal,
        statement_date: Optional[date] = None,
        reference: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> SalaryDisbursement:
        """Match a bank-statement entry; a mismatch opens a discrepancy."""
        disbursement = await DisbursementService.get_disbursement(db, disbursement_id, for_update=True)
        if disbursement.status != TransactionStatus.success.value:
            raise StateConflictException(
                "SalaryDisbursement",
                disbursement.status,
                "Only successful disbursements can be reconciled.",
            )
        if disbursement.reconciled:
            raise StateConflictException(
                "SalaryDisbursement", disbursement.status,
                f"Disbursement {disbursement.disbursement_code} is already reconciled.",
            )

        amount = to_decimal(statement_amount)
        difference = to_decimal(disbursement.net_amount) - amount
        matched = abs(difference) < settings.RECONCILIATION_TOLERANCE
        now = datetime.now(timezone.utc)

        disbursement.statement_entry = {
            "date": (statement_date or now.date()).isoformat(),
            "amount": float(amount),
            "reference": reference,
            "matched": matched,
        }
        if matched:
            disbursement.reconciled = True
            disbursement.reconciled_at = now
            disbursement.reconciled_by_id = actor_id
            disbursement.discrepancy = None
        else:
            disbursement.discrepancy = {
                "found": True,
                "amount": float(difference),
                "reason": f"Statement amount {amount} differs from net amount {disbursement.net_amount}.",
                "resolved": False,
            }
            logger.warning(
                "Disbursement %s: reconciliation discrepancy of %s",
                disbursement.disbursement_code, difference,
            )
        await DisbursementService._flush(db, disbursement)
        await create_audit_entry(
            db,
            action="reconcile",
            entity_type="salary_disbursement",
            entity_id=disbursement.id,
            actor_id=actor_id,
            new_values={"matched": matched, "statement_amount": float(amount)},
        )
        return disbursement

    @staticmethod
    async def resolve_discrepancy(
        db: AsyncSession,
        disbursement_id: uuid.UUID,
        *,
        actor_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> SalaryDisbursement:
        disbursement = await DisbursementService.get_disbursement(db, disbursement_id, for_update=True)
        if not disbursement.has_open_discrepancy:
            raise StateConflictException(
                "SalaryDisbursement", disbursement.status,
                f"Disbursement {disbursement.disbursement_code} has no open discrepancy.",
            )
        now = datetime.now(timezone.utc)
        disbursement.discrepancy = {
            **disbursement.discrepancy,
            "resolved": True,
            "resolved_at": now.isoformat(),
            "resolved_by": str(actor_id),
            "resolution": reason,
        }
        disbursement.reconciled = True
        disbursement.reconciled_at = now
        disbursement.reconciled_by_id = actor_id
        await DisbursementService._flush(db, disbursement)
        await create_audit_entry(
            db,
            action="resolve_discrepancy",
            entity_type="salary_disbursement",
            entity_id=disbursement.id,
            actor_id=actor_id,
            new_values={"resolution": reason},
        )
        return disbursement

    # ─────────────────────────────────────────────────────────────────
    # Batch processing
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def process_batch(
        db: AsyncSession,
        batch_id: str,
        *,
        actor_id: Optional[uuid.UUID] = None,
        rail: Optional[PaymentRail] = None,
    ) -> BatchResult:
        """Validate and initiate every pending item of a batch independently."""
        disbursements = (
            await db.execute(
                select(SalaryDisbursement)
                .where(
                    SalaryDisbursement.batch_id == batch_id,
                    SalaryDisbursement.status == TransactionStatus.pending.value,
                )
                .order_by(SalaryDisbursement.disbursement_code)
            )
        ).scalars().all()
        items = [(d.id, d.payroll_id) for d in disbursements]
        result = BatchResult(batch_id=batch_id)

        for disbursement_id, payroll_id in items:
            item = BatchItem(payroll_id=payroll_id, disbursement_id=disbursement_id)
            disbursement = await DisbursementService.validate(db, disbursement_id, actor_id=actor_id)
            if not disbursement.validated:
                item.status = disbursement.status
                item.errors = list(disbursement.validation_errors)
                result.failed += 1
                result.items.append(item)
                continue
            try:
                async with db.begin_nested():
                    disbursement = await DisbursementService.initiate_payment(
                        db, disbursement_id, actor_id=actor_id, rail=rail,
                    )
            except AppException as exc:
                item.errors.append(exc.detail)
                result.failed += 1
                logger.warning("Batch %s: disbursement %s not initiated: %s", batch_id, disbursement_id, exc.detail)
            else:
                item.status = disbursement.status
                result.processed += 1
            result.items.append(item)

        logger.info(
            "Batch %s processed: %d initiated, %d failed", batch_id, result.processed, result.failed,
        )
        return result

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def find_retry_eligible(
        db: AsyncSession,
        now: Optional[datetime] = None,
    ) -> list[SalaryDisbursement]:
        """Failed disbursements with retries left whose retry time has come."""
        now = now or datetime.now(timezone.utc)
        result = await db.execute(
            select(SalaryDisbursement)
            .where(
                SalaryDisbursement.status == TransactionStatus.failed.value,
                SalaryDisbursement.retry_count < SalaryDisbursement.max_retries,
                SalaryDisbursement.next_retry_at.is_not(None),
                SalaryDisbursement.next_retry_at <= now,
            )
            .order_by(SalaryDisbursement.next_retry_at)
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_disbursements(
        db: AsyncSession,
        *,
        batch_id: Optional[str] = None,
        status: Optional[TransactionStatus] = None,
        month: Optional[int] = None,
        year: Optional[int] = None,
        employee_id: Optional[uuid.UUID] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[SalaryDisbursement], int]:
        stmt = select(SalaryDisbursement)
        if batch_id is not None:
            stmt = stmt.where(SalaryDisbursement.batch_id == batch_id)
        if status is not None:
            stmt = stmt.where(SalaryDisbursement.status == TransactionStatus(status).value)
        if month is not None:
            stmt = stmt.where(SalaryDisbursement.month == month)
        if year is not None:
            stmt = stmt.where(SalaryDisbursement.year == year)
        if employee_id is not None:
            stmt = stmt.where(SalaryDisbursement.employee_id == employee_id)

        count_stmt = stmt.with_only_columns(func.count(), maintain_column_froms=True).order_by(None)
        total = (await db.execute(count_stmt)).scalar_one()

        stmt = (
            stmt.order_by(SalaryDisbursement.created_at.desc(), SalaryDisbursement.disbursement_code)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list((await db.execute(stmt)).scalars().all()), total

    @staticmethod
    async def get_disbursement_summary(
        db: AsyncSession,
        *,
        year: Optional[int] = None,
        month: Optional[int] = None,
        batch_id: Optional[str] = None,
    ) -> dict:
        stmt = select(
            SalaryDisbursement.status,
            func.count(),
            func.coalesce(func.sum(SalaryDisbursement.net_amount), 0),
        )
        if year is not None:
            stmt = stmt.where(SalaryDisbursement.year == year)
        if month is not None:
            stmt = stmt.where(SalaryDisbursement.month == month)
        if batch_id is not None:
            stmt = stmt.where(SalaryDisbursement.batch_id == batch_id)
        rows = (await db.execute(stmt.group_by(SalaryDisbursement.status))).all()

        by_status: dict[str, dict] = {}
        total_count = 0
        total_amount = ZERO
        for status, count, amount in rows:
            amount = to_decimal(amount)
            by_status[status] = {"count": count, "amount": as_number(amount)}
            total_count += count
            total_amount += amount

        reconciliation = select(func.count()).select_from(SalaryDisbursement)
        if year is not None:
            reconciliation = reconciliation.where(SalaryDisbursement.year == year)
        if month is not None:
            reconciliation = reconciliation.where(SalaryDisbursement.month == month)
        if batch_id is not None:
            reconciliation = reconciliation.where(SalaryDisbursement.batch_id == batch_id)
        reconciled = (
            await db.execute(reconciliation.where(SalaryDisbursement.reconciled.is_(True)))
        ).scalar_one()

        return {
            "year": year,
            "month": month,
            "batch_id": batch_id,
            "total_disbursements": total_count,
            "total_amount": as_number(total_amount),
            "by_status": by_status,
            "reconciled": reconciled,
        }
