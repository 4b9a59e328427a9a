"""Expenses service layer — approved claims reimbursed through payroll."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_backend.common.audit import create_audit_entry
from payroll_backend.common.money import ZERO, as_number, to_decimal
from payroll_backend.expenses.models import ExpenseClaim


class ExpenseService:
    """Reimbursement bookkeeping for payroll."""

    @staticmethod
    async def reserve_reimbursements(
        db: AsyncSession,
        employee_id: uuid.UUID,
        payroll_id: uuid.UUID,
        period_end: date,
    ) -> Decimal:
        """Attach approved, unpaid claims submitted up to ``period_end`` to the
        payroll and return their total.

        Claims already attached to this payroll are re-attached, so calling
        this again for a recalculation is stable.
        """
        claims = (
            await db.execute(
                select(ExpenseClaim).where(
                    ExpenseClaim.employee_id == employee_id,
                    ExpenseClaim.approval_status == "approved",
                    ExpenseClaim.payment_status.is_(None),
                    or_(
                        ExpenseClaim.payroll_id.is_(None),
                        ExpenseClaim.payroll_id == payroll_id,
                    ),
                    or_(
                        ExpenseClaim.submitted_date.is_(None),
                        ExpenseClaim.submitted_date <= period_end,
                    ),
                )
            )
        ).unique().scalars().all()

        total = ZERO
        for claim in claims:
            claim.payroll_id = payroll_id
            total += to_decimal(claim.amount)
        await db.flush()
        return total

    @staticmethod
    async def release_reimbursements(db: AsyncSession, payroll_id: uuid.UUID) -> None:
        """Detach unpaid claims from a payroll (recalculation / cancellation)."""
        await db.execute(
            update(ExpenseClaim)
            .where(
                ExpenseClaim.payroll_id == payroll_id,
                ExpenseClaim.payment_status.is_(None),
            )
            .values(payroll_id=None)
            .execution_options(synchronize_session="fetch")
        )

    @staticmethod
    async def mark_reimbursed(
        db: AsyncSession,
        payroll_id: uuid.UUID,
        actor_id: uuid.UUID | None = None,
    ) -> int:
        """Mark the payroll's attached claims as paid. Returns the claim count."""
        claims = (
            await db.execute(
                select(ExpenseClaim).where(
                    ExpenseClaim.payroll_id == payroll_id,
                    ExpenseClaim.payment_status.is_(None),
                )
            )
        ).unique().scalars().all()

        now = datetime.now(timezone.utc)
        for claim in claims:
            claim.payment_status = "paid"
            claim.paid_at = now
            await create_audit_entry(
                db,
                action="reimburse",
                entity_type="expense_claim",
                entity_id=claim.id,
                actor_id=actor_id,
                old_values={"payment_status": None},
                new_values={
                    "payment_status": "paid",
                    "payroll_id": str(payroll_id),
                    "amount": as_number(claim.amount),
                },
            )
        await db.flush()
        return len(claims)
