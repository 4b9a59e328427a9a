"""Notification sink — in-app notifications for payroll events.

Dispatchers accept ORM objects directly and never raise: a failed
notification is logged and rolled back to its own SAVEPOINT so the
calling transition still commits.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_backend.common.constants import NotificationType
from payroll_backend.notifications.models import Notification

logger = logging.getLogger(__name__)

_MONTHS = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


class NotificationService:
    """Async notification operations."""

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        *,
        recipient_id: uuid.UUID,
        type: NotificationType = NotificationType.info,
        title: str,
        message: str,
        action_url: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
    ) -> Notification:
        """Create a new notification and flush to DB."""
        notification = Notification(
            recipient_id=recipient_id,
            type=NotificationType(type).value,
            title=title,
            message=message,
            action_url=action_url,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.add(notification)
        await db.flush()
        return notification


# ── Payroll dispatchers ─────────────────────────────────────────────


async def notify_salary_credited(
    db: AsyncSession,
    disbursement,  # payroll_backend.disbursement.models.SalaryDisbursement
) -> Optional[Notification]:
    """Tell the employee their salary was credited. Returns None on failure."""
    period = f"{_MONTHS[disbursement.month - 1]} {disbursement.year}"
    try:
        async with db.begin_nested():
            return await NotificationService.create_notification(
                db,
                recipient_id=disbursement.employee_id,
                type=NotificationType.info,
                title="Salary Credited",
                message=(
                    f"Your salary of ₹{int(disbursement.net_amount):,} for {period} "
                    f"has been credited."
                    + (f" UTR: {disbursement.utr_number}." if disbursement.utr_number else "")
                ),
                action_url=f"/payroll/{disbursement.payroll_id}",
                entity_type="salary_disbursement",
                entity_id=disbursement.id,
            )
    except SQLAlchemyError:
        logger.warning(
            "Salary-credited notification failed for %s",
            disbursement.disbursement_code,
            exc_info=True,
        )
        return None
