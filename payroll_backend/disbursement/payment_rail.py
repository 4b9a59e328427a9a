"""Payment rail: the hand-off point between a disbursement and the bank.

``submit`` only queues the transfer and returns the rail's reference;
outcomes come back later through ``DisbursementService.update_payment_status``.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

from payroll_backend.common.exceptions import ValidationException
from payroll_backend.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentInstruction:
    account_number: str
    ifsc_code: str
    amount: Decimal
    reference: str
    payment_method: str = "neft"
    beneficiary_name: Optional[str] = None


class PaymentRail(Protocol):
    name: str

    def submit(self, instruction: PaymentInstruction) -> str: ...


class SimulatedPaymentRail:
    """Accepts every instruction and hands back a synthetic payout reference."""

    name = "manual"

    def __init__(self) -> None:
        self.submitted: list[PaymentInstruction] = []

    def submit(self, instruction: PaymentInstruction) -> str:
        self.submitted.append(instruction)
        payout_id = f"SIM-{uuid.uuid4().hex[:16].upper()}"
        logger.info(
            "Queued %s transfer of %s to %s (%s)",
            instruction.payment_method, instruction.amount, instruction.ifsc_code, payout_id,
        )
        return payout_id


_RAILS: dict[str, type] = {
    "manual": SimulatedPaymentRail,
    "simulated": SimulatedPaymentRail,
}


def get_payment_rail(provider: Optional[str] = None) -> PaymentRail:
    """Rail for ``provider`` (defaults to ``PAYMENT_GATEWAY_PROVIDER``)."""
    provider = (provider or settings.PAYMENT_GATEWAY_PROVIDER).lower()
    rail_cls = _RAILS.get(provider)
    if rail_cls is None:
        raise ValidationException({"gateway_provider": [f"Unknown payment provider '{provider}'."]})
    return rail_cls()
