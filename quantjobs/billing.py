"""
Admission control: what a job costs and whether the owner may submit it.
"""

import logging
from uuid import UUID

from quantjobs.collaborators.interfaces import CreditLedger
from quantjobs.config import Settings
from quantjobs.constants import (
    METHOD_BASE_COST,
    METHOD_COMPATIBILITY,
    SIZE_MULTIPLIERS,
    ModelFormat,
    QuantizationMethod,
    SubscriptionPlan,
)
from quantjobs.errors import InvalidCombination

logger = logging.getLogger(__name__)


def size_multiplier(size_bytes: int) -> int:
    """Cost multiplier for an input of the given size."""
    for threshold, multiplier in SIZE_MULTIPLIERS:
        if size_bytes > threshold:
            return multiplier
    return 1


def calculate_job_cost(method: QuantizationMethod, size_bytes: int) -> int:
    """
    Credits charged for one job.

    Pure function of method and input size:
    base cost of the method times the size multiplier.
    """
    return METHOD_BASE_COST[method] * size_multiplier(size_bytes)


def check_compatibility(
    method: QuantizationMethod,
    input_format: ModelFormat,
    output_format: ModelFormat,
) -> None:
    """
    Raises:
        InvalidCombination: If the method cannot read the input format or
            cannot produce the output format.
    """
    inputs, outputs = METHOD_COMPATIBILITY[method]
    if input_format not in inputs:
        raise InvalidCombination(
            f"{method.value} does not accept {input_format.value} input"
        )
    if output_format not in outputs:
        raise InvalidCombination(
            f"{method.value} cannot produce {output_format.value} output"
        )


def plan_allotments(settings: Settings) -> dict[SubscriptionPlan, int | None]:
    """Credits per billing period for each plan; None means unlimited."""
    return {
        SubscriptionPlan.FREE: settings.plan_credits_free,
        SubscriptionPlan.STARTER: settings.plan_credits_starter,
        SubscriptionPlan.PRO: settings.plan_credits_pro,
    }


class AdmissionController:
    """
    Credit gate in front of job creation.

    There is no separate reserve/release protocol: a successful check
    consumes the credits immediately, inside the caller's transaction.
    """

    def __init__(self, ledger: CreditLedger):
        self._ledger = ledger

    async def available(self, owner_id: str) -> int:
        """Credits the owner can still spend this period."""
        return await self._ledger.available(owner_id)

    async def check_and_reserve(
        self,
        owner_id: str,
        cost: int,
        job_id: UUID | None = None,
    ) -> None:
        """
        Verify the owner can afford the cost and consume it.

        Raises:
            InsufficientCredits: If the balance is too low. Nothing is recorded.
        """
        await self._ledger.consume(
            owner_id,
            cost,
            job_id=job_id,
            description=f"Quantization job {job_id}" if job_id else None,
        )
        logger.info(
            "Credits consumed",
            extra={"owner_id": owner_id, "cost": cost, "job_id": str(job_id)}
        )
