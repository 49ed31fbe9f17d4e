"""
Credit ledger backed by the subscriptions and credit_transactions tables.

Balance for the current period is the plan allotment plus the sum of all
transactions recorded since the period started (consumption rows are
negative). Plans without an allotment are unlimited.
"""

import logging
import sys
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from quantjobs.constants import CreditTransactionType, SubscriptionPlan
from quantjobs.db.models import CreditTransaction, Subscription, utc_now
from quantjobs.errors import InsufficientCredits

logger = logging.getLogger(__name__)

UNLIMITED_CREDITS = sys.maxsize
BILLING_PERIOD = timedelta(days=30)


class CreditLedgerRepository:
    """
    Repository for plan lookups and credit movements.

    Shares the caller's session so that a consumption row and the job it
    pays for are committed in the same transaction.
    """

    def __init__(
        self,
        session: AsyncSession,
        allotments: dict[SubscriptionPlan, int | None],
    ):
        self._session = session
        self._allotments = allotments

    async def get_subscription(
        self,
        owner_id: str,
        for_update: bool = False,
    ) -> Subscription | None:
        stmt = select(Subscription).where(Subscription.owner_id == owner_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_plan(self, owner_id: str) -> SubscriptionPlan:
        """Owners without a subscription row are on the free plan."""
        subscription = await self.get_subscription(owner_id)
        if subscription is None:
            return SubscriptionPlan.FREE
        return subscription.plan

    async def set_plan(self, owner_id: str, plan: SubscriptionPlan) -> Subscription:
        """Switch an owner to a plan and start a fresh billing period."""
        now = utc_now()
        subscription = await self.get_subscription(owner_id, for_update=True)
        if subscription is None:
            subscription = Subscription(owner_id=owner_id)
            self._session.add(subscription)
        subscription.plan = plan
        subscription.current_period_start = now
        subscription.current_period_end = now + BILLING_PERIOD
        await self._session.flush()

        logger.info(
            "Subscription plan set",
            extra={"owner_id": owner_id, "plan": plan.value}
        )
        return subscription

    async def available(self, owner_id: str) -> int:
        """Credits the owner can still spend this period."""
        subscription = await self.get_subscription(owner_id)
        return await self._available(owner_id, subscription)

    async def consume(
        self,
        owner_id: str,
        amount: int,
        job_id: UUID | None = None,
        description: str | None = None,
    ) -> None:
        """
        Debit credits, refusing to overdraw.

        Raises:
            InsufficientCredits: If the balance is lower than the amount.
        """
        subscription = await self.get_subscription(owner_id, for_update=True)
        balance = await self._available(owner_id, subscription)
        if balance < amount:
            raise InsufficientCredits(owner_id, required=amount, available=balance)

        await self._record(
            owner_id,
            CreditTransactionType.CONSUMPTION,
            -amount,
            job_id=job_id,
            description=description,
        )

    async def refund(self, owner_id: str, amount: int, job_id: UUID) -> None:
        """Return credits charged for a job that never ran."""
        await self._record(
            owner_id,
            CreditTransactionType.REFUND,
            amount,
            job_id=job_id,
            description=f"Refund for cancelled job {job_id}",
        )

    async def grant(self, owner_id: str, amount: int, description: str) -> None:
        """Add bonus credits for the current period."""
        await self._record(
            owner_id,
            CreditTransactionType.GRANT,
            amount,
            description=description,
        )

    async def _available(
        self,
        owner_id: str,
        subscription: Subscription | None,
    ) -> int:
        plan = subscription.plan if subscription is not None else SubscriptionPlan.FREE
        allotment = self._allotments.get(plan)
        if allotment is None:
            return UNLIMITED_CREDITS

        period_start = (
            subscription.current_period_start
            if subscription is not None
            else _month_start(utc_now())
        )
        stmt = select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
            and_(
                CreditTransaction.owner_id == owner_id,
                CreditTransaction.created_at >= period_start,
            )
        )
        result = await self._session.execute(stmt)
        movements = result.scalar() or 0
        return max(0, allotment + movements)

    async def _record(
        self,
        owner_id: str,
        transaction_type: CreditTransactionType,
        amount: int,
        job_id: UUID | None = None,
        description: str | None = None,
    ) -> CreditTransaction:
        transaction = CreditTransaction(
            owner_id=owner_id,
            transaction_type=transaction_type,
            amount=amount,
            job_id=job_id,
            description=description,
            created_at=utc_now(),
        )
        self._session.add(transaction)
        await self._session.flush()
        return transaction


def _month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
