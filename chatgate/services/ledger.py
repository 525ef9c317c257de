"""
Credit Ledger - Balance reads, atomic debits and free-tier counters.

Credits only move through charge() and top_up(). Every mutation is a single
conditional UPDATE ... RETURNING, so two concurrent debits can never take a
free-tier balance below zero.
"""

from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute
from structlog import get_logger

from chatgate.db.models import Profile, utc_now
from chatgate.exceptions import (
    InsufficientCreditsError,
    ProfileNotFoundError,
    QuotaExceededError,
)
from chatgate.models.api import Plan
from chatgate.models.domain import Balance, ProfileData
from chatgate.observability.metrics import metrics

logger = get_logger(__name__)

COST_PER_MESSAGE = 25
STARTING_CREDITS = 5000
FREE_PROJECT_LIMIT = 3
FREE_IMPORT_LIMIT = 3


def _to_profile_data(profile: Profile) -> ProfileData:
    return ProfileData(
        user_id=profile.id,
        email=profile.email,
        plan=Plan(profile.plan),
        credits=profile.credits,
        monthly_project_creations=profile.monthly_project_creations,
        import_count=profile.import_count,
        created_at=profile.created_at,
        updated_at=profile.updated_at,
    )


class CreditLedger:
    """Profile balance and counter operations over one AsyncSession."""

    def __init__(
        self,
        session: AsyncSession,
        starting_credits: int = STARTING_CREDITS,
        free_project_limit: int = FREE_PROJECT_LIMIT,
        free_import_limit: int = FREE_IMPORT_LIMIT,
    ) -> None:
        self.session = session
        self.starting_credits = starting_credits
        self.free_project_limit = free_project_limit
        self.free_import_limit = free_import_limit

    async def get_balance(self, user_id: UUID, email: str | None = None) -> Balance:
        """Current balance, provisioning a free profile on first access."""
        profile = await self.get_profile(user_id, email)
        return profile.balance

    async def get_profile(self, user_id: UUID, email: str | None = None) -> ProfileData:
        """Full profile snapshot, provisioning a free profile on first access."""
        profile = await self._fetch(user_id)
        if profile is None:
            profile = await self._provision(user_id, email)
        return _to_profile_data(profile)

    async def charge(self, user_id: UUID, amount: int) -> int:
        """
        Debit a free-tier balance by ``amount`` and return what is left.

        Paid plans are never decremented; their unchanged balance is returned.

        Raises:
            InsufficientCreditsError: Free balance below ``amount`` at commit time
            ProfileNotFoundError: No profile row for ``user_id``
        """
        if amount <= 0:
            raise ValueError(f"charge amount must be positive, got {amount}")

        stmt = (
            update(Profile)
            .where(
                Profile.id == user_id,
                Profile.plan == Plan.FREE.value,
                Profile.credits >= amount,
            )
            .values(credits=Profile.credits - amount, updated_at=utc_now())
            .returning(Profile.credits)
        )
        result = await self.session.execute(stmt)
        remaining = result.scalar_one_or_none()

        if remaining is not None:
            await self.session.commit()
            metrics.record_charge(amount)
            logger.info(
                "credits_charged",
                user_id=str(user_id),
                amount=amount,
                credits_remaining=remaining,
            )
            return int(remaining)

        # No row matched: paid plan, drained balance, or missing profile
        profile = await self._fetch(user_id)
        if profile is None:
            raise ProfileNotFoundError(user_id)
        if profile.plan != Plan.FREE.value:
            logger.debug("charge_skipped_paid_plan", user_id=str(user_id), plan=profile.plan)
            return profile.credits

        logger.warning(
            "charge_rejected_insufficient_credits",
            user_id=str(user_id),
            balance=profile.credits,
            required=amount,
        )
        raise InsufficientCreditsError(balance=profile.credits, required=amount)

    async def top_up(self, user_id: UUID, amount: int) -> int:
        """
        Administrative credit increment.

        Raises:
            ProfileNotFoundError: No profile row for ``user_id``
        """
        if amount <= 0:
            raise ValueError(f"top-up amount must be positive, got {amount}")

        stmt = (
            update(Profile)
            .where(Profile.id == user_id)
            .values(credits=Profile.credits + amount, updated_at=utc_now())
            .returning(Profile.credits)
        )
        result = await self.session.execute(stmt)
        new_balance = result.scalar_one_or_none()
        if new_balance is None:
            raise ProfileNotFoundError(user_id)

        await self.session.commit()
        logger.info("credits_topped_up", user_id=str(user_id), amount=amount, balance=new_balance)
        return int(new_balance)

    async def record_project_creation(self, user_id: UUID) -> int:
        """Count a new project. Free plans stop at the project limit."""
        return await self._increment_counter(
            user_id,
            Profile.monthly_project_creations,
            "monthly_project_creations",
            self.free_project_limit,
        )

    async def record_import(self, user_id: UUID, commit: bool = True) -> int:
        """
        Count a confirmed chat import. Free plans stop at the import limit.

        With ``commit=False`` the increment joins the caller's transaction,
        so the count and the imported rows land together or not at all.
        """
        return await self._increment_counter(
            user_id, Profile.import_count, "import_count", self.free_import_limit, commit=commit
        )

    async def _increment_counter(
        self,
        user_id: UUID,
        column: InstrumentedAttribute[int],
        counter: str,
        free_limit: int,
        commit: bool = True,
    ) -> int:
        await self.get_profile(user_id)

        stmt = (
            update(Profile)
            .where(
                Profile.id == user_id,
                or_(Profile.plan != Plan.FREE.value, column < free_limit),
            )
            .values({column: column + 1, Profile.updated_at: utc_now()})
            .returning(column)
        )
        result = await self.session.execute(stmt)
        value = result.scalar_one_or_none()

        if value is None:
            logger.info("quota_exceeded", user_id=str(user_id), counter=counter, limit=free_limit)
            raise QuotaExceededError(counter=counter, limit=free_limit)

        if commit:
            await self.session.commit()
        logger.info("counter_incremented", user_id=str(user_id), counter=counter, value=value)
        return int(value)

    async def _fetch(self, user_id: UUID) -> Profile | None:
        result = await self.session.execute(select(Profile).where(Profile.id == user_id))
        return result.scalar_one_or_none()

    async def _provision(self, user_id: UUID, email: str | None) -> Profile:
        """Insert a free profile; a concurrent insert for the same id is tolerated."""
        now = utc_now()
        stmt = (
            insert(Profile)
            .values(
                id=user_id,
                email=email,
                plan=Plan.FREE.value,
                credits=self.starting_credits,
                monthly_project_creations=0,
                import_count=0,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=[Profile.id])
            .returning(Profile.id)
        )
        result = await self.session.execute(stmt)
        created = result.scalar_one_or_none() is not None
        await self.session.commit()

        if created:
            metrics.profiles_created_total.inc()
            logger.info(
                "profile_provisioned", user_id=str(user_id), credits=self.starting_credits
            )

        profile = await self._fetch(user_id)
        if profile is None:
            raise ProfileNotFoundError(user_id)
        return profile
