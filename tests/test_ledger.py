"""
Tests for CreditLedger.

The session is an AsyncMock; statements are compiled against the PostgreSQL
dialect to check the conditional updates carry their guards.
"""

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from conftest import make_result
from sqlalchemy.dialects import postgresql

from chatgate.exceptions import (
    InsufficientCreditsError,
    ProfileNotFoundError,
    QuotaExceededError,
)
from chatgate.models.api import Plan
from chatgate.services.ledger import CreditLedger


def compiled(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


class TestGetBalance:
    async def test_existing_profile(self, db_session: AsyncMock, profile_factory) -> None:
        profile = profile_factory(credits=1200, plan="free")
        db_session.execute = AsyncMock(return_value=make_result(profile))

        balance = await CreditLedger(db_session).get_balance(profile.id)

        assert balance.credits == 1200
        assert balance.plan == Plan.FREE
        assert balance.unlimited is False
        db_session.commit.assert_not_called()

    async def test_paid_plan_is_unlimited(self, db_session: AsyncMock, profile_factory) -> None:
        profile = profile_factory(plan="premium", credits=0)
        db_session.execute = AsyncMock(return_value=make_result(profile))

        balance = await CreditLedger(db_session).get_balance(profile.id)

        assert balance.unlimited is True
        assert balance.can_afford(25)

    async def test_missing_profile_is_provisioned(
        self, db_session: AsyncMock, profile_factory
    ) -> None:
        user_id = uuid4()
        created = profile_factory(user_id=user_id, credits=5000)
        db_session.execute = AsyncMock(
            side_effect=[make_result(None), make_result(user_id), make_result(created)]
        )

        balance = await CreditLedger(db_session).get_balance(user_id, "new@example.com")

        assert balance.credits == 5000
        insert_sql = compiled(db_session.execute.call_args_list[1].args[0])
        assert "INSERT INTO profiles" in insert_sql
        assert "ON CONFLICT (id) DO NOTHING" in insert_sql
        db_session.commit.assert_awaited_once()

    async def test_concurrent_provisioning_is_tolerated(
        self, db_session: AsyncMock, profile_factory
    ) -> None:
        user_id = uuid4()
        winner = profile_factory(user_id=user_id, credits=4975)
        # Our insert hit the conflict; the other request's row is read back
        db_session.execute = AsyncMock(
            side_effect=[make_result(None), make_result(None), make_result(winner)]
        )

        balance = await CreditLedger(db_session).get_balance(user_id)

        assert balance.credits == 4975


class TestCharge:
    async def test_atomic_debit(self, db_session: AsyncMock) -> None:
        db_session.execute = AsyncMock(return_value=make_result(4975))

        remaining = await CreditLedger(db_session).charge(uuid4(), 25)

        assert remaining == 4975
        sql = compiled(db_session.execute.call_args.args[0])
        assert sql.startswith("UPDATE profiles SET")
        assert "credits=(profiles.credits -" in sql
        assert "profiles.plan =" in sql
        assert "profiles.credits >=" in sql
        assert "RETURNING profiles.credits" in sql
        db_session.commit.assert_awaited_once()

    async def test_drained_free_balance_raises(
        self, db_session: AsyncMock, profile_factory
    ) -> None:
        profile = profile_factory(credits=10, plan="free")
        db_session.execute = AsyncMock(side_effect=[make_result(None), make_result(profile)])

        with pytest.raises(InsufficientCreditsError) as exc_info:
            await CreditLedger(db_session).charge(profile.id, 25)

        assert exc_info.value.balance == 10
        db_session.commit.assert_not_called()

    @pytest.mark.parametrize("plan", ["pro", "premium"])
    async def test_paid_plan_is_not_decremented(
        self, db_session: AsyncMock, profile_factory, plan: str
    ) -> None:
        profile = profile_factory(credits=300, plan=plan)
        db_session.execute = AsyncMock(side_effect=[make_result(None), make_result(profile)])

        remaining = await CreditLedger(db_session).charge(profile.id, 25)

        assert remaining == 300
        db_session.commit.assert_not_called()

    async def test_missing_profile(self, db_session: AsyncMock) -> None:
        db_session.execute = AsyncMock(return_value=make_result(None))

        with pytest.raises(ProfileNotFoundError):
            await CreditLedger(db_session).charge(uuid4(), 25)

    async def test_non_positive_amount_rejected(self, db_session: AsyncMock) -> None:
        with pytest.raises(ValueError):
            await CreditLedger(db_session).charge(uuid4(), 0)
        db_session.execute.assert_not_called()


class TestTopUp:
    async def test_top_up_returns_new_balance(self, db_session: AsyncMock) -> None:
        db_session.execute = AsyncMock(return_value=make_result(6000))

        assert await CreditLedger(db_session).top_up(uuid4(), 1000) == 6000
        assert "credits +" in compiled(db_session.execute.call_args.args[0])
        db_session.commit.assert_awaited_once()

    async def test_top_up_unknown_profile(self, db_session: AsyncMock) -> None:
        db_session.execute = AsyncMock(return_value=make_result(None))

        with pytest.raises(ProfileNotFoundError):
            await CreditLedger(db_session).top_up(uuid4(), 1000)


class TestCounters:
    async def test_project_creation_increments(
        self, db_session: AsyncMock, profile_factory
    ) -> None:
        profile = profile_factory(monthly_project_creations=1)
        db_session.execute = AsyncMock(side_effect=[make_result(profile), make_result(2)])

        count = await CreditLedger(db_session).record_project_creation(profile.id)

        assert count == 2
        sql = compiled(db_session.execute.call_args_list[1].args[0])
        assert "monthly_project_creations <" in sql
        assert "profiles.plan !=" in sql

    async def test_free_project_limit(self, db_session: AsyncMock, profile_factory) -> None:
        profile = profile_factory(monthly_project_creations=3)
        db_session.execute = AsyncMock(side_effect=[make_result(profile), make_result(None)])

        with pytest.raises(QuotaExceededError) as exc_info:
            await CreditLedger(db_session).record_project_creation(profile.id)

        assert exc_info.value.limit == 3
        assert exc_info.value.counter == "monthly_project_creations"

    async def test_import_limit_is_configurable(
        self, db_session: AsyncMock, profile_factory
    ) -> None:
        profile = profile_factory(import_count=5)
        db_session.execute = AsyncMock(side_effect=[make_result(profile), make_result(None)])

        with pytest.raises(QuotaExceededError) as exc_info:
            await CreditLedger(db_session, free_import_limit=5).record_import(profile.id)

        assert exc_info.value.limit == 5

    async def test_import_can_join_callers_transaction(
        self, db_session: AsyncMock, profile_factory
    ) -> None:
        profile = profile_factory(import_count=1)
        db_session.execute = AsyncMock(side_effect=[make_result(profile), make_result(2)])

        count = await CreditLedger(db_session).record_import(profile.id, commit=False)

        assert count == 2
        db_session.commit.assert_not_awaited()
