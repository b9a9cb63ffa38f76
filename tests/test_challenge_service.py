"""Tests for enrollment challenge issuance and redemption."""

import asyncio
import base64
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy import select, text, update

from depot.domain.models import Challenge
from depot.errors import ChallengeNotFoundError, ConstraintViolationError
from depot.services.challenge_service import ChallengeTokenManager


@pytest.fixture
def challenges(session_factory):
    return ChallengeTokenManager(session_factory)


async def _age_challenge(session_factory, secret: str, age: timedelta) -> None:
    async with session_factory() as db:
        await db.execute(
            update(Challenge)
            .where(Challenge.challenge == secret)
            .values(created_at=datetime.now(timezone.utc) - age)
        )
        await db.commit()


class TestIssueChallenge:
    @pytest.mark.asyncio
    async def test_issue_returns_base64_secret(self, challenges, count_rows):
        """Test an issued challenge is base64 of 24 random bytes and persisted."""
        secret = await challenges.issue_challenge()

        assert len(base64.b64decode(secret, validate=True)) == 24
        assert await count_rows("challenges") == 1

    @pytest.mark.asyncio
    async def test_issued_challenges_are_distinct(self, challenges, count_rows):
        secrets = {await challenges.issue_challenge() for _ in range(5)}

        assert len(secrets) == 5
        assert await count_rows("challenges") == 5

    @pytest.mark.asyncio
    async def test_collision_is_retried(self, challenges, count_rows):
        """Test a duplicate secret is regenerated instead of surfacing a storage error."""
        first = await challenges.issue_challenge()

        with patch(
            "depot.services.challenge_service.generate_challenge_secret",
            side_effect=[first, "c2Vjb25kLWNoYWxsZW5nZS12YWx1ZQ=="],
        ):
            second = await challenges.issue_challenge()

        assert second == "c2Vjb25kLWNoYWxsZW5nZS12YWx1ZQ=="
        assert await count_rows("challenges") == 2

    @pytest.mark.asyncio
    async def test_repeated_collisions_raise(self, challenges):
        first = await challenges.issue_challenge()

        with patch(
            "depot.services.challenge_service.generate_challenge_secret",
            return_value=first,
        ):
            with pytest.raises(ConstraintViolationError):
                await challenges.issue_challenge()

    def test_short_secrets_refused(self, session_factory):
        with pytest.raises(ValueError):
            ChallengeTokenManager(session_factory, secret_bytes=8)


class TestRedeemChallenge:
    """Tests for single-use redemption."""

    @pytest.mark.asyncio
    async def test_redeem_is_single_use(self, challenges, count_rows):
        """Test a challenge redeems once and is then gone."""
        secret = await challenges.issue_challenge()

        assert await challenges.redeem_challenge(secret) is True
        assert await count_rows("challenges") == 0

        with pytest.raises(ChallengeNotFoundError, match="challenge not found"):
            await challenges.redeem_challenge(secret)

    @pytest.mark.asyncio
    async def test_unknown_secret_not_found(self, challenges, count_rows):
        """Test a wrong secret is rejected and leaves pending challenges alone."""
        secret = await challenges.issue_challenge()

        with pytest.raises(ChallengeNotFoundError):
            await challenges.redeem_challenge("bm90LWlzc3VlZA==")

        assert await count_rows("challenges") == 1
        assert await challenges.redeem_challenge(secret) is True

    @pytest.mark.asyncio
    async def test_empty_secret_not_found(self, challenges):
        with pytest.raises(ChallengeNotFoundError):
            await challenges.redeem_challenge("")

    @pytest.mark.asyncio
    async def test_without_ttl_old_challenges_still_redeem(self, challenges, session_factory):
        secret = await challenges.issue_challenge()
        await _age_challenge(session_factory, secret, timedelta(days=365))

        assert await challenges.redeem_challenge(secret) is True

    @pytest.mark.asyncio
    async def test_expired_challenge_rejected_and_consumed(self, session_factory, count_rows):
        """Test a challenge older than the TTL is not accepted and cannot be retried."""
        challenges = ChallengeTokenManager(session_factory, ttl=timedelta(hours=1))
        secret = await challenges.issue_challenge()
        await _age_challenge(session_factory, secret, timedelta(hours=2))

        with pytest.raises(ChallengeNotFoundError):
            await challenges.redeem_challenge(secret)

        assert await count_rows("challenges") == 0

    @pytest.mark.asyncio
    async def test_fresh_challenge_within_ttl_redeems(self, session_factory):
        challenges = ChallengeTokenManager(session_factory, ttl=timedelta(hours=1))
        secret = await challenges.issue_challenge()

        assert await challenges.redeem_challenge(secret) is True

    @pytest.mark.asyncio
    async def test_concurrent_redemptions_accept_exactly_once(self, challenges, count_rows):
        """Test racing redemptions of one secret let exactly one through."""
        secret = await challenges.issue_challenge()

        results = await asyncio.gather(
            *(challenges.redeem_challenge(secret) for _ in range(5)), return_exceptions=True
        )

        assert results.count(True) == 1
        rejected = [r for r in results if r is not True]
        assert len(rejected) == 4
        assert all(isinstance(r, ChallengeNotFoundError) for r in rejected)
        assert await count_rows("challenges") == 0


class TestChallengeSchema:
    @pytest.mark.asyncio
    async def test_database_stamps_created_at(self, challenges, session_factory):
        """Test rows written outside the ORM still get a creation time."""
        async with session_factory() as db:
            await db.execute(text("INSERT INTO challenges (challenge) VALUES ('cmF3LWluc2VydA==')"))
            await db.commit()
            created_at = (
                await db.execute(
                    select(Challenge.created_at).where(Challenge.challenge == "cmF3LWluc2VydA==")
                )
            ).scalar_one()

        assert created_at is not None
        assert Challenge.__table__.c.created_at.server_default is not None
        assert await challenges.redeem_challenge("cmF3LWluc2VydA==") is True
