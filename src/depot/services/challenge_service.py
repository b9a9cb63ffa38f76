"""Enrollment challenge issuance and single-use redemption."""

import logging
from datetime import datetime, timedelta, timezone

from opentelemetry import trace
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from depot.errors import ChallengeNotFoundError, ConstraintViolationError
from depot.metrics import depot_metrics
from depot.repository.repositories import ChallengeRepository, storage_session
from shared.security import generate_challenge_secret

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class ChallengeTokenManager:
    """Issues one-time enrollment challenges and consumes them exactly once."""

    DEFAULT_SECRET_BYTES = 24
    MAX_ISSUE_ATTEMPTS = 3

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        secret_bytes: int = DEFAULT_SECRET_BYTES,
        ttl: timedelta | None = None,
    ):
        """
        Args:
            session_factory: Factory for sessions on the depot database.
            secret_bytes: Random bytes per challenge before base64 encoding.
            ttl: Maximum challenge age at redemption. None never expires challenges.
        """
        if secret_bytes < 16:
            raise ValueError("secret_bytes must be at least 16")
        self._sessions = session_factory
        self.secret_bytes = secret_bytes
        self.ttl = ttl

    async def issue_challenge(self) -> str:
        """Generate, persist and return a new challenge secret."""
        with tracer.start_as_current_span("ChallengeTokenManager.issue_challenge"):
            for attempt in range(1, self.MAX_ISSUE_ATTEMPTS + 1):
                secret = generate_challenge_secret(self.secret_bytes)
                try:
                    async with storage_session(self._sessions) as db:
                        await ChallengeRepository(db).create(secret)
                        await db.commit()
                except IntegrityError:
                    logger.warning("challenge_collision", extra={"attempt": attempt})
                    continue

                depot_metrics.record_challenge_issued()
                logger.info("challenge_issued")
                return secret

            raise ConstraintViolationError("Could not generate a unique challenge")

    async def redeem_challenge(self, secret: str) -> bool:
        """Consume a pending challenge.

        Returns:
            True when exactly one pending challenge matched and was removed.

        Raises:
            ChallengeNotFoundError: If the secret is unknown, already redeemed or expired.
        """
        with tracer.start_as_current_span("ChallengeTokenManager.redeem_challenge") as span:
            async with storage_session(self._sessions) as db:
                created = await ChallengeRepository(db).consume(secret)
                await db.commit()

            if len(created) != 1:
                span.set_attribute("result", "not_found")
                depot_metrics.record_challenge_redeemed("not_found")
                logger.info("challenge_rejected", extra={"reason": "not_found"})
                raise ChallengeNotFoundError()

            if self._is_expired(created[0]):
                # The expired row was deleted by the same statement
                span.set_attribute("result", "expired")
                depot_metrics.record_challenge_redeemed("expired")
                logger.info("challenge_rejected", extra={"reason": "expired"})
                raise ChallengeNotFoundError()

            span.set_attribute("result", "accepted")
            depot_metrics.record_challenge_redeemed("accepted")
            logger.info("challenge_redeemed")
            return True

    def _is_expired(self, created_at: datetime) -> bool:
        if self.ttl is None:
            return False
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) - created_at > self.ttl
