"""Repository layer for depot data access."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from depot.domain.models import AUTHORITY_ID, AuthorityKey, CertificateRecord, Challenge
from depot.errors import StorageUnavailableError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def storage_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Open a session, translating driver failures into StorageUnavailableError.

    IntegrityError passes through untouched so callers can map constraint
    violations onto domain errors. Uncommitted work is rolled back on exit.
    """
    try:
        async with session_factory() as db:
            yield db
    except IntegrityError:
        raise
    except (SQLAlchemyError, OSError) as e:
        logger.error("storage_unavailable", extra={"error": str(e)})
        raise StorageUnavailableError(f"Storage operation failed: {e}") from e


class CertificateRecordRepository:
    """Repository for certificate records (insert and read only)."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, record: CertificateRecord) -> CertificateRecord:
        """Insert a record; the database assigns its id."""
        self.db.add(record)
        await self.db.flush()
        return record

    async def update(self, record: CertificateRecord) -> CertificateRecord:
        """Flush changes to a record still inside its creating transaction."""
        await self.db.flush()
        return record

    async def get_by_id(self, record_id: int) -> CertificateRecord | None:
        result = await self.db.execute(select(CertificateRecord).where(CertificateRecord.id == record_id))
        return result.scalar_one_or_none()

    async def max_id(self) -> int:
        """Highest assigned id, 0 when no record exists."""
        result = await self.db.execute(select(func.coalesce(func.max(CertificateRecord.id), 0)))
        return int(result.scalar_one())

    async def exists_by_name(self, name: str) -> bool:
        result = await self.db.execute(
            select(func.count()).select_from(CertificateRecord).where(CertificateRecord.name == name)
        )
        return result.scalar_one() > 0


class AuthorityKeyRepository:
    """Repository for the single encrypted authority key row."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self) -> AuthorityKey | None:
        """Get the authority key row with its certificate record joined."""
        result = await self.db.execute(
            select(AuthorityKey).where(AuthorityKey.authority_id == AUTHORITY_ID)
        )
        return result.unique().scalar_one_or_none()

    async def create(self, certificate_id: int, key_pem: str) -> AuthorityKey:
        """Insert the authority key row.

        Raises:
            IntegrityError: If an authority already exists.
        """
        row = AuthorityKey(
            authority_id=AUTHORITY_ID,
            certificate_id=certificate_id,
            key_pem=key_pem,
        )
        self.db.add(row)
        await self.db.flush()
        return row


class ChallengeRepository:
    """Repository for pending enrollment challenges."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, secret: str) -> Challenge:
        challenge = Challenge(challenge=secret, created_at=datetime.now(timezone.utc))
        self.db.add(challenge)
        await self.db.flush()
        return challenge

    async def consume(self, secret: str) -> list[datetime]:
        """
        Delete the challenge matching secret in a single statement.

        Returns the created_at of each deleted row; an empty list means
        nothing matched. Two concurrent calls cannot both receive the row.
        """
        result = await self.db.execute(
            delete(Challenge).where(Challenge.challenge == secret).returning(Challenge.created_at)
        )
        return list(result.scalars().all())
