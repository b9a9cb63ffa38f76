"""Shared fixtures: a throwaway SQLite depot database and certificate helpers."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
from sqlalchemy import func, select

from depot.domain.models import AuthorityKey, CertificateRecord, Challenge
from shared.database import build_engine, build_session_factory, create_schema


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """File-backed SQLite database with the depot schema."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'depot.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def count_rows(session_factory):
    """Return an async helper counting rows of a depot table."""
    models = {
        "certificates": CertificateRecord,
        "ca_keys": AuthorityKey,
        "challenges": Challenge,
    }

    async def _count(table: str) -> int:
        async with session_factory() as db:
            result = await db.execute(select(func.count()).select_from(models[table]))
            return result.scalar_one()

    return _count


@pytest.fixture(scope="session")
def signing_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def make_certificate(signing_key):
    """Build a self-signed leaf certificate with the given CN and serial."""

    def _make(
        common_name: str | None = "device-1",
        serial_number: int | None = None,
        organization: str = "Acme",
    ) -> x509.Certificate:
        attributes = [x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization)]
        if common_name is not None:
            attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, common_name))
        name = x509.Name(attributes)
        now = datetime.now(timezone.utc)
        return (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(signing_key.public_key())
            .serial_number(serial_number or x509.random_serial_number() >> 96)
            .not_valid_before(now)
            .not_valid_after(now + timedelta(days=30))
            .sign(signing_key, hashes.SHA256())
        )

    return _make
