"""End-to-end tests for the Depot boundary and process startup."""

from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import NameOID

from depot import runtime
from depot.depot import Depot
from depot.errors import ChallengeNotFoundError, CryptoError
from depot.runtime import get_depot, start_depot, stop_depot
from shared.config import Settings


@pytest.fixture
def config():
    return Settings(
        CA_PASSPHRASE="correct passphrase",
        CA_COMMON_NAME="Test CA",
        CA_ORGANIZATION="Acme",
        CA_COUNTRY="US",
        KEY_KDF_TIME_COST=1,
        KEY_KDF_MEMORY_COST=1024,
        KEY_KDF_PARALLELISM=1,
        CHALLENGE_TTL_SECONDS=600,
    )


@pytest.fixture(autouse=True)
def reset_runtime():
    yield
    runtime._depot = None


def _leaf_builder(authority_certificate, authority_key, public_key, common_name):
    def build(serial_number: int) -> x509.Certificate:
        now = datetime.now(timezone.utc)
        return (
            x509.CertificateBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)]))
            .issuer_name(authority_certificate.subject)
            .public_key(public_key)
            .serial_number(serial_number)
            .not_valid_before(now)
            .not_valid_after(now + timedelta(days=365))
            .sign(authority_key, hashes.SHA256())
        )

    return build


class TestDepot:
    """Tests for the enrollment flow through the Depot facade."""

    def test_from_settings(self, session_factory, config):
        depot = Depot.from_settings(session_factory, config)

        assert depot.challenges.ttl == timedelta(seconds=600)
        assert depot.challenges.secret_bytes == 24

    @pytest.mark.asyncio
    async def test_enrollment_flow(self, session_factory, config, signing_key, count_rows):
        """Test bootstrap, challenge redemption and certificate issuance end to end."""
        depot = Depot.from_settings(session_factory, config)
        authority = await depot.create_or_load_authority(
            "correct passphrase", 10, "Test CA", "Acme", "US"
        )
        chain, key = depot.current_authority()
        assert chain == [authority.certificate]

        secret = await depot.issue_challenge()
        assert await depot.redeem_challenge(secret) is True
        with pytest.raises(ChallengeNotFoundError):
            await depot.redeem_challenge(secret)

        assert not await depot.has_subject("device-1")
        record, certificate = await depot.issue_certificate(
            "device-1", _leaf_builder(chain[0], key, signing_key.public_key(), "device-1")
        )

        assert certificate.serial_number == record.id
        assert certificate.serial_number > authority.certificate.serial_number
        assert await depot.next_serial() == record.id
        assert await depot.has_subject("device-1")
        assert await count_rows("certificates") == 2

    @pytest.mark.asyncio
    async def test_put_externally_signed_certificate(self, session_factory, config, make_certificate):
        depot = Depot.from_settings(session_factory, config)

        record = await depot.put("device-9", make_certificate("device-9"))

        assert record.name == "device-9"
        assert await depot.next_serial() == record.id


class TestRuntime:
    """Tests for start_depot / stop_depot."""

    def test_get_depot_before_start_raises(self):
        with pytest.raises(RuntimeError, match="Depot not started"):
            get_depot()

    @pytest.mark.asyncio
    async def test_start_bootstraps_authority(self, db_engine, config):
        depot = await start_depot(config, engine=db_engine, instrument=False)

        assert get_depot() is depot
        chain, _ = depot.current_authority()
        cn = chain[0].subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
        assert cn == "Test CA"

        await stop_depot(db_engine)
        with pytest.raises(RuntimeError):
            get_depot()

    @pytest.mark.asyncio
    async def test_restart_loads_same_authority(self, db_engine, config):
        first = await start_depot(config, engine=db_engine, instrument=False)
        second = await start_depot(config, engine=db_engine, instrument=False)

        assert second.current_authority()[0] == first.current_authority()[0]
        assert second.authority_manager.authority.source == "loaded"

    @pytest.mark.asyncio
    async def test_missing_passphrase_refuses_to_start(self, db_engine, config):
        config.CA_PASSPHRASE = None

        with pytest.raises(CryptoError, match="CA_PASSPHRASE"):
            await start_depot(config, engine=db_engine, instrument=False)

        with pytest.raises(RuntimeError):
            get_depot()
