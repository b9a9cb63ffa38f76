"""Boundary of the certificate depot as seen by the enrollment protocol layer."""

from datetime import timedelta

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from depot.ca.authority import AuthorityManager, LoadedAuthority
from depot.ca.certificate_generator import DEFAULT_KEY_SIZE
from depot.ca.crypto import KdfParameters
from depot.domain.models import CertificateRecord
from depot.services.certificate_store import CertificateBuilder, CertificateRecordStore
from depot.services.challenge_service import ChallengeTokenManager
from shared.config import Settings


class Depot:
    """Authority bootstrap, certificate records and enrollment challenges over one store.

    Every call opens its own database session, so a single Depot can be
    shared by concurrent request handlers.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        kdf: KdfParameters | None = None,
        key_size: int = DEFAULT_KEY_SIZE,
        challenge_bytes: int = ChallengeTokenManager.DEFAULT_SECRET_BYTES,
        challenge_ttl: timedelta | None = None,
    ):
        self.records = CertificateRecordStore(session_factory)
        self.authority_manager = AuthorityManager(
            session_factory, records=self.records, kdf=kdf, key_size=key_size
        )
        self.challenges = ChallengeTokenManager(
            session_factory, secret_bytes=challenge_bytes, ttl=challenge_ttl
        )

    @classmethod
    def from_settings(
        cls, session_factory: async_sessionmaker[AsyncSession], config: Settings
    ) -> "Depot":
        ttl = (
            timedelta(seconds=config.CHALLENGE_TTL_SECONDS)
            if config.CHALLENGE_TTL_SECONDS is not None
            else None
        )
        return cls(
            session_factory,
            kdf=KdfParameters(
                time_cost=config.KEY_KDF_TIME_COST,
                memory_cost=config.KEY_KDF_MEMORY_COST,
                parallelism=config.KEY_KDF_PARALLELISM,
            ),
            key_size=config.CA_KEY_SIZE,
            challenge_bytes=config.CHALLENGE_BYTES,
            challenge_ttl=ttl,
        )

    # Authority

    async def create_or_load_authority(
        self,
        passphrase: str | bytes,
        validity_years: int,
        common_name: str,
        organization: str,
        country: str,
        organizational_unit: str | None = None,
    ) -> LoadedAuthority:
        return await self.authority_manager.create_or_load(
            passphrase, validity_years, common_name, organization, country, organizational_unit
        )

    def current_authority(self) -> tuple[list[x509.Certificate], rsa.RSAPrivateKey]:
        return self.authority_manager.current_authority()

    # Certificate records

    async def put(self, name: str, certificate: x509.Certificate | bytes | str) -> CertificateRecord:
        return await self.records.put(name, certificate)

    async def next_serial(self) -> int:
        return await self.records.next_serial()

    async def issue_certificate(
        self, name: str, build: CertificateBuilder
    ) -> tuple[CertificateRecord, x509.Certificate]:
        return await self.records.issue(name, build)

    async def has_subject(self, name: str) -> bool:
        return await self.records.has_subject(name)

    # Enrollment challenges

    async def issue_challenge(self) -> str:
        return await self.challenges.issue_challenge()

    async def redeem_challenge(self, secret: str) -> bool:
        return await self.challenges.redeem_challenge(secret)
