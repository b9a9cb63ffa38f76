"""Authority bootstrap: create the CA identity once, load it thereafter.

The authority certificate is stored as an ordinary certificate record and
the private key, encrypted under the operator passphrase, in ca_keys. A
store holds at most one authority; ca_keys enforces that with a singleton
primary key, which also settles concurrent first-start races.
"""

import logging
import time
from dataclasses import dataclass, field

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa
from opentelemetry import trace
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from depot.ca.certificate_generator import (
    DEFAULT_KEY_SIZE,
    AuthoritySubject,
    build_authority_certificate,
    generate_authority_key,
)
from depot.ca.crypto import (
    KdfParameters,
    decode_certificate_block,
    decrypt_private_key,
    encode_certificate_block,
    encrypt_private_key,
    load_private_key,
    serialize_private_key,
)
from depot.errors import (
    AuthorityExistsError,
    AuthorityNotInitializedError,
    RecordIntegrityError,
)
from depot.metrics import depot_metrics
from depot.repository.repositories import AuthorityKeyRepository, storage_session
from depot.services.certificate_store import CertificateRecordStore

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(frozen=True)
class LoadedAuthority:
    """The authority's signing material, decrypted in memory only."""

    certificate: x509.Certificate
    private_key: rsa.RSAPrivateKey = field(repr=False)
    certificate_id: int
    source: str  # "created" or "loaded"

    @property
    def chain(self) -> list[x509.Certificate]:
        return [self.certificate]

    @property
    def certificate_pem(self) -> str:
        return encode_certificate_block(self.certificate)


class AuthorityManager:
    """Produces the authority (certificate, key) pair for the enrollment service."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        records: CertificateRecordStore | None = None,
        kdf: KdfParameters | None = None,
        key_size: int = DEFAULT_KEY_SIZE,
    ) -> None:
        self._sessions = session_factory
        self._records = records or CertificateRecordStore(session_factory)
        self._kdf = kdf or KdfParameters()
        self._key_size = key_size
        self._authority: LoadedAuthority | None = None

    @property
    def authority(self) -> LoadedAuthority:
        """Get the bootstrapped authority. Raises if bootstrap has not succeeded."""
        if self._authority is None:
            raise AuthorityNotInitializedError(
                "Authority not initialized. Call create_or_load() first."
            )
        return self._authority

    def current_authority(self) -> tuple[list[x509.Certificate], rsa.RSAPrivateKey]:
        """Return (certificate chain, private key) for signing."""
        authority = self.authority
        return authority.chain, authority.private_key

    async def create_or_load(
        self,
        passphrase: str | bytes,
        validity_years: int,
        common_name: str,
        organization: str,
        country: str,
        organizational_unit: str | None = None,
    ) -> LoadedAuthority:
        """Load the stored authority, or create and persist a new one.

        Raises:
            CryptoError: Wrong passphrase, tampered key or key generation failure.
            RecordIntegrityError: Stored certificate or key data is malformed.
            StorageUnavailableError: The database cannot be reached.
        """
        with tracer.start_as_current_span("AuthorityManager.create_or_load") as span:
            authority = await self._load(passphrase)
            if authority is None:
                subject = AuthoritySubject(
                    common_name=common_name,
                    organization=organization,
                    country=country,
                    organizational_unit=organizational_unit,
                )
                try:
                    authority = await self._create(passphrase, validity_years, subject)
                except AuthorityExistsError:
                    logger.info("authority_create_conflict", extra={"action": "reload"})
                    authority = await self._load(passphrase)
                    if authority is None:
                        raise RecordIntegrityError(
                            "Authority creation conflicted but no authority could be loaded"
                        )

            span.set_attribute("source", authority.source)
            span.set_attribute("ca_cert_expires", authority.certificate.not_valid_after_utc.isoformat())
            self._authority = authority
            self._log_ready(authority)
            return authority

    async def _load(self, passphrase: str | bytes) -> LoadedAuthority | None:
        async with storage_session(self._sessions) as db:
            row = await AuthorityKeyRepository(db).get()
            if row is None:
                return None
            certificate_pem = row.certificate.certificate_pem
            key_pem = row.key_pem
            certificate_id = row.certificate_id

        certificate = decode_certificate_block(certificate_pem)

        start_time = time.time()
        key_der = decrypt_private_key(key_pem, passphrase)
        depot_metrics.record_key_decryption(time.time() - start_time)

        private_key = load_private_key(key_der)
        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise RecordIntegrityError("Authority key is not an RSA key")
        if private_key.public_key().public_numbers() != certificate.public_key().public_numbers():
            raise RecordIntegrityError("Authority key does not match authority certificate")

        return LoadedAuthority(
            certificate=certificate,
            private_key=private_key,
            certificate_id=certificate_id,
            source="loaded",
        )

    async def _create(
        self, passphrase: str | bytes, validity_years: int, subject: AuthoritySubject
    ) -> LoadedAuthority:
        logger.info(
            "Generating new authority key pair",
            extra={"common_name": subject.common_name, "key_size": self._key_size},
        )
        private_key = generate_authority_key(self._key_size)
        # Derive and encrypt before opening the transaction; Argon2 is deliberately slow
        key_pem = encrypt_private_key(serialize_private_key(private_key), passphrase, self._kdf)

        def build(serial_number: int) -> x509.Certificate:
            return build_authority_certificate(private_key, subject, serial_number, validity_years)

        try:
            async with storage_session(self._sessions) as db:
                record, certificate = await self._records.issue_within(
                    db, subject.common_name, build
                )
                await AuthorityKeyRepository(db).create(record.id, key_pem)
                await db.commit()
        except IntegrityError as e:
            raise AuthorityExistsError("An authority already exists in this store") from e

        depot_metrics.record_certificate_stored("authority")
        logger.info(
            "authority_created",
            extra={"record_id": record.id, "common_name": subject.common_name},
        )
        return LoadedAuthority(
            certificate=certificate,
            private_key=private_key,
            certificate_id=record.id,
            source="created",
        )

    def _log_ready(self, authority: LoadedAuthority) -> None:
        logger.info(
            "authority_ready",
            extra={
                "source": authority.source,
                "certificate_id": authority.certificate_id,
                "serial": str(authority.certificate.serial_number),
                "ca_cert_expires": authority.certificate.not_valid_after_utc.isoformat(),
            },
        )
        depot_metrics.record_authority_loaded(authority.source)
