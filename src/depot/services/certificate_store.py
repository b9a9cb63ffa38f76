"""Certificate record store: persists issued certificates and allocates serials."""

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from cryptography import x509
from cryptography.x509.oid import NameOID
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from depot.ca.crypto import compute_fingerprint, encode_certificate_block
from depot.domain.models import CertificateRecord
from depot.errors import InvalidCertificateError, SerialNumberRangeError
from depot.metrics import depot_metrics
from depot.repository.repositories import CertificateRecordRepository, storage_session

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

# Builds the signed certificate once the serial number is known
CertificateBuilder = Callable[[int], x509.Certificate]


def load_certificate(data: x509.Certificate | bytes | str) -> x509.Certificate:
    """Accept a parsed certificate, or PEM/DER encoded bytes."""
    if isinstance(data, x509.Certificate):
        return data
    try:
        raw = data.encode("ascii") if isinstance(data, str) else data
        if raw.lstrip().startswith(b"-----BEGIN"):
            return x509.load_pem_x509_certificate(raw)
        return x509.load_der_x509_certificate(raw)
    except ValueError as e:
        raise InvalidCertificateError(f"Certificate cannot be parsed: {e}") from e


def common_name_of(certificate: x509.Certificate) -> str:
    attributes = certificate.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not attributes:
        return ""
    value = attributes[0].value
    return value if isinstance(value, str) else value.decode("utf-8", "replace")


def _as_utc(moment: datetime) -> datetime:
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


def record_fields(name: str, certificate: x509.Certificate) -> dict:
    """Validate a certificate and derive the column values of its record.

    Unnamed certificates (no common name) are stored under the hex SHA-256
    of their DER bytes.

    Raises:
        SerialNumberRangeError: If the serial does not fit a signed 64-bit integer.
        InvalidCertificateError: If required fields cannot be read.
    """
    try:
        serial_number = certificate.serial_number
        not_valid_before = certificate.not_valid_before_utc
        not_valid_after = certificate.not_valid_after_utc
        cn = common_name_of(certificate)
        certificate_pem = encode_certificate_block(certificate)
    except ValueError as e:
        depot_metrics.record_certificate_rejected("invalid")
        raise InvalidCertificateError(f"Certificate is missing required fields: {e}") from e

    if not INT64_MIN <= serial_number <= INT64_MAX:
        depot_metrics.record_certificate_rejected("serial_range")
        raise SerialNumberRangeError("cannot represent serial number as int64")

    if not cn:
        name = compute_fingerprint(certificate)

    return {
        "name": name,
        "not_valid_before": _as_utc(not_valid_before),
        "not_valid_after": _as_utc(not_valid_after),
        "certificate_pem": certificate_pem,
    }


class CertificateRecordStore:
    """Stores every certificate the authority issues.

    Serial numbers come from the record id. next_serial() is a read-only
    view of the highest id; issue() is the race-free way to obtain a serial
    because the database assigns the id inside the issuing transaction.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def put(
        self, name: str, certificate: x509.Certificate | bytes | str
    ) -> CertificateRecord:
        """Insert a record for an already-signed certificate.

        Raises:
            InvalidCertificateError: If the certificate cannot be parsed.
            SerialNumberRangeError: If the serial does not fit in 64 bits.
            StorageUnavailableError: If the database write fails.
        """
        with tracer.start_as_current_span("CertificateRecordStore.put") as span:
            # Validate before opening a session so rejects never touch storage
            parsed = load_certificate(certificate)
            fields = record_fields(name, parsed)
            span.set_attribute("name", fields["name"])
            span.set_attribute("serial", str(parsed.serial_number))

            async with storage_session(self._sessions) as db:
                record = await CertificateRecordRepository(db).create(CertificateRecord(**fields))
                await db.commit()

            depot_metrics.record_certificate_stored("put")
            logger.info(
                "certificate_stored",
                extra={
                    "record_id": record.id,
                    "name": record.name,
                    "serial": str(parsed.serial_number),
                    "not_after": record.not_valid_after.isoformat(),
                },
            )
            return record

    async def next_serial(self) -> int:
        """Return the highest record id across all stored certificates (0 when empty)."""
        async with storage_session(self._sessions) as db:
            return await CertificateRecordRepository(db).max_id()

    async def has_subject(self, name: str) -> bool:
        """Check whether a record with this name exists."""
        async with storage_session(self._sessions) as db:
            return await CertificateRecordRepository(db).exists_by_name(name)

    async def issue(
        self, name: str, build: CertificateBuilder
    ) -> tuple[CertificateRecord, x509.Certificate]:
        """Allocate a serial, build the certificate with it and store it atomically.

        Args:
            name: Record name (replaced by the fingerprint if the certificate has no CN).
            build: Called with the allocated serial; returns the signed certificate.

        Returns:
            Tuple of (record, certificate). record.id equals the certificate serial.
        """
        with tracer.start_as_current_span("CertificateRecordStore.issue"):
            async with storage_session(self._sessions) as db:
                record, certificate = await self.issue_within(db, name, build)
                await db.commit()

            depot_metrics.record_certificate_stored("issue")
            logger.info(
                "certificate_issued",
                extra={"record_id": record.id, "name": record.name},
            )
            return record, certificate

    async def issue_within(
        self, db: AsyncSession, name: str, build: CertificateBuilder
    ) -> tuple[CertificateRecord, x509.Certificate]:
        """Same as issue() inside a caller-owned session. The caller commits."""
        repo = CertificateRecordRepository(db)

        # Reserve the id first; nothing is visible to others until commit
        now = datetime.now(timezone.utc)
        record = await repo.create(
            CertificateRecord(name=name, not_valid_before=now, not_valid_after=now, certificate_pem="")
        )
        serial_number = record.id

        certificate = build(serial_number)
        if certificate.serial_number != serial_number:
            depot_metrics.record_certificate_rejected("serial_mismatch")
            raise InvalidCertificateError(
                f"Certificate serial {certificate.serial_number} does not match allocated serial {serial_number}"
            )

        for column, value in record_fields(name, certificate).items():
            setattr(record, column, value)
        await repo.update(record)

        trace.get_current_span().set_attribute("serial", str(serial_number))
        return record, certificate
