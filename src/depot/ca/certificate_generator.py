"""Self-signed X.509 certificate generation for the enrollment authority."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from depot.errors import CryptoError

logger = logging.getLogger(__name__)

DEFAULT_KEY_SIZE = 2048
MIN_KEY_SIZE = 2048


@dataclass(frozen=True)
class AuthoritySubject:
    """Distinguished name attributes of the authority certificate."""

    common_name: str
    organization: str
    country: str
    organizational_unit: str | None = None

    def to_name(self) -> x509.Name:
        attributes = [
            x509.NameAttribute(NameOID.COUNTRY_NAME, self.country),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, self.organization),
        ]
        if self.organizational_unit:
            attributes.append(
                x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, self.organizational_unit)
            )
        attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, self.common_name))
        return x509.Name(attributes)


def generate_authority_key(key_size: int = DEFAULT_KEY_SIZE) -> rsa.RSAPrivateKey:
    """Generate the authority's RSA key pair.

    Raises:
        CryptoError: If the key size is too small or generation fails.
    """
    if key_size < MIN_KEY_SIZE:
        raise CryptoError(f"Authority key size must be at least {MIN_KEY_SIZE} bits")
    try:
        return rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    except Exception as e:
        logger.error("authority_key_generation_failed", extra={"key_size": key_size, "error": str(e)})
        raise CryptoError(f"Failed to generate authority key: {e}") from e


def add_years(moment: datetime, years: int) -> datetime:
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        # Feb 29 into a non-leap year
        return moment.replace(year=moment.year + years, day=28)


def build_authority_certificate(
    private_key: rsa.RSAPrivateKey,
    subject: AuthoritySubject,
    serial_number: int,
    validity_years: int,
    now: datetime | None = None,
) -> x509.Certificate:
    """Build and self-sign the authority certificate.

    Attributes:
    - Subject = Issuer: C, O, [OU], CN
    - Validity: now() to now() + validity_years
    - Basic Constraints: CA (critical)
    - Key Usage: Digital Signature, Certificate Sign, CRL Sign (critical)
    - Subject Key Identifier
    """
    if validity_years < 1:
        raise ValueError("validity_years must be at least 1")

    now = now or datetime.now(timezone.utc)
    name = subject.to_name()
    public_key = private_key.public_key()

    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(public_key)
        .serial_number(serial_number)
        .not_valid_before(now - timedelta(minutes=1))
        .not_valid_after(add_years(now, validity_years))
        .add_extension(
            x509.BasicConstraints(ca=True, path_length=None),
            critical=True,
        )
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                key_cert_sign=True,
                crl_sign=True,
                key_encipherment=False,
                content_commitment=False,
                data_encipherment=False,
                key_agreement=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(public_key),
            critical=False,
        )
        .sign(private_key, hashes.SHA256())
    )
