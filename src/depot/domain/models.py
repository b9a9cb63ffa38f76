from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shared.database import Base

# SQLite only auto-increments INTEGER PRIMARY KEY columns
Serial = BigInteger().with_variant(Integer, "sqlite")

# The depot holds exactly one authority
AUTHORITY_ID = 1


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CertificateRecord(Base):
    """One row per certificate the authority issued, including its own.

    The auto-assigned id is the serial number source.
    """

    __tablename__ = "certificates"

    id: Mapped[int] = mapped_column(Serial, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    not_valid_before: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    not_valid_after: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    certificate_pem: Mapped[str] = mapped_column(Text, nullable=False)


class AuthorityKey(Base):
    __tablename__ = "ca_keys"

    authority_id: Mapped[int] = mapped_column(Integer, primary_key=True, default=AUTHORITY_ID)
    certificate_id: Mapped[int] = mapped_column(
        Serial, ForeignKey("certificates.id"), unique=True, nullable=False
    )
    key_pem: Mapped[str] = mapped_column(Text, nullable=False)  # encrypted, see depot.ca.crypto
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint(f"authority_id = {AUTHORITY_ID}", name="ck_ca_keys_single_authority"),
    )

    certificate: Mapped["CertificateRecord"] = relationship("CertificateRecord", lazy="joined")


class Challenge(Base):
    __tablename__ = "challenges"

    challenge: Mapped[str] = mapped_column(String(255), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now(), nullable=False
    )
