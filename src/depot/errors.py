"""Errors raised by the certificate depot.

The enrollment service treats RecordIntegrityError and CryptoError as fatal
startup conditions. ChallengeNotFoundError is the normal rejection path for
an enrollment that presents an unknown or spent challenge.
"""


class DepotError(Exception):
    """Base class for depot errors."""


class StorageUnavailableError(DepotError):
    """Raised when the backing database cannot be reached or a query fails."""


class RecordIntegrityError(DepotError):
    """Raised when stored certificate or key data is malformed or unexpectedly unencrypted."""


class CryptoError(DepotError):
    """Raised when key generation, encryption or decryption fails."""


class NotFoundError(DepotError):
    """Raised when a requested depot resource does not exist."""


class AuthorityNotInitializedError(NotFoundError):
    """Raised when the authority is requested before bootstrap produced it."""


class ChallengeNotFoundError(NotFoundError):
    """Raised when a challenge secret is not pending (never issued, spent or expired)."""

    def __init__(self, message: str = "challenge not found") -> None:
        super().__init__(message)


class ConstraintViolationError(DepotError):
    """Raised when a write would break a storage invariant."""


class AuthorityExistsError(ConstraintViolationError):
    """Raised when another caller already created the authority."""


class SerialNumberRangeError(ConstraintViolationError):
    """Raised when a certificate serial cannot be represented as a signed 64-bit integer."""


class InvalidCertificateError(DepotError, ValueError):
    """Raised when a certificate handed to the depot cannot be parsed or is incomplete."""
