"""Shared security utilities for challenge secrets and passphrase key derivation."""

import base64
import secrets

from argon2.low_level import Type, hash_secret_raw

DERIVED_KEY_LENGTH = 32
SALT_LENGTH = 16


def generate_challenge_secret(nbytes: int = 24) -> str:
    """
    Generate an enrollment challenge as standard base64 of random bytes.

    Example (24 bytes): 3q2+7wAAAAC6vLq8AAAAAN6tvu8AAAAA
    """
    random_bytes = secrets.token_bytes(nbytes)
    return base64.b64encode(random_bytes).decode("ascii")


def generate_salt() -> bytes:
    return secrets.token_bytes(SALT_LENGTH)


def derive_key(
    passphrase: bytes,
    salt: bytes,
    time_cost: int,
    memory_cost: int,
    parallelism: int,
) -> bytes:
    """Derive a 256-bit symmetric key from a passphrase using Argon2id."""
    return hash_secret_raw(
        secret=passphrase,
        salt=salt,
        time_cost=time_cost,
        memory_cost=memory_cost,
        parallelism=parallelism,
        hash_len=DERIVED_KEY_LENGTH,
        type=Type.ID,
    )
