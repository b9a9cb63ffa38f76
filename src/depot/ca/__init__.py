"""Certificate Authority module for the depot.

This module provides:
- Authority bootstrap (depot.ca.authority)
- Self-signed authority certificate generation
- Passphrase-based encryption of the authority private key
"""

from depot.ca.certificate_generator import AuthoritySubject
from depot.ca.crypto import KdfParameters, decrypt_private_key, encrypt_private_key

__all__ = ["AuthoritySubject", "KdfParameters", "decrypt_private_key", "encrypt_private_key"]
