"""
Secret value generation.

All kinds draw from the ``secrets`` module (the OS CSPRNG).
"""

import string
import secrets
from typing import Dict, Optional

from .interfaces import SecretKind

ALPHANUMERIC = string.ascii_letters + string.digits

DEFAULT_LENGTHS = {
    SecretKind.BOT_CREDENTIAL: 35,
    SecretKind.API_KEY: 64,
    SecretKind.SIGNING_SECRET: 128,
}

ENCRYPTION_KEY_BYTES = 32


def random_alphanumeric(length: int) -> str:
    if length <= 0:
        raise ValueError("length must be positive")
    return ''.join(secrets.choice(ALPHANUMERIC) for _ in range(length))


def generate_encryption_key(num_bytes: int = ENCRYPTION_KEY_BYTES) -> str:
    """Hex-encoded random key, always ``2 * num_bytes`` characters"""
    return secrets.token_hex(num_bytes)


def generate_secret_value(kind: SecretKind, lengths: Optional[Dict[SecretKind, int]] = None) -> str:
    if kind == SecretKind.ENCRYPTION_KEY:
        return generate_encryption_key()

    length = (lengths or {}).get(kind) or DEFAULT_LENGTHS[kind]
    return random_alphanumeric(length)
