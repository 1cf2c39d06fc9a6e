"""
Credential Rotation for Sentinel

Keeps the roster of named secrets (bot credentials, API keys, signing
secrets, encryption keys), rotates them on a schedule or on demand,
retains a bounded backup history per secret and republishes hosting
configuration after each pass.
"""

from .interfaces import (
    SecretKind, Secret, RotationRecord, ITokenRotationManager,
    RotationError, RotationInProgressError, SecretNotFoundError, NoBackupFoundError
)
from .generators import generate_secret_value, generate_encryption_key, random_alphanumeric
from .rotation_manager import TokenRotationManager

__all__ = [
    'SecretKind',
    'Secret',
    'RotationRecord',
    'ITokenRotationManager',
    'RotationError',
    'RotationInProgressError',
    'SecretNotFoundError',
    'NoBackupFoundError',
    'generate_secret_value',
    'generate_encryption_key',
    'random_alphanumeric',
    'TokenRotationManager'
]
