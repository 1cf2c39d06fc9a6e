"""
Data Structures for the Sentinel Token Rotation Manager
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, Tuple
from dataclasses import dataclass, field, replace
from enum import Enum
from datetime import datetime, timezone


class SecretKind(Enum):
    BOT_CREDENTIAL = "bot_credential"
    API_KEY = "api_key"
    SIGNING_SECRET = "signing_secret"
    ENCRYPTION_KEY = "encryption_key"


class RotationError(Exception):
    """Base class for rotation failures"""
    pass


class RotationInProgressError(RotationError):
    """Raised when a rotation is requested while another is running"""
    pass


class SecretNotFoundError(RotationError):
    pass


class NoBackupFoundError(RotationError):
    pass


@dataclass
class Secret:
    """
    A named credential value.

    Backups carry ``is_backup=True``, a ``<parent>_backup_<generation>``
    name and the ``parent`` live name they were demoted from.
    """
    name: str
    kind: SecretKind
    value: str
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    is_backup: bool = False
    parent: Optional[str] = None

    def copy(self) -> 'Secret':
        return replace(self)

    @property
    def masked_value(self) -> str:
        if len(self.value) <= 8:
            return "*" * len(self.value)
        return f"{self.value[:4]}...{self.value[-4:]}"

    def to_dict(self, include_value: bool = True) -> Dict[str, Any]:
        return {
            'name': self.name,
            'kind': self.kind.value,
            'value': self.value if include_value else self.masked_value,
            'last_updated': self.last_updated.isoformat(),
            'is_backup': self.is_backup,
            'parent': self.parent,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Secret':
        return cls(
            name=data['name'],
            kind=SecretKind(data['kind']),
            value=data['value'],
            last_updated=datetime.fromisoformat(data['last_updated']),
            is_backup=data.get('is_backup', False),
            parent=data.get('parent'),
        )


@dataclass(frozen=True)
class RotationRecord:
    """Outcome of one rotation pass"""
    tokens_rotated: int
    success: bool
    error: Optional[str] = None
    secrets: Tuple[str, ...] = ()
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp.isoformat(),
            'tokens_rotated': self.tokens_rotated,
            'success': self.success,
            'error': self.error,
            'secrets': list(self.secrets),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RotationRecord':
        return cls(
            tokens_rotated=data['tokens_rotated'],
            success=data['success'],
            error=data.get('error'),
            secrets=tuple(data.get('secrets', ())),
            timestamp=datetime.fromisoformat(data['timestamp']),
        )


class ITokenRotationManager(ABC):
    """Abstract interface for credential rotation"""

    @abstractmethod
    async def rotate_all(self) -> RotationRecord:
        pass

    @abstractmethod
    async def rotate_one(self, name: str) -> RotationRecord:
        pass

    @abstractmethod
    async def restore_from_backup(self, name: str) -> bool:
        pass
