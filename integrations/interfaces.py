"""
Collaborator Interfaces for Sentinel

Everything that touches the outside world (HTTP, subprocesses, hosting
providers, DNS, configuration files, notification channels) sits behind
one of these interfaces and is injected into the core components.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence

from core.config_manager import AlertChannelConfig

if TYPE_CHECKING:
    from recovery.interfaces import Backup, Deployment


class ConfigPublishError(Exception):
    """Raised when hosting configuration cannot be written"""
    pass


@dataclass(frozen=True)
class HttpResponse:
    status: int
    body: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@dataclass(frozen=True)
class ProcessResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class IHttpClient(ABC):
    """Abstract HTTP capability"""

    @abstractmethod
    async def request(self, url: str, method: str = "GET", timeout: float = 10.0,
                      json: Optional[Any] = None, data: Optional[bytes] = None,
                      headers: Optional[Mapping[str, str]] = None) -> HttpResponse:
        """Issue a request and return status code and body"""
        pass

    async def close(self) -> None:
        pass


class IProcessRunner(ABC):
    """Abstract external command capability"""

    @abstractmethod
    async def run(self, args: Sequence[str], cwd: Optional[Path] = None,
                  timeout: Optional[float] = None) -> ProcessResult:
        """Run a command to completion"""
        pass


class IDeploymentProvider(ABC):
    """Abstract hosting provider"""

    name: str = "provider"

    @abstractmethod
    async def create_deployment(self, domains: Dict[str, str]) -> 'Deployment':
        """Stand up the given role -> hostname map"""
        pass

    @abstractmethod
    async def upload_backup(self, deployment: 'Deployment', backup: 'Backup') -> None:
        """Push a backup archive into a deployment"""
        pass


class IDnsProvider(ABC):
    """Abstract DNS capability"""

    @abstractmethod
    async def upsert_record(self, domain: str, target: str) -> None:
        """Create or update the record pointing ``domain`` at ``target``"""
        pass


class IConfigStore(ABC):
    """Format-agnostic key/value view of hosting descriptors"""

    @abstractmethod
    async def upsert(self, values: Mapping[str, str]) -> None:
        """Write every key, raising ConfigPublishError on failure"""
        pass


class INotifier(ABC):
    """Abstract notification channel"""

    channel_type: str = ""

    @abstractmethod
    async def send(self, channel: AlertChannelConfig, message: str,
                   payload: Optional[Dict[str, Any]] = None) -> None:
        """Deliver a message, raising on failure"""
        pass


__all__: List[str] = [
    'ConfigPublishError',
    'HttpResponse',
    'ProcessResult',
    'IHttpClient',
    'IProcessRunner',
    'IDeploymentProvider',
    'IDnsProvider',
    'IConfigStore',
    'INotifier',
]
