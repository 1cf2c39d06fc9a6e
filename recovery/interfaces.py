"""
Data Structures for the Sentinel Recovery Orchestrator
"""

import copy
import uuid
from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime, timezone
from pathlib import Path


ROLES = ('main', 'bot', 'api', 'backup')


class RecoveryStatus(Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RecoveryPhase(Enum):
    """Recovery state machine phases, in execution order"""
    PENDING = "pending"
    BACKING_UP = "backing_up"
    GENERATING_DOMAINS = "generating_domains"
    DEPLOYING = "deploying"
    UPDATING_DNS = "updating_dns"
    RESTORING_DATA = "restoring_data"
    RECONFIGURING = "reconfiguring"
    NOTIFYING = "notifying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class DeploymentStatus(Enum):
    DEPLOYING = "deploying"
    DEPLOYED = "deployed"
    FAILED = "failed"


class RecoveryError(Exception):
    """Base class for recovery failures"""
    pass


class RecoveryInProgressError(RecoveryError):
    """Raised when a run is requested while another is active"""
    pass


class BackupError(RecoveryError):
    pass


class DeploymentError(RecoveryError):
    pass


class DataRestoreError(RecoveryError):
    pass


@dataclass(frozen=True)
class Backup:
    """An archive of the working tree"""
    name: str
    path: Path
    size_bytes: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'path': str(self.path),
            'size_bytes': self.size_bytes,
            'created_at': self.created_at.isoformat(),
        }


@dataclass
class Deployment:
    """Result of asking one provider to stand up the new domains"""
    provider: str
    domains: Dict[str, str]
    status: DeploymentStatus = DeploymentStatus.DEPLOYING
    endpoint: Optional[str] = None
    deployment_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_deployed(self) -> bool:
        return self.status == DeploymentStatus.DEPLOYED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'provider': self.provider,
            'domains': dict(self.domains),
            'status': self.status.value,
            'endpoint': self.endpoint,
            'deployment_id': self.deployment_id,
            'error': self.error,
            'timestamp': self.timestamp.isoformat(),
        }


@dataclass
class RecoveryStep:
    """Outcome of one phase of a run"""
    phase: RecoveryPhase
    success: bool
    started_at: datetime
    finished_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    detail: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'phase': self.phase.value,
            'success': self.success,
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat(),
            'detail': self.detail,
            'error': self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RecoveryStep':
        return cls(
            phase=RecoveryPhase(data['phase']),
            success=data['success'],
            started_at=datetime.fromisoformat(data['started_at']),
            finished_at=datetime.fromisoformat(data['finished_at']),
            detail=data.get('detail'),
            error=data.get('error'),
        )


@dataclass
class RecoveryRun:
    """
    One execution of the recovery state machine.

    Only the orchestrator executing the run mutates it; everything handed
    out to callers and subscribers is a deep copy from ``snapshot()``.
    """
    reason: str
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    status: RecoveryStatus = RecoveryStatus.IN_PROGRESS
    phase: RecoveryPhase = RecoveryPhase.PENDING
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ended_at: Optional[datetime] = None
    steps: List[RecoveryStep] = field(default_factory=list)
    new_domains: Dict[str, str] = field(default_factory=dict)
    deployments: List[Deployment] = field(default_factory=list)
    backup: Optional[Backup] = None
    error: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == RecoveryStatus.IN_PROGRESS

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    def snapshot(self) -> 'RecoveryRun':
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'run_id': self.run_id,
            'reason': self.reason,
            'status': self.status.value,
            'phase': self.phase.value,
            'started_at': self.started_at.isoformat(),
            'ended_at': self.ended_at.isoformat() if self.ended_at else None,
            'steps': [s.to_dict() for s in self.steps],
            'new_domains': dict(self.new_domains),
            'deployments': [d.to_dict() for d in self.deployments],
            'backup': self.backup.to_dict() if self.backup else None,
            'error': self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RecoveryRun':
        backup = data.get('backup')
        return cls(
            reason=data['reason'],
            run_id=data['run_id'],
            status=RecoveryStatus(data['status']),
            phase=RecoveryPhase(data['phase']),
            started_at=datetime.fromisoformat(data['started_at']),
            ended_at=datetime.fromisoformat(data['ended_at']) if data.get('ended_at') else None,
            steps=[RecoveryStep.from_dict(s) for s in data.get('steps', [])],
            new_domains=dict(data.get('new_domains') or {}),
            deployments=[
                Deployment(
                    provider=d['provider'],
                    domains=dict(d['domains']),
                    status=DeploymentStatus(d['status']),
                    endpoint=d.get('endpoint'),
                    deployment_id=d.get('deployment_id'),
                    error=d.get('error'),
                    timestamp=datetime.fromisoformat(d['timestamp']),
                )
                for d in data.get('deployments', [])
            ],
            backup=Backup(
                name=backup['name'],
                path=Path(backup['path']),
                size_bytes=backup.get('size_bytes', 0),
                created_at=datetime.fromisoformat(backup['created_at']),
            ) if backup else None,
            error=data.get('error'),
        )


@dataclass(frozen=True)
class RecoveryTestResult:
    success: bool
    run: Optional[RecoveryRun] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'run': self.run.to_dict() if self.run else None,
            'error': self.error,
        }


class IRecoveryOrchestrator(ABC):
    """Abstract interface for disaster recovery"""

    @abstractmethod
    async def start_full_recovery(self, reason: str) -> RecoveryRun:
        pass

    @abstractmethod
    async def restore_from_backup(self, backup: Backup) -> RecoveryRun:
        pass

    @abstractmethod
    def cancel(self, run_id: str) -> bool:
        pass

    @abstractmethod
    async def test_recovery(self) -> RecoveryTestResult:
        pass
