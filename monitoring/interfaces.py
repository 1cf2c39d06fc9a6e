"""
Abstract Interfaces and Data Structures for the Sentinel Monitoring System
"""

import uuid
from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional, Tuple
from dataclasses import dataclass, field, replace
from enum import Enum
from datetime import datetime, timezone


class HealthStatus(Enum):
    """Health status levels for monitored targets"""
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


class TargetKind(Enum):
    """How a target is checked"""
    HTTP = "http"
    TCP = "tcp"
    CUSTOM = "custom"
    SYSTEM = "system"


class AlertSeverity(Enum):
    """Alert severity levels"""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertType(Enum):
    """Categories of security alerts"""
    SYSTEM_START = "system_start"
    SYSTEM_STOP = "system_stop"
    SYSTEM_ERROR = "system_error"
    TOKEN_ROTATION = "token_rotation"
    TOKEN_ROTATION_ERROR = "token_rotation_error"
    RECOVERY_TEST = "recovery_test"
    RECOVERY_TEST_ERROR = "recovery_test_error"
    EMERGENCY_RECOVERY = "emergency_recovery"
    RECOVERY_COMPLETE = "recovery_complete"
    RECOVERY_ERROR = "recovery_error"
    CRITICAL_FAILURE = "critical_failure"
    MONITORING_ALERT = "monitoring_alert"
    BACKUP_ERROR = "backup_error"


@dataclass
class MonitoredTarget:
    """
    A dependency checked by the health monitor.

    The ``last_*`` fields and ``consecutive_failures`` are written only by
    the monitor after each check of this target.

    ``check_interval`` is the cadence the target was configured with. It is
    reported in status output only; every sweep checks every target on the
    monitor's own interval.
    """
    name: str
    kind: TargetKind
    address: Optional[str] = None
    timeout: float = 10.0
    check_interval: float = 30.0
    check_name: Optional[str] = None

    last_checked: Optional[datetime] = None
    status: HealthStatus = HealthStatus.UNKNOWN
    latency_ms: Optional[float] = None
    error: Optional[str] = None
    consecutive_failures: int = 0

    def __post_init__(self):
        if isinstance(self.kind, str):
            self.kind = TargetKind(self.kind.lower())
        if self.kind in (TargetKind.HTTP, TargetKind.TCP) and not self.address:
            raise ValueError(f"{self.kind.value} target '{self.name}' requires an address")
        if self.timeout <= 0:
            raise ValueError(f"timeout for target '{self.name}' must be positive")

    def copy(self) -> 'MonitoredTarget':
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'kind': self.kind.value,
            'address': self.address,
            'timeout': self.timeout,
            'check_interval': self.check_interval,
            'last_checked': self.last_checked.isoformat() if self.last_checked else None,
            'status': self.status.value,
            'latency_ms': self.latency_ms,
            'error': self.error,
            'consecutive_failures': self.consecutive_failures,
        }


@dataclass(frozen=True)
class CheckResult:
    """Outcome of probing one target once"""
    target_name: str
    status: HealthStatus
    latency_ms: Optional[float] = None
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'target_name': self.target_name,
            'status': self.status.value,
            'latency_ms': self.latency_ms,
            'error': self.error,
            'details': dict(self.details),
            'timestamp': self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class HealthSnapshot:
    """Immutable aggregate of one sweep"""
    healthy_services: int
    warnings: int
    critical_failures: int
    total_services: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    results: Tuple[CheckResult, ...] = ()

    @property
    def unknown(self) -> int:
        return self.total_services - self.healthy_services - self.warnings - self.critical_failures

    @property
    def has_critical_failures(self) -> bool:
        return self.critical_failures > 0

    @property
    def has_warnings(self) -> bool:
        return self.warnings > 0

    @property
    def health_percentage(self) -> float:
        if self.total_services == 0:
            return 0.0
        return self.healthy_services / self.total_services * 100.0

    @property
    def overall_status(self) -> HealthStatus:
        if self.has_critical_failures:
            return HealthStatus.CRITICAL
        if self.has_warnings:
            return HealthStatus.WARNING
        if self.total_services and self.healthy_services == self.total_services:
            return HealthStatus.HEALTHY
        return HealthStatus.UNKNOWN

    @classmethod
    def from_results(cls, results: List[CheckResult],
                     timestamp: Optional[datetime] = None) -> 'HealthSnapshot':
        def count(status: HealthStatus) -> int:
            return sum(1 for r in results if r.status == status)

        return cls(
            healthy_services=count(HealthStatus.HEALTHY),
            warnings=count(HealthStatus.WARNING),
            critical_failures=count(HealthStatus.CRITICAL),
            total_services=len(results),
            timestamp=timestamp or datetime.now(timezone.utc),
            results=tuple(results),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'healthy_services': self.healthy_services,
            'warnings': self.warnings,
            'critical_failures': self.critical_failures,
            'total_services': self.total_services,
            'health_percentage': self.health_percentage,
            'overall_status': self.overall_status.value,
            'timestamp': self.timestamp.isoformat(),
            'results': [r.to_dict() for r in self.results],
        }


@dataclass(frozen=True)
class SecurityAlert:
    """A write-once notification retained for the configured window"""
    alert_type: AlertType
    message: str
    severity: AlertSeverity = AlertSeverity.INFO
    alert_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.alert_id,
            'type': self.alert_type.value,
            'message': self.message,
            'severity': self.severity.value,
            'timestamp': self.timestamp.isoformat(),
            'metadata': dict(self.metadata),
        }


class IHealthMonitor(ABC):
    """Abstract interface for target health monitoring"""

    @abstractmethod
    def register(self, target: MonitoredTarget) -> None:
        """Add a target to the roster"""
        pass

    @abstractmethod
    def deregister(self, name: str) -> bool:
        """Remove a target from the roster"""
        pass

    @abstractmethod
    async def sweep_once(self) -> HealthSnapshot:
        """Check every registered target once and aggregate"""
        pass

    @abstractmethod
    async def check_one(self, target: MonitoredTarget) -> CheckResult:
        """Check a single target and update its observed fields"""
        pass

    @abstractmethod
    async def start_monitoring(self, interval: Optional[float] = None) -> None:
        """Start the continuous sweep loop"""
        pass

    @abstractmethod
    async def stop_monitoring(self) -> None:
        """Stop the continuous sweep loop"""
        pass


class IAlertSink(ABC):
    """Abstract interface for alert fan-out"""

    @abstractmethod
    async def send_alert(self, alert: SecurityAlert) -> int:
        """Deliver an alert to every configured channel"""
        pass

    @abstractmethod
    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Drop alerts older than the retention window"""
        pass

    @abstractmethod
    def get_alerts(self, limit: Optional[int] = None) -> List[SecurityAlert]:
        """Get retained alerts, oldest first"""
        pass
