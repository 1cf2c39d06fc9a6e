"""
Monitoring & Alerting Systems for Sentinel

Key Components:
- HealthMonitor: roster of http/tcp/system/custom targets, concurrent sweeps
- AlertManager: severity-tagged alert retention and channel fan-out
- System checks: psutil resource sampling and built-in custom predicates

Architecture:
- Built on core EventBus and PeriodicTask
- Sweeps publish immutable HealthSnapshot events for subscribers
"""

from .interfaces import (
    HealthStatus, TargetKind, AlertSeverity, AlertType,
    MonitoredTarget, CheckResult, HealthSnapshot, SecurityAlert,
    IHealthMonitor, IAlertSink
)
from .health_monitor import HealthMonitor
from .alert_manager import AlertManager
from .system_checks import SystemThresholds, default_custom_checks

__all__ = [
    # Enums and Data Classes
    'HealthStatus',
    'TargetKind',
    'AlertSeverity',
    'AlertType',
    'MonitoredTarget',
    'CheckResult',
    'HealthSnapshot',
    'SecurityAlert',

    # Interfaces
    'IHealthMonitor',
    'IAlertSink',

    # Implementations
    'HealthMonitor',
    'AlertManager',
    'SystemThresholds',
    'default_custom_checks'
]
