"""
Disaster Recovery for Sentinel

Provisions fresh infrastructure when the monitored service is lost:
archive the working tree, generate new hostnames, deploy to every
configured provider, cut DNS over, restore data, republish hosting
configuration and announce the new domains.
"""

from .interfaces import (
    ROLES, RecoveryStatus, RecoveryPhase, DeploymentStatus,
    Backup, Deployment, RecoveryStep, RecoveryRun, RecoveryTestResult,
    IRecoveryOrchestrator, RecoveryError, RecoveryInProgressError
)
from .domains import generate_domains
from .orchestrator import RecoveryOrchestrator

__all__ = [
    'ROLES',
    'RecoveryStatus',
    'RecoveryPhase',
    'DeploymentStatus',
    'Backup',
    'Deployment',
    'RecoveryStep',
    'RecoveryRun',
    'RecoveryTestResult',
    'IRecoveryOrchestrator',
    'RecoveryError',
    'RecoveryInProgressError',
    'generate_domains',
    'RecoveryOrchestrator'
]
