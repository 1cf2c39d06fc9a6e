"""
Service Layer for Sentinel

Composes the core, monitoring, rotation and recovery components into the
running controller.

Key Components:
- SecurityManager: owns the loops and reacts to health snapshots
- SentinelApplication: process runner with logging and signal handling
"""

from .security_manager import SecurityManager, SystemStatus
from .application import SentinelApplication, create_application

__all__ = [
    'SecurityManager',
    'SystemStatus',
    'SentinelApplication',
    'create_application'
]
