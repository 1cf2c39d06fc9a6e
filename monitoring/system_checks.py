"""
Host Resource and Built-in Custom Checks for Sentinel
"""

import logging
import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Tuple, Union

import psutil

from .interfaces import HealthStatus

logger = logging.getLogger('sentinel.monitoring.system_checks')

GIB = 1024 * 1024 * 1024

CustomCheck = Callable[[], Union[bool, Awaitable[bool]]]


@dataclass(frozen=True)
class SystemThresholds:
    memory_warning_percent: float = 85.0
    memory_critical_percent: float = 95.0
    min_free_disk_bytes: int = GIB
    disk_path: str = "/"


def sample_resources(disk_path: str = "/") -> Dict[str, Any]:
    """Blocking psutil sample; run it in a worker thread"""
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage(disk_path)
    return {
        'cpu_percent': psutil.cpu_percent(interval=0.1),
        'memory_percent': memory.percent,
        'memory_available_mb': memory.available / (1024 * 1024),
        'disk_free_bytes': disk.free,
        'disk_percent': disk.percent,
    }


def evaluate_resources(sample: Dict[str, Any], thresholds: SystemThresholds) -> Tuple[HealthStatus, List[str]]:
    """Classify a resource sample against the thresholds"""
    issues: List[str] = []
    status = HealthStatus.HEALTHY

    if sample['disk_free_bytes'] < thresholds.min_free_disk_bytes:
        issues.append(f"disk free {sample['disk_free_bytes'] / GIB:.2f} GiB below minimum")
        status = HealthStatus.CRITICAL

    memory_percent = sample['memory_percent']
    if memory_percent >= thresholds.memory_critical_percent:
        issues.append(f"memory usage {memory_percent:.1f}%")
        status = HealthStatus.CRITICAL
    elif memory_percent >= thresholds.memory_warning_percent:
        issues.append(f"memory usage {memory_percent:.1f}%")
        if status == HealthStatus.HEALTHY:
            status = HealthStatus.WARNING

    return status, issues


async def check_system_resources(thresholds: SystemThresholds) -> Tuple[HealthStatus, List[str], Dict[str, Any]]:
    sample = await asyncio.to_thread(sample_resources, thresholds.disk_path)
    status, issues = evaluate_resources(sample, thresholds)
    return status, issues, sample


def default_custom_checks(required_paths: List[str], thresholds: SystemThresholds) -> Dict[str, CustomCheck]:
    """Built-in predicates available to ``custom`` targets"""

    async def file_system() -> bool:
        def all_present() -> bool:
            missing = [p for p in required_paths if not Path(p).exists()]
            if missing:
                logger.warning(f"Missing required paths: {', '.join(missing)}")
            return not missing
        return await asyncio.to_thread(all_present)

    async def disk_space() -> bool:
        usage = await asyncio.to_thread(psutil.disk_usage, thresholds.disk_path)
        return usage.free > thresholds.min_free_disk_bytes

    return {
        'file_system': file_system,
        'disk_space': disk_space,
    }
