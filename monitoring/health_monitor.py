"""
Health Monitoring System for Sentinel
"""

import time
import inspect
import logging
import asyncio
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from core import EventBus, PeriodicTask
from core.event_bus import HEALTH_SNAPSHOT, TARGET_CHECKED
from integrations.interfaces import IHttpClient
from .interfaces import (
    IHealthMonitor, MonitoredTarget, CheckResult, HealthSnapshot, HealthStatus, TargetKind
)
from .system_checks import CustomCheck, SystemThresholds, check_system_resources

logger = logging.getLogger('sentinel.monitoring.health_monitor')

CheckOutcome = Tuple[HealthStatus, Optional[str], Dict[str, Any]]


def classify_http_status(status_code: int) -> HealthStatus:
    if 200 <= status_code < 300:
        return HealthStatus.HEALTHY
    if 400 <= status_code < 500:
        return HealthStatus.WARNING
    return HealthStatus.CRITICAL


def parse_tcp_address(address: str) -> Tuple[str, int]:
    """Accepts ``host:port`` or ``tcp://host:port``"""
    if "://" not in address:
        address = f"tcp://{address}"
    parsed = urlparse(address)
    if not parsed.hostname or parsed.port is None:
        raise ValueError(f"tcp address '{address}' must include host and port")
    return parsed.hostname, parsed.port


class HealthMonitor(IHealthMonitor):
    """
    Health monitoring service for Sentinel targets.

    Owns the target roster. Each sweep checks every target concurrently,
    updates each target as soon as its own check finishes, and publishes
    an immutable ``HealthSnapshot`` on the event bus once all checks are in.
    """

    def __init__(self, http_client: IHttpClient, event_bus: Optional[EventBus] = None,
                 custom_checks: Optional[Dict[str, CustomCheck]] = None,
                 thresholds: Optional[SystemThresholds] = None,
                 check_interval: float = 30.0):
        self.http_client = http_client
        self.event_bus = event_bus
        self.thresholds = thresholds or SystemThresholds()

        self._targets: Dict[str, MonitoredTarget] = {}
        self._custom_checks: Dict[str, CustomCheck] = dict(custom_checks or {})
        self._check_interval = check_interval
        self._monitor_task: Optional[PeriodicTask] = None

        self._last_snapshot: Optional[HealthSnapshot] = None
        self._sweep_count = 0

        logger.info("HealthMonitor initialized")

    def register(self, target: MonitoredTarget) -> None:
        if target.name in self._targets:
            raise ValueError(f"target '{target.name}' is already registered")
        self._targets[target.name] = target
        logger.info(f"Registered {target.kind.value} target: {target.name}")

    def deregister(self, name: str) -> bool:
        if self._targets.pop(name, None) is None:
            return False
        logger.info(f"Deregistered target: {name}")
        return True

    def register_custom_check(self, name: str, predicate: CustomCheck) -> None:
        self._custom_checks[name] = predicate

    def get_targets(self) -> List[MonitoredTarget]:
        """Copies of the roster; mutating them does not affect monitoring"""
        return [target.copy() for target in self._targets.values()]

    def get_target(self, name: str) -> Optional[MonitoredTarget]:
        target = self._targets.get(name)
        return target.copy() if target else None

    @property
    def last_snapshot(self) -> Optional[HealthSnapshot]:
        return self._last_snapshot

    @property
    def is_monitoring(self) -> bool:
        return self._monitor_task is not None and self._monitor_task.is_running

    async def sweep_once(self) -> HealthSnapshot:
        """
        Check every registered target once.

        Returns:
            Snapshot aggregated from all of this sweep's results
        """
        targets = list(self._targets.values())
        results = await asyncio.gather(*(self.check_one(target) for target in targets))

        snapshot = HealthSnapshot.from_results(list(results))
        self._last_snapshot = snapshot
        self._sweep_count += 1

        log = logger.warning if snapshot.has_critical_failures else logger.debug
        log(f"Sweep complete: {snapshot.healthy_services}/{snapshot.total_services} healthy, "
            f"{snapshot.warnings} warning(s), {snapshot.critical_failures} critical")

        if self.event_bus:
            await self.event_bus.emit_async(HEALTH_SNAPSHOT, source='health_monitor', snapshot=snapshot)

        return snapshot

    async def check_one(self, target: MonitoredTarget) -> CheckResult:
        """
        Check a single target within its own timeout and publish the result.

        Never raises for check failures; errors become a critical result.
        """
        started = time.perf_counter()
        try:
            status, error, details = await asyncio.wait_for(self._dispatch(target), timeout=target.timeout)
        except asyncio.TimeoutError:
            status, error, details = HealthStatus.CRITICAL, f"timed out after {target.timeout}s", {}
        except Exception as e:
            status, error, details = HealthStatus.CRITICAL, str(e) or e.__class__.__name__, {}

        result = CheckResult(
            target_name=target.name,
            status=status,
            latency_ms=(time.perf_counter() - started) * 1000,
            error=error,
            details=details
        )
        self._apply_result(target, result)

        if status != HealthStatus.HEALTHY:
            logger.debug(f"Target {target.name} is {status.value}: {error}")

        if self.event_bus:
            await self.event_bus.emit_async(TARGET_CHECKED, source='health_monitor',
                                            result=result, target=target.copy())

        return result

    async def start_monitoring(self, interval: Optional[float] = None) -> None:
        if self.is_monitoring:
            logger.warning("Health monitoring already active")
            return

        self._check_interval = interval or self._check_interval
        self._monitor_task = PeriodicTask('health-monitor', self._check_interval, self.sweep_once)
        self._monitor_task.start()
        logger.info(f"Health monitoring started (interval: {self._check_interval}s)")

    async def stop_monitoring(self) -> None:
        if self._monitor_task:
            await self._monitor_task.stop()
            self._monitor_task = None
        logger.info("Health monitoring stopped")

    async def _dispatch(self, target: MonitoredTarget) -> CheckOutcome:
        if target.kind == TargetKind.HTTP:
            return await self._check_http(target)
        if target.kind == TargetKind.TCP:
            return await self._check_tcp(target)
        if target.kind == TargetKind.SYSTEM:
            return await self._check_system()
        return await self._check_custom(target)

    async def _check_http(self, target: MonitoredTarget) -> CheckOutcome:
        response = await self.http_client.request(target.address, method="GET", timeout=target.timeout)
        status = classify_http_status(response.status)
        error = None if status == HealthStatus.HEALTHY else f"HTTP {response.status}"
        return status, error, {'status_code': response.status}

    async def _check_tcp(self, target: MonitoredTarget) -> CheckOutcome:
        host, port = parse_tcp_address(target.address)
        _, writer = await asyncio.open_connection(host, port)
        writer.close()
        await writer.wait_closed()
        return HealthStatus.HEALTHY, None, {'host': host, 'port': port}

    async def _check_system(self) -> CheckOutcome:
        status, issues, sample = await check_system_resources(self.thresholds)
        return status, "; ".join(issues) or None, sample

    async def _check_custom(self, target: MonitoredTarget) -> CheckOutcome:
        check_name = target.check_name or target.name
        predicate = self._custom_checks.get(check_name)
        if predicate is None:
            return HealthStatus.UNKNOWN, f"no custom check named '{check_name}'", {}

        if inspect.iscoroutinefunction(predicate):
            outcome = await predicate()
        else:
            # plain callables may block (filesystem, subprocess)
            outcome = await asyncio.to_thread(predicate)
        if inspect.isawaitable(outcome):
            outcome = await outcome

        if outcome:
            return HealthStatus.HEALTHY, None, {'check': check_name}
        return HealthStatus.CRITICAL, f"custom check '{check_name}' failed", {'check': check_name}

    def _apply_result(self, target: MonitoredTarget, result: CheckResult) -> None:
        target.last_checked = result.timestamp
        target.status = result.status
        target.latency_ms = result.latency_ms
        target.error = result.error
        if result.status == HealthStatus.HEALTHY:
            target.consecutive_failures = 0
        else:
            target.consecutive_failures += 1

    def get_status(self) -> Dict[str, Any]:
        return {
            'monitoring_active': self.is_monitoring,
            'check_interval': self._check_interval,
            'sweep_count': self._sweep_count,
            'targets': [target.to_dict() for target in self._targets.values()],
            'last_snapshot': self._last_snapshot.to_dict() if self._last_snapshot else None,
        }
