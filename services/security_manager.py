"""
Security Manager for Sentinel
"""

import json
import logging
import asyncio
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union
from datetime import datetime, timezone

from core import (
    ConfigurationManager, SecurityConfiguration, EventBus, Event, PeriodicTask,
    StateStore, get_config_manager, get_event_bus
)
from core.event_bus import HEALTH_SNAPSHOT, ROTATION_COMPLETED, RECOVERY_STARTED
from integrations.config_store import ConfigPublisher, build_config_publisher
from integrations.dns import CloudflareDnsProvider
from integrations.http_client import HttpClient
from integrations.interfaces import IDeploymentProvider, IDnsProvider, IHttpClient, INotifier, IProcessRunner
from integrations.notifiers import build_notifiers
from integrations.process_runner import ProcessRunner
from integrations.providers import build_providers
from integrations.webhooks import WebhookRegistrar
from monitoring import (
    AlertManager, HealthMonitor, HealthSnapshot, HealthStatus, MonitoredTarget,
    AlertType, AlertSeverity, SystemThresholds, default_custom_checks
)
from monitoring.system_checks import CustomCheck
from recovery import Backup, RecoveryOrchestrator, RecoveryRun, RecoveryStatus, RecoveryTestResult
from recovery.interfaces import RecoveryInProgressError
from rotation import TokenRotationManager, RotationRecord

logger = logging.getLogger('sentinel.services.security_manager')


class SystemStatus(Enum):
    INITIALIZING = "initializing"
    RUNNING = "running"
    WARNING = "warning"
    CRITICAL = "critical"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"


class SecurityManager:
    """
    Top-level controller wiring monitoring, rotation and recovery together.

    Owns four loops (health sweeps, scheduled rotation, scheduled backups
    and alert retention). A sweep that reports any critical target raises
    a ``critical_failure`` alert. When auto-recovery is enabled and a
    critical target has failed ``recovery_failure_threshold`` checks in a
    row, a full recovery starts in the background so the monitor is never
    blocked.

    Collaborators may be injected; anything left out is built from the
    loaded configuration.
    """

    def __init__(self, config_manager: Optional[ConfigurationManager] = None, *,
                 http_client: Optional[IHttpClient] = None,
                 process_runner: Optional[IProcessRunner] = None,
                 providers: Optional[List[IDeploymentProvider]] = None,
                 dns_provider: Optional[IDnsProvider] = None,
                 notifiers: Optional[List[INotifier]] = None,
                 publisher: Optional[ConfigPublisher] = None,
                 state_store: Optional[StateStore] = None,
                 event_bus: Optional[EventBus] = None,
                 custom_checks: Optional[Dict[str, CustomCheck]] = None,
                 base_path: Optional[Path] = None):
        self.config_manager = config_manager or get_config_manager()
        self.base_path = Path(base_path) if base_path else self.config_manager.base_path
        self.event_bus = event_bus or get_event_bus()

        self._http_client = http_client
        self._process_runner = process_runner
        self._providers = providers
        self._dns_provider = dns_provider
        self._notifiers = notifiers
        self._publisher = publisher
        self._state_store = state_store
        self._custom_checks = dict(custom_checks or {})

        self.config: Optional[SecurityConfiguration] = None
        self.http_client: Optional[IHttpClient] = None
        self.alert_manager: Optional[AlertManager] = None
        self.health_monitor: Optional[HealthMonitor] = None
        self.rotation_manager: Optional[TokenRotationManager] = None
        self.recovery_orchestrator: Optional[RecoveryOrchestrator] = None

        self.status = SystemStatus.INITIALIZING
        self._is_running = False
        self._started_at: Optional[datetime] = None
        self._alert_task: Optional[PeriodicTask] = None
        self._backup_task: Optional[PeriodicTask] = None
        self._recovery_tasks: Set[asyncio.Task] = set()
        self._subscriptions: List[str] = []

        logger.info("SecurityManager initialized")

    @property
    def is_running(self) -> bool:
        return self._is_running

    # Lifecycle

    async def start(self) -> None:
        """
        Load configuration, build components, start the loops and announce.

        Raises:
            ConfigurationError: If configuration cannot be loaded
        """
        if self._is_running:
            logger.warning("Security manager already running")
            return

        try:
            logger.info("Starting Sentinel security manager...")
            self.config = self.config_manager.get_configuration()

            self._build_components()
            await self.rotation_manager.load()
            await self.recovery_orchestrator.load_history()
            self._subscribe()

            await self.health_monitor.start_monitoring(self.config.monitoring_interval)
            await self.rotation_manager.start_rotation(self.config.token_rotation_interval)
            self._alert_task = PeriodicTask('alert-retention', self.config.alert_sweep_interval,
                                            self.alert_manager.purge_expired_async, run_immediately=False)
            self._alert_task.start()
            self._backup_task = PeriodicTask('scheduled-backup', self.config.backup_interval,
                                             self.run_backup, run_immediately=False)
            self._backup_task.start()

            self._is_running = True
            self._started_at = datetime.now(timezone.utc)
            if self.status == SystemStatus.INITIALIZING:
                self.status = SystemStatus.RUNNING

            await self.alert_manager.raise_alert(
                AlertType.SYSTEM_START,
                f"Sentinel security system started ({len(self.health_monitor.get_targets())} targets, "
                f"{len(self.rotation_manager.get_secrets())} secrets)",
                AlertSeverity.INFO
            )
            logger.info("Sentinel security manager started")

        except Exception as e:
            self.status = SystemStatus.ERROR
            logger.error(f"Failed to start security manager: {e}")
            if self.alert_manager:
                await self.alert_manager.raise_alert(
                    AlertType.SYSTEM_ERROR, f"Security system failed to start: {e}", AlertSeverity.CRITICAL
                )
            await self._stop_loops()
            raise

    async def stop(self) -> None:
        """Shut down in reverse start order"""
        if self.status in (SystemStatus.STOPPING, SystemStatus.STOPPED):
            return

        logger.info("Stopping Sentinel security manager...")
        self.status = SystemStatus.STOPPING

        if self.recovery_orchestrator:
            cancelled = self.recovery_orchestrator.cancel_active()
            if cancelled:
                logger.warning(f"Cancelled in-progress recovery {cancelled} for shutdown")
        for task in list(self._recovery_tasks):
            task.cancel()

        if self._is_running and self.alert_manager:
            await self.alert_manager.raise_alert(
                AlertType.SYSTEM_STOP, "Sentinel security system stopping", AlertSeverity.INFO
            )
        self._is_running = False

        await self._stop_loops()

        for handler_id in self._subscriptions:
            self.event_bus.unsubscribe(handler_id)
        self._subscriptions.clear()

        if self.rotation_manager:
            await self.rotation_manager.save()
        if self.http_client:
            await self.http_client.close()

        self.status = SystemStatus.STOPPED
        logger.info("Sentinel security manager stopped")

    async def _stop_loops(self) -> None:
        if self._backup_task:
            await self._backup_task.stop()
            self._backup_task = None
        if self._alert_task:
            await self._alert_task.stop()
            self._alert_task = None
        if self.rotation_manager:
            await self.rotation_manager.stop_rotation()
        if self.health_monitor:
            await self.health_monitor.stop_monitoring()

    def _resolve(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        return path if path.is_absolute() else self.base_path / path

    def _build_components(self) -> None:
        config = self.config

        self.http_client = self._http_client or HttpClient(default_timeout=config.http_timeout)
        process_runner = self._process_runner or ProcessRunner()
        state_store = self._state_store or StateStore(self._resolve(config.state_dir))
        publisher = self._publisher or build_config_publisher(config.hosting, self.base_path, process_runner)
        registrar = WebhookRegistrar(self.http_client)

        self.alert_manager = AlertManager(
            config.alert_channels,
            self._notifiers if self._notifiers is not None else build_notifiers(self.http_client),
            event_bus=self.event_bus,
            retention_seconds=config.alert_retention_seconds,
            throttle_seconds=config.alert_throttle_seconds
        )

        thresholds = SystemThresholds(
            memory_warning_percent=config.memory_warning_percent,
            memory_critical_percent=config.memory_critical_percent,
            min_free_disk_bytes=config.min_free_disk_bytes,
            disk_path=config.disk_path
        )
        custom_checks = default_custom_checks([str(self._resolve(p)) for p in config.required_paths], thresholds)
        custom_checks.update(self._custom_checks)

        self.health_monitor = HealthMonitor(
            self.http_client,
            event_bus=self.event_bus,
            custom_checks=custom_checks,
            thresholds=thresholds,
            check_interval=config.monitoring_interval
        )
        for target in config.targets:
            self.health_monitor.register(MonitoredTarget(
                name=target.name,
                kind=target.kind,
                address=target.address,
                timeout=target.timeout,
                check_interval=target.check_interval,
                check_name=target.check
            ))

        self.rotation_manager = TokenRotationManager(
            config.secrets,
            publisher=publisher,
            state_store=state_store,
            event_bus=self.event_bus,
            backup_retention=config.backup_retention_count,
            lengths=config.secret_lengths,
            history_limit=config.rotation_history_limit,
            webhook_registrar=registrar,
            bot_webhook_url=config.bot_webhook_url,
            bot_token_secret=config.bot_token_secret
        )

        if self._providers is not None:
            providers = self._providers
        else:
            providers = build_providers(config.providers, self.http_client)
        dns_provider = self._dns_provider
        if dns_provider is None and config.dns:
            dns_provider = CloudflareDnsProvider(config.dns, self.http_client)

        self.recovery_orchestrator = RecoveryOrchestrator(
            process_runner,
            providers,
            alert_sink=self.alert_manager,
            dns_provider=dns_provider,
            config_publisher=publisher,
            webhook_registrar=registrar,
            bot_token_provider=lambda: self.rotation_manager.get_secret_value(config.bot_token_secret),
            state_store=state_store,
            event_bus=self.event_bus,
            backup_dir=self._resolve(config.backup_dir),
            source_dir=self._resolve(config.source_dir),
            restore_dir=self._resolve(config.restore_dir),
            archive_excludes=config.archive_excludes,
            domain_templates=config.domain_templates,
            history_limit=config.recovery_history_limit,
            webhook_path=config.webhook_path,
            scheduled_backup_retention=config.scheduled_backup_retention
        )

        logger.debug("Security components built")

    def _subscribe(self) -> None:
        self._subscriptions = [
            self.event_bus.subscribe(HEALTH_SNAPSHOT, self._on_health_snapshot,
                                     handler_id=f"security_manager_{id(self)}_health"),
            self.event_bus.subscribe(ROTATION_COMPLETED, self._on_rotation_completed,
                                     handler_id=f"security_manager_{id(self)}_rotation"),
            self.event_bus.subscribe(RECOVERY_STARTED, self._on_recovery_started,
                                     handler_id=f"security_manager_{id(self)}_recovery"),
        ]

    # Event handlers

    async def _on_health_snapshot(self, event: Event) -> None:
        snapshot: Optional[HealthSnapshot] = event.get_event_data('snapshot')
        if snapshot is None:
            return

        self._update_status(snapshot)
        if not snapshot.has_critical_failures:
            return

        failing = [r.target_name for r in snapshot.results if r.status == HealthStatus.CRITICAL]
        await self.alert_manager.raise_alert(
            AlertType.CRITICAL_FAILURE,
            f"Critical failures detected: {', '.join(failing)}",
            AlertSeverity.CRITICAL,
            failing_targets=failing,
            health_percentage=snapshot.health_percentage
        )

        if not self.config.auto_recovery_enabled or not self._is_running:
            return

        threshold = self.config.recovery_failure_threshold
        persistent = []
        for name in failing:
            target = self.health_monitor.get_target(name)
            if target and target.consecutive_failures >= threshold:
                persistent.append(name)
        if not persistent:
            logger.info(f"Critical targets below recovery threshold of {threshold} consecutive failures")
            return
        if self.recovery_orchestrator.is_recovering or any(not t.done() for t in self._recovery_tasks):
            logger.info("Recovery already in progress, not starting another")
            return

        self._launch_recovery("critical_failure")

    def _update_status(self, snapshot: HealthSnapshot) -> None:
        if self.status not in (SystemStatus.RUNNING, SystemStatus.WARNING, SystemStatus.CRITICAL):
            return
        if snapshot.has_critical_failures:
            self.status = SystemStatus.CRITICAL
        elif snapshot.has_warnings:
            self.status = SystemStatus.WARNING
        else:
            self.status = SystemStatus.RUNNING

    async def _on_rotation_completed(self, event: Event) -> None:
        record: Optional[RotationRecord] = event.get_event_data('record')
        if record is None:
            return

        if record.success:
            await self.alert_manager.raise_alert(
                AlertType.TOKEN_ROTATION,
                f"Rotated {record.tokens_rotated} token(s)",
                AlertSeverity.INFO,
                secrets=list(record.secrets)
            )
        else:
            await self.alert_manager.raise_alert(
                AlertType.TOKEN_ROTATION_ERROR,
                f"Token rotation failed: {record.error}",
                AlertSeverity.CRITICAL,
                secrets=list(record.secrets)
            )

    async def _on_recovery_started(self, event: Event) -> None:
        run: Optional[RecoveryRun] = event.get_event_data('run')
        if run is None or run.reason in ("test", "backup_restore"):
            return

        await self.alert_manager.raise_alert(
            AlertType.EMERGENCY_RECOVERY, f"Emergency recovery initiated: {run.reason}", AlertSeverity.CRITICAL,
            run_id=run.run_id
        )

    def _launch_recovery(self, reason: str) -> asyncio.Task:
        task = asyncio.create_task(self._background_recovery(reason))
        self._recovery_tasks.add(task)
        task.add_done_callback(self._recovery_tasks.discard)
        return task

    async def _background_recovery(self, reason: str) -> None:
        try:
            await self.emergency_recovery(reason)
        except RecoveryInProgressError as e:
            logger.info(f"Skipped automatic recovery: {e}")
        except Exception as e:
            logger.error(f"Automatic recovery crashed: {e}")

    # Manual operations

    async def rotate_tokens(self) -> RotationRecord:
        """Run a rotation pass now; alerts are raised from the completion event"""
        return await self.rotation_manager.rotate_all()

    async def test_recovery(self) -> RecoveryTestResult:
        result = await self.recovery_orchestrator.test_recovery()
        if result.success:
            await self.alert_manager.raise_alert(
                AlertType.RECOVERY_TEST, "Recovery test completed successfully", AlertSeverity.INFO,
                run_id=result.run.run_id
            )
        else:
            await self.alert_manager.raise_alert(
                AlertType.RECOVERY_TEST_ERROR, f"Recovery test failed: {result.error}", AlertSeverity.WARNING
            )
        return result

    async def emergency_recovery(self, reason: str = "manual") -> RecoveryRun:
        """
        Run a full recovery now. The ``emergency_recovery`` alert goes out
        once the run has actually started.

        Raises:
            RecoveryInProgressError: If a run is already active
        """
        run = await self.recovery_orchestrator.start_full_recovery(reason)
        if run.status == RecoveryStatus.FAILED:
            await self.alert_manager.raise_alert(
                AlertType.RECOVERY_ERROR, f"Emergency recovery failed: {run.error}", AlertSeverity.CRITICAL,
                run_id=run.run_id
            )
        return run

    async def run_backup(self) -> Optional[Backup]:
        """Write a scheduled backup; failures are alerted, not raised"""
        if self.recovery_orchestrator.is_recovering:
            logger.info("Skipping scheduled backup while a recovery is in progress")
            return None

        try:
            return await self.recovery_orchestrator.create_backup()
        except Exception as e:
            logger.error(f"Scheduled backup failed: {e}")
            await self.alert_manager.raise_alert(
                AlertType.BACKUP_ERROR, f"Scheduled backup failed: {e}", AlertSeverity.WARNING
            )
            return None

    async def restore_backup(self, path: Union[str, Path]) -> RecoveryRun:
        archive = Path(path)
        backup = Backup(name=archive.parent.name if archive.name == "emergency-backup.tar.gz" else archive.name,
                        path=archive)

        run = await self.recovery_orchestrator.restore_from_backup(backup)
        if run.status == RecoveryStatus.COMPLETED:
            await self.alert_manager.raise_alert(
                AlertType.RECOVERY_COMPLETE, f"Restored data from backup {backup.name}", AlertSeverity.INFO
            )
        else:
            await self.alert_manager.raise_alert(
                AlertType.RECOVERY_ERROR, f"Restore from backup {backup.name} failed: {run.error}",
                AlertSeverity.CRITICAL
            )
        return run

    def register_target(self, target: MonitoredTarget) -> None:
        self.health_monitor.register(target)

    # Status

    def get_security_status(self) -> Dict[str, Any]:
        snapshot = self.health_monitor.last_snapshot if self.health_monitor else None
        uptime = (datetime.now(timezone.utc) - self._started_at).total_seconds() if self._started_at else 0

        return {
            'status': self.status.value,
            'is_running': self._is_running,
            'environment': self.config_manager.environment.value,
            'started_at': self._started_at.isoformat() if self._started_at else None,
            'uptime_seconds': uptime,
            'auto_recovery_enabled': self.config.auto_recovery_enabled if self.config else None,
            'health': snapshot.to_dict() if snapshot else None,
            'monitor': self.health_monitor.get_status() if self.health_monitor else None,
            'token_rotation': self.rotation_manager.get_rotation_status() if self.rotation_manager else None,
            'recovery': self.recovery_orchestrator.get_recovery_status() if self.recovery_orchestrator else None,
            'alerts': self.alert_manager.get_alert_stats() if self.alert_manager else None,
        }

    async def generate_security_report(self) -> Path:
        """Write the current status plus recent alerts to the reports directory"""
        now = datetime.now(timezone.utc)
        report = {
            'generated_at': now.isoformat(),
            **self.get_security_status(),
            'recent_alerts': [a.to_dict() for a in self.alert_manager.get_alerts(limit=50)],
        }

        reports_dir = self._resolve(self.config.reports_dir)
        report_path = reports_dir / f"security-report-{now.strftime('%Y%m%dT%H%M%SZ')}.json"

        def write() -> None:
            reports_dir.mkdir(parents=True, exist_ok=True)
            report_path.write_text(json.dumps(report, indent=2, default=str), encoding='utf-8')

        await asyncio.to_thread(write)
        logger.info(f"Security report written to {report_path}")
        return report_path
