"""
Disaster Recovery Orchestration for Sentinel
"""

import time
import logging
import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple
from datetime import datetime, timezone

from core import EventBus, StateStore
from core.event_bus import RECOVERY_STARTED, RECOVERY_STEP, RECOVERY_FINISHED
from integrations.config_store import ConfigPublisher
from integrations.interfaces import IDeploymentProvider, IDnsProvider, IProcessRunner
from integrations.webhooks import WebhookRegistrar
from monitoring.interfaces import IAlertSink, SecurityAlert, AlertType, AlertSeverity
from .domains import generate_domains, random_suffix
from .interfaces import (
    IRecoveryOrchestrator, RecoveryRun, RecoveryStep, RecoveryStatus, RecoveryPhase,
    RecoveryTestResult, Backup, Deployment, DeploymentStatus,
    RecoveryInProgressError, BackupError, DeploymentError, DataRestoreError
)

logger = logging.getLogger('sentinel.recovery.orchestrator')

HISTORY_KEY = 'recovery_history'

StepFunc = Callable[[RecoveryRun], Awaitable[Optional[str]]]

TERMINAL_PHASES = {
    RecoveryStatus.COMPLETED: RecoveryPhase.COMPLETED,
    RecoveryStatus.FAILED: RecoveryPhase.FAILED,
    RecoveryStatus.CANCELLED: RecoveryPhase.CANCELLED,
}


def _file_size(path: Path) -> int:
    return path.stat().st_size if path.exists() else 0


class RecoveryOrchestrator(IRecoveryOrchestrator):
    """
    Seven-step recovery state machine.

    backup -> domain generation -> deployment -> DNS -> data restore ->
    reconfiguration -> notification. Steps run strictly in order and the
    first failing step ends the run as failed; earlier steps are not
    rolled back. At most one run is active at a time.
    """

    def __init__(self, process_runner: IProcessRunner,
                 providers: Sequence[IDeploymentProvider],
                 alert_sink: Optional[IAlertSink] = None,
                 dns_provider: Optional[IDnsProvider] = None,
                 config_publisher: Optional[ConfigPublisher] = None,
                 webhook_registrar: Optional[WebhookRegistrar] = None,
                 bot_token_provider: Optional[Callable[[], Optional[str]]] = None,
                 state_store: Optional[StateStore] = None,
                 event_bus: Optional[EventBus] = None,
                 backup_dir: Path = Path("./backups"),
                 source_dir: Path = Path("."),
                 restore_dir: Path = Path("."),
                 archive_excludes: Sequence[str] = ("node_modules", ".git", "backups"),
                 domain_templates: Optional[Dict[str, str]] = None,
                 history_limit: int = 50,
                 webhook_path: str = "/webhook",
                 archive_timeout: float = 600.0,
                 scheduled_backup_retention: int = 10):
        self.process_runner = process_runner
        self.providers = list(providers)
        self.alert_sink = alert_sink
        self.dns_provider = dns_provider
        self.config_publisher = config_publisher
        self.webhook_registrar = webhook_registrar
        self.bot_token_provider = bot_token_provider
        self.state_store = state_store
        self.event_bus = event_bus

        self.backup_dir = Path(backup_dir)
        self.source_dir = Path(source_dir)
        self.restore_dir = Path(restore_dir)
        self.archive_excludes = list(archive_excludes)
        self.domain_templates = dict(domain_templates or {
            'main': "vote-{timestamp}-{suffix}.vercel.app",
            'bot': "bot-{timestamp}-{suffix}.vercel.app",
            'api': "api-{timestamp}-{suffix}.vercel.app",
            'backup': "backup-{timestamp}-{suffix}.netlify.app",
        })
        self.webhook_path = webhook_path
        self.archive_timeout = archive_timeout
        self.scheduled_backup_retention = scheduled_backup_retention

        self._active_run: Optional[RecoveryRun] = None
        self._last_backup: Optional[Backup] = None
        self._history: List[RecoveryRun] = []
        self._max_history_items = history_limit
        self._stats = {
            'total_runs': 0,
            'completed': 0,
            'failed': 0,
            'cancelled': 0,
        }

        logger.info(f"RecoveryOrchestrator initialized with {len(self.providers)} provider(s)")

    @property
    def is_recovering(self) -> bool:
        return self._active_run is not None

    @property
    def active_run(self) -> Optional[RecoveryRun]:
        return self._active_run.snapshot() if self._active_run else None

    # Public operations

    async def start_full_recovery(self, reason: str) -> RecoveryRun:
        """
        Run the full recovery sequence.

        Returns:
            Copy of the finished run (completed, failed or cancelled)

        Raises:
            RecoveryInProgressError: If another run is active
        """
        run = self._begin(reason)
        logger.warning(f"Starting full recovery {run.run_id} (reason: {reason})")

        return await self._execute(run, [
            (RecoveryPhase.BACKING_UP, self._step_backup),
            (RecoveryPhase.GENERATING_DOMAINS, self._step_generate_domains),
            (RecoveryPhase.DEPLOYING, self._step_deploy),
            (RecoveryPhase.UPDATING_DNS, self._step_update_dns),
            (RecoveryPhase.RESTORING_DATA, self._step_restore_data),
            (RecoveryPhase.RECONFIGURING, self._step_reconfigure),
            (RecoveryPhase.NOTIFYING, self._step_notify),
        ])

    async def restore_from_backup(self, backup: Backup) -> RecoveryRun:
        """
        Extract a backup archive over the restore directory.

        Raises:
            RecoveryInProgressError: If another run is active
        """
        run = self._begin("backup_restore")
        run.backup = backup
        logger.warning(f"Restoring from backup {backup.name} (run {run.run_id})")

        return await self._execute(run, [
            (RecoveryPhase.RESTORING_DATA, self._step_extract_backup),
        ])

    def cancel(self, run_id: str) -> bool:
        """
        Mark the active run cancelled and release the lock.

        A step already executing is not interrupted; the run stops at the
        next step boundary.
        """
        run = self._active_run
        if run is None or run.run_id != run_id:
            logger.warning(f"Cannot cancel recovery {run_id}: not the active run")
            return False

        self._finish(run, RecoveryStatus.CANCELLED, "cancelled")
        self._active_run = None
        logger.warning(f"Recovery {run_id} cancelled during {run.steps[-1].phase.value if run.steps else 'startup'}")
        return True

    def cancel_active(self) -> Optional[str]:
        """Cancel whatever run is active; returns its id"""
        if self._active_run is None:
            return None
        run_id = self._active_run.run_id
        self.cancel(run_id)
        return run_id

    async def test_recovery(self) -> RecoveryTestResult:
        try:
            run = await self.start_full_recovery("test")
        except RecoveryInProgressError as e:
            return RecoveryTestResult(success=False, error=str(e))

        success = run.status == RecoveryStatus.COMPLETED
        return RecoveryTestResult(success=success, run=run, error=None if success else run.error)

    async def create_backup(self) -> Backup:
        """
        Archive the source tree into ``backup_dir/backup-<timestamp>.tar.gz``.

        Only the newest ``scheduled_backup_retention`` of these archives are
        kept; emergency archives written by recovery runs are never pruned.

        Raises:
            BackupError: If the archive could not be written
        """
        stamp = datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%S%fZ')
        await asyncio.to_thread(self.backup_dir.mkdir, parents=True, exist_ok=True)

        backup = await self._archive(self.backup_dir / f"backup-{stamp}.tar.gz", f"backup-{stamp}")
        self._last_backup = backup
        logger.info(f"Backup created: {backup.path} ({backup.size_bytes} bytes)")

        removed = await asyncio.to_thread(self._prune_scheduled_backups)
        if removed:
            logger.info(f"Pruned {removed} old backup(s)")
        return backup

    def _prune_scheduled_backups(self) -> int:
        archives = sorted(self.backup_dir.glob("backup-*.tar.gz"), key=lambda p: p.name, reverse=True)
        stale = archives[self.scheduled_backup_retention:]
        for path in stale:
            path.unlink(missing_ok=True)
        return len(stale)

    async def list_backups(self) -> List[Backup]:
        """Archives under the backup directory, newest first"""
        def scan() -> List[Backup]:
            if not self.backup_dir.exists():
                return []
            backups = []
            for path in self.backup_dir.rglob("*.tar.gz"):
                stat = path.stat()
                name = path.parent.name if path.parent != self.backup_dir else path.name[:-len(".tar.gz")]
                backups.append(Backup(
                    name=name,
                    path=path,
                    size_bytes=stat.st_size,
                    created_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
                ))
            backups.sort(key=lambda b: b.created_at, reverse=True)
            return backups

        return await asyncio.to_thread(scan)

    # Run lifecycle

    def _begin(self, reason: str) -> RecoveryRun:
        if self._active_run is not None:
            logger.warning(f"Recovery requested ({reason}) while {self._active_run.run_id} is in progress")
            raise RecoveryInProgressError(f"recovery {self._active_run.run_id} already in progress")

        run = RecoveryRun(reason=reason)
        self._active_run = run
        self._stats['total_runs'] += 1
        return run

    async def _execute(self, run: RecoveryRun, steps: List[Tuple[RecoveryPhase, StepFunc]]) -> RecoveryRun:
        try:
            await self._emit(RECOVERY_STARTED, run)
            await self._run_steps(run, steps)
        finally:
            if run.status == RecoveryStatus.IN_PROGRESS:
                # task cancelled underneath us
                self._finish(run, RecoveryStatus.CANCELLED, "recovery interrupted")
            if self._active_run is run:
                self._active_run = None
            await self._save_history()

        await self._emit(RECOVERY_FINISHED, run)

        if run.status == RecoveryStatus.COMPLETED:
            logger.info(f"Recovery {run.run_id} completed in {run.duration_seconds:.1f}s")
        else:
            logger.error(f"Recovery {run.run_id} ended {run.status.value}: {run.error}")

        return run.snapshot()

    async def _run_steps(self, run: RecoveryRun, steps: List[Tuple[RecoveryPhase, StepFunc]]) -> None:
        for phase, step in steps:
            if run.status != RecoveryStatus.IN_PROGRESS:
                return

            run.phase = phase
            started = datetime.now(timezone.utc)
            logger.info(f"Recovery {run.run_id}: {phase.value}")

            try:
                detail = await step(run)
            except Exception as e:
                error = str(e) or e.__class__.__name__
                run.steps.append(RecoveryStep(phase=phase, success=False, started_at=started, error=error))
                if run.status == RecoveryStatus.IN_PROGRESS:
                    self._finish(run, RecoveryStatus.FAILED, f"{phase.value}: {error}")
                return

            run.steps.append(RecoveryStep(phase=phase, success=True, started_at=started, detail=detail))
            await self._emit(RECOVERY_STEP, run)

        if run.status == RecoveryStatus.IN_PROGRESS:
            self._finish(run, RecoveryStatus.COMPLETED)

    def _finish(self, run: RecoveryRun, status: RecoveryStatus, error: Optional[str] = None) -> None:
        run.status = status
        run.phase = TERMINAL_PHASES[status]
        run.ended_at = datetime.now(timezone.utc)
        run.error = error

        self._stats[status.value] += 1
        self._history.append(run.snapshot())
        if len(self._history) > self._max_history_items:
            self._history = self._history[-self._max_history_items:]

    async def _emit(self, event_type: str, run: RecoveryRun) -> None:
        if self.event_bus:
            await self.event_bus.emit_async(event_type, source='recovery_orchestrator', run=run.snapshot())

    # Steps

    async def _step_backup(self, run: RecoveryRun) -> str:
        target_dir = self.backup_dir / f"emergency-{run.run_id}"
        await asyncio.to_thread(target_dir.mkdir, parents=True, exist_ok=True)

        run.backup = await self._archive(target_dir / "emergency-backup.tar.gz", f"emergency-{run.run_id}")
        return f"archived to {run.backup.path} ({run.backup.size_bytes} bytes)"

    async def _archive(self, path: Path, name: str) -> Backup:
        archive = path.absolute()
        args = ['tar', '-czf', str(archive)]
        args.extend(f"--exclude={pattern}" for pattern in self.archive_excludes)
        args.extend(['-C', str(self.source_dir), '.'])

        try:
            result = await self.process_runner.run(args, timeout=self.archive_timeout)
        except OSError as e:
            raise BackupError(f"tar could not be started: {e}") from e
        if not result.ok:
            raise BackupError(f"tar exited with {result.returncode}: {result.stderr.strip()}")

        return Backup(name=name, path=archive, size_bytes=await asyncio.to_thread(_file_size, archive))

    async def _step_generate_domains(self, run: RecoveryRun) -> str:
        run.new_domains = generate_domains(self.domain_templates, int(time.time()), random_suffix())
        return ", ".join(f"{role}={domain}" for role, domain in run.new_domains.items())

    async def _step_deploy(self, run: RecoveryRun) -> str:
        if not self.providers:
            raise DeploymentError("no deployment providers configured")

        results = await asyncio.gather(*(self._deploy_with(p, run.new_domains) for p in self.providers))
        run.deployments = list(results)

        deployed = [d for d in results if d.is_deployed]
        if not deployed:
            raise DeploymentError(f"all {len(results)} provider(s) failed to deploy")

        return f"{len(deployed)}/{len(results)} provider(s) deployed"

    async def _deploy_with(self, provider: IDeploymentProvider, domains: Dict[str, str]) -> Deployment:
        try:
            deployment = await provider.create_deployment(dict(domains))
            logger.info(f"Provider {provider.name}: {deployment.status.value}")
            return deployment
        except Exception as e:
            logger.error(f"Provider {provider.name} failed to deploy: {e}")
            return Deployment(
                provider=provider.name,
                domains=dict(domains),
                status=DeploymentStatus.FAILED,
                error=str(e) or e.__class__.__name__
            )

    async def _step_update_dns(self, run: RecoveryRun) -> str:
        if not self.dns_provider:
            return "no DNS provider configured, skipped"

        target = next((d.endpoint for d in run.deployments if d.is_deployed and d.endpoint), None)
        if not target:
            logger.warning(f"Recovery {run.run_id}: no deployment reported an endpoint, DNS left unchanged")
            return "no deployment endpoint, skipped"

        updated = 0
        for role, domain in run.new_domains.items():
            try:
                await self.dns_provider.upsert_record(domain, target)
                updated += 1
            except Exception as e:
                logger.error(f"DNS update for {role} domain {domain} failed: {e}")

        return f"{updated}/{len(run.new_domains)} record(s) pointed at {target}"

    async def _step_restore_data(self, run: RecoveryRun) -> str:
        deployed = [d for d in run.deployments if d.is_deployed]
        providers = {p.name: p for p in self.providers}

        restored = 0
        for deployment in deployed:
            provider = providers.get(deployment.provider)
            if provider is None:
                logger.error(f"No provider named {deployment.provider} for data restore")
                continue
            try:
                await provider.upload_backup(deployment, run.backup)
                restored += 1
            except Exception as e:
                logger.error(f"Restoring backup to {deployment.provider} failed: {e}")

        if not restored:
            raise DataRestoreError("backup could not be restored to any deployment")

        return f"restored to {restored}/{len(deployed)} deployment(s)"

    async def _step_reconfigure(self, run: RecoveryRun) -> str:
        values = {f"{role.upper()}_DOMAIN": domain for role, domain in run.new_domains.items()}
        if self.config_publisher:
            await self.config_publisher.publish(values)

        webhook_updated = await self._register_bot_webhook(run.new_domains['bot'])
        return f"published {len(values)} key(s), webhook {'updated' if webhook_updated else 'unchanged'}"

    async def _register_bot_webhook(self, bot_domain: str) -> bool:
        if not self.webhook_registrar or not self.bot_token_provider:
            return False

        bot_token = self.bot_token_provider()
        if not bot_token:
            logger.warning("No bot token available, skipping webhook registration")
            return False

        try:
            await self.webhook_registrar.register(bot_token, f"https://{bot_domain}{self.webhook_path}")
            return True
        except Exception as e:
            logger.error(f"Failed to register bot webhook on {bot_domain}: {e}")
            return False

    async def _step_notify(self, run: RecoveryRun) -> str:
        if not self.alert_sink:
            return "no alert sink configured"

        domain_lines = "\n".join(f"{role}: {domain}" for role, domain in run.new_domains.items())
        await self.alert_sink.send_alert(SecurityAlert(
            alert_type=AlertType.RECOVERY_COMPLETE,
            message=f"Recovery {run.run_id} ({run.reason}) provisioned new domains:\n{domain_lines}",
            severity=AlertSeverity.INFO,
            metadata={'run_id': run.run_id, 'domains': dict(run.new_domains)}
        ))
        return "notification sent"

    async def _step_extract_backup(self, run: RecoveryRun) -> str:
        archive = run.backup.path
        if not await asyncio.to_thread(archive.exists):
            raise DataRestoreError(f"backup archive not found: {archive}")

        await asyncio.to_thread(self.restore_dir.mkdir, parents=True, exist_ok=True)
        result = await self.process_runner.run(
            ['tar', '-xzf', str(archive), '-C', str(self.restore_dir)],
            timeout=self.archive_timeout
        )
        if not result.ok:
            raise DataRestoreError(f"tar exited with {result.returncode}: {result.stderr.strip()}")

        return f"extracted {archive} into {self.restore_dir}"

    # Persistence and status

    async def load_history(self) -> None:
        if not self.state_store:
            return
        data = await self.state_store.load_async(HISTORY_KEY, [])
        try:
            self._history = [RecoveryRun.from_dict(item) for item in data][-self._max_history_items:]
        except (KeyError, ValueError) as e:
            logger.error(f"Persisted recovery history is malformed, starting fresh: {e}")
            self._history = []

    async def _save_history(self) -> None:
        if not self.state_store:
            return
        try:
            await self.state_store.save_async(HISTORY_KEY, [r.to_dict() for r in self._history])
        except OSError as e:
            logger.error(f"Failed to persist recovery history: {e}")

    def get_history(self, limit: Optional[int] = None) -> List[RecoveryRun]:
        history = self._history[-limit:] if limit else self._history
        return [run.snapshot() for run in history]

    def get_recovery_status(self) -> Dict[str, Any]:
        return {
            'is_recovering': self.is_recovering,
            'active_run': self._active_run.to_dict() if self._active_run else None,
            'providers': [p.name for p in self.providers],
            'dns_configured': self.dns_provider is not None,
            'last_backup': self._last_backup.to_dict() if self._last_backup else None,
            'recent_runs': [run.to_dict() for run in self._history[-10:]],
            'stats': dict(self._stats),
        }
