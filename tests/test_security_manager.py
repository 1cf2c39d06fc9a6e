"""
Security Manager Tests

End-to-end wiring: configuration -> components -> loops, and the
critical-snapshot reaction.
"""

import json
import asyncio

import pytest

from core import ConfigurationManager, ConfigurationError, EventBus
from integrations.config_store import ConfigPublisher
from monitoring import AlertType, AlertSeverity
from recovery import RecoveryStatus, RecoveryInProgressError
from services import SecurityManager, SystemStatus
from conftest import FakeHttpClient, FakeProcessRunner, StubProvider, InMemoryConfigStore


API_HEALTH = "https://api.example.com/health"

CONFIG = """
monitoring_interval: 3600
token_rotation_interval: 3600
alert_sweep_interval: 3600
backup_interval: 3600
auto_recovery_enabled: {auto_recovery}
recovery_failure_threshold: {threshold}
required_paths: []
targets:
  - name: Web
    kind: http
    address: https://web.example.com/health
  - name: API
    kind: http
    address: https://api.example.com/health
secrets:
  - name: API_KEY
    kind: api_key
  - name: TELEGRAM_BOT_TOKEN
    kind: bot_credential
"""


class GatedProvider(StubProvider):
    def __init__(self):
        super().__init__(name="gated")
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def create_deployment(self, domains):
        self.entered.set()
        await self.release.wait()
        return await super().create_deployment(domains)


async def wait_until(condition, timeout: float = 2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


async def start_and_settle(manager):
    """Start the manager and wait for the monitoring loop's first sweep"""
    await manager.start()
    await wait_until(lambda: manager.health_monitor.last_snapshot is not None)


def alert_types(manager):
    return [a.alert_type for a in manager.alert_manager.get_alerts()]


class TestSecurityManager:

    @pytest.fixture
    def http(self):
        return FakeHttpClient()

    @pytest.fixture
    def config_store(self):
        return InMemoryConfigStore()

    @pytest.fixture
    def make_manager(self, tmp_path, http, config_store):
        def factory(auto_recovery: bool = True, provider=None, threshold: int = 1, runner=None):
            config_dir = tmp_path / "config"
            config_dir.mkdir(exist_ok=True)
            (config_dir / "default.yaml").write_text(
                CONFIG.format(auto_recovery=str(auto_recovery).lower(), threshold=threshold), encoding="utf-8"
            )
            manager = SecurityManager(
                ConfigurationManager(tmp_path, environ={}),
                http_client=http,
                process_runner=runner or FakeProcessRunner(),
                providers=[provider or StubProvider()],
                notifiers=[],
                publisher=ConfigPublisher(config_store),
                event_bus=EventBus(),
                base_path=tmp_path
            )
            return manager

        return factory

    @pytest.mark.asyncio
    async def test_start_and_stop(self, make_manager, http, tmp_path):
        manager = make_manager()

        await manager.start()
        assert manager.is_running
        assert manager.status == SystemStatus.RUNNING
        assert manager.health_monitor.is_monitoring
        assert manager._backup_task.is_running
        assert AlertType.SYSTEM_START in alert_types(manager)
        assert {t.name for t in manager.health_monitor.get_targets()} == {"Web", "API"}

        await manager.stop()
        assert manager.status == SystemStatus.STOPPED
        assert not manager.is_running
        assert not manager.health_monitor.is_monitoring
        assert manager._backup_task is None
        assert http.closed
        assert (tmp_path / "security" / "state" / "secrets.json").exists()
        assert AlertType.SYSTEM_STOP in alert_types(manager)

    @pytest.mark.asyncio
    async def test_invalid_configuration_fails_start(self, tmp_path):
        config_dir = tmp_path / "config"
        config_dir.mkdir()
        (config_dir / "default.yaml").write_text("log_level: CHATTY\n", encoding="utf-8")
        manager = SecurityManager(ConfigurationManager(tmp_path, environ={}), event_bus=EventBus(),
                                  http_client=FakeHttpClient(), base_path=tmp_path)

        with pytest.raises(ConfigurationError):
            await manager.start()
        assert manager.status == SystemStatus.ERROR

    @pytest.mark.asyncio
    async def test_critical_snapshot_triggers_recovery(self, make_manager, http, config_store):
        manager = make_manager()
        await start_and_settle(manager)
        try:
            http.responses[API_HEALTH] = 500
            snapshot = await manager.health_monitor.sweep_once()
            assert snapshot.critical_failures == 1
            assert manager.status == SystemStatus.CRITICAL

            critical = manager.alert_manager.get_alerts(severity=AlertSeverity.CRITICAL)
            assert any(a.alert_type == AlertType.CRITICAL_FAILURE and "API" in a.message for a in critical)

            await wait_until(lambda: manager.recovery_orchestrator.get_history())
            run = manager.recovery_orchestrator.get_history()[0]
            assert run.reason == "critical_failure"
            assert run.status == RecoveryStatus.COMPLETED
            assert config_store.values["MAIN_DOMAIN"] == run.new_domains["main"]
            assert AlertType.EMERGENCY_RECOVERY in alert_types(manager)
            assert AlertType.RECOVERY_COMPLETE in alert_types(manager)
        finally:
            await manager.stop()

    @pytest.mark.asyncio
    async def test_auto_recovery_disabled(self, make_manager, http):
        manager = make_manager(auto_recovery=False)
        await start_and_settle(manager)
        try:
            http.responses[API_HEALTH] = 500
            await manager.health_monitor.sweep_once()
            await asyncio.sleep(0.05)

            assert AlertType.CRITICAL_FAILURE in alert_types(manager)
            assert manager.recovery_orchestrator.get_history() == []
            assert not manager.recovery_orchestrator.is_recovering
        finally:
            await manager.stop()

    @pytest.mark.asyncio
    async def test_healthy_sweep_returns_to_running(self, make_manager, http):
        manager = make_manager(auto_recovery=False)
        await start_and_settle(manager)
        try:
            http.responses["https://web.example.com/health"] = 404
            await manager.health_monitor.sweep_once()
            assert manager.status == SystemStatus.WARNING

            http.responses["https://web.example.com/health"] = 200
            await manager.health_monitor.sweep_once()
            assert manager.status == SystemStatus.RUNNING
        finally:
            await manager.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_active_recovery(self, make_manager, http):
        provider = GatedProvider()
        manager = make_manager(provider=provider)
        await start_and_settle(manager)

        http.responses[API_HEALTH] = 500
        await manager.health_monitor.sweep_once()
        await asyncio.wait_for(provider.entered.wait(), timeout=2.0)
        assert manager.recovery_orchestrator.is_recovering

        await manager.stop()
        await asyncio.sleep(0.05)

        history = manager.recovery_orchestrator.get_history()
        assert [r.status for r in history] == [RecoveryStatus.CANCELLED]
        assert not manager.recovery_orchestrator.is_recovering

    @pytest.mark.asyncio
    async def test_manual_emergency_rejected_while_recovering(self, make_manager):
        provider = GatedProvider()
        manager = make_manager(auto_recovery=False, provider=provider)
        await start_and_settle(manager)
        try:
            first = asyncio.create_task(manager.emergency_recovery("manual"))
            await asyncio.wait_for(provider.entered.wait(), timeout=2.0)

            with pytest.raises(RecoveryInProgressError):
                await manager.emergency_recovery("again")

            provider.release.set()
            run = await first
            assert run.status == RecoveryStatus.COMPLETED
            assert run.reason == "manual"
            assert alert_types(manager).count(AlertType.EMERGENCY_RECOVERY) == 1
        finally:
            await manager.stop()

    @pytest.mark.asyncio
    async def test_rotate_tokens_raises_alert(self, make_manager, config_store):
        manager = make_manager(auto_recovery=False)
        await start_and_settle(manager)
        try:
            record = await manager.rotate_tokens()

            assert record.success
            assert set(config_store.values) >= {"API_KEY", "TELEGRAM_BOT_TOKEN"}
            assert AlertType.TOKEN_ROTATION in alert_types(manager)
        finally:
            await manager.stop()

    @pytest.mark.asyncio
    async def test_test_recovery_raises_alert(self, make_manager):
        manager = make_manager(auto_recovery=False)
        await start_and_settle(manager)
        try:
            result = await manager.test_recovery()

            assert result.success
            assert set(result.run.new_domains) == {"main", "bot", "api", "backup"}
            assert AlertType.RECOVERY_TEST in alert_types(manager)
        finally:
            await manager.stop()

    @pytest.mark.asyncio
    async def test_restore_backup(self, make_manager, tmp_path):
        manager = make_manager(auto_recovery=False)
        await start_and_settle(manager)
        try:
            archive = tmp_path / "backups" / "old-backup.tar.gz"
            archive.parent.mkdir(parents=True, exist_ok=True)
            archive.write_bytes(b"data")

            run = await manager.restore_backup(archive)

            assert run.status == RecoveryStatus.COMPLETED
            assert run.backup.name == "old-backup.tar.gz"
        finally:
            await manager.stop()

    @pytest.mark.asyncio
    async def test_status_and_report(self, make_manager, tmp_path):
        manager = make_manager(auto_recovery=False)
        await start_and_settle(manager)
        try:
            await manager.health_monitor.sweep_once()
            status = manager.get_security_status()

            assert status['status'] == "running"
            assert status['health']['total_services'] == 2
            assert status['token_rotation']['total_secrets'] == 2
            assert status['recovery']['providers'] == ["stub"]

            report_path = await manager.generate_security_report()
            assert report_path.parent == tmp_path / "security" / "reports"
            report = json.loads(report_path.read_text(encoding="utf-8"))
            assert report['status'] == "running"
            assert report['recent_alerts']
        finally:
            await manager.stop()

    @pytest.mark.asyncio
    async def test_recovery_waits_for_failure_threshold(self, make_manager, http):
        manager = make_manager(threshold=2)
        await start_and_settle(manager)
        try:
            http.responses[API_HEALTH] = 500
            await manager.health_monitor.sweep_once()
            await asyncio.sleep(0.05)

            assert AlertType.CRITICAL_FAILURE in alert_types(manager)
            assert manager.health_monitor.get_target("API").consecutive_failures == 1
            assert manager.recovery_orchestrator.get_history() == []

            await manager.health_monitor.sweep_once()
            await wait_until(lambda: manager.recovery_orchestrator.get_history())
            assert manager.recovery_orchestrator.get_history()[0].reason == "critical_failure"
        finally:
            await manager.stop()

    @pytest.mark.asyncio
    async def test_concurrent_emergency_calls_announce_once(self, make_manager):
        provider = GatedProvider()
        manager = make_manager(auto_recovery=False, provider=provider)
        await start_and_settle(manager)
        try:
            first = asyncio.create_task(manager.emergency_recovery("first"))
            second = asyncio.create_task(manager.emergency_recovery("second"))
            await asyncio.wait_for(provider.entered.wait(), timeout=2.0)

            with pytest.raises(RecoveryInProgressError):
                await second
            provider.release.set()
            await first

            emergencies = [a for a in manager.alert_manager.get_alerts()
                           if a.alert_type == AlertType.EMERGENCY_RECOVERY]
            assert len(emergencies) == 1
            assert "first" in emergencies[0].message
        finally:
            await manager.stop()

    @pytest.mark.asyncio
    async def test_recovery_test_is_not_announced_as_emergency(self, make_manager):
        manager = make_manager(auto_recovery=False)
        await start_and_settle(manager)
        try:
            await manager.test_recovery()
            assert AlertType.EMERGENCY_RECOVERY not in alert_types(manager)
        finally:
            await manager.stop()

    @pytest.mark.asyncio
    async def test_scheduled_backup(self, make_manager, tmp_path):
        manager = make_manager(auto_recovery=False)
        await start_and_settle(manager)
        try:
            backup = await manager.run_backup()

            assert backup.path.parent == tmp_path / "backups"
            assert backup.path.exists()
            assert manager.get_security_status()['recovery']['last_backup']['name'] == backup.name
        finally:
            await manager.stop()

    @pytest.mark.asyncio
    async def test_scheduled_backup_failure_alerts(self, make_manager):
        manager = make_manager(auto_recovery=False, runner=FakeProcessRunner(returncode=2))
        await start_and_settle(manager)
        try:
            assert await manager.run_backup() is None
            assert AlertType.BACKUP_ERROR in alert_types(manager)
        finally:
            await manager.stop()
