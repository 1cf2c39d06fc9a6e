"""
Token Rotation Manager Tests
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from core.config_manager import SecretSpec
from core.event_bus import ROTATION_COMPLETED
from integrations.config_store import ConfigPublisher
from integrations.interfaces import IConfigStore, IProcessRunner
from rotation import (
    TokenRotationManager, SecretKind, RotationInProgressError,
    SecretNotFoundError, NoBackupFoundError, generate_secret_value
)
from conftest import InMemoryConfigStore


SPECS = [
    SecretSpec(name="TELEGRAM_BOT_TOKEN", kind="bot_credential"),
    SecretSpec(name="API_KEY", kind="api_key"),
    SecretSpec(name="JWT_ACCESS_SECRET", kind="signing_secret"),
    SecretSpec(name="DATA_ENCRYPTION_KEY", kind="encryption_key"),
]


class GatedConfigStore(IConfigStore):
    """Blocks every upsert until the gate opens"""

    def __init__(self):
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def upsert(self, values):
        self.entered.set()
        await self.gate.wait()


class MissingCommandRunner(IProcessRunner):
    """Behaves like a restart command that is not installed"""

    async def run(self, args, cwd=None, timeout=None):
        raise FileNotFoundError(2, "No such file or directory", args[0])


class TestSecretGeneration:

    @pytest.mark.parametrize("kind,length", [
        (SecretKind.BOT_CREDENTIAL, 35),
        (SecretKind.API_KEY, 64),
        (SecretKind.SIGNING_SECRET, 128),
    ])
    def test_default_lengths(self, kind, length):
        value = generate_secret_value(kind)
        assert len(value) == length
        assert value.isalnum()

    def test_encryption_key_is_32_bytes_hex(self):
        value = generate_secret_value(SecretKind.ENCRYPTION_KEY)
        assert len(bytes.fromhex(value)) == 32

    def test_length_override(self):
        assert len(generate_secret_value(SecretKind.API_KEY, {SecretKind.API_KEY: 40})) == 40


class TestTokenRotationManager:

    @pytest.fixture
    def manager(self, publisher, state_store, event_bus):
        return TokenRotationManager(
            SPECS,
            publisher=publisher,
            state_store=state_store,
            event_bus=event_bus,
            environ={"API_KEY": "initial-api-key-value"}
        )

    def test_seeds_from_environment_or_generates(self, manager):
        assert manager.get_secret_value("API_KEY") == "initial-api-key-value"
        assert len(manager.get_secret_value("TELEGRAM_BOT_TOKEN")) == 35
        assert manager.get_backups("API_KEY") == []

    @pytest.mark.asyncio
    async def test_rotate_all_rotates_every_secret(self, manager, config_store):
        before = {s.name: s.value for s in manager.get_secrets()}

        record = await manager.rotate_all()

        assert record.success
        assert record.tokens_rotated == len(SPECS)
        for secret in manager.get_secrets():
            assert secret.value != before[secret.name]
            backups = manager.get_backups(secret.name)
            assert backups[-1].value == before[secret.name]
            assert backups[-1].is_backup
            assert backups[-1].parent == secret.name

        assert len(config_store.upserts) == 1
        assert set(config_store.upserts[0]) == {s.name for s in SPECS}
        assert len(manager.get_history()) == 1

    @pytest.mark.asyncio
    async def test_backups_bounded_to_three(self, manager):
        values = [manager.get_secret_value("API_KEY")]
        for _ in range(4):
            await manager.rotate_one("API_KEY")
            values.append(manager.get_secret_value("API_KEY"))

        backups = manager.get_backups("API_KEY")
        assert len(backups) == 3
        # oldest evicted first
        assert [b.value for b in backups] == values[1:4]
        names = [b.name for b in backups]
        assert len(set(names)) == 3
        assert all(name.startswith("API_KEY_backup_") for name in names)

    @pytest.mark.asyncio
    async def test_restore_from_backup(self, manager, config_store):
        original = manager.get_secret_value("API_KEY")
        await manager.rotate_one("API_KEY")
        assert manager.get_secret_value("API_KEY") != original

        assert await manager.restore_from_backup("API_KEY") is True
        assert manager.get_secret_value("API_KEY") == original
        assert config_store.values["API_KEY"] == original

        with pytest.raises(NoBackupFoundError, match="no backup found"):
            await manager.restore_from_backup("API_KEY")

    @pytest.mark.asyncio
    async def test_unknown_secret(self, manager):
        with pytest.raises(SecretNotFoundError):
            await manager.rotate_one("NOPE")
        with pytest.raises(SecretNotFoundError):
            await manager.restore_from_backup("NOPE")

    @pytest.mark.asyncio
    async def test_concurrent_rotation_rejected(self, state_store):
        store = GatedConfigStore()
        manager = TokenRotationManager(SPECS, publisher=ConfigPublisher(store), state_store=state_store)

        first = asyncio.create_task(manager.rotate_all())
        await store.entered.wait()

        with pytest.raises(RotationInProgressError):
            await manager.rotate_all()

        store.gate.set()
        record = await first

        assert record.success
        assert len(manager.get_history()) == 1
        assert not manager.is_rotating

    @pytest.mark.asyncio
    async def test_publish_failure_is_recorded(self, state_store):
        manager = TokenRotationManager(
            SPECS, publisher=ConfigPublisher(InMemoryConfigStore(fail=True)), state_store=state_store
        )

        record = await manager.rotate_all()

        assert not record.success
        assert "configuration publish failed" in record.error
        assert record.tokens_rotated == len(SPECS)
        assert not manager.is_rotating

    @pytest.mark.asyncio
    async def test_unstartable_restart_command_is_recorded_and_persisted(self, state_store, event_bus):
        store = InMemoryConfigStore()
        publisher = ConfigPublisher(store, MissingCommandRunner(), ["/nonexistent/restart-services"])
        manager = TokenRotationManager(SPECS, publisher=publisher, state_store=state_store, event_bus=event_bus)
        received = []
        event_bus.subscribe(ROTATION_COMPLETED, lambda event: received.append(event.get_event_data('record')))

        record = await manager.rotate_all()

        assert not record.success
        assert "could not be started" in record.error
        assert received == [record]
        assert not manager.is_rotating
        assert store.values["API_KEY"] == manager.get_secret_value("API_KEY")

        reloaded = TokenRotationManager(SPECS, publisher=publisher, state_store=state_store)
        await reloaded.load()
        assert reloaded.get_secret_value("API_KEY") == manager.get_secret_value("API_KEY")
        assert len(reloaded.get_history()) == 1

    @pytest.mark.asyncio
    async def test_restore_with_unstartable_restart_command(self, state_store):
        publisher = ConfigPublisher(InMemoryConfigStore(), MissingCommandRunner(), ["/nonexistent/restart-services"])
        manager = TokenRotationManager(SPECS, publisher=publisher, state_store=state_store)
        original = manager.get_secret_value("API_KEY")
        await manager.rotate_one("API_KEY")

        assert await manager.restore_from_backup("API_KEY") is False
        assert manager.get_secret_value("API_KEY") == original
        assert manager.get_backups("API_KEY") == []
        assert not manager.is_rotating

        reloaded = TokenRotationManager(SPECS, publisher=publisher, state_store=state_store)
        await reloaded.load()
        assert reloaded.get_secret_value("API_KEY") == original
        assert reloaded.get_backups("API_KEY") == []

    @pytest.mark.asyncio
    async def test_rotation_event_published(self, manager, event_bus):
        received = []
        event_bus.subscribe(ROTATION_COMPLETED, lambda event: received.append(event.get_event_data('record')))

        record = await manager.rotate_all()

        assert received == [record]

    @pytest.mark.asyncio
    async def test_bot_webhook_reregistered(self, publisher):
        registrar = AsyncMock()
        manager = TokenRotationManager(
            SPECS, publisher=publisher, webhook_registrar=registrar,
            bot_webhook_url="https://bot.example.com/webhook"
        )

        await manager.rotate_all()

        registrar.register.assert_awaited_once_with(
            manager.get_secret_value("TELEGRAM_BOT_TOKEN"), "https://bot.example.com/webhook"
        )

    @pytest.mark.asyncio
    async def test_state_survives_reload(self, manager, publisher, state_store):
        await manager.rotate_all()
        await manager.rotate_one("API_KEY")

        reloaded = TokenRotationManager(SPECS, publisher=publisher, state_store=state_store)
        await reloaded.load()

        assert reloaded.get_secret_value("API_KEY") == manager.get_secret_value("API_KEY")
        assert [b.value for b in reloaded.get_backups("API_KEY")] == \
            [b.value for b in manager.get_backups("API_KEY")]
        assert len(reloaded.get_history()) == 2

    @pytest.mark.asyncio
    async def test_status_masks_values(self, manager):
        await manager.rotate_all()
        status = manager.get_rotation_status()

        api = next(s for s in status['secrets'] if s['name'] == "API_KEY")
        assert api['value'] != manager.get_secret_value("API_KEY")
        assert api['backups'] == 1
        assert status['last_rotation']['success'] is True
