"""
Token Rotation System for Sentinel
"""

import os
import logging
import asyncio
from typing import Any, Dict, Iterable, List, Optional
from datetime import datetime, timezone

from core import EventBus, PeriodicTask, StateStore
from core.config_manager import SecretSpec
from core.event_bus import ROTATION_COMPLETED
from integrations.config_store import ConfigPublisher
from integrations.webhooks import WebhookRegistrar
from .generators import generate_secret_value
from .interfaces import (
    ITokenRotationManager, Secret, SecretKind, RotationRecord,
    RotationInProgressError, SecretNotFoundError, NoBackupFoundError
)

logger = logging.getLogger('sentinel.rotation.rotation_manager')

SECRETS_KEY = 'secrets'
HISTORY_KEY = 'rotation_history'

# Group order for a rotation pass
KIND_ORDER = (
    SecretKind.BOT_CREDENTIAL,
    SecretKind.API_KEY,
    SecretKind.SIGNING_SECRET,
    SecretKind.ENCRYPTION_KEY,
)


class TokenRotationManager(ITokenRotationManager):
    """
    Credential rotation service for Sentinel.

    Keeps one live value per secret name plus up to ``backup_retention``
    demoted values, oldest evicted first. Only one rotation (pass, single
    rotation or restore) runs at a time; a second request is rejected with
    ``RotationInProgressError`` rather than queued.
    """

    def __init__(self, specs: Iterable[SecretSpec],
                 publisher: Optional[ConfigPublisher] = None,
                 state_store: Optional[StateStore] = None,
                 event_bus: Optional[EventBus] = None,
                 backup_retention: int = 3,
                 lengths: Optional[Dict[str, int]] = None,
                 history_limit: int = 100,
                 webhook_registrar: Optional[WebhookRegistrar] = None,
                 bot_webhook_url: Optional[str] = None,
                 bot_token_secret: str = "TELEGRAM_BOT_TOKEN",
                 environ: Optional[Dict[str, str]] = None):
        if backup_retention < 1:
            raise ValueError("backup_retention must be at least 1")

        self.specs = list(specs)
        self.publisher = publisher
        self.state_store = state_store
        self.event_bus = event_bus
        self.backup_retention = backup_retention
        self.lengths = {SecretKind(kind): length for kind, length in (lengths or {}).items()}
        self.webhook_registrar = webhook_registrar
        self.bot_webhook_url = bot_webhook_url
        self.bot_token_secret = bot_token_secret
        self._environ = environ

        self._secrets: Dict[str, Secret] = {}
        self._backups: Dict[str, List[Secret]] = {}
        self._last_generation: Dict[str, int] = {}

        self._history: List[RotationRecord] = []
        self._max_history_items = history_limit

        self._rotation_active = False
        self._rotation_task: Optional[PeriodicTask] = None

        self._seed_from_specs()
        logger.info(f"TokenRotationManager initialized with {len(self._secrets)} secret(s)")

    @property
    def is_rotating(self) -> bool:
        return self._rotation_active

    # Loading and persistence

    def _seed_from_specs(self) -> None:
        env = dict(os.environ) if self._environ is None else self._environ
        for spec in self.specs:
            kind = SecretKind(spec.kind)
            value = env.get(spec.name) or generate_secret_value(kind, self.lengths)
            self._secrets[spec.name] = Secret(name=spec.name, kind=kind, value=value)
            self._backups.setdefault(spec.name, [])

    async def load(self) -> None:
        """Replace seeded values with persisted state where present"""
        if not self.state_store:
            return

        data = await self.state_store.load_async(SECRETS_KEY)
        if data:
            try:
                for item in data.get('secrets', []):
                    secret = Secret.from_dict(item)
                    self._secrets[secret.name] = secret
                for name, items in data.get('backups', {}).items():
                    backups = [Secret.from_dict(item) for item in items]
                    self._backups[name] = backups[-self.backup_retention:]
                    for backup in backups:
                        self._note_generation(name, backup.name)
                logger.info(f"Loaded {len(self._secrets)} secret(s) from state store")
            except (KeyError, ValueError) as e:
                logger.error(f"Persisted secrets are malformed, keeping seeded values: {e}")

        history = await self.state_store.load_async(HISTORY_KEY, [])
        try:
            self._history = [RotationRecord.from_dict(item) for item in history][-self._max_history_items:]
        except (KeyError, ValueError) as e:
            logger.error(f"Persisted rotation history is malformed, starting fresh: {e}")
            self._history = []

    async def save(self) -> None:
        if not self.state_store:
            return

        try:
            await self.state_store.save_async(SECRETS_KEY, {
                'secrets': [s.to_dict() for s in self._secrets.values()],
                'backups': {name: [b.to_dict() for b in backups] for name, backups in self._backups.items()},
            })
            await self.state_store.save_async(HISTORY_KEY, [r.to_dict() for r in self._history])
        except OSError as e:
            logger.error(f"Failed to persist rotation state: {e}")

    # Rotation

    async def rotate_all(self) -> RotationRecord:
        """
        Rotate every live secret and republish once.

        Raises:
            RotationInProgressError: If another rotation is running
        """
        self._acquire()
        try:
            logger.info("Starting token rotation pass")
            return await self._run_pass(list(self._secrets))
        finally:
            self._rotation_active = False

    async def rotate_one(self, name: str) -> RotationRecord:
        """
        Raises:
            SecretNotFoundError: If ``name`` is not a live secret
            RotationInProgressError: If another rotation is running
        """
        if name not in self._secrets:
            raise SecretNotFoundError(f"secret not found: {name}")

        self._acquire()
        try:
            return await self._run_pass([name])
        finally:
            self._rotation_active = False

    async def restore_from_backup(self, name: str) -> bool:
        """
        Promote the most recent backup of ``name`` back to live.

        Returns:
            True if the restored value was republished, False if the
            republish failed (the restored value stays live either way)

        Raises:
            SecretNotFoundError: If ``name`` is not a live secret
            NoBackupFoundError: If ``name`` has no backups left
        """
        if name not in self._secrets:
            raise SecretNotFoundError(f"secret not found: {name}")
        if not self._backups.get(name):
            raise NoBackupFoundError(f"no backup found for {name}")

        self._acquire()
        try:
            backup = self._backups[name].pop()
            live = self._secrets[name]
            self._secrets[name] = Secret(
                name=name,
                kind=live.kind,
                value=backup.value,
                last_updated=datetime.now(timezone.utc)
            )
            logger.info(f"Restored {name} from backup {backup.name}")

            published = True
            try:
                await self._publish({name: backup.value})
            except Exception as e:
                published = False
                logger.error(f"Failed to republish restored secret {name}: {e}")

            await self.save()
            return published
        finally:
            self._rotation_active = False

    def _acquire(self) -> None:
        if self._rotation_active:
            logger.warning("Token rotation already in progress, rejecting request")
            raise RotationInProgressError("token rotation already in progress")
        self._rotation_active = True

    async def _run_pass(self, names: List[str]) -> RotationRecord:
        rotated: List[Secret] = []

        try:
            groups = self._group_by_kind(names)
            await asyncio.gather(*(self._rotate_group(group, rotated) for group in groups))
        except Exception as e:
            logger.error(f"Token rotation aborted after {len(rotated)} secret(s): {e}")
            record = RotationRecord(
                tokens_rotated=len(rotated), success=False, error=f"rotation aborted: {e}",
                secrets=tuple(s.name for s in rotated)
            )
            return await self._finish_pass(record)

        error = None
        try:
            await self._publish({s.name: s.value for s in rotated})
        except Exception as e:
            error = f"configuration publish failed: {e}"
            logger.error(f"Rotated {len(rotated)} secret(s) but {error}")

        await self._reregister_bot_webhook(rotated)

        record = RotationRecord(
            tokens_rotated=len(rotated),
            success=error is None,
            error=error,
            secrets=tuple(s.name for s in rotated)
        )
        logger.info(f"Token rotation finished: {len(rotated)} secret(s) rotated")
        return await self._finish_pass(record)

    async def _finish_pass(self, record: RotationRecord) -> RotationRecord:
        self._history.append(record)
        if len(self._history) > self._max_history_items:
            self._history = self._history[-self._max_history_items:]

        await self.save()

        if self.event_bus:
            await self.event_bus.emit_async(ROTATION_COMPLETED, source='rotation_manager', record=record)
        return record

    def _group_by_kind(self, names: List[str]) -> List[List[str]]:
        groups = []
        for kind in KIND_ORDER:
            group = [name for name in names if self._secrets[name].kind == kind]
            if group:
                groups.append(group)
        return groups

    async def _rotate_group(self, names: List[str], rotated: List[Secret]) -> None:
        for name in names:
            rotated.append(self._rotate_secret(name))

    def _rotate_secret(self, name: str) -> Secret:
        """Demote the live value to a backup and install a fresh one"""
        live = self._secrets[name]
        now = datetime.now(timezone.utc)

        backup = Secret(
            name=self._backup_name(name, now),
            kind=live.kind,
            value=live.value,
            last_updated=live.last_updated,
            is_backup=True,
            parent=name
        )
        backups = self._backups.setdefault(name, [])
        backups.append(backup)
        while len(backups) > self.backup_retention:
            evicted = backups.pop(0)
            logger.debug(f"Evicted backup {evicted.name}")

        fresh = Secret(name=name, kind=live.kind, value=generate_secret_value(live.kind, self.lengths),
                       last_updated=now)
        self._secrets[name] = fresh
        logger.debug(f"Rotated {name}")
        return fresh

    def _backup_name(self, name: str, now: datetime) -> str:
        generation = int(now.timestamp() * 1000)
        last = self._last_generation.get(name, 0)
        if generation <= last:
            generation = last + 1
        self._last_generation[name] = generation
        return f"{name}_backup_{generation}"

    def _note_generation(self, name: str, backup_name: str) -> None:
        suffix = backup_name.rsplit('_', 1)[-1]
        if suffix.isdigit():
            self._last_generation[name] = max(self._last_generation.get(name, 0), int(suffix))

    async def _publish(self, values: Dict[str, str]) -> None:
        if self.publisher and values:
            await self.publisher.publish(values)

    async def _reregister_bot_webhook(self, rotated: List[Secret]) -> None:
        if not self.webhook_registrar or not self.bot_webhook_url:
            return

        for secret in rotated:
            if secret.name != self.bot_token_secret:
                continue
            try:
                await self.webhook_registrar.register(secret.value, self.bot_webhook_url)
            except Exception as e:
                logger.error(f"Failed to re-register bot webhook after rotation: {e}")

    # Scheduled loop

    async def start_rotation(self, interval: float) -> None:
        if self._rotation_task and self._rotation_task.is_running:
            logger.warning("Scheduled token rotation already active")
            return

        self._rotation_task = PeriodicTask('token-rotation', interval, self._scheduled_rotation,
                                           run_immediately=False)
        self._rotation_task.start()

    async def stop_rotation(self) -> None:
        if self._rotation_task:
            await self._rotation_task.stop()
            self._rotation_task = None

    async def _scheduled_rotation(self) -> None:
        try:
            await self.rotate_all()
        except RotationInProgressError:
            logger.info("Skipping scheduled rotation, one is already running")

    # Queries

    def get_secret_value(self, name: str) -> Optional[str]:
        secret = self._secrets.get(name)
        return secret.value if secret else None

    def get_secret(self, name: str) -> Optional[Secret]:
        secret = self._secrets.get(name)
        return secret.copy() if secret else None

    def get_secrets(self) -> List[Secret]:
        return [s.copy() for s in self._secrets.values()]

    def get_backups(self, name: str) -> List[Secret]:
        """Backups for ``name``, oldest first"""
        return [b.copy() for b in self._backups.get(name, [])]

    def get_history(self, limit: Optional[int] = None) -> List[RotationRecord]:
        if limit:
            return self._history[-limit:]
        return list(self._history)

    def get_rotation_status(self) -> Dict[str, Any]:
        last = self._history[-1] if self._history else None
        return {
            'rotation_active': self._rotation_active,
            'scheduled': bool(self._rotation_task and self._rotation_task.is_running),
            'total_secrets': len(self._secrets),
            'secrets': [
                {
                    **secret.to_dict(include_value=False),
                    'backups': len(self._backups.get(name, [])),
                }
                for name, secret in self._secrets.items()
            ],
            'last_rotation': last.to_dict() if last else None,
            'history': [r.to_dict() for r in self._history[-10:]],
        }
