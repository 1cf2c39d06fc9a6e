"""
Hosting Configuration Stores for Sentinel
"""

import re
import logging
import asyncio
from pathlib import Path
from typing import Any, List, Mapping, Optional, Sequence

import yaml

from .interfaces import IConfigStore, IProcessRunner, ConfigPublishError

logger = logging.getLogger('sentinel.integrations.config_store')


class EnvFileStore(IConfigStore):
    """Upserts ``KEY=value`` lines in a dotenv file"""

    def __init__(self, path: Path, create_missing: bool = True):
        self.path = Path(path)
        self.create_missing = create_missing

    async def upsert(self, values: Mapping[str, str]) -> None:
        try:
            await asyncio.to_thread(self._write, dict(values))
        except OSError as e:
            raise ConfigPublishError(f"{self.path}: {e}")

    def _write(self, values: Mapping[str, str]) -> None:
        if self.path.exists():
            content = self.path.read_text(encoding='utf-8')
        elif self.create_missing:
            content = ""
        else:
            logger.debug(f"Env file {self.path} missing, skipping")
            return

        for key, value in values.items():
            line = f"{key}={value}"
            pattern = re.compile(rf"^{re.escape(key)}=.*$", re.MULTILINE)
            if pattern.search(content):
                content = pattern.sub(lambda _: line, content)
            else:
                if content and not content.endswith('\n'):
                    content += '\n'
                content += line + '\n'

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(content, encoding='utf-8')
        logger.debug(f"Updated {len(values)} key(s) in {self.path}")


class ComposeFileStore(IConfigStore):
    """
    Updates keys already declared in a compose file's service
    ``environment`` sections; both the mapping and the ``KEY=value`` list
    forms are supported. Keys a service does not declare are left alone.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    async def upsert(self, values: Mapping[str, str]) -> None:
        try:
            await asyncio.to_thread(self._write, dict(values))
        except (OSError, yaml.YAMLError) as e:
            raise ConfigPublishError(f"{self.path}: {e}")

    def _write(self, values: Mapping[str, str]) -> None:
        if not self.path.exists():
            logger.debug(f"Compose file {self.path} missing, skipping")
            return

        with open(self.path, 'r', encoding='utf-8') as f:
            document = yaml.safe_load(f) or {}

        changed = 0
        for service in (document.get('services') or {}).values():
            if not isinstance(service, dict):
                continue
            changed += self._update_environment(service, values)

        if not changed:
            return

        with open(self.path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(document, f, sort_keys=False, default_flow_style=False)
        logger.debug(f"Updated {changed} environment entries in {self.path}")

    @staticmethod
    def _update_environment(service: dict, values: Mapping[str, str]) -> int:
        environment: Any = service.get('environment')
        changed = 0

        if isinstance(environment, dict):
            for key, value in values.items():
                if key in environment:
                    environment[key] = value
                    changed += 1
        elif isinstance(environment, list):
            for index, entry in enumerate(environment):
                key = str(entry).split('=', 1)[0]
                if key in values:
                    environment[index] = f"{key}={values[key]}"
                    changed += 1

        return changed


class CompositeConfigStore(IConfigStore):
    """Writes to every store, then reports all failures together"""

    def __init__(self, stores: Sequence[IConfigStore]):
        self.stores = list(stores)

    async def upsert(self, values: Mapping[str, str]) -> None:
        errors: List[str] = []
        for store in self.stores:
            try:
                await store.upsert(values)
            except ConfigPublishError as e:
                logger.error(f"Config store update failed: {e}")
                errors.append(str(e))

        if errors:
            raise ConfigPublishError("; ".join(errors))


class ConfigPublisher:
    """
    Republishes hosting configuration: upserts keys, then optionally runs
    a restart command so services pick the new values up.
    """

    def __init__(self, store: IConfigStore, process_runner: Optional[IProcessRunner] = None,
                 restart_command: Optional[Sequence[str]] = None, restart_timeout: float = 300.0):
        self.store = store
        self.process_runner = process_runner
        self.restart_command = list(restart_command) if restart_command else None
        self.restart_timeout = restart_timeout
        self.publish_count = 0

    async def publish(self, values: Mapping[str, str]) -> None:
        """
        Raises:
            ConfigPublishError: If any store could not be written or the
                restart command failed
        """
        if not values:
            return

        await self.store.upsert(values)
        self.publish_count += 1
        logger.info(f"Published {len(values)} configuration value(s)")

        if self.restart_command and self.process_runner:
            try:
                result = await self.process_runner.run(self.restart_command, timeout=self.restart_timeout)
            except OSError as e:
                raise ConfigPublishError(f"restart command could not be started: {e}") from e
            if not result.ok:
                raise ConfigPublishError(f"restart command failed ({result.returncode}): {result.stderr.strip()}")
            logger.info("Services restarted with new configuration")


def build_config_publisher(hosting, base_path: Path,
                           process_runner: Optional[IProcessRunner] = None) -> ConfigPublisher:
    """Create a publisher over the env file and compose files in ``hosting``"""
    stores: List[IConfigStore] = [EnvFileStore(base_path / hosting.env_file)]
    stores.extend(ComposeFileStore(base_path / path) for path in hosting.compose_files)
    return ConfigPublisher(CompositeConfigStore(stores), process_runner, hosting.restart_command)
