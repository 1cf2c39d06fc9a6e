"""
Hosting Configuration Store Tests
"""

import pytest
import yaml

from core.config_manager import HostingConfig
from integrations.config_store import (
    EnvFileStore, ComposeFileStore, CompositeConfigStore, ConfigPublisher, build_config_publisher
)
from integrations.interfaces import ConfigPublishError, IProcessRunner
from conftest import FakeProcessRunner, InMemoryConfigStore


class UnstartableRunner(IProcessRunner):
    async def run(self, args, cwd=None, timeout=None):
        raise PermissionError(13, "Permission denied", args[0])


class TestEnvFileStore:

    @pytest.mark.asyncio
    async def test_updates_existing_and_appends_new(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("# hosting\nAPI_KEY=old\nOTHER=keep", encoding="utf-8")

        await EnvFileStore(env_file).upsert({'API_KEY': "new", 'BOT_DOMAIN': "bot.example.com"})

        lines = env_file.read_text(encoding="utf-8").splitlines()
        assert lines == ["# hosting", "API_KEY=new", "OTHER=keep", "BOT_DOMAIN=bot.example.com"]

    @pytest.mark.asyncio
    async def test_creates_missing_file(self, tmp_path):
        env_file = tmp_path / "nested" / ".env"
        await EnvFileStore(env_file).upsert({'KEY': "value"})
        assert env_file.read_text(encoding="utf-8") == "KEY=value\n"

    @pytest.mark.asyncio
    async def test_values_with_backslashes_written_verbatim(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("SECRET=x\n", encoding="utf-8")
        await EnvFileStore(env_file).upsert({'SECRET': r"a\1b"})
        assert env_file.read_text(encoding="utf-8") == "SECRET=a\\1b\n"


class TestComposeFileStore:

    @pytest.mark.asyncio
    async def test_updates_declared_keys_only(self, tmp_path):
        compose = tmp_path / "docker-compose.bot.yml"
        compose.write_text(yaml.safe_dump({
            'services': {
                'bot': {'image': "bot", 'environment': {'API_KEY': "old", 'PORT': "8080"}},
                'web': {'image': "web", 'environment': ["API_KEY=old", "DEBUG=0"]},
            }
        }), encoding="utf-8")

        await ComposeFileStore(compose).upsert({'API_KEY': "new", 'UNDECLARED': "x"})

        document = yaml.safe_load(compose.read_text(encoding="utf-8"))
        assert document['services']['bot']['environment'] == {'API_KEY': "new", 'PORT': "8080"}
        assert document['services']['web']['environment'] == ["API_KEY=new", "DEBUG=0"]

    @pytest.mark.asyncio
    async def test_missing_file_is_skipped(self, tmp_path):
        await ComposeFileStore(tmp_path / "absent.yml").upsert({'API_KEY': "new"})
        assert not (tmp_path / "absent.yml").exists()

    @pytest.mark.asyncio
    async def test_malformed_yaml_raises(self, tmp_path):
        compose = tmp_path / "broken.yml"
        compose.write_text("services: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigPublishError):
            await ComposeFileStore(compose).upsert({'API_KEY': "new"})


class TestConfigPublisher:

    @pytest.mark.asyncio
    async def test_composite_writes_every_store_then_raises(self):
        good = InMemoryConfigStore()
        bad = InMemoryConfigStore(fail=True)
        later = InMemoryConfigStore()

        with pytest.raises(ConfigPublishError):
            await CompositeConfigStore([good, bad, later]).upsert({'K': "v"})

        assert good.values == {'K': "v"}
        assert later.values == {'K': "v"}

    @pytest.mark.asyncio
    async def test_restart_command_runs_after_publish(self):
        runner = FakeProcessRunner()
        store = InMemoryConfigStore()
        publisher = ConfigPublisher(store, runner, ["docker", "compose", "up", "-d"])

        await publisher.publish({'K': "v"})

        assert runner.calls == [["docker", "compose", "up", "-d"]]
        assert publisher.publish_count == 1

    @pytest.mark.asyncio
    async def test_failed_restart_raises(self):
        publisher = ConfigPublisher(InMemoryConfigStore(), FakeProcessRunner(returncode=1), ["restart"])
        with pytest.raises(ConfigPublishError):
            await publisher.publish({'K': "v"})

    @pytest.mark.asyncio
    async def test_unstartable_restart_raises_publish_error(self):
        store = InMemoryConfigStore()
        publisher = ConfigPublisher(store, UnstartableRunner(), ["/opt/restart.sh"])

        with pytest.raises(ConfigPublishError, match="could not be started"):
            await publisher.publish({'K': "v"})
        assert store.values == {'K': "v"}

    @pytest.mark.asyncio
    async def test_empty_publish_is_noop(self):
        store = InMemoryConfigStore()
        publisher = ConfigPublisher(store)
        await publisher.publish({})
        assert store.upserts == []
        assert publisher.publish_count == 0

    @pytest.mark.asyncio
    async def test_built_publisher_covers_env_and_compose(self, tmp_path):
        (tmp_path / "docker-compose.bot.yml").write_text(
            yaml.safe_dump({'services': {'bot': {'environment': {'BOT_DOMAIN': "old"}}}}), encoding="utf-8"
        )
        publisher = build_config_publisher(HostingConfig(), tmp_path)

        await publisher.publish({'BOT_DOMAIN': "bot-1.example.com"})

        assert "BOT_DOMAIN=bot-1.example.com" in (tmp_path / ".env").read_text(encoding="utf-8")
        document = yaml.safe_load((tmp_path / "docker-compose.bot.yml").read_text(encoding="utf-8"))
        assert document['services']['bot']['environment']['BOT_DOMAIN'] == "bot-1.example.com"
