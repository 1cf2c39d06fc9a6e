"""
Shared fakes for the Sentinel test suite

In-memory implementations of the collaborator interfaces so components
can be exercised without network, subprocesses or hosting files.
"""

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import pytest

from core import EventBus, StateStore
from integrations.interfaces import (
    ConfigPublishError, HttpResponse, ProcessResult,
    IHttpClient, IProcessRunner, IDeploymentProvider, IDnsProvider, IConfigStore, INotifier
)
from integrations.config_store import ConfigPublisher
from recovery.interfaces import Deployment, DeploymentStatus


class FakeHttpClient(IHttpClient):
    """Maps URL -> status code (or exception); unknown URLs answer 200"""

    def __init__(self, responses: Optional[Dict[str, Union[int, Exception]]] = None):
        self.responses = dict(responses or {})
        self.requests: List[Dict[str, Any]] = []
        self.closed = False

    async def request(self, url, method="GET", timeout=10.0, json=None, data=None, headers=None):
        self.requests.append({'url': url, 'method': method, 'json': json, 'data': data, 'headers': headers})
        response = self.responses.get(url, 200)
        if isinstance(response, Exception):
            raise response
        return HttpResponse(status=response, body="{}")

    async def close(self):
        self.closed = True


class FakeProcessRunner(IProcessRunner):
    """Records commands; ``tar -czf`` writes a small placeholder archive"""

    def __init__(self, returncode: int = 0):
        self.returncode = returncode
        self.calls: List[List[str]] = []

    async def run(self, args: Sequence[str], cwd: Optional[Path] = None,
                  timeout: Optional[float] = None) -> ProcessResult:
        args = list(args)
        self.calls.append(args)
        if self.returncode == 0 and args[:2] == ['tar', '-czf']:
            Path(args[2]).write_bytes(b"fake-archive")
        stderr = "" if self.returncode == 0 else "tar: boom"
        return ProcessResult(returncode=self.returncode, stderr=stderr)


class StubProvider(IDeploymentProvider):
    """Deployment provider that always succeeds (or always fails)"""

    def __init__(self, name: str = "stub", succeed: bool = True, endpoint: Optional[str] = "edge.stub.net",
                 upload_fails: bool = False):
        self.name = name
        self.succeed = succeed
        self.endpoint = endpoint
        self.upload_fails = upload_fails
        self.deployed: List[Dict[str, str]] = []
        self.uploads: List[Any] = []

    async def create_deployment(self, domains: Dict[str, str]) -> Deployment:
        if not self.succeed:
            raise RuntimeError(f"{self.name} is unavailable")
        self.deployed.append(dict(domains))
        return Deployment(
            provider=self.name,
            domains=dict(domains),
            status=DeploymentStatus.DEPLOYED,
            endpoint=self.endpoint,
            deployment_id=f"{self.name}-1"
        )

    async def upload_backup(self, deployment, backup) -> None:
        if self.upload_fails:
            raise RuntimeError("upload rejected")
        self.uploads.append((deployment.provider, backup.name))


class FakeDnsProvider(IDnsProvider):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.records: Dict[str, str] = {}

    async def upsert_record(self, domain: str, target: str) -> None:
        if self.fail:
            raise RuntimeError("dns api down")
        self.records[domain] = target


class InMemoryConfigStore(IConfigStore):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.values: Dict[str, str] = {}
        self.upserts: List[Dict[str, str]] = []

    async def upsert(self, values: Mapping[str, str]) -> None:
        if self.fail:
            raise ConfigPublishError("hosting descriptor is read-only")
        self.upserts.append(dict(values))
        self.values.update(values)


class RecordingNotifier(INotifier):
    def __init__(self, channel_type: str = "telegram", fail: bool = False):
        self.channel_type = channel_type
        self.fail = fail
        self.sent: List[Dict[str, Any]] = []

    async def send(self, channel, message, payload=None) -> None:
        if self.fail:
            raise RuntimeError("channel unreachable")
        self.sent.append({'channel': channel.name, 'message': message, 'payload': payload})


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def state_store(tmp_path):
    return StateStore(tmp_path / "state")


@pytest.fixture
def config_store():
    return InMemoryConfigStore()


@pytest.fixture
def publisher(config_store):
    return ConfigPublisher(config_store)


@pytest.fixture
def http_client():
    return FakeHttpClient()


@pytest.fixture
def process_runner():
    return FakeProcessRunner()
