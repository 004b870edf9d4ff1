"""Shared fixtures: an instrumented sync contract and a fake SSH stack."""

import asyncio
import socket
from contextlib import asynccontextmanager
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import asyncssh
import pytest

from modrun.sync import ConnectionSync
from modrun.types import Target


class RecordingSync(ConnectionSync):
    """Sync contract that records every hook call."""

    def __init__(self, handshake_timeout: float | None = 5.0) -> None:
        self.timeout = handshake_timeout
        self.events: list[str] = []

    @property
    def handshake_timeout(self) -> float | None:
        return self.timeout

    async def acquire_connection_slot(self) -> None:
        self.events.append("slot+")

    async def release_connection_slot(self) -> None:
        self.events.append("slot-")

    async def acquire_agent(self) -> None:
        self.events.append("agent+")

    async def release_agent(self) -> None:
        self.events.append("agent-")

    def count(self, event: str) -> int:
        return self.events.count(event)


def make_key(comment: str | None) -> MagicMock:
    key = MagicMock(name=f"key<{comment}>")
    key.get_comment.return_value = comment
    return key


class FakeConnection:
    """Stand-in for asyncssh.SSHClientConnection."""

    def __init__(self) -> None:
        self.commands: list[str] = []
        self.responses: dict[str, str | Exception] = {}
        self.exit_codes: dict[str, int] = {}
        self.uploads: list[tuple[str, str]] = []
        self.closed = False

    async def run(self, command: str, check: bool = False, stderr=None):
        self.commands.append(command)
        response = self.responses.get(command, f"out:{command}\n")
        if isinstance(response, Exception):
            raise response
        return SimpleNamespace(stdout=response, exit_status=self.exit_codes.get(command, 0))

    @asynccontextmanager
    async def start_sftp_client(self):
        sftp = MagicMock()

        async def put(local: str, remote: str) -> None:
            self.uploads.append((local, remote))

        sftp.put = put
        yield sftp

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        pass


class FakeSSH:
    """Replaces asyncssh.connect and asyncssh.connect_agent.

    Attributes:
        conn: Connection returned on successful authentication
        keys: Identities the fake agent holds
        reject: Remote host rejects every identity
        handshake_error: Raised before authentication starts
        stall_handshake: Never finish the handshake
    """

    def __init__(self) -> None:
        self.conn = FakeConnection()
        self.keys = [make_key("/home/deploy/.ssh/id_ed25519")]
        self.reject = False
        self.handshake_error: Exception | None = None
        self.stall_handshake = False
        self.offered: list = []
        self.agent = MagicMock()
        self.agent.close = MagicMock()
        self.agent.wait_closed = AsyncMock()
        self.agent.get_keys = AsyncMock(side_effect=lambda *a: list(self.keys))
        self.connect_kwargs: dict = {}

    async def connect(self, *args, client_factory, username, **kwargs):
        self.connect_kwargs = {"username": username, **kwargs}
        client = client_factory()
        if self.stall_handshake:
            await asyncio.sleep(3600)
        if self.handshake_error is not None:
            raise self.handshake_error
        client.begin_auth(username)
        while True:
            key = await client.public_key_auth_requested()
            if key is None:
                raise asyncssh.PermissionDenied("Permission denied")
            self.offered.append(key)
            if not self.reject:
                return self.conn


@pytest.fixture
def sync() -> RecordingSync:
    return RecordingSync()


@pytest.fixture
def fake_ssh():
    fake = FakeSSH()
    with patch("asyncssh.connect", new=fake.connect), \
            patch("asyncssh.connect_agent", new=AsyncMock(return_value=fake.agent)):
        yield fake


@pytest.fixture
def listening_target():
    """A local TCP port that accepts connections (the kernel backlog does)."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(16)
    yield Target("127.0.0.1", server.getsockname()[1])
    server.close()


@pytest.fixture
def closed_target() -> Target:
    """A local TCP port nothing listens on."""
    probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    probe.bind(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()
    return Target("127.0.0.1", port)


@pytest.fixture
def module_dir(tmp_path: Path) -> Path:
    """A module directory with one module of each kind."""
    (tmp_path / "cmds.toml").write_text('hostname = "hostname"\ndate = "date"\n')
    (tmp_path / "facts.mod").write_text('module_type = "bash"\nexec_path = "cmds.toml"\n')

    (tmp_path / "probe.py").write_text("import platform\nprint(platform.node())\n")
    (tmp_path / "probe.mod").write_text('module_type = "py"\nexec_path = "probe.py"\n')

    (tmp_path / "agent.bin").write_bytes(b"\x7fELF fake binary")
    (tmp_path / "agent.mod").write_text('module_type = "BIN"\nexec_path = "agent.bin"\n')
    return tmp_path
