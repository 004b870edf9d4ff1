"""Remote SSH sessions.

A RemoteSession is the live connection one module execution runs over. It
moves through a fixed sequence of states:

    IDLE -> TCP_CONNECTING -> HANDSHAKE -> AUTHENTICATING -> READY -> CLOSED

and ends in FAILED if any step before READY goes wrong. Each failing step
raises its own error type (ConnectionError, HandshakeError,
AuthenticationError) and nothing is retried.

The TCP stream is opened by the session itself and handed to asyncssh, so a
dial failure is distinguishable from a protocol failure. Only the handshake
is bounded by the synchronization contract's timeout; authentication may
wait on the shared agent and is not. The agent is acquired when the server
first asks for a public key and released as soon as authentication ends.
"""

import asyncio
import logging
import socket
from enum import Enum
from pathlib import Path
from typing import Any, Iterator

import asyncssh

from .auth import AuthStrategy
from .exceptions import (
    AuthenticationError,
    CommandExecutionError,
    ConnectionError,
    HandshakeError,
    ModrunError,
)
from .logging import trace
from .sync import ConnectionSync
from .types import Target

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Lifecycle state of a RemoteSession."""

    IDLE = "idle"
    TCP_CONNECTING = "tcp_connecting"
    HANDSHAKE = "handshake"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    CLOSED = "closed"
    FAILED = "failed"


class _SessionClient(asyncssh.SSHClient):
    """asyncssh client callbacks that report progress back to the session."""

    def __init__(self, session: "RemoteSession") -> None:
        self._session = session

    def begin_auth(self, username: str) -> bool:
        # Key exchange is finished once the server starts user auth
        self._session._handshake_complete()
        return True

    async def public_key_auth_requested(self) -> Any:
        return await self._session._next_identity()


class RemoteSession:
    """One authenticated SSH connection, owned by a single execution.

    Attributes:
        target: Endpoint the session connects to
        auth: Strategy choosing the agent identities to offer
        sync: Synchronization contract (agent gate and handshake timeout)
        known_hosts: known_hosts file for host key checks (None disables)
        state: Current SessionState
        failure: Reason the session failed, when state is FAILED
        channels: Commands run on this session, in order

    Example:
        >>> async with RemoteSession(Target("web01"), AgentFirst("deploy"), NoopSync()) as s:
        ...     print(await s.run("uptime"))
    """

    def __init__(
        self,
        target: Target,
        auth: AuthStrategy,
        sync: ConnectionSync,
        known_hosts: str | None = None,
    ) -> None:
        self.target = target
        self.auth = auth
        self.sync = sync
        self.known_hosts = known_hosts
        self.state = SessionState.IDLE
        self.failure: str | None = None
        self.channels: list[str] = []
        self._sock: socket.socket | None = None
        self._conn: asyncssh.SSHClientConnection | None = None
        self._handshake_done: asyncio.Event | None = None
        self._agent: asyncssh.SSHAgentClient | None = None
        self._agent_held = False
        self._identities: Iterator[Any] | None = None
        self._auth_error: AuthenticationError | None = None

    async def __aenter__(self) -> "RemoteSession":
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _set_state(self, state: SessionState) -> None:
        trace(logger, f"{self.target}: {self.state.value} -> {state.value}")
        self.state = state

    def _error(self, cls: type[ModrunError], message: str, phase: str | None = None) -> ModrunError:
        return cls(message, target=str(self.target), phase=phase or self.state.value)

    async def open(self) -> None:
        """Connect, handshake and authenticate.

        Raises:
            ConnectionError: TCP connection failed
            HandshakeError: SSH negotiation failed or timed out
            AuthenticationError: No identity was accepted
        """
        if self.state is not SessionState.IDLE:
            raise RuntimeError(f"Session to {self.target} already {self.state.value}")

        try:
            self._sock = await self._dial()
            self._conn = await self._establish(self._sock)
        except ModrunError as e:
            self.failure = e.message
            self._set_state(SessionState.FAILED)
            self._drop_socket()
            raise

        self._set_state(SessionState.READY)
        logger.info(f"Connected to {self.target} as {self.auth.username}")

    async def _dial(self) -> socket.socket:
        """Open a TCP stream to the target."""
        self._set_state(SessionState.TCP_CONNECTING)
        loop = asyncio.get_running_loop()

        try:
            addresses = await loop.getaddrinfo(
                self.target.host, self.target.port, type=socket.SOCK_STREAM
            )
        except socket.gaierror as e:
            raise self._error(ConnectionError, f"Cannot resolve {self.target.host}: {e}") from e

        last_error: OSError | None = None
        for family, sock_type, proto, _, address in addresses:
            sock = socket.socket(family, sock_type, proto)
            sock.setblocking(False)
            try:
                await loop.sock_connect(sock, address)
            except OSError as e:
                sock.close()
                last_error = e
                logger.debug(f"Connect to {address} failed: {e}")
                continue
            except BaseException:
                sock.close()
                raise
            logger.debug(f"TCP connection to {self.target} established")
            return sock

        reason = last_error.strerror if last_error and last_error.strerror else last_error
        raise self._error(ConnectionError, f"Cannot connect to {self.target}: {reason}") from last_error

    async def _establish(self, sock: socket.socket) -> asyncssh.SSHClientConnection:
        """Run the SSH handshake and user authentication over an open socket."""
        self._set_state(SessionState.HANDSHAKE)
        self._handshake_done = asyncio.Event()

        connecting = asyncio.ensure_future(
            asyncssh.connect(
                sock=sock,
                username=self.auth.username,
                known_hosts=self.known_hosts,
                client_factory=lambda: _SessionClient(self),
                agent_path=None,
                client_keys=None,
                public_key_auth=True,
                password_auth=False,
                kbdint_auth=False,
            )
        )
        handshake = asyncio.ensure_future(self._handshake_done.wait())

        try:
            done, _ = await asyncio.wait(
                {connecting, handshake},
                timeout=self.sync.handshake_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if not done:
                connecting.cancel()
                await asyncio.gather(connecting, return_exceptions=True)
                raise self._error(
                    HandshakeError,
                    f"Handshake with {self.target} timed out after {self.sync.handshake_timeout}s",
                )

            try:
                return await connecting
            except asyncssh.PermissionDenied as e:
                raise self._auth_failure(f"Authentication rejected: {e.reason}") from e
            except (asyncssh.Error, OSError, asyncio.TimeoutError, ValueError) as e:
                if self.state is SessionState.AUTHENTICATING:
                    raise self._auth_failure(f"Authentication failed: {e}") from e
                raise self._error(HandshakeError, f"Handshake with {self.target} failed: {e}") from e
        finally:
            handshake.cancel()
            await self._release_agent()

    def _auth_failure(self, message: str) -> ModrunError:
        # An agent-side problem explains a remote rejection better than the rejection does
        if self._auth_error is not None:
            return self._auth_error.with_context(target=str(self.target))
        return self._error(AuthenticationError, message)

    def _handshake_complete(self) -> None:
        if self.state is SessionState.HANDSHAKE:
            self._set_state(SessionState.AUTHENTICATING)
        if self._handshake_done is not None:
            self._handshake_done.set()

    async def _next_identity(self) -> Any:
        """Return the next agent key to offer, or None when exhausted."""
        if self._identities is None:
            self._identities = iter(await self._load_identities())
        return next(self._identities, None)

    async def _load_identities(self) -> list[Any]:
        await self.sync.acquire_agent()
        self._agent_held = True
        try:
            self._agent = await self.auth.connect_agent()
            return await self.auth.identities(self._agent)
        except AuthenticationError as e:
            # Raising inside an asyncssh callback would lose the reason
            self._auth_error = e
            logger.debug(f"{self.target}: {e}")
            return []

    async def _release_agent(self) -> None:
        if self._agent is not None:
            self._agent.close()
            await self._agent.wait_closed()
            self._agent = None
        if self._agent_held:
            self._agent_held = False
            await self.sync.release_agent()

    def _drop_socket(self) -> None:
        if self._conn is None and self._sock is not None:
            self._sock.close()
        self._sock = None

    async def run(self, command: str, check: bool = False) -> str:
        """Run one command on a fresh exec channel and return its output.

        Standard error is merged into the returned text. A non-zero exit
        status is only an error when ``check`` is set; failing to run the
        command at all always is.

        Raises:
            CommandExecutionError: If the channel cannot be opened or read,
                or ``check`` is set and the command exits non-zero
        """
        conn = self._require_ready()
        self.channels.append(command)
        trace(logger, f"{self.target}: exec {command}")

        try:
            result = await conn.run(command, check=False, stderr=asyncssh.STDOUT)
        except (asyncssh.Error, OSError) as e:
            raise self._error(CommandExecutionError, f"Command failed to run: {e}", phase="execute") from e

        output = result.stdout or ""
        if isinstance(output, bytes):
            output = output.decode("utf-8", errors="replace")
        logger.debug(f"{self.target}: exit={result.exit_status}, {len(output)} chars of output")
        if check and result.exit_status != 0:
            raise self._error(
                CommandExecutionError,
                f"Command exited with status {result.exit_status}: {output.strip()}",
                phase="execute",
            )
        return output

    async def upload(self, local_path: Path, remote_path: str) -> None:
        """Copy a local file to the remote host over SFTP.

        Raises:
            CommandExecutionError: If the transfer fails
        """
        conn = self._require_ready()
        logger.debug(f"Uploading {local_path} to {self.target}:{remote_path}")
        try:
            async with conn.start_sftp_client() as sftp:
                await sftp.put(str(local_path), remote_path)
        except (asyncssh.Error, OSError) as e:
            raise self._error(CommandExecutionError, f"Upload of {local_path.name} failed: {e}", phase="execute") from e

    def _require_ready(self) -> asyncssh.SSHClientConnection:
        if self.state is not SessionState.READY or self._conn is None:
            raise self._error(CommandExecutionError, f"Session to {self.target} is not ready")
        return self._conn

    async def close(self) -> None:
        """Close the connection. Safe to call in any state."""
        if self._conn is not None:
            self._conn.close()
            await self._conn.wait_closed()
            self._conn = None
            logger.debug(f"Disconnected from {self.target}")
        self._drop_socket()
        if self.state is not SessionState.FAILED:
            self._set_state(SessionState.CLOSED)
