"""Connection synchronization contract.

Many module executions can run against many hosts at once, but a few local
resources are shared between them: outbound connection attempts and the
identity agent (most agents handle one request at a time). The caller
injects a ConnectionSync implementation to gate both; the engine never keeps
global coordination state of its own.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator

logger = logging.getLogger(__name__)

DEFAULT_HANDSHAKE_TIMEOUT = 30.0
DEFAULT_MAX_CONNECTIONS = 10


class ConnectionSync(ABC):
    """Interface gating shared local resources during execution.

    Every acquire is paired with exactly one release by the engine, on
    success and failure paths alike.
    """

    @property
    @abstractmethod
    def handshake_timeout(self) -> float | None:
        """Seconds allowed for the SSH handshake (None for no limit)."""

    @abstractmethod
    async def acquire_connection_slot(self) -> None:
        """Wait until an outbound connection may be started."""

    @abstractmethod
    async def release_connection_slot(self) -> None:
        """Return a slot taken by acquire_connection_slot."""

    @abstractmethod
    async def acquire_agent(self) -> None:
        """Wait for exclusive use of the identity agent."""

    @abstractmethod
    async def release_agent(self) -> None:
        """Give up the identity agent."""

    @asynccontextmanager
    async def connection_slot(self) -> AsyncIterator[None]:
        """Hold a connection slot for the duration of the block."""
        await self.acquire_connection_slot()
        try:
            yield
        finally:
            await self.release_connection_slot()


class NoopSync(ConnectionSync):
    """No coordination at all; suitable for a single execution or tests."""

    def __init__(self, handshake_timeout: float | None = DEFAULT_HANDSHAKE_TIMEOUT) -> None:
        self._handshake_timeout = handshake_timeout

    @property
    def handshake_timeout(self) -> float | None:
        return self._handshake_timeout

    async def acquire_connection_slot(self) -> None:
        pass

    async def release_connection_slot(self) -> None:
        pass

    async def acquire_agent(self) -> None:
        pass

    async def release_agent(self) -> None:
        pass


class SemaphoreSync(ConnectionSync):
    """Bounded connection slots and a serialized agent, for one event loop.

    Attributes:
        max_connections: Maximum number of sessions open at once

    Example:
        >>> sync = SemaphoreSync(max_connections=20, handshake_timeout=10)
        >>> await asyncio.gather(*(
        ...     registry.run("uptime", target, auth, sync) for target in targets
        ... ))
    """

    def __init__(
        self,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
        handshake_timeout: float | None = DEFAULT_HANDSHAKE_TIMEOUT,
    ) -> None:
        if max_connections < 1:
            raise ValueError(f"max_connections must be at least 1, got {max_connections}")
        self.max_connections = max_connections
        self._handshake_timeout = handshake_timeout
        self._slots = asyncio.Semaphore(max_connections)
        self._agent = asyncio.Lock()

    @property
    def handshake_timeout(self) -> float | None:
        return self._handshake_timeout

    async def acquire_connection_slot(self) -> None:
        await self._slots.acquire()

    async def release_connection_slot(self) -> None:
        self._slots.release()

    async def acquire_agent(self) -> None:
        await self._agent.acquire()

    async def release_agent(self) -> None:
        self._agent.release()
