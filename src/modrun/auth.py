"""Authentication strategies.

modrun only authenticates through a running SSH agent. A strategy decides
which of the agent's identities are offered to the remote host; the remote
session drives the agent and the synchronization contract around it.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any

import asyncssh

from .exceptions import AuthenticationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthStrategy(ABC):
    """How to prove identity to the remote host.

    Attributes:
        username: Remote login name
        agent_path: Agent socket path (None uses ``SSH_AUTH_SOCK``)
    """

    username: str
    agent_path: str | None = field(default=None, kw_only=True)

    async def connect_agent(self) -> asyncssh.SSHAgentClient:
        """Open a client connection to the identity agent.

        Raises:
            AuthenticationError: If no agent is reachable
        """
        try:
            agent = await asyncssh.connect_agent(self.agent_path or ())
        except (OSError, asyncssh.Error) as e:
            raise AuthenticationError(f"Cannot reach identity agent: {e}", phase="authenticating") from e
        if agent is None:
            raise AuthenticationError("No identity agent available", phase="authenticating")
        return agent

    @abstractmethod
    async def identities(self, agent: asyncssh.SSHAgentClient) -> list[Any]:
        """Return the agent key pairs to offer, in order.

        Raises:
            AuthenticationError: If no usable identity is available
        """

    async def _agent_keys(self, agent: asyncssh.SSHAgentClient) -> list[Any]:
        try:
            keys = list(await agent.get_keys())
        except (OSError, ValueError, asyncssh.Error) as e:
            raise AuthenticationError(f"Identity agent request failed: {e}", phase="authenticating") from e
        logger.debug(f"Agent offers {len(keys)} identit{'y' if len(keys) == 1 else 'ies'}")
        return keys


@dataclass(frozen=True)
class AgentFirst(AuthStrategy):
    """Offer every identity the agent holds, in the agent's order."""

    async def identities(self, agent: asyncssh.SSHAgentClient) -> list[Any]:
        keys = await self._agent_keys(agent)
        if not keys:
            raise AuthenticationError(
                f"Identity agent holds no keys for {self.username}", phase="authenticating"
            )
        return keys


@dataclass(frozen=True)
class AgentWithKeyName(AuthStrategy):
    """Offer only the agent identity whose comment matches ``key_name``.

    The comment an agent stores is usually the path the key was loaded from
    (``ssh-add ~/.ssh/deploy``) or the comment embedded in the key, so both
    the full comment and its final path component are matched.

    Example:
        >>> auth = AgentWithKeyName("deploy", "deploy_ed25519")
    """

    key_name: str

    async def identities(self, agent: asyncssh.SSHAgentClient) -> list[Any]:
        keys = await self._agent_keys(agent)
        selected = [key for key in keys if self._matches(key)]
        if not selected:
            raise AuthenticationError(
                f"Identity agent holds no key named '{self.key_name}'", phase="authenticating"
            )
        return selected

    def _matches(self, key: Any) -> bool:
        comment = key.get_comment()
        if not comment:
            return False
        return comment == self.key_name or PurePath(comment).name == self.key_name
