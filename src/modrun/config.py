"""Runner configuration for modrun.

Settings come from an optional YAML file and are overridden by CLI flags:

    module_dir: ./modules
    username: deploy
    key_name: deploy_ed25519
    max_connections: 20
    handshake_timeout: 10
    known_hosts: ~/.ssh/known_hosts
    targets:
      - web01
      - web02:2222
"""

import logging
from dataclasses import dataclass, field, fields, replace
from getpass import getuser
from pathlib import Path
from typing import Any

import yaml

from .auth import AgentFirst, AgentWithKeyName, AuthStrategy
from .exceptions import ConfigParseError
from .sync import DEFAULT_HANDSHAKE_TIMEOUT, DEFAULT_MAX_CONNECTIONS, SemaphoreSync
from .types import RemoteOptions, Target

logger = logging.getLogger(__name__)


@dataclass
class RunnerConfig:
    """Settings for a modrun invocation.

    Attributes:
        module_dir: Directory scanned for module descriptors
        username: Remote login name
        key_name: Agent identity to use (None offers every identity)
        agent_path: Agent socket (None uses SSH_AUTH_SOCK)
        max_connections: Concurrent sessions allowed
        handshake_timeout: Seconds allowed for the SSH handshake
        known_hosts: known_hosts file (None disables host key checking)
        python_interpreter: Remote interpreter for python modules
        remote_dir: Remote staging directory for binary modules
        targets: Default targets ("host" or "host:port")
    """

    module_dir: Path = field(default_factory=lambda: Path("modules"))
    username: str = field(default_factory=getuser)
    key_name: str | None = None
    agent_path: str | None = None
    max_connections: int = DEFAULT_MAX_CONNECTIONS
    handshake_timeout: float | None = DEFAULT_HANDSHAKE_TIMEOUT
    known_hosts: str | None = None
    python_interpreter: str = "python3"
    remote_dir: str = "~/.modrun"
    targets: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if isinstance(self.module_dir, str):
            self.module_dir = Path(self.module_dir)
        self.module_dir = self.module_dir.expanduser()
        if self.max_connections < 1:
            raise ConfigParseError(f"max_connections must be at least 1, got {self.max_connections}")
        if self.handshake_timeout is not None and self.handshake_timeout <= 0:
            raise ConfigParseError(f"handshake_timeout must be positive, got {self.handshake_timeout}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunnerConfig":
        """Create from parsed YAML data.

        Raises:
            ConfigParseError: On unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigParseError(f"Unknown configuration key(s): {', '.join(unknown)}")

        targets = data.get("targets", [])
        if isinstance(targets, str):
            targets = [targets]
        if not isinstance(targets, list):
            raise ConfigParseError("targets must be a list of host[:port] strings")

        values = {**data, "targets": [str(t) for t in targets]}
        try:
            return cls(**values)
        except TypeError as e:
            raise ConfigParseError(f"Invalid configuration: {e}") from e

    def merge(self, **overrides: Any) -> "RunnerConfig":
        """Return a copy with every non-None override applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        if "module_dir" in changes:
            changes["module_dir"] = Path(changes["module_dir"])
        return replace(self, **changes)

    def auth_strategy(self) -> AuthStrategy:
        """Build the authentication strategy these settings describe."""
        if self.key_name:
            return AgentWithKeyName(self.username, self.key_name, agent_path=self.agent_path)
        return AgentFirst(self.username, agent_path=self.agent_path)

    def sync(self) -> SemaphoreSync:
        """Build a fresh synchronization contract for one event loop."""
        return SemaphoreSync(
            max_connections=self.max_connections,
            handshake_timeout=self.handshake_timeout,
        )

    def remote_options(self) -> RemoteOptions:
        known_hosts = str(Path(self.known_hosts).expanduser()) if self.known_hosts else None
        return RemoteOptions(
            known_hosts=known_hosts,
            python_interpreter=self.python_interpreter,
            remote_dir=self.remote_dir,
        )

    def parsed_targets(self) -> list[Target]:
        """Parse ``targets`` into Target values.

        Raises:
            ConfigParseError: If any target is malformed
        """
        try:
            return [Target.parse(value) for value in self.targets]
        except ValueError as e:
            raise ConfigParseError(str(e)) from e


def load_config(config_path: str | Path) -> RunnerConfig:
    """Load runner settings from a YAML file.

    Raises:
        ConfigParseError: If the file is missing, not YAML, or invalid
    """
    path = Path(config_path).expanduser()
    if not path.exists():
        raise ConfigParseError("Config file not found", path=path)

    try:
        with path.open() as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigParseError(f"Invalid YAML: {e}", path=path) from e
    except OSError as e:
        raise ConfigParseError(f"Cannot read config: {e}", path=path) from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigParseError("Config must be a mapping", path=path)

    try:
        config = RunnerConfig.from_dict(raw)
    except ConfigParseError as e:
        e.path = path
        raise

    logger.debug(f"Loaded config from {path}")
    return config
