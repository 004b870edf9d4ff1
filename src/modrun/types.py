"""Type definitions for modrun.

Defines the module kinds, the closed set of module content variants, the
command output shapes returned to callers, and the small value types
(targets, remote execution options) passed through the engine.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, ClassVar, Mapping, Union

from .exceptions import ConfigParseError


class ModuleKind(Enum):
    """Kind of payload a module carries."""

    BINARY = "bin"
    PYTHON = "python"
    BASH = "bash"

    @classmethod
    def parse(cls, value: str) -> "ModuleKind":
        """Parse a descriptor ``module_type`` value.

        Accepts ``bin``, ``bash``, ``sh``, ``py`` and ``python`` in any case.

        Raises:
            ConfigParseError: If the value names no known kind

        Example:
            >>> ModuleKind.parse("SH")
            <ModuleKind.BASH: 'bash'>
        """
        if not isinstance(value, str):
            raise ConfigParseError(f"module_type must be a string, got {type(value).__name__}")
        kind = _KIND_ALIASES.get(value.strip().lower())
        if kind is None:
            valid = ", ".join(sorted(_KIND_ALIASES))
            raise ConfigParseError(f"Bad module type '{value}'. Valid types: {valid}")
        return kind


_KIND_ALIASES: dict[str, ModuleKind] = {
    "bin": ModuleKind.BINARY,
    "bash": ModuleKind.BASH,
    "sh": ModuleKind.BASH,
    "py": ModuleKind.PYTHON,
    "python": ModuleKind.PYTHON,
}


@dataclass(frozen=True)
class ShellContent:
    """Named shell commands, run in declaration order.

    Attributes:
        commands: Read-only mapping of command name to command text
    """

    kind: ClassVar[ModuleKind] = ModuleKind.BASH

    commands: Mapping[str, str]

    def __post_init__(self) -> None:
        object.__setattr__(self, "commands", MappingProxyType(dict(self.commands)))

    def __len__(self) -> int:
        return len(self.commands)


@dataclass(frozen=True)
class PythonContent:
    """A Python script body, sent inline to the remote interpreter."""

    kind: ClassVar[ModuleKind] = ModuleKind.PYTHON

    script: str


@dataclass(frozen=True)
class BinaryContent:
    """Local path of an executable to stage on the remote host and run."""

    kind: ClassVar[ModuleKind] = ModuleKind.BINARY

    path: Path


ModuleContent = Union[ShellContent, PythonContent, BinaryContent]


@dataclass(frozen=True)
class MultiOutput:
    """Per-command output of a shell module.

    Attributes:
        outputs: Mapping of command name to captured text
    """

    outputs: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {"type": "multi", "outputs": dict(self.outputs)}


@dataclass(frozen=True)
class SingleOutput:
    """Monolithic output of a python or binary module."""

    output: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {"type": "single", "output": self.output}


CommandOutput = Union[MultiOutput, SingleOutput]


@dataclass(frozen=True)
class Target:
    """Network endpoint a module is executed against.

    Attributes:
        host: Hostname or IP address
        port: SSH port (default: 22)

    Example:
        >>> Target.parse("web01:2222")
        Target(host='web01', port=2222)
        >>> str(Target.parse("[::1]"))
        '[::1]:22'
    """

    host: str
    port: int = 22

    @classmethod
    def parse(cls, value: str, default_port: int = 22) -> "Target":
        """Parse ``host``, ``host:port`` or ``[ipv6]:port``.

        Raises:
            ValueError: If the host is empty or the port is not a valid number
        """
        value = value.strip()
        if not value:
            raise ValueError("Empty target address")

        if value.startswith("["):
            host, sep, rest = value[1:].partition("]")
            if not sep or not host:
                raise ValueError(f"Malformed IPv6 target: {value}")
            port_str = rest[1:] if rest.startswith(":") else ""
            if rest and not rest.startswith(":"):
                raise ValueError(f"Malformed IPv6 target: {value}")
        elif value.count(":") == 1:
            host, _, port_str = value.partition(":")
        else:
            # Bare hostname, or a bare IPv6 address without a port
            host, port_str = value, ""

        if not host:
            raise ValueError(f"Missing host in target '{value}'")
        if not port_str:
            return cls(host=host, port=default_port)
        try:
            port = int(port_str)
        except ValueError:
            raise ValueError(f"Invalid port in target '{value}': {port_str}") from None
        if not 0 < port < 65536:
            raise ValueError(f"Port out of range in target '{value}': {port}")
        return cls(host=host, port=port)

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class RemoteOptions:
    """Knobs for how payloads are run on the remote side.

    Attributes:
        known_hosts: known_hosts file for host key checking (None disables it)
        python_interpreter: Interpreter used for python modules
        remote_dir: Remote directory binaries are staged into
    """

    known_hosts: str | None = None
    python_interpreter: str = "python3"
    remote_dir: str = "~/.modrun"
