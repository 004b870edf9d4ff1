"""Error types for modrun.

Every error raised by the engine derives from ModrunError and carries as
much context as is known at the point of failure: the module being run,
the target it was run against, and the session phase that failed. Only
ConfigParseError is recovered locally (by the registry); everything else
aborts the single execution it happened in and reaches the caller.
"""

from pathlib import Path
from typing import Any


class ModrunError(Exception):
    """Base class for all modrun errors.

    Attributes:
        message: Human-readable description of the failure
        module: Name of the module being executed, if known
        target: Target address ("host:port"), if known
        phase: Session phase or execution step that failed, if known

    Example:
        >>> err = ModrunError("boom", module="uptime", target="web01:22")
        >>> str(err)
        'boom (module=uptime, target=web01:22)'
    """

    def __init__(
        self,
        message: str,
        module: str | None = None,
        target: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.module = module
        self.target = target
        self.phase = phase

    def with_context(self, **context: Any) -> "ModrunError":
        """Fill in context fields that are still unset and return self."""
        for key, value in context.items():
            if getattr(self, key, None) is None:
                setattr(self, key, value)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "error": type(self).__name__,
            "message": self.message,
        }
        for key in ("module", "target", "phase"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        return result

    def __str__(self) -> str:
        context = [
            f"{key}={getattr(self, key)}"
            for key in ("module", "target", "phase")
            if getattr(self, key) is not None
        ]
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"


class ConfigParseError(ModrunError):
    """A descriptor, payload or configuration file could not be loaded."""

    def __init__(self, message: str, path: str | Path | None = None, **context: Any) -> None:
        super().__init__(message, **context)
        self.path = Path(path) if path is not None else None

    def __str__(self) -> str:
        base = super().__str__()
        if self.path is None:
            return base
        return f"{self.path}: {base}"


class ModuleNotFound(ModrunError):
    """Raised when a module name is not present in the registry."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Module '{name}' not found", module=name)


class ConnectionError(ModrunError):
    """TCP-level failure reaching the target."""


class HandshakeError(ModrunError):
    """SSH protocol negotiation failed or timed out."""


class AuthenticationError(ModrunError):
    """The identity agent had no usable key or the host rejected it."""


class CommandExecutionError(ModrunError):
    """A command channel could not be opened, run or read.

    Attributes:
        command: Name of the command that failed (shell modules) or the
            step that failed (python/binary modules)
        partial: Outputs of the commands that completed before the failure
    """

    def __init__(
        self,
        message: str,
        command: str | None = None,
        partial: dict[str, str] | None = None,
        **context: Any,
    ) -> None:
        super().__init__(message, **context)
        self.command = command
        self.partial: dict[str, str] = dict(partial or {})

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.command is not None:
            result["command"] = self.command
        if self.partial:
            result["partial"] = self.partial
        return result
