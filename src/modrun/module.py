"""Modules and their execution.

A Module pairs a name with exactly one kind of content. Its kind is read
off the content, so the two can never disagree. ``execute`` opens a
session to one target, runs the payload and always gives the connection
slot back, whatever happened in between.
"""

import base64
import hashlib
import logging
import shlex
from dataclasses import dataclass, field
from pathlib import Path

from .auth import AuthStrategy
from .descriptor import ModuleDescriptor, read_toml
from .exceptions import CommandExecutionError, ConfigParseError, ModrunError
from .logging import log_performance
from .session import RemoteSession
from .sync import ConnectionSync
from .types import (
    BinaryContent,
    CommandOutput,
    ModuleContent,
    ModuleKind,
    MultiOutput,
    PythonContent,
    RemoteOptions,
    ShellContent,
    SingleOutput,
    Target,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Module:
    """A named unit of remote work.

    Attributes:
        name: Registry key of the module
        content: Materialized payload; determines the module kind

    Example:
        >>> module = Module("facts", ShellContent({"kernel": "uname -r"}))
        >>> module.kind
        <ModuleKind.BASH: 'bash'>
        >>> output = await module.execute(Target("web01"), AgentFirst("deploy"), NoopSync())
    """

    name: str
    content: ModuleContent = field(repr=False)

    @property
    def kind(self) -> ModuleKind:
        return self.content.kind

    async def execute(
        self,
        target: Target,
        auth: AuthStrategy,
        sync: ConnectionSync,
        options: RemoteOptions | None = None,
    ) -> CommandOutput:
        """Run this module on one target.

        Args:
            target: Host to run on
            auth: Identity to authenticate with
            sync: Synchronization contract shared with concurrent executions
            options: Remote execution options (defaults if None)

        Returns:
            MultiOutput for shell modules, SingleOutput otherwise

        Raises:
            ConnectionError, HandshakeError, AuthenticationError: Session setup failed
            CommandExecutionError: The payload could not be run
        """
        options = options or RemoteOptions()
        logger.info(f"Running module {self.name} ({self.kind.value}) on {target}")

        try:
            with log_performance(logger, "Module execution", module=self.name, target=target):
                async with sync.connection_slot():
                    async with RemoteSession(target, auth, sync, options.known_hosts) as session:
                        return await self._dispatch(session, options)
        except ModrunError as e:
            e.with_context(module=self.name, target=str(target))
            raise

    async def _dispatch(self, session: RemoteSession, options: RemoteOptions) -> CommandOutput:
        content = self.content
        if isinstance(content, ShellContent):
            return await self._run_shell(session, content)
        if isinstance(content, PythonContent):
            return await self._run_python(session, content, options)
        if isinstance(content, BinaryContent):
            return await self._run_binary(session, content, options)
        raise TypeError(f"Unknown module content: {type(content).__name__}")

    async def _run_shell(self, session: RemoteSession, content: ShellContent) -> MultiOutput:
        outputs: dict[str, str] = {}
        for name, command in content.commands.items():
            try:
                outputs[name] = await session.run(command)
            except CommandExecutionError as e:
                e.command = name
                e.partial = dict(outputs)
                raise
        return MultiOutput(outputs)

    async def _run_python(
        self, session: RemoteSession, content: PythonContent, options: RemoteOptions
    ) -> SingleOutput:
        command = python_invocation(content.script, options.python_interpreter)
        return SingleOutput(await session.run(command))

    async def _run_binary(
        self, session: RemoteSession, content: BinaryContent, options: RemoteOptions
    ) -> SingleOutput:
        try:
            digest = hashlib.sha256(content.path.read_bytes()).hexdigest()[:16]
        except OSError as e:
            raise CommandExecutionError(
                f"Cannot read binary {content.path}: {e.strerror or e}", command="stage", phase="execute"
            ) from e

        staging_dir = remote_shell_path(options.remote_dir)
        try:
            remote_dir = (await session.run(
                f"mkdir -p -- {staging_dir} && chmod 700 -- {staging_dir} && cd -- {staging_dir} && pwd",
                check=True,
            )).strip()
            if not remote_dir:
                raise CommandExecutionError(
                    f"Could not resolve staging directory {options.remote_dir}", phase="execute"
                )

            remote_path = f"{remote_dir}/{content.path.name}_{digest}"
            await session.upload(content.path, remote_path)
            await session.run(f"chmod 700 -- {shlex.quote(remote_path)}", check=True)
        except CommandExecutionError as e:
            e.command = "stage"
            raise

        return SingleOutput(await session.run(shlex.quote(remote_path)))


def remote_shell_path(path: str) -> str:
    """Quote a remote path for the shell, leaving a leading ``~`` to expand.

    Example:
        >>> remote_shell_path("~/mod run")
        "~/'mod run'"
    """
    if path == "~":
        return path
    if path.startswith("~/"):
        return "~/" + shlex.quote(path[2:])
    return shlex.quote(path)


def python_invocation(script: str, interpreter: str = "python3") -> str:
    """Build a shell command that runs ``script`` with a remote interpreter.

    The script travels base64-encoded so it survives shell quoting intact.

    Example:
        >>> await session.run(python_invocation("import os; print(os.uname())"))
    """
    encoded = base64.b64encode(script.encode("utf-8")).decode("ascii")
    code = f'import base64; exec(base64.b64decode("{encoded}"))'
    return f"{shlex.quote(interpreter)} -c {shlex.quote(code)}"


def materialize(descriptor: ModuleDescriptor) -> Module:
    """Load a descriptor's payload and build the Module.

    Binary payloads are not read here; python payloads are read as text;
    shell payloads are parsed as a flat TOML table of name = "command".

    Raises:
        ConfigParseError: If the payload is missing, unreadable or malformed
    """
    path = descriptor.payload_location

    if descriptor.kind is ModuleKind.BINARY:
        content: ModuleContent = BinaryContent(path)
    elif descriptor.kind is ModuleKind.PYTHON:
        try:
            content = PythonContent(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise ConfigParseError("Payload file not found", path=path) from None
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigParseError(f"Cannot read payload: {e}", path=path) from e
    else:
        content = ShellContent(_parse_commands(path))

    return Module(descriptor.name, content)


def _parse_commands(path: Path) -> dict[str, str]:
    table = read_toml(path)
    bad = [name for name, command in table.items() if not isinstance(command, str)]
    if bad:
        raise ConfigParseError(
            f"Commands must be strings; invalid entries: {', '.join(bad)}", path=path
        )
    if not table:
        logger.warning(f"{path}: shell module declares no commands")
    return table
