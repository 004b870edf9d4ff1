"""Module registry.

The registry is built once by scanning a single directory for ``*.mod``
descriptors. A file that fails to load is logged and left out; it never
stops the rest of the directory from loading. After construction the
registry is read-only and may be shared by any number of concurrent runs.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Mapping, Sequence

from .auth import AuthStrategy
from .descriptor import is_descriptor_file, parse_descriptor
from .exceptions import ConfigParseError, ModrunError, ModuleNotFound
from .module import Module, materialize
from .sync import ConnectionSync
from .types import CommandOutput, RemoteOptions, Target

logger = logging.getLogger(__name__)


@dataclass
class RunAllResults:
    """Outcome of running every registered module against one target.

    Attributes:
        target: Target the modules ran against
        results: Output of each module that succeeded
        errors: Error raised by each module that failed
    """

    target: Target
    results: dict[str, CommandOutput] = field(default_factory=dict)
    errors: dict[str, ModrunError] = field(default_factory=dict)

    def is_success(self) -> bool:
        """Check if every module succeeded."""
        return not self.errors


class ModuleRegistry:
    """Name-keyed, immutable collection of loaded modules.

    Example:
        >>> registry = ModuleRegistry.build(Path("modules"))
        >>> registry.names()
        ['facts', 'uptime']
        >>> output = await registry.run("uptime", Target("web01"), AgentFirst("deploy"), sync)
    """

    def __init__(self, modules: Mapping[str, Module] | None = None) -> None:
        self._modules: dict[str, Module] = dict(modules or {})

    @classmethod
    def build(cls, directory: str | Path) -> "ModuleRegistry":
        """Load every module descriptor directly inside ``directory``.

        Subdirectories are not searched. Files that fail to parse are
        skipped with a warning naming the file and the cause.
        """
        directory = Path(directory)
        if not directory.is_dir():
            logger.warning(f"Module directory not found: {directory}")
            return cls()

        modules: dict[str, Module] = {}
        for path in sorted(directory.iterdir()):
            if not is_descriptor_file(path):
                continue
            try:
                module = materialize(parse_descriptor(path))
            except ConfigParseError as e:
                logger.warning(f"Error parsing module {path.name}: {e}")
                continue
            if module.name in modules:
                logger.warning(f"Duplicate module name {module.name}: {path.name} replaces earlier file")
            modules[module.name] = module
            logger.debug(f"Loaded module {module.name} ({module.kind.value})")

        logger.info(f"Loaded {len(modules)} module(s) from {directory}")
        return cls(modules)

    def __contains__(self, name: object) -> bool:
        return name in self._modules

    def __len__(self) -> int:
        return len(self._modules)

    def __iter__(self) -> Iterator[Module]:
        for name in self.names():
            yield self._modules[name]

    def names(self) -> list[str]:
        """Module names in ascending order."""
        return sorted(self._modules)

    def lookup(self, name: str) -> Module:
        """Return the module called ``name``.

        Raises:
            ModuleNotFound: If no such module was loaded
        """
        try:
            return self._modules[name]
        except KeyError:
            raise ModuleNotFound(name) from None

    async def run(
        self,
        name: str,
        target: Target,
        auth: AuthStrategy,
        sync: ConnectionSync,
        options: RemoteOptions | None = None,
    ) -> CommandOutput:
        """Look up a module and execute it on one target."""
        return await self.lookup(name).execute(target, auth, sync, options)

    async def run_all(
        self,
        target: Target,
        auth: AuthStrategy,
        sync: ConnectionSync,
        options: RemoteOptions | None = None,
        fail_fast: bool = False,
    ) -> RunAllResults:
        """Execute every module on one target, one after another by name.

        Args:
            target: Host to run on
            auth: Identity to authenticate with
            sync: Synchronization contract
            options: Remote execution options
            fail_fast: Raise the first error instead of collecting them

        Returns:
            RunAllResults with an entry per module in results or errors
        """
        outcome = RunAllResults(target=target)
        for module in self:
            try:
                outcome.results[module.name] = await module.execute(target, auth, sync, options)
            except ModrunError as e:
                if fail_fast:
                    raise
                logger.error(f"Module {module.name} failed on {target}: {e}")
                outcome.errors[module.name] = e
        return outcome

    async def run_on_targets(
        self,
        name: str,
        targets: Sequence[Target],
        auth: AuthStrategy,
        sync: ConnectionSync,
        options: RemoteOptions | None = None,
    ) -> dict[str, CommandOutput | ModrunError]:
        """Execute one module on many targets concurrently.

        Concurrency is bounded only by ``sync``. A failure on one target
        does not affect the others.

        Returns:
            Mapping of ``str(target)`` to its output or the error it raised

        Raises:
            ModuleNotFound: If the module does not exist (checked up front)
        """
        module = self.lookup(name)

        async def run_one(target: Target) -> CommandOutput | ModrunError:
            try:
                return await module.execute(target, auth, sync, options)
            except ModrunError as e:
                logger.error(f"Module {name} failed on {target}: {e}")
                return e

        outcomes = await asyncio.gather(*(run_one(target) for target in targets))
        return {str(target): outcome for target, outcome in zip(targets, outcomes)}
