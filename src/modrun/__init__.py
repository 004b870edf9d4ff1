"""modrun - run declarative modules on remote hosts over SSH.

Modules are described by ``*.mod`` files in a directory. Each one runs a set
of named shell commands, an inline Python script, or a staged binary on a
target host, authenticating through the local SSH agent.

Quick Start:
    from modrun import AgentFirst, ModuleRegistry, SemaphoreSync, Target

    registry = ModuleRegistry.build("modules")
    output = await registry.run(
        "uptime", Target("web01"), AgentFirst("deploy"), SemaphoreSync()
    )
"""

__version__ = "0.1.0"

from modrun.auth import AgentFirst, AgentWithKeyName, AuthStrategy
from modrun.module import Module
from modrun.registry import ModuleRegistry, RunAllResults
from modrun.sync import ConnectionSync, NoopSync, SemaphoreSync
from modrun.types import MultiOutput, RemoteOptions, SingleOutput, Target

__all__ = [
    "__version__",
    "AgentFirst",
    "AgentWithKeyName",
    "AuthStrategy",
    "ConnectionSync",
    "Module",
    "ModuleRegistry",
    "MultiOutput",
    "NoopSync",
    "RemoteOptions",
    "RunAllResults",
    "SemaphoreSync",
    "SingleOutput",
    "Target",
]
