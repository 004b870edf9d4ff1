"""Module descriptor files.

A descriptor is a small TOML file named ``<module>.mod`` that declares the
module's kind and where its payload lives:

    module_type = "bash"
    exec_path = "cmds.toml"

Relative ``exec_path`` values are resolved against the descriptor's own
directory, so a module directory can be moved as a unit.
"""

import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .exceptions import ConfigParseError
from .types import ModuleKind

logger = logging.getLogger(__name__)

DESCRIPTOR_SUFFIX = ".mod"
REQUIRED_FIELDS = ("module_type", "exec_path")


@dataclass(frozen=True)
class ModuleDescriptor:
    """Parsed declaration of one module.

    Attributes:
        name: Module name (the descriptor's file stem)
        kind: Payload kind
        payload_location: Resolved path of the payload
        source: Path of the descriptor file itself
    """

    name: str
    kind: ModuleKind
    payload_location: Path
    source: Path


def is_descriptor_file(path: Path) -> bool:
    """Check whether a path looks like a module descriptor (``*.mod``)."""
    return path.is_file() and path.suffix.lower() == DESCRIPTOR_SUFFIX


def read_toml(path: Path) -> dict[str, Any]:
    """Read a TOML file, converting every failure into ConfigParseError."""
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except FileNotFoundError:
        raise ConfigParseError("File not found", path=path) from None
    except OSError as e:
        raise ConfigParseError(f"Cannot read file: {e.strerror or e}", path=path) from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigParseError(f"Invalid TOML: {e}", path=path) from e


def parse_descriptor(path: str | Path) -> ModuleDescriptor:
    """Parse a module descriptor file.

    Args:
        path: Path to the ``.mod`` file

    Returns:
        ModuleDescriptor with the payload location resolved

    Raises:
        ConfigParseError: If the file is missing, malformed, lacks a required
            field, or declares an unknown module type
    """
    path = Path(path)
    data = read_toml(path)

    missing = [name for name in REQUIRED_FIELDS if name not in data]
    if missing:
        raise ConfigParseError(f"Missing required field(s): {', '.join(missing)}", path=path)

    try:
        kind = ModuleKind.parse(data["module_type"])
    except ConfigParseError as e:
        e.path = path
        raise

    exec_path = data["exec_path"]
    if not isinstance(exec_path, str) or not exec_path:
        raise ConfigParseError("exec_path must be a non-empty string", path=path)

    payload = Path(exec_path).expanduser()
    if not payload.is_absolute():
        payload = path.parent / payload

    logger.debug(f"Parsed descriptor {path.name}: kind={kind.value}, payload={payload}")
    return ModuleDescriptor(name=path.stem, kind=kind, payload_location=payload, source=path)
