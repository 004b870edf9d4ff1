"""Rendering of execution results for the command line.

Text output is drawn with Rich tables, one row per target (and per command
for shell modules). JSON output is a single document suitable for piping.
"""

import json
from datetime import datetime, timezone
from typing import Any, Mapping

from rich.console import Console
from rich.table import Table
from rich.text import Text

from .exceptions import ModrunError
from .types import CommandOutput, MultiOutput, SingleOutput

# Outcome of one module on one target, as produced by the registry
Outcome = CommandOutput | ModrunError


def outcome_to_dict(outcome: Outcome) -> dict[str, Any]:
    """Convert an output or error to a JSON-ready dict."""
    if isinstance(outcome, ModrunError):
        return {"success": False, **outcome.to_dict()}
    return {"success": True, **outcome.to_dict()}


def format_results_json(
    module: str,
    outcomes: Mapping[str, Outcome],
    duration: float,
) -> str:
    """Format the outcomes of one module across targets as JSON.

    Args:
        module: Module name (or "*" for run-all)
        outcomes: Mapping of target (or module name) to outcome
        duration: Wall-clock duration in seconds
    """
    failed = sum(1 for o in outcomes.values() if isinstance(o, ModrunError))
    document = {
        "module": module,
        "total": len(outcomes),
        "successful": len(outcomes) - failed,
        "failed": failed,
        "results": {key: outcome_to_dict(o) for key, o in outcomes.items()},
        "duration": round(duration, 3),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    return json.dumps(document, indent=2)


def build_results_table(title: str, key_header: str, outcomes: Mapping[str, Outcome]) -> Table:
    """Build a Rich table with one row per command (or per single output)."""
    table = Table(title=title, show_lines=True)
    table.add_column(key_header, style="cyan", no_wrap=True)
    table.add_column("Command", style="magenta")
    table.add_column("Output")

    for key, outcome in outcomes.items():
        if isinstance(outcome, ModrunError):
            table.add_row(key, "", Text(f"FAILED: {outcome}", style="bold red"))
        elif isinstance(outcome, MultiOutput):
            if not outcome.outputs:
                table.add_row(key, "", Text("(no commands)", style="dim"))
            for command, text in outcome.outputs.items():
                table.add_row(key, command, text.rstrip("\n"))
        elif isinstance(outcome, SingleOutput):
            table.add_row(key, "", outcome.output.rstrip("\n"))
    return table


def print_results(
    title: str,
    key_header: str,
    outcomes: Mapping[str, Outcome],
    console: Console | None = None,
) -> None:
    """Print outcomes as a table followed by a one-line summary."""
    console = console or Console()
    console.print(build_results_table(title, key_header, outcomes))

    failed = sum(1 for o in outcomes.values() if isinstance(o, ModrunError))
    style = "red" if failed else "green"
    console.print(
        f"[{style}]{len(outcomes) - failed} succeeded, {failed} failed[/{style}]",
        highlight=False,
    )
