"""Command-line interface for modrun."""

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Callable

import click
from rich.console import Console

from modrun import __version__
from modrun.config import RunnerConfig, load_config
from modrun.exceptions import ConfigParseError, ModrunError
from modrun.logging import LEVEL_NAMES, configure_logging, get_level_from_name, get_level_from_verbosity
from modrun.output import Outcome, format_results_json, print_results
from modrun.registry import ModuleRegistry

logger = logging.getLogger("modrun.cli")


def connection_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by every command that connects to hosts."""
    options = [
        click.option("--config", "-c", "config_file", type=click.Path(dir_okay=False),
                     help="Runner configuration file (YAML)"),
        click.option("--module-dir", "-M", type=click.Path(file_okay=False),
                     help="Directory containing *.mod descriptors"),
        click.option("--target", "-t", "targets", multiple=True,
                     help="Target host[:port] (repeatable)"),
        click.option("--user", "-u", "username", help="Remote username"),
        click.option("--key-name", help="Only use the agent key with this name"),
        click.option("--parallel", "-p", "max_connections", type=int,
                     help="Maximum concurrent connections"),
        click.option("--timeout", "handshake_timeout", type=float,
                     help="SSH handshake timeout in seconds"),
        click.option("--known-hosts", help="known_hosts file (host keys unchecked if unset)"),
        click.option("--format", "-f", "output_format", type=click.Choice(["text", "json"]),
                     default="text", help="Output format"),
        click.option("-v", "--verbose", count=True, help="Increase verbosity (-v, -vv, -vvv)"),
        click.option("--log-level", type=click.Choice(list(LEVEL_NAMES), case_sensitive=False),
                     help="Set log level explicitly (overrides -v)"),
        click.option("--log-file", type=click.Path(dir_okay=False), help="Also write logs to this file"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _setup(verbose: int, log_file: str | None, log_level: str | None = None) -> None:
    if log_level:
        level = get_level_from_name(log_level)
    else:
        level = get_level_from_verbosity(verbose)
    configure_logging(level=level, log_file=log_file)


def _load_settings(config_file: str | None, **overrides: Any) -> RunnerConfig:
    try:
        config = load_config(config_file) if config_file else RunnerConfig()
        return config.merge(**overrides)
    except ConfigParseError as e:
        raise click.ClickException(str(e))


def _emit(
    title: str,
    key_header: str,
    module: str,
    outcomes: dict[str, Outcome],
    duration: float,
    output_format: str,
) -> None:
    if output_format == "json":
        click.echo(format_results_json(module, outcomes, duration))
    else:
        print_results(title, key_header, outcomes, Console())

    failed = [key for key, o in outcomes.items() if isinstance(o, ModrunError)]
    if failed:
        raise click.ClickException(f"{len(failed)} execution(s) failed: {', '.join(failed)}")


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version and exit")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """modrun - run declarative modules on remote hosts over SSH."""
    if version:
        click.echo(f"modrun {__version__}")
        ctx.exit(0)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.group()
def module() -> None:
    """Module discovery commands."""
    pass


@module.command("list")
@click.option("--module-dir", "-M", type=click.Path(file_okay=False), default="modules",
              show_default=True, help="Directory containing *.mod descriptors")
@click.option("--format", "-f", "output_format", type=click.Choice(["text", "json"]),
              default="text", help="Output format")
@click.option("-v", "--verbose", count=True, help="Increase verbosity")
@click.option("--log-level", type=click.Choice(list(LEVEL_NAMES), case_sensitive=False),
              help="Set log level explicitly (overrides -v)")
def module_list(module_dir: str, output_format: str, verbose: int, log_level: str | None) -> None:
    """List the modules that load from a directory.

    Files that fail to load are reported as warnings and left out.
    """
    _setup(verbose, None, log_level)
    registry = ModuleRegistry.build(Path(module_dir))

    if output_format == "json":
        click.echo(json.dumps(
            [{"name": m.name, "kind": m.kind.value} for m in registry], indent=2
        ))
        return

    if not len(registry):
        click.echo(f"No modules found in {module_dir}")
        return
    for m in registry:
        click.echo(f"  {m.name:<24} {m.kind.value}")


@cli.command("run")
@click.argument("name")
@connection_options
def run(name: str, config_file: str | None, targets: tuple[str, ...], output_format: str,
        verbose: int, log_file: str | None, log_level: str | None, **overrides: Any) -> None:
    """Run module NAME on every target.

    Examples:
        modrun run uptime -t web01 -t web02:2222 -u deploy

        modrun run facts -c modrun.yml --format json
    """
    _setup(verbose, log_file, log_level)
    settings = _load_settings(config_file, targets=list(targets) or None, **overrides)
    registry = ModuleRegistry.build(settings.module_dir)
    try:
        registry.lookup(name)
        parsed = settings.parsed_targets()
    except ModrunError as e:
        raise click.ClickException(str(e))
    if not parsed:
        raise click.UsageError("No targets given (use --target or the config file)")

    async def execute() -> dict[str, Outcome]:
        return await registry.run_on_targets(
            name, parsed, settings.auth_strategy(), settings.sync(), settings.remote_options()
        )

    start = time.perf_counter()
    outcomes = asyncio.run(execute())
    _emit(f"Module: {name}", "Target", name, outcomes, time.perf_counter() - start, output_format)


@cli.command("run-all")
@connection_options
@click.option("--fail-fast", is_flag=True, help="Stop at the first failing module")
def run_all(config_file: str | None, targets: tuple[str, ...], output_format: str,
            verbose: int, log_file: str | None, log_level: str | None, fail_fast: bool,
            **overrides: Any) -> None:
    """Run every module, in name order, on a single target."""
    _setup(verbose, log_file, log_level)
    settings = _load_settings(config_file, targets=list(targets) or None, **overrides)
    registry = ModuleRegistry.build(settings.module_dir)
    try:
        parsed = settings.parsed_targets()
    except ModrunError as e:
        raise click.ClickException(str(e))
    if len(parsed) != 1:
        raise click.UsageError("run-all needs exactly one target")
    target = parsed[0]

    async def execute() -> dict[str, Outcome]:
        results = await registry.run_all(
            target, settings.auth_strategy(), settings.sync(), settings.remote_options(),
            fail_fast=fail_fast,
        )
        return {**results.results, **results.errors}

    start = time.perf_counter()
    try:
        outcomes = asyncio.run(execute())
    except ModrunError as e:
        raise click.ClickException(str(e))
    ordered = {name: outcomes[name] for name in sorted(outcomes)}
    _emit(f"Target: {target}", "Module", "*", ordered, time.perf_counter() - start, output_format)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
