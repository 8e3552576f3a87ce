"""CLI main entry point."""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import click
import httpx
from rich.console import Console
from rich.table import Table

from . import __version__
from .bootstrap import (
    BootPipeline,
    Feature,
    StackManager,
    StackState,
    execute_all,
    load_hooks,
)
from .config import load_config
from .context import Context
from .errors import MsdeError
from .remote.decoder import decode
from .remote.runtime import DockerAPIError
from .shared.logging import configure_logging
from .sync import SyncEngine, SyncReport, load_local_stages
from .sync.engine import SOME_STAGES_FAILED
from .upgrade import Version, upgrade_project

T = TypeVar("T")

console = Console()


def _parse_features(ctx: click.Context, param: click.Parameter, value: str | None) -> list[Feature]:
    if not value:
        return []
    try:
        return [Feature.parse(part) for part in value.split(",") if part.strip()]
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


def _execute(ctx: click.Context, func: Callable[[Context], Awaitable[T]]) -> T:
    """Run an async command body with the context, reporting errors."""
    context: Context = ctx.obj["context"]

    async def _run() -> T:
        try:
            return await func(context)
        finally:
            await context.close()

    try:
        return asyncio.run(_run())
    except MsdeError as e:
        click.echo(f"✗ {e.message}", err=True)
        sys.exit(1)
    except (DockerAPIError, httpx.HTTPError) as e:
        click.echo(f"✗ Docker is not reachable: {e}", err=True)
        sys.exit(1)


def _features_option(func: Callable[..., Any]) -> Callable[..., Any]:
    return click.option(
        "--features",
        "-f",
        callback=_parse_features,
        help="Comma separated features to enable (metrics, otel, web3, bot)",
    )(func)


def _echo_report(report: SyncReport) -> None:
    click.echo(f"  ✓ Imported games: {len(report.imported)}")
    click.echo(f"  ✓ Synced stages:  {len(report.finished)}")
    click.echo(f"  ✓ Started stages: {len(report.started)}")
    if not report.ok:
        click.echo(f"  ⚠ {SOME_STAGES_FAILED}", err=True)


async def _follow_logs(context: Context, container_id: str) -> None:
    async for chunk in context.runtime.attach(container_id):
        sys.stdout.buffer.write(chunk)
        sys.stdout.flush()


async def _import_games(context: Context) -> SyncReport:
    engine = SyncEngine(context.channel)
    return await engine.import_games(load_local_stages(context.project_dir))


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write logs to this file instead of stderr",
)
@click.option("--json-logs", is_flag=True, help="Log JSON lines instead of console output")
@click.version_option(__version__, prog_name="msde-cli")
@click.pass_context
def cli(ctx: click.Context, debug: bool, log_file: Path | None, json_logs: bool) -> None:
    """Control the Merigo developer package stack."""
    configure_logging("debug" if debug else "info", log_file=log_file, json_output=json_logs)
    ctx.ensure_object(dict)
    if "context" not in ctx.obj:
        ctx.obj["context"] = Context.from_config(load_config())


@cli.command()
@_features_option
@click.option("--timeout", "-t", default=300, type=int, help="Seconds allowed per compose group")
@click.option("--quiet", "-q", is_flag=True, help="Do not print progress")
@click.option("--attach", is_flag=True, help="Follow the game server output after boot")
@click.option("--build", is_flag=True, help="Build images before starting containers")
@click.option("--raw", is_flag=True, help="Show compose output instead of capturing it")
@click.pass_context
def up(
    ctx: click.Context,
    features: list[Feature],
    timeout: int,
    quiet: bool,
    attach: bool,
    build: bool,
    raw: bool,
) -> None:
    """Start the developer stack and wait until it is healthy."""

    async def _up(context: Context) -> None:
        pipeline = BootPipeline(context)
        result = await pipeline.boot(
            features,
            timeout,
            build=build,
            raw=raw,
            attach=(lambda cid: _follow_logs(context, cid)) if attach else None,
        )
        if not quiet:
            for warning in result.warnings:
                click.echo(f"  ⚠ {warning}", err=True)
            click.echo(f"✓ Stack is up ({result.elapsed_seconds:.0f}s)")

    _execute(ctx, _up)


@cli.command()
@_features_option
@click.option("--timeout", "-t", default=300, type=int, help="Seconds allowed per compose group")
@click.option("--quiet", "-q", is_flag=True, help="Do not print progress")
@click.option("--attach", is_flag=True, help="Follow the game server output after boot")
@click.option("--build", is_flag=True, help="Build images before starting containers")
@click.option("--raw", is_flag=True, help="Show compose output instead of capturing it")
@click.option("--no-hooks", is_flag=True, help="Skip the pre_run and post_run hooks")
@click.pass_context
def run(
    ctx: click.Context,
    features: list[Feature],
    timeout: int,
    quiet: bool,
    attach: bool,
    build: bool,
    raw: bool,
    no_hooks: bool,
) -> None:
    """Start the stack, then import and start every game."""

    async def _run(context: Context) -> None:
        hooks = load_hooks(context.project_dir)
        if not no_hooks:
            execute_all(hooks.pre_run)

        reports: list[SyncReport] = []

        async def after_healthy() -> None:
            reports.append(await _import_games(context))
            if not no_hooks:
                # Off the event loop so an attached log follower keeps streaming
                await asyncio.to_thread(execute_all, hooks.post_run)

        pipeline = BootPipeline(context)
        await pipeline.boot(
            features,
            timeout,
            build=build,
            raw=raw,
            attach=(lambda cid: _follow_logs(context, cid)) if attach else None,
            after_healthy=after_healthy,
        )
        if not quiet and reports:
            click.echo("✓ Stack is up")
            _echo_report(reports[0])

    _execute(ctx, _run)


@cli.command("import-games")
@click.pass_context
def import_games(ctx: click.Context) -> None:
    """Import the games listed in games/stages.yml into the running server."""

    async def _run(context: Context) -> SyncReport:
        return await _import_games(context)

    _echo_report(_execute(ctx, _run))


@cli.command()
@click.argument("expr")
@click.option("--raw", is_flag=True, help="Print the output without decoding")
@click.pass_context
def rpc(ctx: click.Context, expr: str, raw: bool) -> None:
    """Evaluate EXPR on the running game server."""

    async def _run(context: Context) -> bytes:
        return await context.channel.rpc(expr)

    output = _execute(ctx, _run)
    click.echo(output.decode(errors="replace") if raw else decode(output))


@cli.command()
@click.option("--timeout", "-t", default=300, type=int, help="Seconds allowed for compose")
@click.pass_context
def stop(ctx: click.Context, timeout: int) -> None:
    """Stop the stack, keeping its containers."""

    async def _run(context: Context) -> None:
        await StackManager(context).stop(timeout)

    _execute(ctx, _run)
    click.echo("✓ Stack stopped.")


@cli.command()
@click.option("--timeout", "-t", default=300, type=int, help="Seconds allowed for compose")
@click.pass_context
def down(ctx: click.Context, timeout: int) -> None:
    """Remove the stack's containers and volumes."""

    async def _run(context: Context) -> None:
        await StackManager(context).down(timeout)

    _execute(ctx, _run)
    click.echo("✓ Stack removed.")


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show current stack status."""

    async def _run(context: Context):
        return await StackManager(context).status()

    stack_status = _execute(ctx, _run)

    table = Table(title="msde stack")
    table.add_column("Service")
    table.add_column("State")
    for name in stack_status.running_services:
        table.add_row(name, "[green]running[/green]")
    console.print(table)

    style = {
        StackState.RUNNING: "green",
        StackState.STARTING: "yellow",
        StackState.UNHEALTHY: "red",
        StackState.STOPPED: "dim",
    }[stack_status.state]
    console.print(f"Stack state: [{style}]{stack_status.state.value}[/{style}]")
    if stack_status.message:
        console.print(f"[dim]{stack_status.message}[/dim]")


@cli.command("upgrade-project")
@click.option("--manual-only", is_flag=True, help="Only print the steps that need manual work")
@click.pass_context
def upgrade_project_cmd(ctx: click.Context, manual_only: bool) -> None:
    """Upgrade the project directory to this version of msde-cli."""
    context: Context = ctx.obj["context"]
    if not context.project_version:
        click.echo("✗ The project's metadata.json does not record a version.", err=True)
        sys.exit(1)
    try:
        current = Version.parse(__version__)
        project = Version.parse(context.project_version)
    except ValueError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)
    if upgrade_project(current, project, context, manual_only=manual_only):
        click.echo(f"✓ Project upgraded to {current}")


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
