"""Main CLI entry point using Typer.

This module defines the root CLI application and its commands. Every
command builds its own ExecutionContext from the common options.
"""

import asyncio
import json
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from hostguard import __version__
from hostguard.aggregator import Aggregator
from hostguard.checks.sensors import get_temperature_data, threshold_status
from hostguard.core.config import DEFAULT_CONFIG_PATH, init_config
from hostguard.core.context import ExecutionContext, create_context
from hostguard.core.exceptions import (
    HostGuardError,
    SensorError,
    UnknownFixError,
    ValidationError,
)
from hostguard.core.output import console as app_console
from hostguard.fixes import FIX_DESCRIPTIONS
from hostguard.models import FixId, ResultSet
from hostguard.registry import PROBES
from hostguard.scripts import PLATFORMS, scripts_for_platform
from hostguard.service import HostGuard


app = typer.Typer(
    name="hostguard",
    help="hostguard - host security and health dashboard.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

config_app = typer.Typer(
    name="config",
    help="Configuration management.",
    no_args_is_help=True,
)

app.add_typer(config_app, name="config")


# Type aliases for common options
DryRunOption = Annotated[
    bool,
    typer.Option(
        "--dry-run",
        help="Preview changes without executing. Shows what would happen.",
        is_flag=True,
    ),
]

YesOption = Annotated[
    bool,
    typer.Option(
        "--yes",
        "-y",
        help="Skip confirmation prompts.",
        is_flag=True,
    ),
]

VerboseOption = Annotated[
    int,
    typer.Option(
        "--verbose",
        "-v",
        count=True,
        help="Increase output verbosity. Can be repeated (-v, -vv).",
    ),
]

QuietOption = Annotated[
    bool,
    typer.Option(
        "--quiet",
        "-q",
        help="Suppress non-essential output. Only show errors.",
        is_flag=True,
    ),
]

NoColorOption = Annotated[
    bool,
    typer.Option(
        "--no-color",
        help="Disable colored output.",
        is_flag=True,
    ),
]

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help=f"Path to configuration file. Default: {DEFAULT_CONFIG_PATH}",
        exists=False,
        file_okay=True,
        dir_okay=False,
    ),
]

JsonOption = Annotated[
    bool,
    typer.Option("--json", "-j", help="Output as JSON", is_flag=True),
]


THRESHOLD_STYLES = {"OK": "green", "WARNING": "yellow", "CRITICAL": "red"}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console = Console()
        console.print(f"hostguard version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """hostguard - host security and health dashboard.

    Runs read-only security and health checks against this machine,
    scores them, and applies scripted fixes.

    [bold]Examples:[/bold]
        hostguard check
        hostguard check ssh --json
        hostguard fix enable_ufw --dry-run
        hostguard serve --port 4000
    """
    pass


def get_context(
    dry_run: bool = False,
    yes: bool = False,
    verbose: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    config: Optional[Path] = None,
) -> ExecutionContext:
    """Create execution context from CLI options."""
    return create_context(
        dry_run=dry_run,
        yes=yes,
        verbose=verbose,
        quiet=quiet,
        no_color=no_color,
        config=config,
    )


async def build_guard(ctx: ExecutionContext) -> HostGuard:
    return await HostGuard.create(ctx)


def handle_error(error: HostGuardError) -> None:
    """Handle a HostGuardError by printing formatted error and exiting."""
    app_console.error(error.message)

    if error.details:
        for detail in error.details:
            app_console.err.print(f"  [dim]{detail}[/dim]")

    if error.hint:
        app_console.hint(error.hint)

    raise typer.Exit(error.exit_code)


def parse_params(raw: Optional[list[str]]) -> dict[str, str]:
    """Turn repeated --param key=value options into a dict.

    Raises:
        ValidationError: If an entry has no '='
    """
    params: dict[str, str] = {}
    for item in raw or []:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ValidationError(
                f"Invalid parameter: {item}",
                hint="Use --param key=value",
            )
        params[key.strip()] = value
    return params


# ============================================================================
# Check commands
# ============================================================================

@app.command("check")
def check(
    check_id: Annotated[
        Optional[str],
        typer.Argument(help="Run only this check (see 'hostguard list')"),
    ] = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Run security and health checks.

    Without an id every check runs concurrently and an overall score is
    shown. Checks never change the host.

    [bold]Examples:[/bold]
        hostguard check
        hostguard check firewall
        hostguard check --json > report.json
    """
    ctx = get_context(verbose=verbose, quiet=quiet, no_color=no_color, config=config)

    async def _run() -> Any:
        guard = await build_guard(ctx)
        aggregator: Aggregator = guard.aggregator
        if check_id is None:
            return await aggregator.run_all()
        return await aggregator.run_one(check_id)

    try:
        if json_output:
            result = asyncio.run(_run())
        else:
            with ctx.console.status("Running checks..."):
                result = asyncio.run(_run())
    except HostGuardError as e:
        handle_error(e)
        return

    if json_output:
        ctx.console.print_json(json.dumps(result.to_dict(), default=str))
    elif isinstance(result, ResultSet):
        ctx.console.results(result)
    else:
        ctx.console.report(result)


@app.command("list")
def list_checks(no_color: NoColorOption = False) -> None:
    """List available checks and fixes."""
    ctx = get_context(no_color=no_color)

    ctx.console.table(
        "Checks",
        ["ID", "Name", "Category"],
        [[check_id.value, probe.name, probe.category.value] for check_id, probe in PROBES.items()],
    )
    ctx.console.print()
    ctx.console.table(
        "Fixes",
        ["ID", "Description"],
        [[fix_id.value, FIX_DESCRIPTIONS[fix_id]] for fix_id in FixId],
    )


# ============================================================================
# Fix command
# ============================================================================

@app.command("fix")
def fix(
    fix_id: Annotated[str, typer.Argument(help="Fix to apply (see 'hostguard list')")],
    param: Annotated[
        Optional[list[str]],
        typer.Option("--param", "-p", help="Fix parameter as key=value. Can be repeated."),
    ] = None,
    dry_run: DryRunOption = False,
    yes: YesOption = False,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Apply a fix to this host.

    Fixes change system configuration and usually need sudo. Every
    invocation is recorded in the audit log.

    [bold]Examples:[/bold]
        hostguard fix enable_ufw --dry-run
        hostguard fix harden_ssh --yes
        hostguard fix fix_permissions -p path=~/.ssh -p mode=700
    """
    ctx = get_context(dry_run=dry_run, yes=yes, verbose=verbose, quiet=quiet, no_color=no_color, config=config)

    try:
        params = parse_params(param)
        if fix_id not in {f.value for f in FixId}:
            raise UnknownFixError(fix_id)
    except HostGuardError as e:
        handle_error(e)
        return

    if not ctx.dry_run:
        ctx.console.print(f"[bold]{fix_id}[/bold]: {FIX_DESCRIPTIONS[FixId(fix_id)]}")
        if not ctx.console.confirm(f"Apply fix '{fix_id}'?", skip_confirm=ctx.yes):
            ctx.console.warn("Operation cancelled")
            raise typer.Exit(0)

    async def _apply():
        guard = await build_guard(ctx)
        return await guard.fixes.apply(fix_id, params)

    try:
        outcome = asyncio.run(_apply())
    except HostGuardError as e:
        handle_error(e)
        return

    ctx.console.fix_outcome(fix_id, outcome, params)

    if not outcome.success:
        raise typer.Exit(1)


# ============================================================================
# Hardware and scripts
# ============================================================================

@app.command("temperature")
def temperature(
    json_output: JsonOption = False,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Read CPU and GPU temperatures from LibreHardwareMonitor.

    Set LHM_HOST, LHM_PORT, LHM_USERNAME and LHM_PASSWORD to point at
    the LibreHardwareMonitor web server.
    """
    ctx = get_context(verbose=verbose, no_color=no_color, config=config)

    async def _read() -> dict[str, Any]:
        guard = await build_guard(ctx)
        return await get_temperature_data(guard.bridge)

    try:
        data = asyncio.run(_read())
    except HostGuardError as e:
        handle_error(e)
        return

    if json_output:
        ctx.console.print_json(json.dumps(data))
        if not data["success"]:
            raise typer.Exit(SensorError.exit_code)
        return

    if not data["success"]:
        handle_error(SensorError(
            data["error"],
            hint="Ensure LibreHardwareMonitor is running with Remote Web Server enabled.",
        ))
        return

    summary = data["summary"]
    rows = []
    for kind, label, key in (("cpu", "CPU Package", "package"), ("gpu", "GPU Core", "core")):
        value = summary[kind][key]
        if value is None:
            continue
        level = threshold_status(value, kind)
        style = THRESHOLD_STYLES[level]
        peak = summary[kind]["max"]
        rows.append([label, f"{value:.1f} °C", f"{peak:.1f} °C" if peak is not None else "-", f"[{style}]{level}[/{style}]"])

    ctx.console.table(f"Temperatures ({data['host']})", ["Sensor", "Current", "Max", "Status"], rows)

    if ctx.is_verbose:
        ctx.console.table(
            "All temperature sensors",
            ["Sensor", "Category", "Value"],
            [[t["name"], t["category"], f"{t['value']:.1f} °C"] for t in data["temperatures"]],
        )


@app.command("scripts")
def scripts(
    platform: Annotated[
        Optional[str],
        typer.Option("--platform", help=f"Only show one platform ({', '.join(PLATFORMS)})"),
    ] = None,
    json_output: JsonOption = False,
    no_color: NoColorOption = False,
) -> None:
    """List downloadable remediation scripts."""
    ctx = get_context(no_color=no_color)

    if platform is not None and platform not in PLATFORMS:
        handle_error(ValidationError(
            f"Unknown platform: {platform}",
            hint=f"Choose one of: {', '.join(PLATFORMS)}",
        ))
        return

    data = scripts_for_platform(platform)
    if json_output:
        ctx.console.print_json(json.dumps(data))
        return

    table = Table(title="Remediation Scripts", show_header=True)
    table.add_column("ID")
    table.add_column("Platform")
    table.add_column("File")
    table.add_column("Run with")

    for script_id, script in data.items():
        variants = {platform: script["platform"]} if platform else script["platforms"]
        for name, variant in variants.items():
            table.add_row(script_id, name, variant["file"] or "-", variant["command"])

    ctx.console.print(table)


# ============================================================================
# Server
# ============================================================================

@app.command("serve")
def serve(
    host: Annotated[Optional[str], typer.Option("--host", help="Bind address")] = None,
    port: Annotated[Optional[int], typer.Option("--port", help="Port (default: config or PORT)")] = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Serve the dashboard API with uvicorn."""
    import uvicorn

    from hostguard.api import create_app

    ctx = get_context(verbose=verbose, no_color=no_color, config=config)

    try:
        bind_host = host or ctx.config.server_host
        bind_port = port or ctx.config.server_port
    except HostGuardError as e:
        handle_error(e)
        return

    ctx.console.info(f"API: http://{bind_host}:{bind_port}/api")
    ctx.console.info(f"Health: http://{bind_host}:{bind_port}/health")
    uvicorn.run(
        create_app(ctx=ctx),
        host=bind_host,
        port=bind_port,
        log_level="debug" if ctx.is_debug else "info",
    )


@app.command("version")
def version() -> None:
    """Show version."""
    Console().print(f"hostguard version {__version__}")


# ============================================================================
# Config commands
# ============================================================================

@config_app.command("show")
def config_show(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Show current configuration.

    Sensor credentials are shown as set or not set, never their values.
    """
    ctx = get_context(verbose=verbose, no_color=no_color, config=config)

    try:
        app_config = ctx.config

        ctx.console.print()
        ctx.console.print(f"[bold]Configuration file:[/bold] {ctx.config_path}")
        ctx.console.print(f"[bold]File exists:[/bold] {ctx.config_path.exists()}")
        ctx.console.print()
        ctx.console.panel(app_config.config.to_yaml().rstrip(), title="Configuration")

        sensors = app_config.sensors
        ctx.console.table("Sensor bridge (from environment)", ["Setting", "Value"], [
            ["LHM_HOST", sensors.host],
            ["LHM_PORT", str(sensors.port)],
            ["LHM_USERNAME", "Set" if sensors.username else "Not set"],
            ["LHM_PASSWORD", "Set" if sensors.password else "Not set"],
        ])

    except HostGuardError as e:
        handle_error(e)


@config_app.command("init")
def config_init(
    config: ConfigOption = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite an existing file.", is_flag=True),
    ] = False,
    no_color: NoColorOption = False,
) -> None:
    """Initialize a new configuration file.

    Creates a configuration file with defaults and comments.
    """
    ctx = get_context(no_color=no_color, config=config)
    config_path = ctx.config_path

    try:
        init_config(config_path, force=force)
        ctx.console.success(f"Configuration file created: {config_path}")
        ctx.console.hint("Set sensor bridge credentials via LHM_USERNAME and LHM_PASSWORD")
    except HostGuardError as e:
        handle_error(e)


if __name__ == "__main__":
    app()
