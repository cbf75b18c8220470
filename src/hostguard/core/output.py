"""Operator-facing output built on Rich.

Results (check tables, reports, fix outcomes, JSON) go to stdout. Log
lines, prompts and spinners go to stderr so that `--json` output can be
piped into other tools.
"""

import json
from enum import IntEnum
from typing import Any, Optional

from rich import box
from rich.console import Console as RichConsole
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from hostguard.models import CheckReport, CheckStatus, FixOutcome, ResultSet, Severity


class Verbosity(IntEnum):
    """Output verbosity levels."""
    QUIET = 0    # Errors only
    NORMAL = 1
    VERBOSE = 2
    DEBUG = 3


# level -> (prefix markup, lowest verbosity that shows it)
LOG_LEVELS: dict[str, tuple[str, Verbosity]] = {
    "error": ("[red][ERROR][/red]", Verbosity.QUIET),
    "warn": ("[yellow][WARN][/yellow]", Verbosity.QUIET),
    "hint": ("[cyan]Hint:[/cyan]", Verbosity.QUIET),
    "info": ("[green][INFO][/green]", Verbosity.NORMAL),
    "success": ("[green][OK][/green]", Verbosity.NORMAL),
    "step": ("[blue]->[/blue]", Verbosity.NORMAL),
    "verbose": ("[dim]..[/dim]", Verbosity.VERBOSE),
    "debug": ("[cyan][DEBUG][/cyan]", Verbosity.DEBUG),
}

STATUS_STYLES = {
    CheckStatus.PASS: "green",
    CheckStatus.INFO: "cyan",
    CheckStatus.WARNING: "yellow",
    CheckStatus.CRITICAL: "red",
    CheckStatus.ERROR: "magenta",
}

SEVERITY_STYLES = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "cyan",
    Severity.INFO: "dim",
}


def status_badge(status: CheckStatus) -> str:
    style = STATUS_STYLES[status]
    return f"[{style}]{status.value.upper()}[/{style}]"


def score_style(score: int) -> str:
    if score >= 80:
        return "green"
    return "yellow" if score >= 50 else "red"


class Console:
    """Verbosity-aware wrapper around a stdout and a stderr Rich console."""

    def __init__(self) -> None:
        self.verbosity = Verbosity.NORMAL
        self.dry_run = False
        self._open(no_color=False)

    def _open(self, no_color: bool) -> None:
        self.out = RichConsole(highlight=False, no_color=no_color)
        self.err = RichConsole(stderr=True, highlight=False, no_color=no_color)

    def configure(self, verbosity: int = Verbosity.NORMAL, dry_run: bool = False, no_color: bool = False) -> None:
        """Apply the options of one CLI invocation."""
        self.verbosity = Verbosity(max(Verbosity.QUIET, min(verbosity, Verbosity.DEBUG)))
        self.dry_run = dry_run
        self._open(no_color)

    # Log lines (stderr)

    def log(self, level: str, message: str) -> None:
        prefix, minimum = LOG_LEVELS[level]
        if self.verbosity >= minimum:
            self.err.print(f"{prefix} {message}")

    def error(self, message: str) -> None:
        self.log("error", message)

    def warn(self, message: str) -> None:
        self.log("warn", message)

    def hint(self, message: str) -> None:
        self.log("hint", message)

    def info(self, message: str) -> None:
        self.log("info", message)

    def success(self, message: str) -> None:
        self.log("success", message)

    def step(self, message: str) -> None:
        self.log("step", message)

    def verbose(self, message: str) -> None:
        self.log("verbose", message)

    def debug(self, message: str) -> None:
        self.log("debug", message)

    def dry_run_msg(self, message: str) -> None:
        """Announce a command that dry-run mode skipped."""
        if self.dry_run:
            self.err.print(f"[blue][DRY-RUN][/blue] Would: {message}")

    def status(self, message: str) -> Any:
        """Spinner context manager shown while checks run."""
        return self.err.status(message, spinner="dots")

    def confirm(self, message: str, default: bool = False, skip_confirm: bool = False) -> bool:
        """Ask a yes/no question; end of input counts as no."""
        if skip_confirm:
            return True
        try:
            return Confirm.ask(message, console=self.err, default=default)
        except (EOFError, KeyboardInterrupt):
            return False

    # Results (stdout)

    def print(self, message: Any = "", **kwargs: Any) -> None:
        self.out.print(message, **kwargs)

    def print_json(self, data: str) -> None:
        self.out.print_json(data)

    def panel(self, content: str, title: Optional[str] = None, border_style: str = "blue") -> None:
        self.out.print(Panel(content, title=title, border_style=border_style))

    def table(self, title: str, columns: list[str], rows: list[list[str]]) -> None:
        table = Table(title=title, box=box.ROUNDED)
        for column in columns:
            table.add_column(column)
        for row in rows:
            table.add_row(*row)
        self.out.print(table)

    def report(self, report: CheckReport) -> None:
        """One check with its recommendations and fixes."""
        self.out.print()
        self.out.print(f"[bold]{report.name}[/bold] {status_badge(report.status)}")
        self.out.print(f"  {report.message}")

        for rec in report.recommendations:
            style = SEVERITY_STYLES[rec.severity]
            self.out.print(f"  [{style}]{rec.severity.value:>8}[/{style}]  {rec.message}")

        for fix in report.fixes:
            kind = "[green]auto[/green]" if fix.auto_fix else "[dim]manual[/dim]"
            self.out.print(f"  fix {kind} [bold]{fix.id}[/bold]: {fix.description}")
            if fix.command:
                self.out.print(f"      [dim]$ {fix.command}[/dim]")
            for step in fix.manual_steps or []:
                self.out.print(f"      [dim]- {step}[/dim]")

        if self.verbosity >= Verbosity.VERBOSE:
            self.out.print(f"  [dim]{json.dumps(report.details, default=str)}[/dim]")

    def results(self, results: ResultSet) -> None:
        """Summary table, per-check findings and the score panel."""
        table = Table(title="Security Checks", box=box.ROUNDED)
        for column in ("Check", "Category", "Status", "Message"):
            table.add_column(column)
        for report in results.checks:
            table.add_row(report.name, report.category.value, status_badge(report.status), report.message)
        self.out.print(table)

        for report in results.checks:
            if report.recommendations or report.fixes:
                self.report(report)

        style = score_style(results.overall_score)
        self.out.print()
        self.panel(
            f"[bold {style}]{results.overall_score}/100[/bold {style}]\n"
            f"Passed: {results.passed}  Info: {results.info}  Warnings: {results.warnings}  "
            f"Critical: {results.critical}  Errors: {results.errors}",
            title="Security Score",
            border_style=style,
        )

    def fix_outcome(self, fix_id: str, outcome: FixOutcome, params: dict[str, str]) -> None:
        label = "[green]SUCCESS[/green]" if outcome.success else "[red]FAILED[/red]"
        lines = [f"[bold]Message:[/bold] {outcome.message}"]
        if params:
            lines.append("[bold]Parameters:[/bold] " + ", ".join(f"{k}={v}" for k, v in params.items()))
        self.panel("\n".join(lines), title=f"Fix {fix_id} - {label}", border_style="green" if outcome.success else "red")
        if outcome.output and self.verbosity >= Verbosity.VERBOSE:
            self.out.print(outcome.output)


console = Console()
