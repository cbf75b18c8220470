"""Base class for probes.

A probe inspects one security or health dimension of the host and
fills in a CheckReport. Probes are read-only: they run commands and
read files through the injected CommandRunner, never mutate the host,
and never call each other.

Expected absence of a subsystem (no SSH server, no GPU) is a normal
pass/info outcome. A failed command or unreadable file that the probe
needed is turned into an `error` report here; anything else propagates
to the aggregator, which isolates it.
"""

from abc import ABC, abstractmethod
from typing import ClassVar

from hostguard.core.config import AppConfig
from hostguard.core.exceptions import HostGuardError
from hostguard.core.executor import CommandResult, CommandRunner
from hostguard.core.platform import Platform
from hostguard.models import Category, CheckReport, CheckStatus


class Probe(ABC):
    """Common machinery for every probe."""

    name: ClassVar[str]
    description: ClassVar[str]
    category: ClassVar[Category]

    def __init__(self, runner: CommandRunner, platform: Platform, config: AppConfig) -> None:
        self.runner = runner
        self.platform = platform
        self.config = config

    def new_report(self) -> CheckReport:
        """Empty report carrying this probe's fixed labels."""
        return CheckReport(
            name=self.name,
            description=self.description,
            category=self.category,
            details={"tools": {}},
        )

    async def run(self) -> CheckReport:
        """Inspect the host and return a normalized report."""
        report = self.new_report()
        try:
            await self.inspect(report)
        except (HostGuardError, OSError) as e:
            report.status = CheckStatus.ERROR
            report.message = f"Failed to check {self.name.lower()}: {e}"
            report.details["error"] = str(e)
        return report

    @abstractmethod
    async def inspect(self, report: CheckReport) -> None:
        """Fill in status, details, recommendations, fixes and message."""

    @staticmethod
    def record_tool(report: CheckReport, tool: str, available: bool) -> None:
        """Record whether an external tool was usable during this run."""
        report.details.setdefault("tools", {})[tool] = available

    async def run_tool(
        self,
        report: CheckReport,
        tool: str,
        command: list[str],
        **kwargs,
    ) -> CommandResult:
        """Run a command and record its availability under `tool`."""
        result = await self.runner.run(command, **kwargs)
        usable = not result.not_found and not result.timed_out
        tools = report.details.setdefault("tools", {})
        tools[tool] = tools.get(tool, False) or usable
        return result

    async def run_privileged_tool(
        self,
        report: CheckReport,
        tool: str,
        command: list[str],
        **kwargs,
    ) -> CommandResult:
        """Run via non-interactive sudo, retrying unprivileged if that fails."""
        result = await self.run_tool(report, tool, command, as_root=True, **kwargs)
        if result.success:
            return result
        return await self.run_tool(report, tool, command, **kwargs)
