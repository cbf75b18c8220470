"""Shared fixtures: a fake command runner, platform/config builders and
prebuilt HostGuard wiring for the HTTP and CLI tests."""

import os
import stat
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Optional, Union
from unittest.mock import Mock

import pytest

from hostguard.aggregator import Aggregator
from hostguard.checks.base import Probe
from hostguard.checks.sensors import SensorBridge
from hostguard.core.config import AppConfig, DashboardConfig, SensorSettings
from hostguard.core.context import ExecutionContext
from hostguard.core.exceptions import ExecutionError
from hostguard.core.executor import EXIT_NOT_FOUND, CommandResult
from hostguard.core.platform import NetworkMode, Platform, PlatformKind
from hostguard.fixes import FixDispatcher
from hostguard.models import Category, CheckReport, CheckStatus
from hostguard.registry import CheckId, ProbeRegistry
from hostguard.service import HostGuard


Response = Union[str, tuple, Exception, Callable[..., Any]]


class FakeRunner:
    """In-memory CommandRunner.

    Commands are matched on their space-joined text: an exact match wins,
    otherwise the longest registered prefix. Unmatched commands behave
    like a missing binary (exit 127).

    Responses:
        str: stdout of a successful run
        (return_code, stdout) or (return_code, stdout, stderr)
        Exception: raised from run()
        callable(command, kwargs): returns any of the above
    """

    def __init__(
        self,
        commands: Optional[dict[str, Response]] = None,
        files: Optional[dict[str, Union[str, Exception]]] = None,
        modes: Optional[dict[str, int]] = None,
        binaries: Optional[dict[str, str]] = None,
    ) -> None:
        self.commands = commands or {}
        self.files = files or {}
        self.modes = modes or {}
        self.binaries = binaries or {}
        self.calls: list[tuple[list[str], dict[str, Any]]] = []

    @property
    def command_lines(self) -> list[str]:
        return [" ".join(command) for command, _ in self.calls]

    def _lookup(self, key: str) -> Optional[Response]:
        if key in self.commands:
            return self.commands[key]
        prefixes = [p for p in self.commands if key.startswith(p + " ")]
        if prefixes:
            return self.commands[max(prefixes, key=len)]
        return None

    async def run(self, command: list[str], **kwargs: Any) -> CommandResult:
        self.calls.append((list(command), kwargs))
        response = self._lookup(" ".join(command))
        if callable(response):
            response = response(command, kwargs)
        if isinstance(response, Exception):
            raise response

        if response is None:
            result = CommandResult(list(command), EXIT_NOT_FOUND, "", f"{command[0]}: not found")
        elif isinstance(response, str):
            result = CommandResult(list(command), 0, response, "")
        else:
            code, stdout, *rest = response
            result = CommandResult(list(command), code, stdout, rest[0] if rest else "")

        if kwargs.get("check") and not result.success:
            raise ExecutionError(
                f"Command failed: {result.command_line}",
                command=result.command_line,
                return_code=result.return_code,
                stderr=result.stderr.strip() or None,
            )
        return result

    async def read_text(self, path: Path) -> str:
        content = self.files.get(str(path))
        if content is None:
            raise FileNotFoundError(str(path))
        if isinstance(content, Exception):
            raise content
        return content

    async def stat(self, path: Path) -> os.stat_result:
        mode = self.modes.get(str(path))
        if mode is None:
            raise FileNotFoundError(str(path))
        return SimpleNamespace(st_mode=stat.S_IFREG | mode)

    def which(self, name: str) -> Optional[str]:
        return self.binaries.get(name)


def make_platform(**overrides: Any) -> Platform:
    """A native Linux host with nothing detected unless overridden."""
    values: dict[str, Any] = {
        "kind": PlatformKind.LINUX,
        "network_mode": NetworkMode.NATIVE,
    }
    values.update(overrides)
    return Platform(**values)


def make_config(**sensor_overrides: Any) -> AppConfig:
    sensors = {"host": "localhost", "port": 8085, "username": "", "password": ""}
    sensors.update(sensor_overrides)
    return AppConfig(
        config_path=Path("/nonexistent/hostguard.yaml"),
        config=DashboardConfig(),
        sensors=SensorSettings(**sensors),
    )


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def platform() -> Platform:
    return make_platform()


@pytest.fixture
def config() -> AppConfig:
    return make_config()


@pytest.fixture
def ctx(config: AppConfig) -> ExecutionContext:
    return ExecutionContext(verbosity=0, _config=config)


HOME = Path("/home/alice")


def static_probe(status: CheckStatus, label: str = "Static") -> type[Probe]:
    """Probe class that always reports `status`."""

    class StaticProbe(Probe):
        name = label
        description = f"Always {status.value}"
        category = Category.SYSTEM

        async def inspect(self, report: CheckReport) -> None:
            report.status = status
            report.message = status.value

    return StaticProbe


def make_guard(
    statuses: Optional[list[CheckStatus]] = None,
    runner: Optional[FakeRunner] = None,
    ctx: Optional[ExecutionContext] = None,
    platform: Optional[Platform] = None,
) -> HostGuard:
    """HostGuard over static probes, a FakeRunner and a mocked audit log.

    Probes are assigned to check ids in registry order.
    """
    runner = runner or FakeRunner()
    platform = platform or make_platform()
    ctx = ctx or ExecutionContext(verbosity=0, _config=make_config())
    probes = {
        check_id: static_probe(status, label=f"Static {check_id.value}")
        for check_id, status in zip(CheckId, statuses or [])
    }
    registry = ProbeRegistry(runner, platform, ctx.config, probes=probes)
    return HostGuard(
        ctx=ctx,
        runner=runner,
        platform=platform,
        registry=registry,
        aggregator=Aggregator(registry, console=ctx.console),
        fixes=FixDispatcher(ctx, runner, platform, audit=Mock(), home=HOME),
        bridge=SensorBridge(runner, platform, ctx.config),
    )
