"""Wiring of runner, platform, probes and fixes for one process."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from hostguard.aggregator import Aggregator
from hostguard.checks.sensors import SensorBridge
from hostguard.core.audit import AuditLogger
from hostguard.core.context import ExecutionContext
from hostguard.core.executor import CommandExecutor, CommandRunner
from hostguard.core.platform import Platform, detect_platform
from hostguard.fixes import FixDispatcher
from hostguard.registry import ProbeRegistry


@dataclass
class HostGuard:
    """Everything the HTTP and CLI surfaces need, bound to one host."""

    ctx: ExecutionContext
    runner: CommandRunner
    platform: Platform
    registry: ProbeRegistry
    aggregator: Aggregator
    fixes: FixDispatcher
    bridge: SensorBridge

    @classmethod
    async def create(
        cls,
        ctx: ExecutionContext,
        runner: Optional[CommandRunner] = None,
        platform: Optional[Platform] = None,
        audit: Optional[AuditLogger] = None,
        home: Optional[Path] = None,
    ) -> "HostGuard":
        """Detect the platform (unless given) and build the components.

        Args:
            ctx: Execution context
            runner: Command runner (defaults to a real CommandExecutor)
            platform: Pre-detected platform, skips detection
            audit: Fix audit logger (defaults to the configured log file)
            home: Home directory for the permission fix
        """
        runner = runner or CommandExecutor(ctx)
        platform = platform or await detect_platform(runner)
        ctx.console.debug(f"Platform: {platform.kind.value} ({platform.network_mode.value})")

        registry = ProbeRegistry(runner, platform, ctx.config)
        return cls(
            ctx=ctx,
            runner=runner,
            platform=platform,
            registry=registry,
            aggregator=Aggregator(registry, console=ctx.console),
            fixes=FixDispatcher(
                ctx,
                runner,
                platform,
                audit=audit or AuditLogger.from_config(ctx.config.audit_log),
                home=home,
            ),
            bridge=SensorBridge(runner, platform, ctx.config),
        )
