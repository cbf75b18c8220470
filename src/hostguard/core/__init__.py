"""Shared plumbing: config, console output, command execution and auditing."""

from hostguard.core.exceptions import (
    HostGuardError,
    ConfigurationError,
    ValidationError,
    ExecutionError,
    UnknownCheckError,
    UnknownFixError,
    SensorError,
)
from hostguard.core.context import ExecutionContext, create_context
from hostguard.core.output import console, Console, Verbosity
from hostguard.core.config import AppConfig, DashboardConfig, SensorSettings
from hostguard.core.executor import CommandExecutor, CommandResult, CommandRunner
from hostguard.core.platform import Platform, PlatformKind, NetworkMode, detect_platform
from hostguard.core.audit import AuditLogger, NullAuditLogger, AuditResult

__all__ = [
    "HostGuardError",
    "ConfigurationError",
    "ValidationError",
    "ExecutionError",
    "UnknownCheckError",
    "UnknownFixError",
    "SensorError",
    "ExecutionContext",
    "create_context",
    "console",
    "Console",
    "Verbosity",
    "AppConfig",
    "DashboardConfig",
    "SensorSettings",
    "CommandExecutor",
    "CommandResult",
    "CommandRunner",
    "Platform",
    "PlatformKind",
    "NetworkMode",
    "detect_platform",
    "AuditLogger",
    "NullAuditLogger",
    "AuditResult",
]
