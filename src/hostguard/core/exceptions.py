"""Custom exceptions for hostguard.

All exceptions provide:
- Clear error messages
- Optional hints for resolution
- Optional details for debugging
- Exit codes for proper shell integration
"""

from typing import Optional


class HostGuardError(Exception):
    """Base exception for all hostguard errors.

    Attributes:
        message: Human-readable error description
        hint: Suggested action to resolve the error
        details: Additional context for debugging
        exit_code: Shell exit code (1-127)
    """

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or []

    def __str__(self) -> str:
        return self.message


class ConfigurationError(HostGuardError):
    """Configuration file or settings errors.

    Raised when:
    - Config file unreadable
    - Invalid YAML syntax
    - Invalid configuration values
    """
    exit_code = 2


class ValidationError(HostGuardError):
    """Input validation failures.

    Raised when:
    - A fix parameter is missing or malformed
    - A path is outside the set a fix may touch
    """
    exit_code = 3


class ExecutionError(HostGuardError):
    """Command execution failures.

    Raised when:
    - Shell command returns non-zero exit code
    - Command binary is missing
    - Command times out
    """
    exit_code = 5

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        return_code: Optional[int] = None,
        stderr: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        details = list(details or [])
        if return_code is not None:
            details.append(f"Exit code: {return_code}")
        if stderr:
            details.append(f"Error output: {stderr}")
        super().__init__(message, hint=hint, details=details)
        self.command = command
        self.return_code = return_code
        self.stderr = stderr


class UnknownCheckError(HostGuardError):
    """Requested check id is not in the probe registry."""
    exit_code = 8

    def __init__(self, check_id: str) -> None:
        super().__init__(
            f"Unknown check: {check_id}",
            hint="Run 'hostguard list' to see available checks",
        )
        self.check_id = check_id


class UnknownFixError(HostGuardError):
    """Requested fix id is not in the fix registry."""
    exit_code = 9

    def __init__(self, fix_id: str) -> None:
        super().__init__(
            f"Unknown fix: {fix_id}",
            hint="Run 'hostguard list' to see available fixes",
        )
        self.fix_id = fix_id


class SensorError(HostGuardError):
    """Hardware sensor bridge errors.

    Raised when:
    - LibreHardwareMonitor is unreachable or times out
    - Authentication against the sensor bridge fails
    - The sensor payload is not valid JSON
    """
    exit_code = 10
