"""Asynchronous command execution.

Provides:
- A narrow runner interface (run a command, read a file, stat a path)
- Output capture with per-command timeouts
- Dry-run support for commands that mutate the host
- Privilege escalation via non-interactive sudo

Probes and fixes only touch the host through a CommandRunner, so tests
swap in a fake runner instead of a real OS.
"""

import asyncio
import os
import shlex
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from hostguard.core.context import ExecutionContext
from hostguard.core.exceptions import ExecutionError


# Conventional shell exit codes for synthesized results
EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124


@dataclass
class CommandResult:
    """Result of a command execution."""
    command: list[str]
    return_code: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def success(self) -> bool:
        """Check if command succeeded."""
        return self.return_code == 0

    @property
    def not_found(self) -> bool:
        """Check if the command binary was missing."""
        return self.return_code == EXIT_NOT_FOUND

    @property
    def command_line(self) -> str:
        """Shell-quoted command for messages."""
        return shlex.join(self.command)

    @property
    def lines(self) -> list[str]:
        """Non-empty stdout lines."""
        return [line for line in self.stdout.splitlines() if line.strip()]


class CommandRunner(Protocol):
    """Everything a probe or fix may do to the host."""

    async def run(
        self,
        command: list[str],
        *,
        description: Optional[str] = None,
        check: bool = False,
        timeout: Optional[float] = None,
        input_text: Optional[str] = None,
        as_root: bool = False,
        mutates: bool = False,
    ) -> CommandResult:
        ...

    async def read_text(self, path: Path) -> str:
        ...

    async def stat(self, path: Path) -> os.stat_result:
        ...

    def which(self, name: str) -> Optional[str]:
        ...


class CommandExecutor:
    """Runs commands with asyncio subprocesses.

    Features:
    - Missing binaries yield exit code 127 instead of raising
    - Timeouts kill the process and yield exit code 124
    - check=True turns any failure into ExecutionError
    - Mutating commands honour dry-run mode
    """

    def __init__(self, ctx: ExecutionContext, default_timeout: Optional[float] = None) -> None:
        self.ctx = ctx
        self.default_timeout = default_timeout or ctx.config.timeouts.command

    async def run(
        self,
        command: list[str],
        *,
        description: Optional[str] = None,
        check: bool = False,
        timeout: Optional[float] = None,
        input_text: Optional[str] = None,
        as_root: bool = False,
        mutates: bool = False,
    ) -> CommandResult:
        """Execute a command.

        Args:
            command: Command as list of strings
            description: Human-readable description for logging
            check: Raise ExecutionError on non-zero exit, timeout or missing binary
            timeout: Seconds before the process is killed
            input_text: Text written to the process stdin
            as_root: Prefix with 'sudo -n' when not already root
            mutates: Command changes host state (skipped in dry-run)

        Returns:
            CommandResult with captured output
        """
        if as_root and os.geteuid() != 0:
            command = ["sudo", "-n"] + command

        if description:
            self.ctx.console.step(description)

        cmd_display = shlex.join(command)
        self.ctx.console.debug(f"Running: {cmd_display}")

        if mutates and self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Run: {cmd_display}")
            return CommandResult(command=command, return_code=0, stdout="", stderr="")

        timeout = timeout or self.default_timeout

        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE if input_text is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            result = CommandResult(
                command=command,
                return_code=EXIT_NOT_FOUND,
                stdout="",
                stderr=str(e),
            )
            if check:
                raise ExecutionError(
                    f"Command not available: {description or cmd_display}",
                    command=cmd_display,
                    return_code=EXIT_NOT_FOUND,
                    stderr=str(e),
                )
            return result

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(input_text.encode() if input_text is not None else None),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            if check:
                raise ExecutionError(
                    f"Command timed out after {timeout}s: {description or cmd_display}",
                    command=cmd_display,
                )
            self.ctx.console.debug(f"Timed out after {timeout}s: {cmd_display}")
            return CommandResult(
                command=command,
                return_code=EXIT_TIMEOUT,
                stdout="",
                stderr=f"timed out after {timeout}s",
                timed_out=True,
            )

        result = CommandResult(
            command=command,
            return_code=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )

        if check and not result.success:
            raise ExecutionError(
                f"Command failed: {description or cmd_display}",
                command=cmd_display,
                return_code=result.return_code,
                stderr=result.stderr.strip() or None,
            )

        return result

    async def read_text(self, path: Path) -> str:
        """Read a text file without blocking the event loop."""
        return await asyncio.to_thread(Path(path).read_text, errors="replace")

    async def stat(self, path: Path) -> os.stat_result:
        """Stat a path without blocking the event loop."""
        return await asyncio.to_thread(os.stat, path)

    def which(self, name: str) -> Optional[str]:
        """Locate an executable on PATH."""
        return shutil.which(name)
