"""SSH server configuration probe."""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from hostguard.checks.base import Probe
from hostguard.models import (
    Category,
    CheckReport,
    CheckStatus,
    FixDescriptor,
    FixId,
    Severity,
)


SSHD_CONFIG = Path("/etc/ssh/sshd_config")

DEFAULT = "default"


@dataclass(frozen=True)
class Directive:
    """An sshd_config keyword and what counts as secure for it."""
    key: str
    keyword: str
    is_secure: Callable[[str], bool]
    message: str


def _max_auth_tries_ok(value: str) -> bool:
    return value.isdigit() and int(value) <= 3


DIRECTIVES = (
    Directive(
        key="permitRootLogin",
        keyword="permitrootlogin",
        is_secure=lambda v: v in ("no", "prohibit-password"),
        message="Root login should be disabled",
    ),
    Directive(
        key="passwordAuth",
        keyword="passwordauthentication",
        is_secure=lambda v: v == "no",
        message="Password authentication should be disabled (use keys)",
    ),
    Directive(
        key="pubkeyAuth",
        keyword="pubkeyauthentication",
        is_secure=lambda v: v == "yes",
        message="Public key authentication should be enabled",
    ),
    Directive(
        key="x11Forwarding",
        keyword="x11forwarding",
        is_secure=lambda v: v == "no",
        message="X11 forwarding should be disabled if not needed",
    ),
    Directive(
        key="maxAuthTries",
        keyword="maxauthtries",
        is_secure=_max_auth_tries_ok,
        message="MaxAuthTries should be 3 or less",
    ),
)

HARDEN_SSH_FIX = FixDescriptor(
    id=FixId.HARDEN_SSH.value,
    name="Harden SSH Configuration",
    description="Apply security best practices to SSH configuration",
    auto_fix=True,
    script="harden-ssh",
)


def parse_sshd_config(content: str) -> dict[str, str]:
    """Map lowercased keywords to lowercased values.

    sshd uses the first value it reads for each keyword, so later
    duplicates are ignored. Everything from the first Match block on is
    conditional and is not part of the global settings.
    """
    values: dict[str, str] = {}
    for raw in content.splitlines():
        line = raw.split("#", 1)[0].strip()
        if not line:
            continue
        parts = line.replace("=", " ", 1).split()
        keyword = parts[0].lower()
        if keyword == "match":
            break
        if len(parts) < 2:
            continue
        values.setdefault(keyword, parts[1].lower())
    return values


def evaluate_directives(config: dict[str, str]) -> tuple[dict[str, str], list[str]]:
    """Return (effective value per directive, messages for insecure ones).

    Absent directives are reported as 'default' and are not issues.
    """
    effective: dict[str, str] = {}
    problems: list[str] = []
    for directive in DIRECTIVES:
        value = config.get(directive.keyword, DEFAULT)
        effective[directive.key] = value
        if value != DEFAULT and not directive.is_secure(value):
            problems.append(directive.message)
    return effective, problems


class SSHProbe(Probe):
    """Checks SSH configuration for security best practices."""

    name = "SSH Security"
    description = "Checks SSH configuration for security best practices"
    category = Category.SECURITY

    async def inspect(self, report: CheckReport) -> None:
        result = await self.run_tool(report, "pgrep", ["pgrep", "-x", "sshd"])
        running = result.success and bool(result.stdout.strip())
        report.details["sshServerRunning"] = running

        if not running:
            report.details["note"] = "SSH is disabled, which is secure if you don't need remote access"
            report.message = "SSH server is not running"
            return

        try:
            content = await self.runner.read_text(SSHD_CONFIG)
        except OSError as e:
            report.escalate(CheckStatus.INFO)
            report.details["configReadable"] = False
            report.details["configError"] = str(e)
            report.message = "Cannot read SSH config (may need sudo)"
            return

        report.details["configReadable"] = True
        effective, problems = evaluate_directives(parse_sshd_config(content))
        report.details["config"] = effective
        report.details["authorizedKeys"] = await self._count_lines(Path.home() / ".ssh" / "authorized_keys")
        report.details["knownHosts"] = await self._count_lines(Path.home() / ".ssh" / "known_hosts")

        for message in problems:
            report.recommend(Severity.MEDIUM, message)

        issues = len(problems)
        report.details["issues"] = issues
        if not issues:
            report.message = "SSH configuration looks secure"
            return

        report.escalate(CheckStatus.CRITICAL if issues >= 2 else CheckStatus.WARNING)
        report.add_fix(HARDEN_SSH_FIX)
        report.message = f"{issues} SSH configuration issue(s) found"

    async def _count_lines(self, path: Path) -> int:
        try:
            content = await self.runner.read_text(path)
        except OSError:
            return 0
        return len([line for line in content.splitlines() if line.strip()])
