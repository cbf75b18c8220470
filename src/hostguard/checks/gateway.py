"""Gateway (clawdbot) security audit probe.

Delegates to `clawdbot security audit`, run natively and, when a Windows
side is reachable, through PowerShell. The CLI prints:

    Clawdbot security audit
    Summary: 1 critical · 2 warn · 1 info

    CRITICAL
    gateway.bind Gateway listens on all interfaces
      Anyone on the network can reach the gateway.
      Fix: clawdbot config set gateway.bind 127.0.0.1

Results from both contexts are merged with merge_audits(). Without the
CLI the probe falls back to reading the gateway config file.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from hostguard.checks.base import Probe
from hostguard.checks.sockets import list_listening_sockets
from hostguard.core.exceptions import ConfigurationError, ExecutionError
from hostguard.core.executor import CommandResult
from hostguard.models import (
    Category,
    CheckReport,
    CheckStatus,
    FixDescriptor,
    Severity,
)


AUDIT_COMMAND = ["clawdbot", "security", "audit"]

NATIVE = "native"
WINDOWS = "windows"

_SUMMARY_RE = re.compile(r"Summary:\s*(\d+)\s*critical\s*·\s*(\d+)\s*warn\s*·\s*(\d+)\s*info")
_ISSUE_RE = re.compile(r"^([a-z_.]+)\s+(.+)$")

_SECTIONS = {"CRITICAL": "critical", "WARN": "warning", "INFO": "info"}
_SKIPPED_PREFIXES = ("Clawdbot security", "Summary:", "Run deeper:")
_ATTACK_SURFACE_MARKERS = ("groups:", "tools.", "hooks:", "browser")

_RECOMMENDATION_SEVERITY = {
    "critical": Severity.CRITICAL,
    "warning": Severity.HIGH,
    "info": Severity.LOW,
}

WILDCARD_BINDINGS = frozenset({"0.0.0.0", "::", "[::]", "*"})
_AUTH_KEYS = ("token", "auth")


def gateway_config_paths(home: Optional[Path] = None) -> list[Path]:
    home = home or Path.home()
    return [
        home / ".config" / "clawdbot" / "config.yaml",
        home / ".clawdbot" / "config.yaml",
        Path("/etc/clawdbot/config.yaml"),
    ]


@dataclass
class AuditIssue:
    """One finding from the audit CLI."""
    id: str
    title: str
    severity: str
    description: str = ""
    fix: str = ""
    contexts: list[str] = field(default_factory=list)

    @property
    def key(self) -> tuple[str, str]:
        return (self.id, self.title)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "severity": self.severity,
            "description": self.description,
            "fix": self.fix,
            "contexts": list(self.contexts),
        }


@dataclass
class AuditReport:
    """Parsed output of one audit run (or a merge of several)."""
    contexts: list[str]
    summary: dict[str, int] = field(default_factory=lambda: {"critical": 0, "warn": 0, "info": 0})
    issues: list[AuditIssue] = field(default_factory=list)
    attack_surface: dict[str, str] = field(default_factory=dict)
    has_summary: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "contexts": list(self.contexts),
            "summary": dict(self.summary),
            "issues": [i.to_dict() for i in self.issues],
            "attackSurface": dict(self.attack_surface),
        }


def _parse_attack_surface(line: str, surface: dict[str, str]) -> None:
    for part in re.split(r",\s*", line):
        if "=" in part:
            key, _, value = part.partition("=")
        elif ":" in part:
            key, _, value = part.partition(":")
        else:
            continue
        if key.strip():
            surface[key.strip()] = value.strip()


def parse_audit_output(output: str, context: str = NATIVE) -> AuditReport:
    """Parse the text report printed by `clawdbot security audit`."""
    report = AuditReport(contexts=[context])

    match = _SUMMARY_RE.search(output)
    if match:
        report.has_summary = True
        report.summary = {
            "critical": int(match.group(1)),
            "warn": int(match.group(2)),
            "info": int(match.group(3)),
        }

    severity: Optional[str] = None
    current: Optional[AuditIssue] = None
    issue_indent = 0

    for line in output.splitlines():
        stripped = line.strip()
        if stripped in _SECTIONS:
            severity = _SECTIONS[stripped]
            current = None
            continue
        if not stripped or stripped.startswith(_SKIPPED_PREFIXES):
            continue

        indent = len(line) - len(line.lstrip())
        issue_match = _ISSUE_RE.match(stripped)
        # Detail lines are indented deeper than the issue line they belong to
        if issue_match and severity and (current is None or indent <= issue_indent):
            issue_indent = indent
            current = AuditIssue(
                id=issue_match.group(1),
                title=issue_match.group(2),
                severity=severity,
                contexts=[context],
            )
            report.issues.append(current)
            continue

        if current is None or indent <= issue_indent:
            continue
        if stripped.startswith("Fix:"):
            current.fix = stripped[len("Fix:"):].strip()
        elif any(marker in stripped for marker in _ATTACK_SURFACE_MARKERS):
            _parse_attack_surface(stripped, report.attack_surface)
        else:
            current.description = f"{current.description} {stripped}".strip()

    return report


def merge_audits(reports: list[AuditReport]) -> AuditReport:
    """Deterministically merge audits from several execution contexts.

    Issues are unioned by (id, title) in input order, each listing every
    context that reported it. Summary counts take the max per severity.
    """
    merged = AuditReport(contexts=[])
    by_key: dict[tuple[str, str], AuditIssue] = {}

    for report in reports:
        merged.contexts.extend(c for c in report.contexts if c not in merged.contexts)
        merged.has_summary = merged.has_summary or report.has_summary
        for name, count in report.summary.items():
            merged.summary[name] = max(merged.summary.get(name, 0), count)
        for key, value in report.attack_surface.items():
            merged.attack_surface.setdefault(key, value)
        for issue in report.issues:
            existing = by_key.get(issue.key)
            if existing is None:
                copy = AuditIssue(
                    id=issue.id,
                    title=issue.title,
                    severity=issue.severity,
                    description=issue.description,
                    fix=issue.fix,
                    contexts=list(issue.contexts),
                )
                by_key[issue.key] = copy
                merged.issues.append(copy)
            else:
                existing.contexts.extend(c for c in issue.contexts if c not in existing.contexts)
                existing.fix = existing.fix or issue.fix
                existing.description = existing.description or issue.description

    return merged


def _walk(data: Any, prefix: str = ""):
    if isinstance(data, dict):
        for key, value in data.items():
            yield from _walk(value, f"{prefix}.{key}" if prefix else str(key))
    elif isinstance(data, list):
        for item in data:
            yield from _walk(item, prefix)
    else:
        yield prefix, data


def inspect_gateway_config(content: str) -> dict[str, bool]:
    """Security-relevant facts from a gateway YAML config."""
    try:
        data = yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError("Invalid YAML in gateway config", details=[str(e)]) from e

    wildcard = False
    auth = False
    tls = False
    for key, value in _walk(data):
        leaf = key.rsplit(".", 1)[-1].lower()
        text = str(value).strip() if value is not None else ""
        if text in WILDCARD_BINDINGS or text.startswith(("0.0.0.0:", "[::]:")):
            wildcard = True
        if any(marker in leaf for marker in _AUTH_KEYS) and value:
            auth = True
        if leaf in ("tls", "https", "ssl") and value:
            tls = True
    return {"localBinding": not wildcard, "hasAuth": auth, "hasHttps": tls}


class GatewayProbe(Probe):
    """Security audit of the clawdbot gateway."""

    name = "Gateway Security"
    description = "Security audit of Clawdbot/Gateway configuration"
    category = Category.APPLICATION

    def __init__(self, *args, home: Optional[Path] = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.home = home or Path.home()

    async def inspect(self, report: CheckReport) -> None:
        audits, cli_found, failures = await self.run_audits(report)

        if audits:
            self._apply_audit(report, merge_audits(audits))
            return
        if cli_found:
            first = failures[0]
            raise ExecutionError(
                "Could not run clawdbot security audit",
                command=first.command_line,
                return_code=first.return_code,
                stderr=(first.stderr or first.stdout).strip() or None,
            )
        await self._inspect_config(report)

    async def run_audits(self, report: CheckReport) -> tuple[list[AuditReport], bool, list[CommandResult]]:
        """Run the audit CLI in every reachable context.

        Returns:
            (parsed audits, whether the CLI exists anywhere, failed results)
        """
        timeout = self.config.timeouts.audit
        attempts = [(NATIVE, "clawdbot", AUDIT_COMMAND)]
        if self.platform.has_windows_side:
            attempts.append((
                WINDOWS,
                "clawdbot-windows",
                self.platform.powershell_command(" ".join(AUDIT_COMMAND)),
            ))

        audits: list[AuditReport] = []
        failures: list[CommandResult] = []
        cli_found = False
        for context, tool, command in attempts:
            result = await self.run_tool(report, tool, command, timeout=timeout)
            # CLI exits non-zero when it finds critical issues; the summary line decides
            output = result.stdout + result.stderr
            parsed = parse_audit_output(output, context)
            if parsed.has_summary:
                cli_found = True
                report.details.setdefault("rawOutput", {})[context] = result.stdout
                audits.append(parsed)
            elif not result.not_found and not _missing_on_windows(result):
                cli_found = True
                failures.append(result)
            else:
                self.record_tool(report, tool, False)
        return audits, cli_found, failures

    def _apply_audit(self, report: CheckReport, audit: AuditReport) -> None:
        report.details["source"] = "audit"
        report.details["platform"] = "+".join(audit.contexts)
        report.details.update(audit.to_dict())

        for issue in audit.issues:
            message = f"[{issue.id}] {issue.title}"
            if issue.description:
                message += f": {issue.description}"
            report.recommend(_RECOMMENDATION_SEVERITY[issue.severity], message)
            if issue.fix:
                report.add_fix(FixDescriptor(
                    id=f"clawdbot_{issue.id}",
                    name=issue.title,
                    description=issue.description or issue.title,
                    command=issue.fix,
                    manual_steps=[
                        f"Run in terminal: {issue.fix}" if issue.fix.startswith("chmod") else issue.fix,
                        "Re-run: clawdbot security audit to verify",
                    ],
                    platform="+".join(issue.contexts),
                ))

        summary = audit.summary
        if summary["critical"] > 0:
            report.escalate(CheckStatus.CRITICAL)
            report.message = f"{summary['critical']} critical security issue(s) found!"
        elif summary["warn"] > 0:
            report.escalate(CheckStatus.WARNING)
            report.message = f"{summary['warn']} warning(s) found"
        else:
            report.message = "Gateway configuration is secure"

    async def _inspect_config(self, report: CheckReport) -> None:
        report.details["source"] = "config"

        config_path: Optional[Path] = None
        content = ""
        for path in gateway_config_paths(self.home):
            try:
                content = await self.runner.read_text(path)
            except OSError:
                continue
            config_path = path
            break

        running_result = await self.run_tool(report, "pgrep", ["pgrep", "-f", "clawdbot.*gateway"])
        running = running_result.success and bool(running_result.stdout.strip())
        report.details["running"] = running

        if config_path is None:
            report.details["configPath"] = None
            report.escalate(CheckStatus.INFO)
            report.message = "Gateway is not installed"
            return

        report.details["configPath"] = str(config_path)
        security = inspect_gateway_config(content)
        report.details["security"] = security

        sockets, _, _ = await list_listening_sockets(self.runner)
        report.details["listeningPorts"] = sorted({
            s.port for s in sockets if s.process in ("node", "clawdbot")
        })

        if not security["localBinding"]:
            report.escalate(CheckStatus.WARNING)
            report.recommend(
                Severity.HIGH,
                "Gateway may be exposed to external interfaces. Bind to 127.0.0.1 for security.",
            )
        if not security["hasAuth"]:
            report.escalate(CheckStatus.WARNING)
            report.recommend(
                Severity.MEDIUM,
                "No authentication token detected in config. Ensure gateway requires authentication.",
            )

        if not running:
            # Findings on a stopped gateway stay as recommendations only
            report.status = CheckStatus.INFO
            report.message = "Gateway is not currently running"
            if report.recommendations:
                report.message += " and its config has security recommendations"
        elif report.status == CheckStatus.WARNING:
            report.message = "Gateway is running but has security recommendations"
        else:
            report.message = "Gateway is running with secure configuration"


def _missing_on_windows(result: CommandResult) -> bool:
    """PowerShell prints a CommandNotFoundException when clawdbot is absent."""
    output = result.stdout + result.stderr
    return "CommandNotFoundException" in output or "is not recognized" in output
