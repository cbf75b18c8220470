"""Report model shared by probes, the aggregator and the fix dispatcher.

Two severity vocabularies coexist on purpose:

- CheckStatus classifies a whole check (pass, info, warning, critical,
  error) and drives scoring.
- Severity triages an individual recommendation (critical, high, medium,
  low, info) and never affects the score.

Serialized payloads use camelCase keys because that is what the
dashboard frontend reads.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class CheckStatus(Enum):
    """Terminal classification of one check run."""

    PASS = "pass"
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"
    ERROR = "error"  # Probe failed; excluded from every tally

    @property
    def rank(self) -> int:
        """Precedence for escalation: critical > warning > info > pass."""
        return _STATUS_RANK[self]


_STATUS_RANK = {
    CheckStatus.PASS: 0,
    CheckStatus.INFO: 1,
    CheckStatus.WARNING: 2,
    CheckStatus.CRITICAL: 3,
    CheckStatus.ERROR: -1,
}


class Severity(Enum):
    """Triage level of a single recommendation."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class Category(Enum):
    """Descriptive grouping; does not affect scoring."""

    NETWORK = "network"
    SECURITY = "security"
    SYSTEM = "system"
    APPLICATION = "application"
    HARDWARE = "hardware"


class FixId(Enum):
    """Every fix the dispatcher can execute.

    Probes attach these ids to FixDescriptors with auto_fix=True; any
    other fix id in a report is guidance only.
    """

    ENABLE_UFW = "enable_ufw"
    ENABLE_WINDOWS_FIREWALL = "enable_windows_firewall"
    ENABLE_MACOS_FIREWALL = "enable_macos_firewall"
    INSTALL_SECURITY_UPDATES = "install_security_updates"
    INSTALL_ALL_UPDATES = "install_all_updates"
    HARDEN_SSH = "harden_ssh"
    STOP_TELNET = "stop_telnet"
    STOP_RSH = "stop_rsh"
    STOP_RLOGIN = "stop_rlogin"
    STOP_FTP = "stop_ftp"
    FIX_PERMISSIONS = "fix_permissions"


@dataclass
class Recommendation:
    """A single finding with its own triage severity."""
    severity: Severity
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"severity": self.severity.value, "message": self.message}


@dataclass
class FixDescriptor:
    """Remediation metadata attached to a check report.

    auto_fix=True means the fix dispatcher owns an executable action
    under the same id. Otherwise only the script, command and manual
    steps are offered as guidance.
    """
    id: str
    name: str
    description: str
    auto_fix: bool = False
    script: Optional[str] = None
    command: Optional[str] = None
    manual_steps: Optional[list[str]] = None
    params: Optional[dict[str, Any]] = None
    platform: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "autoFix": self.auto_fix,
        }
        if self.script is not None:
            data["script"] = self.script
        if self.command is not None:
            data["command"] = self.command
        if self.manual_steps is not None:
            data["manualSteps"] = list(self.manual_steps)
        if self.params is not None:
            data["params"] = dict(self.params)
        if self.platform is not None:
            data["platform"] = self.platform
        return data


@dataclass
class CheckReport:
    """Normalized output of one probe run."""

    name: str
    description: str
    category: Category
    status: CheckStatus = CheckStatus.PASS
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    recommendations: list[Recommendation] = field(default_factory=list)
    fixes: list[FixDescriptor] = field(default_factory=list)
    id: Optional[str] = None  # Assigned by the registry

    def escalate(self, status: CheckStatus) -> None:
        """Raise the status to `status` unless it is already more severe."""
        if status.rank > self.status.rank:
            self.status = status

    def recommend(self, severity: Severity, message: str) -> None:
        self.recommendations.append(Recommendation(severity, message))

    def add_fix(self, fix: FixDescriptor) -> None:
        """Append a fix unless the same id with the same params is listed."""
        if all((f.id, f.params) != (fix.id, fix.params) for f in self.fixes):
            self.fixes.append(fix)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "status": self.status.value,
            "message": self.message,
            "details": self.details,
            "recommendations": [r.to_dict() for r in self.recommendations],
            "fixes": [f.to_dict() for f in self.fixes],
        }


@dataclass
class ResultSet:
    """All check reports of one aggregation run plus the computed score."""

    total_checks: int
    passed: int
    info: int
    warnings: int
    critical: int
    overall_score: int
    checks: list[CheckReport]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def errors(self) -> int:
        """Checks that errored (not part of any tally)."""
        return self.total_checks - (self.passed + self.info + self.warnings + self.critical)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "totalChecks": self.total_checks,
            "passed": self.passed,
            "info": self.info,
            "warnings": self.warnings,
            "critical": self.critical,
            "overallScore": self.overall_score,
            "checks": [c.to_dict() for c in self.checks],
        }


@dataclass
class FixOutcome:
    """Result of one fix invocation."""
    success: bool
    message: str
    output: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.output is not None:
            data["output"] = self.output
        return data
