"""System updates probe.

Counts pending package updates with whichever package manager the
platform detected. Package indexes are not refreshed, so the numbers
reflect the last `apt-get update` / metadata sync the user ran.
"""

from dataclasses import dataclass, field
from typing import Any

from hostguard.checks.base import Probe
from hostguard.core.exceptions import ExecutionError
from hostguard.core.executor import CommandResult
from hostguard.models import (
    Category,
    CheckReport,
    CheckStatus,
    FixDescriptor,
    FixId,
    Severity,
)


# dnf/yum check-update exit status when updates are available
CHECK_UPDATE_AVAILABLE = 100

PACKAGE_PREVIEW = 5

UPGRADE_COMMANDS = {
    "apt": ("sudo apt-get upgrade -y", "sudo apt-get upgrade -y"),
    "dnf": ("sudo dnf upgrade --security -y", "sudo dnf upgrade -y"),
    "yum": ("sudo yum update --security -y", "sudo yum update -y"),
    "brew": ("brew upgrade", "brew upgrade"),
}


@dataclass
class PendingUpdates:
    """Pending updates reported by one package manager."""
    manager: str
    packages: list[str] = field(default_factory=list)
    security: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.packages)

    def to_dict(self) -> dict[str, Any]:
        return {
            "available": True,
            "totalUpdates": self.total,
            "securityUpdates": len(self.security),
            "packages": self.packages[:PACKAGE_PREVIEW],
        }


def parse_apt_upgradable(output: str) -> tuple[list[str], list[str]]:
    """Parse `apt list --upgradable` into (all packages, security packages).

    Lines look like `openssl/jammy-security 3.0.2-0ubuntu1.15 amd64 [upgradable from: ...]`.
    """
    packages: list[str] = []
    security: list[str] = []
    for line in output.splitlines():
        if "/" not in line or line.startswith("Listing"):
            continue
        name, _, rest = line.partition("/")
        suites = rest.split(None, 1)[0] if rest.strip() else ""
        packages.append(name)
        if "-security" in suites:
            security.append(name)
    return packages, security


def parse_rpm_updates(output: str) -> list[str]:
    """Package names from `dnf/yum check-update` or `updateinfo list` output."""
    packages: list[str] = []
    for line in output.splitlines():
        parts = line.split()
        if not parts or line.startswith((" ", "Last metadata", "Obsoleting", "Security:")):
            continue
        if len(parts) == 3 and "." in parts[0]:
            # check-update: name.arch version repo
            packages.append(parts[0].rsplit(".", 1)[0])
        elif len(parts) == 3:
            # updateinfo: advisory severity/type nevra
            packages.append(parts[2])
    return packages


def parse_brew_outdated(output: str) -> list[str]:
    return [line.split()[0] for line in output.splitlines() if line.strip()]


def _failed(result: CommandResult, what: str) -> ExecutionError:
    return ExecutionError(
        f"Failed to list {what}",
        command=result.command_line,
        return_code=result.return_code,
        stderr=result.stderr.strip() or None,
    )


class UpdatesProbe(Probe):
    """Checks for available system and security updates."""

    name = "System Updates"
    description = "Checks for available system and security updates"
    category = Category.SYSTEM

    async def inspect(self, report: CheckReport) -> None:
        manager = self.platform.package_manager
        report.details["packageManager"] = manager
        if manager is None:
            report.escalate(CheckStatus.INFO)
            report.message = "No supported package manager found"
            return

        pending = await self.pending_updates(report, manager)
        report.details[manager] = pending.to_dict()

        security_cmd, all_cmd = UPGRADE_COMMANDS[manager]

        if pending.security:
            report.escalate(CheckStatus.CRITICAL)
            report.recommend(
                Severity.CRITICAL,
                f"{len(pending.security)} security update(s) available. Install immediately!",
            )
            report.add_fix(FixDescriptor(
                id=FixId.INSTALL_SECURITY_UPDATES.value,
                name="Install Security Updates",
                description="Install critical security updates to patch vulnerabilities",
                script="install-updates",
                command=security_cmd,
                manual_steps=[
                    "Open a terminal",
                    f"Run: {security_cmd}",
                    "If prompted, review changes and confirm",
                    "Reboot if the kernel was updated",
                ],
            ))
            report.message = "Critical security updates available!"
        elif pending.total:
            preview = ", ".join(pending.packages[:3])
            if pending.total > 3:
                preview += "..."
            report.escalate(CheckStatus.WARNING)
            report.recommend(
                Severity.LOW,
                f"{pending.total} package update(s) available: {preview}",
            )
            report.add_fix(FixDescriptor(
                id=FixId.INSTALL_ALL_UPDATES.value,
                name="Install All Updates",
                description="Install all available package updates to keep your system current",
                script="install-updates",
                command=all_cmd,
                manual_steps=[
                    "Open a terminal",
                    f"Run: {all_cmd}",
                    "Or download the install-updates script and run it",
                ],
            ))
            report.message = "Some updates are available"
        else:
            report.message = "System is up to date"

    async def pending_updates(self, report: CheckReport, manager: str) -> PendingUpdates:
        if manager == "apt":
            result = await self.run_tool(report, "apt", ["apt", "list", "--upgradable"])
            if not result.success:
                raise _failed(result, "upgradable packages")
            packages, security = parse_apt_upgradable(result.stdout)
            return PendingUpdates(manager, packages, security)

        if manager in ("dnf", "yum"):
            result = await self.run_tool(report, manager, [manager, "check-update", "--quiet"])
            if result.return_code not in (0, CHECK_UPDATE_AVAILABLE):
                raise _failed(result, "available updates")
            packages = parse_rpm_updates(result.stdout)
            security = await self._rpm_security(report, manager)
            return PendingUpdates(manager, packages, security)

        if manager == "brew":
            result = await self.run_tool(report, "brew", ["brew", "outdated", "--quiet"])
            if not result.success:
                raise _failed(result, "outdated formulae")
            return PendingUpdates(manager, parse_brew_outdated(result.stdout))

        raise ExecutionError(f"Unsupported package manager: {manager}")

    async def _rpm_security(self, report: CheckReport, manager: str) -> list[str]:
        result = await self.run_tool(
            report, manager, [manager, "updateinfo", "list", "--security", "--quiet"]
        )
        return parse_rpm_updates(result.stdout) if result.success else []

