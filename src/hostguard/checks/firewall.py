"""Firewall probe.

The host counts as protected when any one mechanism is active: ufw,
firewalld, an iptables rule set, the macOS application firewall, or a
Windows Firewall profile (reachable natively or from WSL2).
"""

from typing import Any

from hostguard.checks.base import Probe
from hostguard.models import (
    Category,
    CheckReport,
    CheckStatus,
    FixDescriptor,
    FixId,
    Severity,
)


WINDOWS_PROFILE_SCRIPT = "Get-NetFirewallProfile | Select-Object Name,Enabled"


def count_iptables_rules(output: str) -> int:
    """Count rule lines in `iptables -L -n` output (headers excluded)."""
    return len([
        line for line in output.splitlines()
        if line.strip()
        and not line.startswith("Chain")
        and not line.startswith("target")
    ])


def parse_windows_profiles(output: str) -> list[dict[str, Any]]:
    """Parse the Name/Enabled table printed by Get-NetFirewallProfile."""
    profiles: list[dict[str, Any]] = []
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 2 or parts[-1] not in ("True", "False"):
            continue
        profiles.append({"name": parts[0], "enabled": parts[-1] == "True"})
    return profiles


ENABLE_UFW_FIX = FixDescriptor(
    id=FixId.ENABLE_UFW.value,
    name="Enable UFW Firewall",
    description="Enable the Uncomplicated Firewall (UFW) with default deny incoming policy",
    auto_fix=True,
    script="enable-firewall",
    command="sudo ufw --force enable",
)

ENABLE_WINDOWS_FIX = FixDescriptor(
    id=FixId.ENABLE_WINDOWS_FIREWALL.value,
    name="Enable Windows Firewall",
    description="Enable all Windows Firewall profiles for maximum protection",
    auto_fix=True,
    script="enable-firewall",
)

ENABLE_MACOS_FIX = FixDescriptor(
    id=FixId.ENABLE_MACOS_FIREWALL.value,
    name="Enable macOS Firewall",
    description="Turn on the macOS application firewall",
    auto_fix=True,
    script="enable-firewall",
    command="sudo /usr/libexec/ApplicationFirewall/socketfilterfw --setglobalstate on",
)


class FirewallProbe(Probe):
    """Checks if a firewall is active and properly configured."""

    name = "Firewall Status"
    description = "Checks if a firewall is active and properly configured"
    category = Category.SECURITY

    async def inspect(self, report: CheckReport) -> None:
        active: list[str] = []

        ufw = self.platform.firewall_tool("ufw")
        if ufw:
            result = await self.run_privileged_tool(report, "ufw", [ufw, "status"])
            ufw_active = result.success and "status: active" in result.stdout.lower()
            report.details["ufw"] = {
                "installed": True,
                "active": ufw_active,
                "output": result.stdout.strip(),
            }
            if ufw_active:
                active.append("ufw")
        else:
            report.details["ufw"] = {"installed": False}
            self.record_tool(report, "ufw", False)

        firewalld = self.platform.firewall_tool("firewalld")
        if firewalld:
            result = await self.run_tool(report, "firewalld", [firewalld, "--state"])
            running = result.stdout.strip() == "running"
            report.details["firewalld"] = {"installed": True, "running": running}
            if running:
                active.append("firewalld")

        iptables = self.platform.firewall_tool("iptables")
        if iptables:
            result = await self.run_privileged_tool(report, "iptables", [iptables, "-L", "-n"])
            if result.success:
                rules = count_iptables_rules(result.stdout)
                report.details["iptables"] = {"available": True, "rulesCount": rules}
                if rules > 0:
                    active.append("iptables")
            else:
                report.details["iptables"] = {"available": False}
        else:
            report.details["iptables"] = {"available": False}
            self.record_tool(report, "iptables", False)

        socketfilterfw = self.platform.firewall_tool("socketfilterfw")
        if socketfilterfw:
            result = await self.run_tool(report, "socketfilterfw", [socketfilterfw, "--getglobalstate"])
            enabled = result.success and "enabled" in result.stdout.lower()
            report.details["macosFirewall"] = {"available": result.success, "enabled": enabled}
            if enabled:
                active.append("macos")

        profiles = await self._windows_profiles(report)
        if profiles:
            if any(p["enabled"] for p in profiles):
                active.append("windows")
            if not all(p["enabled"] for p in profiles):
                disabled = ", ".join(p["name"] for p in profiles if not p["enabled"])
                report.escalate(CheckStatus.WARNING)
                report.recommend(
                    Severity.HIGH,
                    f"Some Windows Firewall profiles are disabled ({disabled})",
                )
                report.add_fix(ENABLE_WINDOWS_FIX)

        report.details["activeMechanisms"] = active

        if not active:
            report.escalate(CheckStatus.CRITICAL)
            report.recommend(
                Severity.CRITICAL,
                "Enable a firewall immediately. Your system is exposed.",
            )
            report.add_fix(self._enable_fix())
            report.message = "No active firewall detected!"
        elif report.status == CheckStatus.WARNING:
            report.message = "Firewall is active but some profiles are disabled"
        else:
            report.message = f"Firewall is active ({', '.join(active)})"

    async def _windows_profiles(self, report: CheckReport) -> list[dict[str, Any]]:
        if not self.platform.has_windows_side:
            report.details["windowsFirewall"] = {"available": False}
            return []

        result = await self.run_tool(
            report,
            "powershell",
            self.platform.powershell_command(WINDOWS_PROFILE_SCRIPT),
            timeout=self.config.timeouts.powershell,
        )
        profiles = parse_windows_profiles(result.stdout) if result.success else []
        report.details["windowsFirewall"] = {
            "available": bool(profiles),
            "profiles": profiles,
        }
        return profiles

    def _enable_fix(self) -> FixDescriptor:
        if self.platform.is_macos:
            return ENABLE_MACOS_FIX
        return ENABLE_UFW_FIX
