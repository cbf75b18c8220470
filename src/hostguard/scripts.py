"""Downloadable remediation script metadata.

The scripts themselves are served by the dashboard frontend; this table
only tells clients which file to fetch and how to run it on each
platform.
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class ScriptVariant:
    """How to obtain and run a script on one platform."""
    file: Optional[str]
    command: str
    type: str
    details: tuple[str, ...] = ()
    double_click: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"file": self.file, "command": self.command, "type": self.type}
        if self.details:
            data["details"] = list(self.details)
        if self.double_click:
            data["doubleClick"] = self.double_click
        return data


@dataclass(frozen=True)
class Script:
    name: str
    description: str
    platforms: dict[str, ScriptVariant] = field(default_factory=dict)
    warning: Optional[str] = None

    def to_dict(self, platform: Optional[str] = None) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "description": self.description}
        if self.warning:
            data["warning"] = self.warning
        if platform is None:
            data["platforms"] = {k: v.to_dict() for k, v in self.platforms.items()}
        else:
            data["platform"] = self.platforms[platform].to_dict()
        return data


PLATFORMS = ("linux", "windows", "macos")

SCRIPTS: dict[str, Script] = {
    "security-fix-all": Script(
        name="Complete Security Fix",
        description="Runs all security fixes: firewall, updates, services, permissions, and hardening",
        platforms={
            "linux": ScriptVariant("/scripts/linux/security-fix-all.sh", "sudo bash security-fix-all.sh", "shell"),
            "windows": ScriptVariant(
                "/scripts/windows/security-fix-all.ps1",
                "Right-click, Run as Administrator",
                "powershell",
            ),
            "macos": ScriptVariant("/scripts/macos/security-fix-all.sh", "sudo bash security-fix-all.sh", "shell"),
        },
    ),
    "enable-firewall": Script(
        name="Enable Firewall",
        description="Enables and configures the system firewall with secure defaults",
        platforms={
            "linux": ScriptVariant(
                "/scripts/linux/enable-firewall.sh",
                "sudo bash enable-firewall.sh",
                "shell",
                details=(
                    "Enables UFW, firewalld, or iptables (auto-detected)",
                    "Sets default policy to deny incoming, allow outgoing",
                    "Allows SSH (port 22) to prevent lockout",
                ),
            ),
            "windows": ScriptVariant(
                "/scripts/windows/enable-firewall.ps1",
                "Run enable-firewall.bat (double-click) or PowerShell as Admin",
                "powershell",
                details=(
                    "Enables Windows Defender Firewall for all profiles",
                    "Blocks all incoming by default",
                    "Allows all outgoing by default",
                    "Enables logging for blocked connections",
                ),
                double_click="/scripts/windows/enable-firewall.bat",
            ),
            "macos": ScriptVariant(
                "/scripts/macos/enable-firewall.sh",
                "sudo bash enable-firewall.sh",
                "shell",
                details=(
                    "Enables Application Firewall",
                    "Enables Stealth Mode (ignores pings)",
                    "Blocks all incoming connections",
                ),
            ),
        },
    ),
    "harden-ssh": Script(
        name="Harden SSH",
        description="Applies security best practices to SSH configuration",
        warning="This will disable password authentication. Ensure you have SSH key access first!",
        platforms={
            "linux": ScriptVariant(
                "/scripts/linux/harden-ssh.sh",
                "sudo bash harden-ssh.sh",
                "shell",
                details=(
                    "Disables root login",
                    "Disables password authentication",
                    "Enables public key authentication only",
                    "Sets max auth tries to 3",
                    "Enables session timeouts",
                    "Creates backup of original config",
                ),
            ),
            "macos": ScriptVariant(
                "/scripts/macos/harden-ssh.sh",
                "sudo bash harden-ssh.sh",
                "shell",
                details=(
                    "Option to disable Remote Login entirely",
                    "Or harden with key-only authentication",
                    "Creates backup of original config",
                ),
            ),
        },
    ),
    "install-updates": Script(
        name="Install System Updates",
        description="Downloads and installs all available system updates",
        platforms={
            "linux": ScriptVariant(
                "/scripts/linux/install-updates.sh",
                "sudo bash install-updates.sh",
                "shell",
                details=(
                    "Auto-detects package manager (apt, dnf, yum, pacman, etc.)",
                    "Updates package lists",
                    "Installs all available updates",
                    "Cleans package cache",
                    "Prompts for reboot if required",
                ),
            ),
            "windows": ScriptVariant(
                "/scripts/windows/install-updates.ps1",
                "Run as Administrator in PowerShell",
                "powershell",
                details=(
                    "Checks for available Windows Updates",
                    "Downloads and installs all updates",
                    "Prompts for reboot if required",
                ),
            ),
            "macos": ScriptVariant(
                None,
                "softwareupdate -ia --verbose",
                "manual",
                details=(
                    "Run: softwareupdate -l (list updates)",
                    "Run: sudo softwareupdate -ia (install all)",
                    "Or use: System Settings > General > Software Update",
                ),
            ),
        },
    ),
}


def scripts_for_platform(platform: Optional[str] = None) -> dict[str, dict[str, Any]]:
    """Script metadata, narrowed to one platform when given.

    Scripts without a variant for `platform` are left out.
    """
    if platform is None:
        return {script_id: script.to_dict() for script_id, script in SCRIPTS.items()}
    return {
        script_id: script.to_dict(platform)
        for script_id, script in SCRIPTS.items()
        if platform in script.platforms
    }


def platform_from_user_agent(user_agent: str = "") -> str:
    """Guess the client platform from a User-Agent header; WSL browsers count as linux."""
    ua = user_agent.lower()
    if "windows" in ua:
        return "windows"
    if "mac" in ua:
        return "macos"
    return "linux"
