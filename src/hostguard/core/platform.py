"""Host platform detection.

Probes never branch on sys.platform themselves. They receive a Platform
that records what kind of host this is (Linux, WSL2 or macOS),
how WSL2 networking is set up, and which firewall and package tools are
usable. Detection is a capability check over /proc/version,
/etc/resolv.conf and PATH lookups, not a guess.
"""

import ipaddress
import re
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from hostguard.core.exceptions import ConfigurationError
from hostguard.core.executor import CommandRunner


PROC_VERSION = Path("/proc/version")
RESOLV_CONF = Path("/etc/resolv.conf")

# Windows PowerShell as seen from inside WSL2
WSL_POWERSHELL = "/mnt/c/Windows/System32/WindowsPowerShell/v1.0/powershell.exe"

MACOS_SOCKETFILTERFW = "/usr/libexec/ApplicationFirewall/socketfilterfw"

WSL_KEYWORDS = ("microsoft", "wsl")

# Checked in order; the first one found wins
PACKAGE_MANAGERS = ("apt", "dnf", "yum", "brew")

LINUX_FIREWALL_TOOLS = {
    "ufw": "ufw",
    "firewalld": "firewall-cmd",
    "iptables": "iptables",
}

_NAMESERVER_RE = re.compile(r"^\s*nameserver\s+(\d+\.\d+\.\d+\.\d+)", re.MULTILINE)


class PlatformKind(Enum):
    """Operating system family of the host."""
    LINUX = "linux"
    WSL2 = "wsl2"
    MACOS = "macos"


class NetworkMode(Enum):
    """How the host is attached to the network."""
    NATIVE = "native"
    NAT = "nat"            # WSL2 default: isolated virtual network
    MIRRORED = "mirrored"  # WSL2 mirrored mode: shares the Windows interfaces


@dataclass
class Platform:
    """Capabilities of the current host."""

    kind: PlatformKind
    network_mode: NetworkMode = NetworkMode.NATIVE
    windows_host: Optional[str] = None
    powershell: Optional[str] = None
    firewall_tools: dict[str, str] = field(default_factory=dict)
    package_manager: Optional[str] = None

    @property
    def is_wsl2(self) -> bool:
        return self.kind == PlatformKind.WSL2

    @property
    def is_macos(self) -> bool:
        return self.kind == PlatformKind.MACOS

    @property
    def is_unix(self) -> bool:
        """Linux-style userland is available (native Linux or WSL2)."""
        return self.kind in (PlatformKind.LINUX, PlatformKind.WSL2)

    @property
    def is_isolated_nat(self) -> bool:
        """Wildcard-bound services are unreachable from outside the host."""
        return self.is_wsl2 and self.network_mode == NetworkMode.NAT

    @property
    def has_windows_side(self) -> bool:
        """Windows tooling can be reached through PowerShell."""
        return self.powershell is not None

    def firewall_tool(self, name: str) -> Optional[str]:
        """Path of a firewall manager, or None if it is not installed."""
        return self.firewall_tools.get(name)

    def powershell_command(self, script: str) -> list[str]:
        """Build a command running a PowerShell script on the Windows side."""
        if self.powershell is None:
            raise RuntimeError("PowerShell is not available on this host")
        return [self.powershell, "-NoProfile", "-NonInteractive", "-Command", script]

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "networkMode": self.network_mode.value,
            "windowsHost": self.windows_host,
            "powershell": self.has_windows_side,
            "firewallTools": sorted(self.firewall_tools),
            "packageManager": self.package_manager,
        }


def is_wsl_version_string(version: str) -> bool:
    """Check a /proc/version string for the WSL kernel signature."""
    lowered = version.lower()
    return any(keyword in lowered for keyword in WSL_KEYWORDS)


def parse_nameserver(resolv_conf: str) -> Optional[str]:
    """Return the first IPv4 nameserver from resolv.conf content."""
    match = _NAMESERVER_RE.search(resolv_conf)
    return match.group(1) if match else None


def is_virtual_network_nameserver(address: Optional[str]) -> bool:
    """WSL2 NAT mode points resolv.conf at a private gateway address."""
    if not address:
        return False
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    return ip.is_private and not ip.is_loopback


async def _read_optional(runner: CommandRunner, path: Path) -> str:
    try:
        return await runner.read_text(path)
    except OSError:
        return ""


async def _wsl_network_mode(runner: CommandRunner, powershell: Optional[str], nameserver: Optional[str]) -> NetworkMode:
    if powershell:
        result = await runner.run(
            [powershell, "-NoProfile", "-NonInteractive", "-Command",
             "Get-Content $env:USERPROFILE\\.wslconfig -ErrorAction SilentlyContinue"],
            timeout=10,
        )
        if result.success and "networkingmode=mirrored" in result.stdout.lower().replace(" ", ""):
            return NetworkMode.MIRRORED
    if is_virtual_network_nameserver(nameserver):
        return NetworkMode.NAT
    return NetworkMode.NATIVE


def _detect_tools(runner: CommandRunner, kind: PlatformKind) -> tuple[dict[str, str], Optional[str]]:
    firewall_tools: dict[str, str] = {}
    if kind in (PlatformKind.LINUX, PlatformKind.WSL2):
        for name, binary in LINUX_FIREWALL_TOOLS.items():
            path = runner.which(binary)
            if path:
                firewall_tools[name] = path
    elif kind == PlatformKind.MACOS:
        firewall_tools["socketfilterfw"] = MACOS_SOCKETFILTERFW

    package_manager = None
    for name in PACKAGE_MANAGERS:
        if runner.which(name):
            package_manager = name
            break

    return firewall_tools, package_manager


async def detect_platform(runner: CommandRunner, system: Optional[str] = None) -> Platform:
    """Detect the current host platform.

    Args:
        runner: Command runner used for file reads and PATH lookups
        system: Override for sys.platform (tests)
    """
    system = system or sys.platform

    if system == "darwin":
        kind = PlatformKind.MACOS
    elif system in ("win32", "cygwin"):
        raise ConfigurationError(
            "hostguard does not run natively on Windows",
            hint="Run it inside WSL2; the Windows firewall and sensors are reached through PowerShell",
        )
    else:
        version = await _read_optional(runner, PROC_VERSION)
        kind = PlatformKind.WSL2 if is_wsl_version_string(version) else PlatformKind.LINUX

    powershell: Optional[str] = None
    windows_host: Optional[str] = None
    network_mode = NetworkMode.NATIVE

    if kind == PlatformKind.WSL2:
        powershell = runner.which("powershell.exe") or (
            WSL_POWERSHELL if Path(WSL_POWERSHELL).exists() else None
        )
        windows_host = parse_nameserver(await _read_optional(runner, RESOLV_CONF))
        network_mode = await _wsl_network_mode(runner, powershell, windows_host)

    firewall_tools, package_manager = _detect_tools(runner, kind)

    return Platform(
        kind=kind,
        network_mode=network_mode,
        windows_host=windows_host,
        powershell=powershell,
        firewall_tools=firewall_tools,
        package_manager=package_manager,
    )
