"""Network exposure probe.

Looks at interface addresses, the default gateway, services bound to
every interface and, on WSL2 or Windows, netsh port-proxy rules that
forward Windows ports into the host. Everything is read locally.
"""

import ipaddress
import re
from typing import Any, Optional

from hostguard.checks.base import Probe
from hostguard.checks.open_ports import NAT_NOTE
from hostguard.checks.sockets import list_listening_sockets
from hostguard.models import Category, CheckReport, CheckStatus, Severity


_IP_ADDR_IFACE_RE = re.compile(r"^\d+:\s+([^:\s]+)")
_IFCONFIG_IFACE_RE = re.compile(r"^([^\s:]+):?\s")
_INET_RE = re.compile(r"inet\s+(?:addr:)?(\d+\.\d+\.\d+\.\d+)")

PORTPROXY_SCRIPT = "netsh interface portproxy show all"


def is_private_address(address: str) -> bool:
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    return ip.is_private or ip.is_loopback


def parse_interfaces(output: str) -> list[dict[str, Any]]:
    """Extract (interface, IPv4 address) pairs from `ip addr` or `ifconfig`."""
    interfaces: list[dict[str, Any]] = []
    current: Optional[str] = None
    for line in output.splitlines():
        match = _IP_ADDR_IFACE_RE.match(line) or _IFCONFIG_IFACE_RE.match(line)
        if match:
            current = match.group(1).split("@", 1)[0]
        inet = _INET_RE.search(line)
        if inet and current:
            address = inet.group(1)
            interfaces.append({
                "name": current,
                "ip": address,
                "isPrivate": is_private_address(address),
            })
    return interfaces


def parse_default_gateway(output: str) -> Optional[str]:
    """Gateway address from `ip route show default`."""
    for line in output.splitlines():
        parts = line.split()
        if "via" in parts:
            index = parts.index("via")
            if index + 1 < len(parts):
                return parts[index + 1]
    return None


def count_portproxy_rules(output: str) -> int:
    """Count rule rows in `netsh interface portproxy show all` output."""
    if "no entries" in output.lower():
        return 0
    count = 0
    for line in output.splitlines():
        parts = line.split()
        # Address  Port  Address  Port
        if len(parts) == 4 and parts[1].isdigit() and parts[3].isdigit():
            count += 1
    return count


class NetworkProbe(Probe):
    """Checks for external network exposure."""

    name = "Network Exposure"
    description = "Checks for external network exposure and potential vulnerabilities"
    category = Category.NETWORK

    async def inspect(self, report: CheckReport) -> None:
        report.details["interfaces"] = await self._interfaces(report)
        report.details["defaultGateway"] = await self._default_gateway(report)
        report.details["platform"] = self.platform.to_dict()

        sockets, tool, _ = await list_listening_sockets(self.runner)
        self.record_tool(report, "ss", tool == "ss")
        self.record_tool(report, "netstat", tool == "netstat")
        exposed = [s for s in sockets if s.exposed]
        report.details["exposedServices"] = [
            {"port": s.port, "process": s.process} for s in exposed
        ]

        for sock in exposed:
            report.recommend(
                Severity.MEDIUM,
                f"Port {sock.port} ({sock.process}) is bound to 0.0.0.0 - "
                "accessible from any network interface",
            )

        if self.platform.has_windows_side:
            rules = await self._portproxy_rules(report)
            report.details["portForwarding"] = rules
            if rules:
                report.recommend(
                    Severity.MEDIUM,
                    f"{rules} port forwarding rule(s) configured in Windows",
                )

        if not exposed:
            report.message = "Network configuration looks secure"
        elif self.platform.is_isolated_nat:
            report.escalate(CheckStatus.INFO)
            report.details["note"] = NAT_NOTE
            report.message = (
                f"{len(exposed)} service(s) bound to all interfaces "
                "(isolated by WSL2 NAT)"
            )
        else:
            report.escalate(CheckStatus.WARNING)
            report.message = f"{len(exposed)} service(s) exposed on all interfaces"

    async def _interfaces(self, report: CheckReport) -> list[dict[str, Any]]:
        result = await self.run_tool(report, "ip", ["ip", "addr", "show"])
        if result.success:
            return parse_interfaces(result.stdout)
        result = await self.run_tool(report, "ifconfig", ["ifconfig"])
        if result.success:
            return parse_interfaces(result.stdout)
        return []

    async def _default_gateway(self, report: CheckReport) -> str:
        result = await self.run_tool(report, "ip", ["ip", "route", "show", "default"])
        gateway = parse_default_gateway(result.stdout) if result.success else None
        return gateway or "unknown"

    async def _portproxy_rules(self, report: CheckReport) -> int:
        result = await self.run_tool(
            report,
            "powershell",
            self.platform.powershell_command(PORTPROXY_SCRIPT),
            timeout=self.config.timeouts.powershell,
        )
        return count_portproxy_rules(result.stdout) if result.success else 0
