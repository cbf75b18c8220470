"""Open ports probe."""

from hostguard.checks.base import Probe
from hostguard.checks.sockets import list_listening_sockets
from hostguard.core.exceptions import ExecutionError
from hostguard.models import (
    Category,
    CheckReport,
    CheckStatus,
    FixDescriptor,
    Severity,
)


# Dev servers that usually only need loopback
RESTRICTABLE_PROCESSES = frozenset({"node", "python", "python3"})

NAT_NOTE = (
    "WSL2 is running in NAT mode; ports bound to all interfaces are only "
    "reachable from the Windows host, not from the network."
)


class OpenPortsProbe(Probe):
    """Checks for ports listening on all interfaces."""

    name = "Open Ports"
    description = "Checks for ports listening on all interfaces (0.0.0.0 or ::)"
    category = Category.NETWORK

    async def inspect(self, report: CheckReport) -> None:
        sockets, tool, last = await list_listening_sockets(self.runner)
        self.record_tool(report, "ss", tool == "ss")
        self.record_tool(report, "netstat", tool == "netstat")
        if tool is None:
            raise ExecutionError(
                "Neither ss nor netstat could list listening sockets",
                command=last.command_line,
                return_code=last.return_code,
                stderr=last.stderr,
            )

        exposed = [s for s in sockets if s.exposed]
        local = [s for s in sockets if not s.exposed]
        report.details.update({
            "exposedPorts": [s.to_dict() for s in exposed],
            "localPorts": [s.to_dict() for s in local],
            "totalListening": len(sockets),
            "natIsolated": self.platform.is_isolated_nat,
        })

        if not exposed:
            report.message = "No ports are exposed to external interfaces"
            return

        for sock in exposed:
            report.recommend(
                Severity.MEDIUM,
                f"Port {sock.port} ({sock.process}) is exposed to all interfaces. "
                "Consider binding to localhost only.",
            )
            if sock.process in RESTRICTABLE_PROCESSES:
                report.add_fix(FixDescriptor(
                    id=f"close_port_{sock.port}",
                    name=f"Restrict port {sock.port} to localhost",
                    description=(
                        f"Change {sock.process} to bind to 127.0.0.1:{sock.port} "
                        f"instead of 0.0.0.0:{sock.port}"
                    ),
                    manual_steps=[
                        f"Find the {sock.process} process listening on port {sock.port}",
                        "Change its host/bind setting to 127.0.0.1",
                        "Restart the process",
                    ],
                ))

        if self.platform.is_isolated_nat:
            report.escalate(CheckStatus.INFO)
            report.details["note"] = NAT_NOTE
            report.message = (
                f"{len(exposed)} port(s) listening on all interfaces "
                "(isolated by WSL2 NAT)"
            )
        else:
            report.escalate(CheckStatus.WARNING)
            report.message = f"{len(exposed)} port(s) are listening on all interfaces"
