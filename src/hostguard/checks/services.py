"""Running services probe."""

from dataclasses import dataclass
from typing import Optional

from hostguard.checks.base import Probe
from hostguard.checks.sockets import list_listening_sockets
from hostguard.core.exceptions import ExecutionError
from hostguard.models import (
    Category,
    CheckReport,
    CheckStatus,
    FixDescriptor,
    FixId,
    Severity,
)


@dataclass(frozen=True)
class RiskyService:
    """A service that is a risk when running unintentionally."""
    name: str
    risk: Severity
    reason: str
    processes: frozenset[str]
    fix: Optional[FixId] = None


RISK_TABLE = (
    RiskyService("telnet", Severity.CRITICAL, "Unencrypted remote access protocol",
                 frozenset({"telnetd", "in.telnetd", "telnet"}), FixId.STOP_TELNET),
    RiskyService("ftp", Severity.HIGH, "Unencrypted file transfer protocol",
                 frozenset({"ftpd", "in.ftpd", "vsftpd", "proftpd", "pure-ftpd"}), FixId.STOP_FTP),
    RiskyService("rsh", Severity.CRITICAL, "Insecure remote shell",
                 frozenset({"rshd", "in.rshd"}), FixId.STOP_RSH),
    RiskyService("rlogin", Severity.CRITICAL, "Insecure remote login",
                 frozenset({"rlogind", "in.rlogind"}), FixId.STOP_RLOGIN),
    RiskyService("vnc", Severity.MEDIUM, "Remote desktop - ensure encrypted",
                 frozenset({"xvnc", "vncserver", "x11vnc", "xtigervnc", "vino-server"})),
    RiskyService("mysql", Severity.LOW, "Database server - check binding",
                 frozenset({"mysqld", "mariadbd"})),
    RiskyService("postgres", Severity.LOW, "Database server - check binding",
                 frozenset({"postgres", "postmaster"})),
    RiskyService("redis", Severity.MEDIUM, "In-memory store - often misconfigured",
                 frozenset({"redis-server"})),
    RiskyService("mongo", Severity.MEDIUM, "Database - check authentication",
                 frozenset({"mongod", "mongos"})),
    RiskyService("docker", Severity.LOW, "Container runtime - check socket permissions",
                 frozenset({"dockerd"})),
)


def normalize_process(name: str) -> str:
    """Basename, lowercased, without a login-shell dash."""
    return name.strip().rsplit("/", 1)[-1].lstrip("-").lower()


def match_risky_services(process_names: set[str]) -> list[RiskyService]:
    """Risk table entries with at least one matching process, in table order."""
    normalized = {normalize_process(p) for p in process_names if p.strip()}
    return [svc for svc in RISK_TABLE if svc.processes & normalized]


class ServicesProbe(Probe):
    """Checks for potentially risky running services."""

    name = "Running Services"
    description = "Checks for potentially risky running services"
    category = Category.SECURITY

    async def inspect(self, report: CheckReport) -> None:
        ps = await self.run_tool(report, "ps", ["ps", "-eo", "comm="])
        sockets, tool, last = await list_listening_sockets(self.runner)
        self.record_tool(report, "ss", tool == "ss")
        self.record_tool(report, "netstat", tool == "netstat")

        if not ps.success and tool is None:
            raise ExecutionError(
                "Could not list processes or listening sockets",
                command=ps.command_line,
                return_code=ps.return_code,
                stderr=ps.stderr or last.stderr,
            )

        names = set(ps.lines) if ps.success else set()
        names.update(s.process for s in sockets if s.process != "unknown")

        report.details["services"] = [
            {"name": s.process, "port": s.port} for s in sockets if s.process != "unknown"
        ]

        risky = match_risky_services(names)
        report.details["riskyServices"] = [
            {"name": svc.name, "risk": svc.risk.value, "reason": svc.reason}
            for svc in risky
        ]

        for svc in risky:
            report.recommend(svc.risk, f"{svc.name} is running: {svc.reason}")
            if svc.fix is not None:
                report.add_fix(FixDescriptor(
                    id=svc.fix.value,
                    name=f"Stop {svc.name}",
                    description=f"Stop and disable the {svc.name} service",
                    auto_fix=True,
                ))

        critical = [s for s in risky if s.risk == Severity.CRITICAL]
        high = [s for s in risky if s.risk == Severity.HIGH]

        if critical:
            report.escalate(CheckStatus.CRITICAL)
            report.message = f"{len(critical)} critical-risk service(s) running!"
        elif high:
            report.escalate(CheckStatus.WARNING)
            report.message = f"{len(high)} high-risk service(s) detected"
        else:
            report.message = f"{len(report.details['services'])} service(s) running, no major risks"
