"""Listening socket discovery shared by the port, network and service probes.

Parses `ss -tlnp` output, falling back to `netstat -tlnp`.
"""

import re
from dataclasses import dataclass
from typing import Optional

from hostguard.core.executor import CommandResult, CommandRunner


WILDCARD_HOSTS = frozenset({"0.0.0.0", "::", "[::]", "*", "[::ffff:0.0.0.0]"})
LOOPBACK_PREFIXES = ("127.", "[::1]", "::1", "localhost")

_PROCESS_RE = re.compile(r'users:\(\("([^"]+)"')
# netstat shows "1234/sshd" in its last column
_NETSTAT_PROCESS_RE = re.compile(r"\d+/(\S+)\s*$")


@dataclass
class ListeningSocket:
    """One listening TCP socket."""
    address: str
    port: int
    process: str

    @property
    def binding(self) -> str:
        return f"{self.address}:{self.port}"

    @property
    def is_wildcard(self) -> bool:
        return self.address in WILDCARD_HOSTS

    @property
    def is_loopback(self) -> bool:
        return self.address.startswith(LOOPBACK_PREFIXES)

    @property
    def exposed(self) -> bool:
        """Bound to every interface rather than loopback only."""
        return self.is_wildcard and not self.is_loopback

    def to_dict(self) -> dict[str, object]:
        return {
            "port": self.port,
            "binding": self.binding,
            "process": self.process,
            "exposed": self.exposed,
        }


def split_address(local: str) -> Optional[tuple[str, int]]:
    """Split 'host:port' (IPv4, bracketed IPv6, or '*') into its parts.

    Interface-scoped addresses like '127.0.0.53%lo:53' lose the scope.
    """
    host, sep, port = local.rpartition(":")
    if not sep or not port.isdigit():
        return None
    host = host.split("%", 1)[0]
    if not host:
        return None
    return host, int(port)


def parse_listening_sockets(output: str) -> list[ListeningSocket]:
    """Parse ss or netstat TCP LISTEN output."""
    sockets: list[ListeningSocket] = []
    for line in output.splitlines():
        if "LISTEN" not in line:
            continue
        parts = line.split()
        try:
            state_index = parts.index("LISTEN")
        except ValueError:
            continue

        if parts[0].startswith("tcp"):
            # netstat: Proto Recv-Q Send-Q Local Foreign State PID/Program
            local = parts[3] if len(parts) > 3 else ""
        else:
            # ss: State Recv-Q Send-Q Local Peer Process
            local = parts[state_index + 3] if len(parts) > state_index + 3 else ""

        split = split_address(local)
        if split is None:
            continue
        address, port = split

        match = _PROCESS_RE.search(line) or _NETSTAT_PROCESS_RE.search(line)
        process = match.group(1) if match else "unknown"

        sockets.append(ListeningSocket(address=address, port=port, process=process))
    return sockets


async def list_listening_sockets(runner: CommandRunner) -> tuple[list[ListeningSocket], Optional[str], CommandResult]:
    """Run ss (or netstat) and parse its output.

    Returns:
        (sockets, tool used or None when neither tool worked, last result)
    """
    result = await runner.run(["ss", "-tlnp"])
    if result.success:
        return parse_listening_sockets(result.stdout), "ss", result

    result = await runner.run(["netstat", "-tlnp"])
    if result.success:
        return parse_listening_sockets(result.stdout), "netstat", result

    return [], None, result
