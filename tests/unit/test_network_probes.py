"""Unit tests for listening socket parsing and the port, network and service probes."""

import asyncio

import pytest

from hostguard.checks.network import (
    PORTPROXY_SCRIPT,
    NetworkProbe,
    count_portproxy_rules,
    parse_default_gateway,
    parse_interfaces,
)
from hostguard.checks.open_ports import OpenPortsProbe
from hostguard.checks.services import ServicesProbe, match_risky_services, normalize_process
from hostguard.checks.sockets import parse_listening_sockets, split_address
from hostguard.core.platform import NetworkMode, PlatformKind
from hostguard.models import CheckStatus, FixId, Severity

from conftest import FakeRunner, make_config, make_platform


SS_OUTPUT = """\
State  Recv-Q Send-Q Local Address:Port  Peer Address:Port Process
LISTEN 0      511    0.0.0.0:3000        0.0.0.0:*     users:(("node",pid=4120,fd=21))
LISTEN 0      244    127.0.0.1:5432      0.0.0.0:*     users:(("postgres",pid=901,fd=6))
LISTEN 0      4096   127.0.0.53%lo:53    0.0.0.0:*     users:(("systemd-resolve",pid=610,fd=14))
LISTEN 0      128    [::]:22             [::]:*        users:(("sshd",pid=812,fd=4))
"""

NETSTAT_OUTPUT = """\
Active Internet connections (only servers)
Proto Recv-Q Send-Q Local Address           Foreign Address         State       PID/Program name
tcp        0      0 0.0.0.0:21              0.0.0.0:*               LISTEN      733/vsftpd
tcp        0      0 127.0.0.1:6379          0.0.0.0:*               LISTEN      740/redis-server
"""

IP_ADDR = """\
1: lo: <LOOPBACK,UP,LOWER_UP> mtu 65536 qdisc noqueue state UNKNOWN group default qlen 1000
    inet 127.0.0.1/8 scope host lo
2: eth0@if5: <BROADCAST,MULTICAST,UP,LOWER_UP> mtu 1500 qdisc mq state UP group default qlen 1000
    inet 172.22.100.4/20 brd 172.22.111.255 scope global eth0
"""

PORTPROXY = """\

Listen on ipv4:             Connect to ipv4:

Address         Port        Address         Port
--------------- ----------  --------------- ----------
0.0.0.0         3000        172.22.100.4    3000
"""


class TestSocketParsing:
    """Tests for ss and netstat parsing."""

    def test_parse_ss(self):
        sockets = parse_listening_sockets(SS_OUTPUT)
        assert [(s.address, s.port, s.process) for s in sockets] == [
            ("0.0.0.0", 3000, "node"),
            ("127.0.0.1", 5432, "postgres"),
            ("127.0.0.53", 53, "systemd-resolve"),
            ("[::]", 22, "sshd"),
        ]
        assert [s.exposed for s in sockets] == [True, False, False, True]

    def test_parse_netstat(self):
        sockets = parse_listening_sockets(NETSTAT_OUTPUT)
        assert [(s.binding, s.process) for s in sockets] == [
            ("0.0.0.0:21", "vsftpd"),
            ("127.0.0.1:6379", "redis-server"),
        ]

    @pytest.mark.parametrize("local,expected", [
        ("0.0.0.0:80", ("0.0.0.0", 80)),
        ("[::1]:631", ("[::1]", 631)),
        ("*:8080", ("*", 8080)),
        ("0.0.0.0:*", None),
        ("garbage", None),
    ])
    def test_split_address(self, local, expected):
        assert split_address(local) == expected


class TestOpenPortsProbe:
    """Tests for OpenPortsProbe.run."""

    def test_exposed_ports_warn(self):
        runner = FakeRunner(commands={"ss -tlnp": SS_OUTPUT})
        report = asyncio.run(OpenPortsProbe(runner, make_platform(), make_config()).run())

        assert report.status == CheckStatus.WARNING
        assert [p["port"] for p in report.details["exposedPorts"]] == [3000, 22]
        assert report.details["totalListening"] == 4
        assert len(report.recommendations) == 2
        assert all(r.severity == Severity.MEDIUM for r in report.recommendations)
        # Only the dev server gets a restrict-to-localhost fix
        assert [f.id for f in report.fixes] == ["close_port_3000"]
        assert report.fixes[0].auto_fix is False

    def test_nat_isolation_downgrades_to_info(self):
        platform = make_platform(kind=PlatformKind.WSL2, network_mode=NetworkMode.NAT)
        runner = FakeRunner(commands={"ss -tlnp": SS_OUTPUT})
        report = asyncio.run(OpenPortsProbe(runner, platform, make_config()).run())

        assert report.status == CheckStatus.INFO
        assert report.details["natIsolated"] is True
        assert "note" in report.details

    def test_falls_back_to_netstat(self):
        runner = FakeRunner(commands={"netstat -tlnp": NETSTAT_OUTPUT})
        report = asyncio.run(OpenPortsProbe(runner, make_platform(), make_config()).run())

        assert report.details["tools"] == {"ss": False, "netstat": True}
        assert report.status == CheckStatus.WARNING

    def test_nothing_exposed_passes(self):
        runner = FakeRunner(commands={"ss -tlnp": "State Recv-Q Send-Q Local Peer\n"})
        report = asyncio.run(OpenPortsProbe(runner, make_platform(), make_config()).run())

        assert report.status == CheckStatus.PASS
        assert report.message == "No ports are exposed to external interfaces"

    def test_no_socket_tool_is_error(self):
        report = asyncio.run(OpenPortsProbe(FakeRunner(), make_platform(), make_config()).run())

        assert report.status == CheckStatus.ERROR
        assert report.message.startswith("Failed to check open ports:")


class TestNetworkProbe:
    """Tests for NetworkProbe and its parsers."""

    def test_parse_interfaces(self):
        assert parse_interfaces(IP_ADDR) == [
            {"name": "lo", "ip": "127.0.0.1", "isPrivate": True},
            {"name": "eth0", "ip": "172.22.100.4", "isPrivate": True},
        ]

    def test_parse_default_gateway(self):
        assert parse_default_gateway("default via 172.22.96.1 dev eth0 proto kernel\n") == "172.22.96.1"
        assert parse_default_gateway("") is None

    def test_count_portproxy_rules(self):
        assert count_portproxy_rules(PORTPROXY) == 1
        assert count_portproxy_rules("No entries found.") == 0

    def test_exposed_services_warn(self):
        runner = FakeRunner(commands={
            "ip addr show": IP_ADDR,
            "ip route show default": "default via 10.0.0.1 dev eth0\n",
            "ss -tlnp": SS_OUTPUT,
        })
        report = asyncio.run(NetworkProbe(runner, make_platform(), make_config()).run())

        assert report.status == CheckStatus.WARNING
        assert report.details["defaultGateway"] == "10.0.0.1"
        assert report.details["exposedServices"] == [
            {"port": 3000, "process": "node"},
            {"port": 22, "process": "sshd"},
        ]
        assert report.details["platform"]["kind"] == "linux"

    def test_portproxy_rules_reported_from_windows_side(self):
        platform = make_platform(
            kind=PlatformKind.WSL2,
            network_mode=NetworkMode.NAT,
            powershell="powershell.exe",
        )
        runner = FakeRunner(commands={
            " ".join(platform.powershell_command(PORTPROXY_SCRIPT)): PORTPROXY,
            "ss -tlnp": "",
        })
        report = asyncio.run(NetworkProbe(runner, platform, make_config()).run())

        assert report.details["portForwarding"] == 1
        assert report.details["defaultGateway"] == "unknown"
        assert report.status == CheckStatus.PASS
        assert report.recommendations[0].message == "1 port forwarding rule(s) configured in Windows"


class TestServicesProbe:
    """Tests for ServicesProbe and risky service matching."""

    def test_normalize_process(self):
        assert normalize_process("/usr/sbin/in.telnetd") == "in.telnetd"
        assert normalize_process("-bash") == "bash"

    def test_exact_names_only(self):
        """sftp-server must not be mistaken for an FTP server."""
        assert match_risky_services({"sftp-server", "sshd", "telnet-client"}) == []

    def test_critical_service(self):
        runner = FakeRunner(commands={
            "ps -eo comm=": "systemd\nsshd\nin.telnetd\n",
            "netstat -tlnp": NETSTAT_OUTPUT,
        })
        report = asyncio.run(ServicesProbe(runner, make_platform(), make_config()).run())

        assert report.status == CheckStatus.CRITICAL
        names = [s["name"] for s in report.details["riskyServices"]]
        assert names == ["telnet", "ftp", "redis"]
        assert [f.id for f in report.fixes] == [FixId.STOP_TELNET.value, FixId.STOP_FTP.value]
        assert all(f.auto_fix for f in report.fixes)

    def test_high_risk_service_warns(self):
        runner = FakeRunner(commands={"ps -eo comm=": "vsftpd\n"})
        report = asyncio.run(ServicesProbe(runner, make_platform(), make_config()).run())

        assert report.status == CheckStatus.WARNING
        assert report.message == "1 high-risk service(s) detected"

    def test_low_risk_services_pass(self):
        runner = FakeRunner(commands={"ps -eo comm=": "dockerd\npostgres\n"})
        report = asyncio.run(ServicesProbe(runner, make_platform(), make_config()).run())

        assert report.status == CheckStatus.PASS
        assert len(report.recommendations) == 2

    def test_no_tools_is_error(self):
        report = asyncio.run(ServicesProbe(FakeRunner(), make_platform(), make_config()).run())
        assert report.status == CheckStatus.ERROR
