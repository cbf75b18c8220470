"""Unit tests for the gateway security audit probe."""

import asyncio
from pathlib import Path

import pytest

from hostguard.checks.gateway import (
    GatewayProbe,
    inspect_gateway_config,
    merge_audits,
    parse_audit_output,
)
from hostguard.core.exceptions import ConfigurationError
from hostguard.models import CheckStatus, Severity

from conftest import FakeRunner, make_config, make_platform


HOME = Path("/home/alice")

AUDIT = """\
Clawdbot security audit
Summary: 1 critical · 1 warn · 0 info

CRITICAL
gateway.bind Gateway listens on all interfaces
  Anyone on the network can reach the gateway.
  Fix: clawdbot config set gateway.bind 127.0.0.1

WARN
fs.config_perms Config file is world readable
  Fix: chmod 600 ~/.clawdbot/config.yaml
  tools.elevated: enabled

Run deeper: clawdbot security audit --deep
"""

WINDOWS_AUDIT = """\
Clawdbot security audit
Summary: 0 critical · 2 warn · 1 info

WARN
fs.config_perms Config file is world readable
  Fix: icacls config.yaml /inheritance:r
gateway.auth Gateway token is short
  Use at least 32 characters.

INFO
browser.profile Browser control is enabled
"""

SS_GATEWAY = """\
State  Recv-Q Send-Q Local Address:Port  Peer Address:Port Process
LISTEN 0      511    127.0.0.1:18789     0.0.0.0:*     users:(("node",pid=4242,fd=21))
"""


def run_probe(runner, platform=None):
    probe = GatewayProbe(runner, platform or make_platform(), make_config(), home=HOME)
    return asyncio.run(probe.run())


class TestAuditParsing:
    """Tests for audit text parsing and merging."""

    def test_parse_audit_output(self):
        audit = parse_audit_output(AUDIT)

        assert audit.has_summary
        assert audit.summary == {"critical": 1, "warn": 1, "info": 0}
        assert [(i.id, i.severity) for i in audit.issues] == [
            ("gateway.bind", "critical"),
            ("fs.config_perms", "warning"),
        ]
        bind = audit.issues[0]
        assert bind.title == "Gateway listens on all interfaces"
        assert bind.description == "Anyone on the network can reach the gateway."
        assert bind.fix == "clawdbot config set gateway.bind 127.0.0.1"
        assert audit.attack_surface == {"tools.elevated": "enabled"}

    def test_output_without_summary(self):
        assert not parse_audit_output("Segmentation fault\n").has_summary

    def test_merge_audits(self):
        merged = merge_audits([
            parse_audit_output(AUDIT, "native"),
            parse_audit_output(WINDOWS_AUDIT, "windows"),
        ])

        assert merged.contexts == ["native", "windows"]
        assert merged.summary == {"critical": 1, "warn": 2, "info": 1}
        assert [i.id for i in merged.issues] == [
            "gateway.bind", "fs.config_perms", "gateway.auth", "browser.profile",
        ]
        perms = merged.issues[1]
        assert perms.contexts == ["native", "windows"]
        # First context to report a fix wins
        assert perms.fix == "chmod 600 ~/.clawdbot/config.yaml"

    def test_merge_does_not_mutate_inputs(self):
        native = parse_audit_output(AUDIT, "native")
        merge_audits([native, parse_audit_output(AUDIT, "windows")])
        assert native.issues[0].contexts == ["native"]


class TestGatewayConfig:
    def test_wildcard_binding_without_auth(self):
        facts = inspect_gateway_config("gateway:\n  bind: 0.0.0.0\n  port: 18789\n")
        assert facts == {"localBinding": False, "hasAuth": False, "hasHttps": False}

    def test_local_binding_with_token(self):
        facts = inspect_gateway_config("gateway:\n  bind: 127.0.0.1\n  auth:\n    token: abc123\n  tls: true\n")
        assert facts == {"localBinding": True, "hasAuth": True, "hasHttps": True}

    def test_invalid_yaml(self):
        with pytest.raises(ConfigurationError):
            inspect_gateway_config("gateway: [unclosed\n")


class TestGatewayProbe:
    """Tests for GatewayProbe.run."""

    def test_critical_audit(self):
        report = run_probe(FakeRunner(commands={"clawdbot security audit": (1, AUDIT)}))

        assert report.status == CheckStatus.CRITICAL
        assert report.message == "1 critical security issue(s) found!"
        assert report.details["source"] == "audit"
        assert report.details["platform"] == "native"
        assert report.recommendations[0].severity == Severity.CRITICAL
        assert report.recommendations[0].message == (
            "[gateway.bind] Gateway listens on all interfaces: Anyone on the network can reach the gateway."
        )
        bind_fix = report.fixes[0]
        assert bind_fix.id == "clawdbot_gateway.bind"
        assert bind_fix.command == "clawdbot config set gateway.bind 127.0.0.1"
        assert bind_fix.auto_fix is False
        assert report.fixes[1].manual_steps[0] == "Run in terminal: chmod 600 ~/.clawdbot/config.yaml"

    def test_audits_both_contexts_on_wsl(self):
        platform = make_platform(powershell="powershell.exe")
        runner = FakeRunner(commands={
            "clawdbot security audit": AUDIT,
            "powershell.exe -NoProfile -NonInteractive -Command clawdbot security audit": WINDOWS_AUDIT,
        })
        report = run_probe(runner, platform)

        assert report.details["platform"] == "native+windows"
        assert report.details["summary"]["warn"] == 2
        assert set(report.details["rawOutput"]) == {"native", "windows"}

    def test_missing_on_windows_is_ignored(self):
        platform = make_platform(powershell="powershell.exe")
        runner = FakeRunner(commands={
            "clawdbot security audit": AUDIT,
            "powershell.exe -NoProfile -NonInteractive -Command": (
                1, "", "clawdbot : The term 'clawdbot' is not recognized as the name of a cmdlet",
            ),
        })
        report = run_probe(runner, platform)

        assert report.details["platform"] == "native"
        assert report.details["tools"]["clawdbot-windows"] is False

    def test_not_installed_is_info(self):
        report = run_probe(FakeRunner())

        assert report.status == CheckStatus.INFO
        assert report.message == "Gateway is not installed"
        assert report.details["source"] == "config"
        assert report.details["configPath"] is None

    def test_config_fallback_stopped_gateway_is_info(self):
        runner = FakeRunner(files={
            "/home/alice/.clawdbot/config.yaml": "gateway:\n  bind: 0.0.0.0\n  port: 18789\n",
        })
        report = run_probe(runner)

        assert report.status == CheckStatus.INFO
        assert report.details["configPath"] == "/home/alice/.clawdbot/config.yaml"
        assert len(report.recommendations) == 2
        assert report.message == "Gateway is not currently running and its config has security recommendations"

    def test_config_fallback_running_wildcard_binding_warns(self):
        runner = FakeRunner(
            commands={"pgrep -f clawdbot.*gateway": "4242\n", "ss -tlnp": SS_GATEWAY},
            files={"/home/alice/.clawdbot/config.yaml": "gateway:\n  bind: 0.0.0.0\n  auth:\n    token: abc\n"},
        )
        report = run_probe(runner)

        assert report.status == CheckStatus.WARNING
        assert [r.severity for r in report.recommendations] == [Severity.HIGH]
        assert report.message == "Gateway is running but has security recommendations"

    def test_config_fallback_secure_and_running(self):
        runner = FakeRunner(
            commands={"pgrep -f clawdbot.*gateway": "4242\n", "ss -tlnp": SS_GATEWAY},
            files={"/home/alice/.config/clawdbot/config.yaml": "gateway:\n  bind: 127.0.0.1\n  auth:\n    token: abc\n"},
        )
        report = run_probe(runner)

        assert report.status == CheckStatus.PASS
        assert report.details["listeningPorts"] == [18789]
        assert report.message == "Gateway is running with secure configuration"

    def test_unparseable_cli_output_is_error(self):
        runner = FakeRunner(commands={"clawdbot security audit": (1, "", "Error: gateway config missing")})
        report = run_probe(runner)

        assert report.status == CheckStatus.ERROR
        assert report.message.startswith("Failed to check gateway security")
