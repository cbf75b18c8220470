"""Unit tests for the executor, platform detection and audit log."""

import asyncio
import json
from pathlib import Path

import pytest

from hostguard.core.audit import AuditLogger
from hostguard.core.context import ExecutionContext
from hostguard.core.exceptions import ConfigurationError, ExecutionError
from hostguard.core.executor import EXIT_NOT_FOUND, EXIT_TIMEOUT, CommandExecutor
from hostguard.core.platform import (
    MACOS_SOCKETFILTERFW,
    NetworkMode,
    PlatformKind,
    detect_platform,
    is_virtual_network_nameserver,
    is_wsl_version_string,
    parse_nameserver,
)

from conftest import FakeRunner, make_config


WSL_VERSION = "Linux version 5.15.146.1-microsoft-standard-WSL2 (root@65c7573d5c4a) (gcc (GCC) 11.2.0)"
WSLCONFIG_COMMAND = "powershell.exe -NoProfile -NonInteractive -Command"


def make_executor(dry_run: bool = False) -> CommandExecutor:
    ctx = ExecutionContext(dry_run=dry_run, verbosity=0, _config=make_config())
    return CommandExecutor(ctx)


class TestCommandExecutor:
    """Tests for CommandExecutor with real subprocesses."""

    def test_captures_output(self):
        result = asyncio.run(make_executor().run(["echo", "hello"]))

        assert result.success
        assert result.stdout == "hello\n"
        assert result.lines == ["hello"]

    def test_input_text(self):
        result = asyncio.run(make_executor().run(["cat"], input_text="from stdin"))
        assert result.stdout == "from stdin"

    def test_missing_binary(self):
        result = asyncio.run(make_executor().run(["hostguard-no-such-binary"]))

        assert result.return_code == EXIT_NOT_FOUND
        assert result.not_found

    def test_check_raises_on_failure(self):
        with pytest.raises(ExecutionError) as exc:
            asyncio.run(make_executor().run(["false"], check=True))
        assert exc.value.return_code == 1

    def test_timeout(self):
        result = asyncio.run(make_executor().run(["sleep", "5"], timeout=0.2))

        assert result.timed_out
        assert result.return_code == EXIT_TIMEOUT

    def test_dry_run_skips_mutating_commands(self, tmp_path: Path):
        target = tmp_path / "created"
        result = asyncio.run(make_executor(dry_run=True).run(["touch", str(target)], mutates=True))

        assert result.success
        assert not target.exists()

    def test_dry_run_still_runs_reads(self):
        result = asyncio.run(make_executor(dry_run=True).run(["echo", "read-only"]))
        assert result.stdout == "read-only\n"

    def test_read_text(self, tmp_path: Path):
        path = tmp_path / "sshd_config"
        path.write_text("PermitRootLogin no\n")
        assert asyncio.run(make_executor().read_text(path)) == "PermitRootLogin no\n"


class TestExecutionError:
    def test_details_are_copied(self):
        details = ["while running ufw"]
        error = ExecutionError("Command failed", return_code=1, stderr="denied", details=details)

        assert details == ["while running ufw"]
        assert error.details == ["while running ufw", "Exit code: 1", "Error output: denied"]


class TestPlatformHelpers:
    def test_wsl_version_string(self):
        assert is_wsl_version_string(WSL_VERSION)
        assert not is_wsl_version_string("Linux version 6.5.0-35-generic (buildd@lcy02-amd64-079)")

    def test_parse_nameserver(self):
        content = "# generated by WSL\nnameserver 172.22.96.1\nnameserver 8.8.8.8\n"
        assert parse_nameserver(content) == "172.22.96.1"
        assert parse_nameserver("search lan\n") is None

    @pytest.mark.parametrize("address,expected", [
        ("172.22.96.1", True),
        ("10.255.255.254", True),
        ("127.0.0.53", False),
        ("8.8.8.8", False),
        ("not-an-ip", False),
        (None, False),
    ])
    def test_virtual_network_nameserver(self, address, expected):
        assert is_virtual_network_nameserver(address) is expected


class TestDetectPlatform:
    """Tests for detect_platform."""

    def test_plain_linux(self):
        runner = FakeRunner(
            files={"/proc/version": "Linux version 6.5.0-35-generic"},
            binaries={"ufw": "/usr/sbin/ufw", "iptables": "/usr/sbin/iptables", "apt": "/usr/bin/apt"},
        )
        platform = asyncio.run(detect_platform(runner, system="linux"))

        assert platform.kind == PlatformKind.LINUX
        assert platform.network_mode == NetworkMode.NATIVE
        assert platform.firewall_tools == {"ufw": "/usr/sbin/ufw", "iptables": "/usr/sbin/iptables"}
        assert platform.package_manager == "apt"
        assert not platform.has_windows_side

    def test_wsl2_nat(self):
        runner = FakeRunner(
            commands={WSLCONFIG_COMMAND: ""},
            files={"/proc/version": WSL_VERSION, "/etc/resolv.conf": "nameserver 172.22.96.1\n"},
            binaries={"powershell.exe": "powershell.exe"},
        )
        platform = asyncio.run(detect_platform(runner, system="linux"))

        assert platform.kind == PlatformKind.WSL2
        assert platform.network_mode == NetworkMode.NAT
        assert platform.windows_host == "172.22.96.1"
        assert platform.has_windows_side

    def test_wsl2_mirrored(self):
        runner = FakeRunner(
            commands={WSLCONFIG_COMMAND: "[wsl2]\nnetworkingMode = mirrored\n"},
            files={"/proc/version": WSL_VERSION, "/etc/resolv.conf": "nameserver 172.22.96.1\n"},
            binaries={"powershell.exe": "powershell.exe"},
        )
        platform = asyncio.run(detect_platform(runner, system="linux"))

        assert platform.network_mode == NetworkMode.MIRRORED

    def test_macos(self):
        runner = FakeRunner(binaries={"brew": "/opt/homebrew/bin/brew"})
        platform = asyncio.run(detect_platform(runner, system="darwin"))

        assert platform.kind == PlatformKind.MACOS
        assert platform.firewall_tool("socketfilterfw") == MACOS_SOCKETFILTERFW
        assert platform.package_manager == "brew"

    def test_native_windows_is_rejected(self):
        with pytest.raises(ConfigurationError) as exc:
            asyncio.run(detect_platform(FakeRunner(), system="win32"))
        assert "WSL2" in exc.value.hint


class TestAuditLogger:
    """Tests for the JSON-lines audit log."""

    def read_events(self, path: Path) -> list[dict]:
        return [json.loads(line) for line in path.read_text().splitlines()]

    def test_fix_event_redacts_secrets(self, tmp_path: Path):
        log_path = tmp_path / "audit.log"
        AuditLogger(log_path).log_fix(
            "fix_permissions",
            True,
            parameters={"path": "~/.ssh", "api_key": "abc123"},
            message="Fixed permissions on ~/.ssh",
        )

        [event] = self.read_events(log_path)
        assert event["event_type"] == "fix.apply"
        assert event["result"] == "success"
        assert event["target"] == "fix_permissions"
        assert event["parameters"] == {"path": "~/.ssh", "api_key": "***REDACTED***"}
        assert event["message"] == "Fixed permissions on ~/.ssh"
        assert event["error"] is None

    def test_failure_and_dry_run_results(self, tmp_path: Path):
        log_path = tmp_path / "audit.log"
        logger = AuditLogger(log_path)
        logger.log_fix("harden_ssh", False, message="Command failed: cat /etc/ssh/sshd_config")
        logger.log_fix("enable_ufw", True, dry_run=True)
        logger.log_unknown_fix("format_disk")

        events = self.read_events(log_path)
        assert [e["result"] for e in events] == ["failure", "dry_run", "blocked"]
        assert events[0]["error"] == "Command failed: cat /etc/ssh/sshd_config"
        assert events[2]["event_type"] == "fix.unknown"
        # One session id per logger
        assert len({e["session_id"] for e in events}) == 1

    def test_log_file_is_owner_only(self, tmp_path: Path):
        log_path = tmp_path / "state" / "audit.log"
        AuditLogger(log_path).log_unknown_fix("x")

        assert log_path.stat().st_mode & 0o777 == 0o600

    def test_rotation(self, tmp_path: Path):
        log_path = tmp_path / "audit.log"
        logger = AuditLogger(log_path, max_size_mb=0, backup_count=2)
        logger.log_unknown_fix("first")
        logger.log_unknown_fix("second")

        assert log_path.stat().st_size == 0
        assert self.read_events(tmp_path / "audit.log.1")[0]["target"] == "second"
        assert self.read_events(tmp_path / "audit.log.2")[0]["target"] == "first"

    def test_disabled_logger_writes_nothing(self, tmp_path: Path):
        log_path = tmp_path / "audit.log"
        AuditLogger(log_path, enabled=False).log_unknown_fix("x")
        assert not log_path.exists()
