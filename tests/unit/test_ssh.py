"""Unit tests for the SSH configuration probe."""

import asyncio

from hostguard.checks.ssh import (
    SSHD_CONFIG,
    SSHProbe,
    evaluate_directives,
    parse_sshd_config,
)
from hostguard.models import CheckStatus, FixId

from conftest import FakeRunner, make_config, make_platform


SECURE_CONFIG = """\
# Hardened
PermitRootLogin no
PasswordAuthentication no
PubkeyAuthentication yes
X11Forwarding no
MaxAuthTries 3
"""


def run_probe(runner: FakeRunner):
    probe = SSHProbe(runner, make_platform(), make_config())
    return asyncio.run(probe.run())


def sshd_runner(config: str) -> FakeRunner:
    return FakeRunner(
        commands={"pgrep -x sshd": "812\n"},
        files={str(SSHD_CONFIG): config},
    )


class TestParseSshdConfig:
    """Tests for sshd_config parsing."""

    def test_first_occurrence_wins(self):
        config = parse_sshd_config("PermitRootLogin no\nPermitRootLogin yes\n")
        assert config["permitrootlogin"] == "no"

    def test_comments_and_case(self):
        config = parse_sshd_config("# PermitRootLogin yes\n  passwordauthentication YES\n")
        assert "permitrootlogin" not in config
        assert config["passwordauthentication"] == "yes"

    def test_equals_separator(self):
        assert parse_sshd_config("MaxAuthTries=6\n")["maxauthtries"] == "6"

    def test_inline_comment_is_not_part_of_value(self):
        config = parse_sshd_config("PermitRootLogin no  # keep root out\n")
        assert config["permitrootlogin"] == "no"

    def test_match_block_is_not_global(self):
        config = parse_sshd_config(
            "PermitRootLogin no\nMatch User backup\n    X11Forwarding yes\nPasswordAuthentication yes\n"
        )
        assert config == {"permitrootlogin": "no"}

    def test_absent_directives_are_default(self):
        effective, problems = evaluate_directives({})
        assert effective["permitRootLogin"] == "default"
        assert problems == []

    def test_prohibit_password_is_secure(self):
        _, problems = evaluate_directives({"permitrootlogin": "prohibit-password"})
        assert problems == []

    def test_max_auth_tries(self):
        _, problems = evaluate_directives({"maxauthtries": "6"})
        assert problems == ["MaxAuthTries should be 3 or less"]


class TestSSHProbe:
    """Tests for SSHProbe.run."""

    def test_secure_config_passes(self):
        report = run_probe(sshd_runner(SECURE_CONFIG))
        assert report.status == CheckStatus.PASS
        assert report.message == "SSH configuration looks secure"
        assert report.fixes == []

    def test_two_issues_are_critical(self):
        config = SECURE_CONFIG.replace("PermitRootLogin no", "PermitRootLogin yes").replace(
            "PasswordAuthentication no", "PasswordAuthentication yes"
        )
        report = run_probe(sshd_runner(config))

        assert report.status == CheckStatus.CRITICAL
        assert report.details["issues"] == 2
        assert [r.message for r in report.recommendations] == [
            "Root login should be disabled",
            "Password authentication should be disabled (use keys)",
        ]
        assert [f.id for f in report.fixes] == [FixId.HARDEN_SSH.value]
        assert report.fixes[0].auto_fix is True

    def test_single_issue_is_warning(self):
        config = SECURE_CONFIG.replace("X11Forwarding no", "X11Forwarding yes")
        report = run_probe(sshd_runner(config))

        assert report.status == CheckStatus.WARNING
        assert report.details["issues"] == 1
        assert [r.message for r in report.recommendations] == [
            "X11 forwarding should be disabled if not needed",
        ]
        assert report.message == "1 SSH configuration issue(s) found"

    def test_match_block_override_passes(self):
        config = SECURE_CONFIG.replace("X11Forwarding no\n", "") + "Match User backup\n    X11Forwarding yes\n"
        report = run_probe(sshd_runner(config))

        assert report.status == CheckStatus.PASS
        assert report.details["issues"] == 0
        assert report.fixes == []

    def test_server_not_running_passes(self):
        runner = FakeRunner(commands={"pgrep -x sshd": (1, "")})
        report = run_probe(runner)

        assert report.status == CheckStatus.PASS
        assert report.message == "SSH server is not running"
        assert report.details["sshServerRunning"] is False

    def test_unreadable_config_is_info(self):
        runner = FakeRunner(
            commands={"pgrep -x sshd": "812\n"},
            files={str(SSHD_CONFIG): PermissionError("Permission denied")},
        )
        report = run_probe(runner)

        assert report.status == CheckStatus.INFO
        assert report.details["configReadable"] is False
        assert report.message == "Cannot read SSH config (may need sudo)"

    def test_records_tool_availability(self):
        report = run_probe(FakeRunner())
        assert report.details["tools"] == {"pgrep": False}
