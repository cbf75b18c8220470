"""Unit tests for the system updates probe."""

import asyncio

from hostguard.checks.updates import (
    UpdatesProbe,
    parse_apt_upgradable,
    parse_brew_outdated,
    parse_rpm_updates,
)
from hostguard.models import CheckStatus, FixId, Severity

from conftest import FakeRunner, make_config, make_platform


APT_SECURITY = """\
Listing... Done
openssl/jammy-security,jammy-updates 3.0.2-0ubuntu1.15 amd64 [upgradable from: 3.0.2-0ubuntu1.14]
vim/jammy-updates 2:8.2.3995-1ubuntu2.16 amd64 [upgradable from: 2:8.2.3995-1ubuntu2.15]
"""

APT_REGULAR = """\
Listing... Done
vim/jammy-updates 2:8.2.3995-1ubuntu2.16 amd64 [upgradable from: 2:8.2.3995-1ubuntu2.15]
curl/jammy-updates 7.81.0-1ubuntu1.16 amd64 [upgradable from: 7.81.0-1ubuntu1.15]
git/jammy-updates 1:2.34.1-1ubuntu1.11 amd64 [upgradable from: 1:2.34.1-1ubuntu1.10]
htop/jammy-updates 3.0.5-7build2 amd64 [upgradable from: 3.0.5-7build1]
"""

DNF_CHECK_UPDATE = """\
bash.x86_64                     5.2.15-3.fc38            updates
kernel-core.x86_64              6.5.6-100.fc38           updates
"""


def run_probe(runner, manager):
    platform = make_platform(package_manager=manager)
    return asyncio.run(UpdatesProbe(runner, platform, make_config()).run())


class TestParsers:
    def test_parse_apt_upgradable(self):
        packages, security = parse_apt_upgradable(APT_SECURITY)
        assert packages == ["openssl", "vim"]
        assert security == ["openssl"]

    def test_parse_rpm_updates(self):
        assert parse_rpm_updates(DNF_CHECK_UPDATE) == ["bash", "kernel-core"]
        advisories = "FEDORA-2023-1a2b3c  Important/Sec.  kernel-core-6.5.6-100.fc38.x86_64\n"
        assert parse_rpm_updates(advisories) == ["kernel-core-6.5.6-100.fc38.x86_64"]

    def test_parse_brew_outdated(self):
        assert parse_brew_outdated("git\nopenssl@3\n\n") == ["git", "openssl@3"]


class TestUpdatesProbe:
    """Tests for UpdatesProbe.run."""

    def test_security_updates_are_critical(self):
        report = run_probe(FakeRunner(commands={"apt list --upgradable": APT_SECURITY}), "apt")

        assert report.status == CheckStatus.CRITICAL
        assert report.details["apt"]["securityUpdates"] == 1
        assert report.recommendations[0].severity == Severity.CRITICAL
        fix = report.fixes[0]
        assert fix.id == FixId.INSTALL_SECURITY_UPDATES.value
        assert fix.auto_fix is False
        assert fix.script == "install-updates"
        assert fix.manual_steps

    def test_regular_updates_warn(self):
        report = run_probe(FakeRunner(commands={"apt list --upgradable": APT_REGULAR}), "apt")

        assert report.status == CheckStatus.WARNING
        assert report.recommendations[0].severity == Severity.LOW
        assert report.recommendations[0].message == "4 package update(s) available: vim, curl, git..."
        assert report.fixes[0].id == FixId.INSTALL_ALL_UPDATES.value

    def test_up_to_date(self):
        report = run_probe(FakeRunner(commands={"apt list --upgradable": "Listing... Done\n"}), "apt")

        assert report.status == CheckStatus.PASS
        assert report.message == "System is up to date"

    def test_no_package_manager_is_info(self):
        report = run_probe(FakeRunner(), None)

        assert report.status == CheckStatus.INFO
        assert report.details["packageManager"] is None

    def test_dnf_exit_100_means_updates(self):
        runner = FakeRunner(commands={
            "dnf check-update --quiet": (100, DNF_CHECK_UPDATE),
            "dnf updateinfo list --security --quiet": "",
        })
        report = run_probe(runner, "dnf")

        assert report.status == CheckStatus.WARNING
        assert report.details["dnf"]["totalUpdates"] == 2

    def test_listing_failure_is_error(self):
        runner = FakeRunner(commands={"apt list --upgradable": (1, "", "E: Could not open lock file")})
        report = run_probe(runner, "apt")

        assert report.status == CheckStatus.ERROR
        assert "Failed to list upgradable packages" in report.message
