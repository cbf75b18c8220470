"""Fix dispatcher.

Maps every FixId to an action that changes the host. All actions:
- Run through the injected CommandRunner (dry-run aware)
- Are recorded in the audit log, including failures
- Report failures as an unsuccessful FixOutcome instead of raising

Multi-step actions have no rollback: a failure part way through leaves
the earlier steps applied.
"""

import re
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from hostguard.checks.permissions import format_mode, user_paths
from hostguard.checks.ssh import SSHD_CONFIG
from hostguard.checks.updates import parse_apt_upgradable
from hostguard.core.audit import AuditLogger, NullAuditLogger
from hostguard.core.context import ExecutionContext
from hostguard.core.exceptions import (
    ExecutionError,
    HostGuardError,
    UnknownFixError,
    ValidationError,
)
from hostguard.core.executor import CommandResult, CommandRunner
from hostguard.core.platform import MACOS_SOCKETFILTERFW, Platform
from hostguard.models import FixId, FixOutcome


SSHD_BACKUP = SSHD_CONFIG.with_name("sshd_config.backup")

HARDENING_START = "# Security hardening applied by hostguard"
HARDENING_END = "# End of hostguard hardening"

# sshd keeps the first value it reads for a keyword, so this block goes
# at the top of the file.
HARDENED_BLOCK = "\n".join([
    HARDENING_START,
    "PermitRootLogin no",
    "PasswordAuthentication no",
    "PubkeyAuthentication yes",
    "X11Forwarding no",
    "MaxAuthTries 3",
    "AllowAgentForwarding no",
    HARDENING_END,
]) + "\n"

WINDOWS_FIREWALL_SCRIPT = "Set-NetFirewallProfile -Profile Domain,Public,Private -Enabled True"

LEGACY_UNITS = {
    FixId.STOP_TELNET: ("Telnet", ("telnet.socket", "telnetd", "xinetd")),
    FixId.STOP_RSH: ("rsh", ("rsh.socket", "rshd")),
    FixId.STOP_RLOGIN: ("rlogin", ("rlogin.socket", "rlogind")),
    FixId.STOP_FTP: ("FTP", ("vsftpd", "proftpd", "pure-ftpd")),
}

FIX_DESCRIPTIONS = {
    FixId.ENABLE_UFW: "Enable UFW with default deny incoming, allow outgoing",
    FixId.ENABLE_WINDOWS_FIREWALL: "Enable Windows Defender Firewall for all profiles",
    FixId.ENABLE_MACOS_FIREWALL: "Enable the macOS Application Firewall",
    FixId.INSTALL_SECURITY_UPDATES: "Install pending security updates",
    FixId.INSTALL_ALL_UPDATES: "Install all pending updates",
    FixId.HARDEN_SSH: "Back up sshd_config, apply hardened settings and restart sshd",
    FixId.STOP_TELNET: "Stop and disable telnet services",
    FixId.STOP_RSH: "Stop and disable rsh services",
    FixId.STOP_RLOGIN: "Stop and disable rlogin services",
    FixId.STOP_FTP: "Stop and disable FTP servers",
    FixId.FIX_PERMISSIONS: "chmod a sensitive user path (params: path, mode)",
}

_OCTAL_MODE_RE = re.compile(r"^(?:0o?)?([0-7]{3,4})$")


def apply_hardening(content: str) -> str:
    """Put the hardened block at the top of an sshd_config.

    A block from an earlier run is replaced rather than stacked.
    """
    lines = content.splitlines(keepends=True)
    if HARDENING_START in content:
        kept: list[str] = []
        inside = False
        for line in lines:
            stripped = line.strip()
            if stripped == HARDENING_START:
                inside = True
                continue
            if inside and stripped == HARDENING_END:
                inside = False
                continue
            if not inside:
                kept.append(line)
        lines = kept
    return HARDENED_BLOCK + "".join(lines)


def parse_mode(raw: Any) -> int:
    """Parse an octal mode such as '600', '0600' or '0o600'.

    Raises:
        ValidationError: If the value is not an octal mode
    """
    match = _OCTAL_MODE_RE.match(str(raw).strip())
    if not match:
        raise ValidationError(
            f"Invalid mode: {raw}",
            hint="Use an octal mode such as 600 or 0700",
        )
    return int(match.group(1), 8)


def _error_text(error: Exception) -> str:
    if isinstance(error, ExecutionError) and error.stderr:
        return f"{error.message}: {error.stderr}"
    return str(error)


Action = Callable[[dict[str, Any]], Awaitable[FixOutcome]]


class FixDispatcher:
    """Executes fixes by id.

    All operations respect dry-run mode and are audit logged.
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        runner: CommandRunner,
        platform: Platform,
        audit: Optional[AuditLogger] = None,
        home: Optional[Path] = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            ctx: Execution context
            runner: Command runner
            platform: Detected host platform
            audit: Audit logger (defaults to a logger that records nothing)
            home: Home directory the permission fix is confined to
        """
        self.ctx = ctx
        self.runner = runner
        self.platform = platform
        self.audit = audit or NullAuditLogger()
        self.home = home or Path.home()
        self.actions: dict[FixId, Action] = {
            FixId.ENABLE_UFW: self.enable_ufw,
            FixId.ENABLE_WINDOWS_FIREWALL: self.enable_windows_firewall,
            FixId.ENABLE_MACOS_FIREWALL: self.enable_macos_firewall,
            FixId.INSTALL_SECURITY_UPDATES: self.install_security_updates,
            FixId.INSTALL_ALL_UPDATES: self.install_all_updates,
            FixId.HARDEN_SSH: self.harden_ssh,
            FixId.STOP_TELNET: self.stop_telnet,
            FixId.STOP_RSH: self.stop_rsh,
            FixId.STOP_RLOGIN: self.stop_rlogin,
            FixId.STOP_FTP: self.stop_ftp,
            FixId.FIX_PERMISSIONS: self.fix_permissions,
        }

    async def apply(self, fix_id: str, params: Optional[dict[str, Any]] = None) -> FixOutcome:
        """Run the action registered under `fix_id`.

        Args:
            fix_id: Fix identifier
            params: Action parameters (only fix_permissions takes any)

        Returns:
            FixOutcome; failures of the action itself have success=False

        Raises:
            UnknownFixError: If no action is registered under `fix_id`
        """
        try:
            resolved = FixId(fix_id)
        except ValueError:
            self.audit.log_unknown_fix(fix_id)
            raise UnknownFixError(fix_id) from None

        params = dict(params or {})
        self.ctx.console.verbose(f"Applying fix {resolved.value}")
        try:
            outcome = await self.actions[resolved](params)
        except (HostGuardError, OSError) as e:
            outcome = FixOutcome(success=False, message=_error_text(e))
        except Exception as e:
            self.ctx.console.debug(f"Fix {resolved.value} crashed: {e!r}")
            outcome = FixOutcome(success=False, message=f"Fix {resolved.value} failed: {e}")

        if self.ctx.dry_run and outcome.success:
            outcome.message = f"Dry run: {outcome.message} (no changes made)"

        self.audit.log_fix(
            resolved.value,
            outcome.success,
            parameters=params,
            message=outcome.message,
            dry_run=self.ctx.dry_run,
        )
        return outcome

    async def _run(self, command: list[str], description: str, as_root: bool = True) -> CommandResult:
        return await self.runner.run(
            command,
            description=description,
            as_root=as_root,
            mutates=True,
            check=True,
        )

    # Firewall

    async def enable_ufw(self, params: dict[str, Any]) -> FixOutcome:
        ufw = self.platform.firewall_tool("ufw") or "ufw"
        await self._run([ufw, "--force", "enable"], "Enabling UFW")
        await self._run([ufw, "default", "deny", "incoming"], "Denying incoming by default")
        await self._run([ufw, "default", "allow", "outgoing"], "Allowing outgoing by default")
        return FixOutcome(True, "UFW enabled with default deny incoming policy")

    async def enable_windows_firewall(self, params: dict[str, Any]) -> FixOutcome:
        if not self.platform.has_windows_side:
            raise ExecutionError("PowerShell is not available on this host")
        await self._run(
            self.platform.powershell_command(WINDOWS_FIREWALL_SCRIPT),
            "Enabling Windows Firewall",
            as_root=False,
        )
        return FixOutcome(True, "Windows Firewall enabled for all profiles")

    async def enable_macos_firewall(self, params: dict[str, Any]) -> FixOutcome:
        await self._run(
            [MACOS_SOCKETFILTERFW, "--setglobalstate", "on"],
            "Enabling Application Firewall",
        )
        return FixOutcome(True, "macOS Application Firewall enabled")

    # Updates

    def _package_manager(self) -> str:
        manager = self.platform.package_manager
        if manager is None:
            raise ExecutionError("No supported package manager found")
        return manager

    async def install_security_updates(self, params: dict[str, Any]) -> FixOutcome:
        manager = self._package_manager()
        if manager == "apt":
            listing = await self.runner.run(["apt", "list", "--upgradable"], check=True)
            _, security = parse_apt_upgradable(listing.stdout)
            if not security:
                return FixOutcome(True, "No security updates pending")
            result = await self._run(
                ["apt-get", "install", "-y", "--only-upgrade", *security],
                f"Upgrading {len(security)} security package(s)",
            )
        elif manager in ("dnf", "yum"):
            verb = "upgrade" if manager == "dnf" else "update"
            result = await self._run([manager, verb, "--security", "-y"], "Installing security updates")
        else:
            # Homebrew has no security channel
            result = await self._run(["brew", "upgrade"], "Upgrading Homebrew packages", as_root=False)
        return FixOutcome(True, "Security updates installed", output=result.stdout)

    async def install_all_updates(self, params: dict[str, Any]) -> FixOutcome:
        manager = self._package_manager()
        commands = {
            "apt": ["apt-get", "upgrade", "-y"],
            "dnf": ["dnf", "upgrade", "-y"],
            "yum": ["yum", "update", "-y"],
            "brew": ["brew", "upgrade"],
        }
        result = await self._run(commands[manager], "Installing all updates", as_root=manager != "brew")
        return FixOutcome(True, "All updates installed", output=result.stdout)

    # SSH

    async def harden_ssh(self, params: dict[str, Any]) -> FixOutcome:
        current = await self.runner.run(
            ["cat", str(SSHD_CONFIG)],
            description="Reading sshd_config",
            as_root=True,
            check=True,
        )
        await self._run(["cp", str(SSHD_CONFIG), str(SSHD_BACKUP)], "Backing up sshd_config")
        await self.runner.run(
            ["tee", str(SSHD_CONFIG)],
            description="Writing hardened sshd_config",
            input_text=apply_hardening(current.stdout),
            as_root=True,
            mutates=True,
            check=True,
        )
        await self._restart_sshd()
        return FixOutcome(True, f"SSH configuration hardened. Backup saved at {SSHD_BACKUP}")

    async def _restart_sshd(self) -> None:
        if self.platform.is_macos:
            await self._run(["launchctl", "kickstart", "-k", "system/com.openssh.sshd"], "Restarting sshd")
            return
        result = await self.runner.run(
            ["systemctl", "restart", "sshd"],
            description="Restarting sshd",
            as_root=True,
            mutates=True,
        )
        if not result.success:
            await self._run(["service", "ssh", "restart"], "Restarting ssh")

    # Legacy services

    async def _stop_units(self, fix_id: FixId) -> FixOutcome:
        label, units = LEGACY_UNITS[fix_id]
        # Units that are not installed make systemctl exit non-zero; that is fine
        for verb in ("stop", "disable"):
            result = await self.runner.run(
                ["systemctl", verb, *units],
                description=f"{verb.capitalize()} {' '.join(units)}",
                as_root=True,
                mutates=True,
            )
            if result.not_found:
                raise ExecutionError("systemctl is not available on this host", command=result.command_line)
        return FixOutcome(True, f"{label} services stopped and disabled")

    async def stop_telnet(self, params: dict[str, Any]) -> FixOutcome:
        return await self._stop_units(FixId.STOP_TELNET)

    async def stop_rsh(self, params: dict[str, Any]) -> FixOutcome:
        return await self._stop_units(FixId.STOP_RSH)

    async def stop_rlogin(self, params: dict[str, Any]) -> FixOutcome:
        return await self._stop_units(FixId.STOP_RLOGIN)

    async def stop_ftp(self, params: dict[str, Any]) -> FixOutcome:
        return await self._stop_units(FixId.STOP_FTP)

    # Permissions

    async def fix_permissions(self, params: dict[str, Any]) -> FixOutcome:
        """chmod one of the user-owned sensitive paths.

        Only paths the permission probe checks under the home directory
        are accepted, and the new mode may not be looser than that path's
        limit.
        """
        path = params.get("path")
        raw_mode = params.get("mode")
        if not path or raw_mode in (None, ""):
            raise ValidationError("Missing path or mode parameter")
        if not isinstance(path, str) or isinstance(raw_mode, bool) or not isinstance(raw_mode, (str, int)):
            raise ValidationError("Parameter path must be a string and mode a string or integer")

        allowed = user_paths(self.home)
        entry = allowed.get(str(Path(path).expanduser()))
        if entry is None:
            raise ValidationError(
                f"Path not allowed: {path}",
                hint="Only paths reported by the file permissions check can be fixed",
            )

        mode = parse_mode(raw_mode)
        if not entry.allows(mode):
            raise ValidationError(
                f"Mode {format_mode(mode)} is looser than {format_mode(entry.max_mode)} for {path}"
            )

        await self._run(["chmod", format_mode(mode), str(entry.path)], f"chmod {entry.path}", as_root=False)
        return FixOutcome(True, f"Fixed permissions on {entry.path}")
