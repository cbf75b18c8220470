"""File permission probe.

Each sensitive path has a maximum permitted mode. A path is an issue
when its mode sets any bit the maximum does not allow, so 0604 fails a
0640 limit even though it is numerically smaller.
"""

import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from hostguard.checks.base import Probe
from hostguard.models import (
    Category,
    CheckReport,
    CheckStatus,
    FixDescriptor,
    FixId,
    Severity,
)


WORLD_WRITABLE_LIMIT = 10


@dataclass(frozen=True)
class SensitivePath:
    path: Path
    max_mode: int
    system: bool = False

    def allows(self, mode: int) -> bool:
        return mode & ~self.max_mode == 0


def sensitive_paths(home: Optional[Path] = None) -> list[SensitivePath]:
    """The fixed table of paths checked, resolved against `home`."""
    home = home or Path.home()
    return [
        SensitivePath(home / ".ssh", 0o700),
        SensitivePath(home / ".ssh" / "id_rsa", 0o600),
        SensitivePath(home / ".ssh" / "id_ed25519", 0o600),
        SensitivePath(home / ".ssh" / "authorized_keys", 0o600),
        SensitivePath(home / ".gnupg", 0o700),
        SensitivePath(home / ".config" / "clawdbot", 0o700),
        SensitivePath(Path("/etc/shadow"), 0o640, system=True),
        SensitivePath(Path("/etc/passwd"), 0o644, system=True),
    ]


def user_paths(home: Optional[Path] = None) -> dict[str, SensitivePath]:
    """User-owned entries keyed by path string; the only ones fix_permissions may touch."""
    return {str(p.path): p for p in sensitive_paths(home) if not p.system}


def format_mode(mode: int) -> str:
    return f"0{mode:o}"


def permissions_fix(entry: SensitivePath) -> FixDescriptor:
    mode = f"{entry.max_mode:o}"
    return FixDescriptor(
        id=FixId.FIX_PERMISSIONS.value,
        name=f"Fix {entry.path} permissions",
        description=f"Change permissions to {format_mode(entry.max_mode)}",
        auto_fix=True,
        command=f'chmod {mode} "{entry.path}"',
        params={"path": str(entry.path), "mode": mode},
    )


class PermissionsProbe(Probe):
    """Checks critical file and directory permissions."""

    name = "File Permissions"
    description = "Checks critical file and directory permissions"
    category = Category.SECURITY

    def __init__(self, *args, home: Optional[Path] = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.home = home or Path.home()

    async def inspect(self, report: CheckReport) -> None:
        checked: list[dict[str, Any]] = []
        issues: list[dict[str, Any]] = []
        system_issue = False

        for entry in sensitive_paths(self.home):
            try:
                st = await self.runner.stat(entry.path)
            except FileNotFoundError:
                continue
            except OSError as e:
                checked.append({"path": str(entry.path), "error": str(e)})
                continue

            mode = stat.S_IMODE(st.st_mode) & 0o777
            secure = entry.allows(mode)
            item = {
                "path": str(entry.path),
                "currentMode": format_mode(mode),
                "requiredMode": format_mode(entry.max_mode),
                "secure": secure,
                "system": entry.system,
            }
            checked.append(item)
            if secure:
                continue

            issues.append(item)
            report.recommend(
                Severity.CRITICAL if entry.system else Severity.HIGH,
                f"{entry.path} has permissions {item['currentMode']}, "
                f"should be {item['requiredMode']} or stricter",
            )
            if entry.system:
                system_issue = True
            else:
                report.add_fix(permissions_fix(entry))

        report.details["checked"] = checked
        report.details["issues"] = issues

        world_writable = await self._world_writable(report)
        if world_writable:
            report.details["worldWritableFiles"] = world_writable
            report.recommend(
                Severity.MEDIUM,
                f"Found {len(world_writable)} world-writable file(s) in home directory",
            )

        if not issues:
            report.message = "File permissions are secure"
            return

        report.escalate(CheckStatus.CRITICAL if system_issue else CheckStatus.WARNING)
        report.message = f"{len(issues)} permission issue(s) found"

    async def _world_writable(self, report: CheckReport) -> list[str]:
        result = await self.run_tool(
            report,
            "find",
            ["find", str(self.home), "-maxdepth", "2", "-perm", "-0002", "-type", "f"],
        )
        # find exits non-zero on unreadable subdirectories but still prints matches
        return result.lines[:WORLD_WRITABLE_LIMIT]
