"""Audit trail for fixes.

Every call to the fix dispatcher, including requests for fixes that do
not exist, is appended as one JSON object per line. Parameter values
under secret-looking keys are redacted before they reach the file, and
the file is rotated to numbered backups (audit.log.1, audit.log.2, ...)
once it grows past its size limit.

Writing is best effort: a log that cannot be written is reported at
debug level and never fails the fix that produced the event.
"""

import fcntl
import json
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from hostguard.core.config import AuditLogConfig
from hostguard.core.output import console


class AuditEventType(Enum):
    FIX_APPLY = "fix.apply"
    FIX_UNKNOWN = "fix.unknown"


class AuditResult(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    BLOCKED = "blocked"  # unknown fix id, nothing ran
    DRY_RUN = "dry_run"


REDACTED = "***REDACTED***"

# Substrings of parameter names whose values never reach the log
SECRET_MARKERS = ("password", "passwd", "secret", "token", "credential", "key")


def redact(key: str, value: Any) -> Any:
    """Replace values stored under secret-looking keys, recursively."""
    if any(marker in key.lower() for marker in SECRET_MARKERS):
        return REDACTED
    if isinstance(value, dict):
        return {k: redact(k, v) for k, v in value.items()}
    if isinstance(value, list):
        return [redact(key, item) for item in value]
    return value


@dataclass
class AuditEvent:
    """One line of the audit log."""
    event_type: AuditEventType
    result: AuditResult
    fix_id: str
    parameters: dict[str, Any] = field(default_factory=dict)
    message: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    uid: int = field(default_factory=os.getuid)
    sudo_user: Optional[str] = field(default_factory=lambda: os.environ.get("SUDO_USER"))
    session_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "result": self.result.value,
            "timestamp": self.timestamp.isoformat(),
            "actor": {"uid": self.uid, "sudo_user": self.sudo_user},
            "target": self.fix_id,
            "parameters": {k: redact(k, v) for k, v in self.parameters.items()},
            "message": self.message,
            "error": self.error,
            "session_id": self.session_id,
        }


class AuditLogger:
    """Appends fix events to a JSON-lines file.

    Args:
        log_path: File to append to; parent directories are created 0700
        max_size_mb: Rotate once the file is larger than this
        backup_count: Numbered backups kept after rotation
        enabled: When False, events are dropped
    """

    def __init__(
        self,
        log_path: Path,
        max_size_mb: int = 10,
        backup_count: int = 5,
        enabled: bool = True,
    ) -> None:
        self.log_path = Path(log_path)
        self.max_bytes = max_size_mb * 1024 * 1024
        self.backup_count = backup_count
        self.enabled = enabled
        self.session_id = uuid.uuid4().hex

    @classmethod
    def from_config(cls, config: AuditLogConfig) -> "AuditLogger":
        return cls(config.path, config.max_size_mb, config.backup_count, config.enabled)

    def log_fix(
        self,
        fix_id: str,
        success: bool,
        parameters: Optional[dict[str, Any]] = None,
        message: Optional[str] = None,
        dry_run: bool = False,
    ) -> None:
        """Record the outcome of one fix invocation."""
        if dry_run:
            result = AuditResult.DRY_RUN
        elif success:
            result = AuditResult.SUCCESS
        else:
            result = AuditResult.FAILURE
        self.write(AuditEvent(
            AuditEventType.FIX_APPLY,
            result,
            fix_id,
            parameters=dict(parameters or {}),
            message=message if success else None,
            error=None if success else message,
        ))

    def log_unknown_fix(self, fix_id: str) -> None:
        self.write(AuditEvent(AuditEventType.FIX_UNKNOWN, AuditResult.BLOCKED, fix_id))

    def write(self, event: AuditEvent) -> None:
        if not self.enabled:
            return
        event.session_id = self.session_id
        line = json.dumps(event.to_dict(), default=str) + "\n"
        try:
            self._append(line)
            if self.log_path.stat().st_size > self.max_bytes:
                self._rotate()
        except OSError as e:
            console.debug(f"Audit log not written: {e}")

    def _append(self, line: str) -> None:
        self.log_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        fd = os.open(self.log_path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o600)
        with os.fdopen(fd, "a") as f:
            # Concurrent CLI and server processes may share the file
            fcntl.flock(f, fcntl.LOCK_EX)
            f.write(line)
            f.flush()
            os.fsync(f.fileno())

    def _backup(self, index: int) -> Path:
        return self.log_path.with_name(f"{self.log_path.name}.{index}")

    def _rotate(self) -> None:
        self._backup(self.backup_count).unlink(missing_ok=True)
        for index in range(self.backup_count - 1, 0, -1):
            if self._backup(index).exists():
                self._backup(index).rename(self._backup(index + 1))
        self.log_path.rename(self._backup(1))
        self.log_path.touch(mode=0o600)


class NullAuditLogger(AuditLogger):
    """Drops every event."""

    def __init__(self) -> None:
        super().__init__(Path(os.devnull), enabled=False)
