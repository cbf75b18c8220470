"""Configuration management using Pydantic.

Provides:
- Typed configuration models with validation
- Optional YAML file loading with defaults
- Environment variables for the sensor bridge and server port
"""

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from hostguard.core.exceptions import ConfigurationError


DEFAULT_CONFIG_PATH = Path.home() / ".config" / "hostguard" / "config.yaml"
DEFAULT_AUDIT_LOG_PATH = Path.home() / ".local" / "state" / "hostguard" / "audit.log"

DEFAULT_LHM_HOST = "localhost"
DEFAULT_LHM_PORT = 8085


def _validate_port(v: int) -> int:
    if not 1 <= v <= 65535:
        raise ValueError(f"Invalid port: {v}. Must be between 1 and 65535")
    return v


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    host: str = "127.0.0.1"
    port: int = 4000

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        return _validate_port(v)


class TimeoutConfig(BaseModel):
    """Timeouts (seconds) for external calls made by probes."""

    command: float = 15.0
    audit: float = 30.0
    sensor: float = 3.0
    powershell: float = 15.0

    @field_validator("command", "audit", "sensor", "powershell")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeouts must be positive")
        return v


class AuditLogConfig(BaseModel):
    """Fix audit log configuration."""

    enabled: bool = True
    path: Path = DEFAULT_AUDIT_LOG_PATH
    max_size_mb: int = 10
    backup_count: int = 5


class DashboardConfig(BaseModel):
    """Root configuration model.

    Loaded from ~/.config/hostguard/config.yaml when present. Every
    field has a default, so the file is optional.
    """

    server: ServerConfig = Field(default_factory=ServerConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    audit_log: AuditLogConfig = Field(default_factory=AuditLogConfig)

    @classmethod
    def load(cls, path: Path) -> "DashboardConfig":
        """Load configuration from YAML file.

        Raises:
            ConfigurationError: If file not found or invalid
        """
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                hint="Create it with: hostguard config init",
            )

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file: {path}",
                details=[str(e)],
            ) from e
        except PermissionError:
            raise ConfigurationError(
                f"Cannot read configuration file: {path}",
                hint="Check file permissions",
            )

        try:
            return cls(**data)
        except Exception as e:
            raise ConfigurationError(
                f"Invalid configuration: {e}",
                details=[str(e)],
            ) from e

    @classmethod
    def load_or_default(cls, path: Optional[Path] = None) -> "DashboardConfig":
        """Load configuration, falling back to defaults if file doesn't exist."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if path.exists():
            return cls.load(path)
        return cls()

    def to_yaml(self) -> str:
        """Convert configuration to YAML string."""
        data = self.model_dump(mode="json", exclude_none=True)
        return yaml.dump(data, default_flow_style=False, sort_keys=False)


class SensorSettings(BaseSettings):
    """LibreHardwareMonitor connection settings from the environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    host: str = Field(DEFAULT_LHM_HOST, alias="LHM_HOST")
    port: int = Field(DEFAULT_LHM_PORT, alias="LHM_PORT")
    username: str = Field("", alias="LHM_USERNAME")
    password: str = Field("", alias="LHM_PASSWORD")

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        return _validate_port(v)

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)

    @property
    def is_local_host(self) -> bool:
        return self.host in ("localhost", "127.0.0.1")


class ServerSettings(BaseSettings):
    """Server overrides from the environment."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    port: Optional[int] = Field(None, alias="PORT")


class AppConfig:
    """Application configuration combining config file and environment.

    This is the main interface for accessing configuration throughout the app.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config: Optional[DashboardConfig] = None,
        sensors: Optional[SensorSettings] = None,
    ) -> None:
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self._config = config or DashboardConfig.load_or_default(self.config_path)
        self._sensors = sensors or SensorSettings()
        self._server_env = ServerSettings()

    @property
    def config(self) -> DashboardConfig:
        """Get the dashboard configuration."""
        return self._config

    @property
    def sensors(self) -> SensorSettings:
        """Get the sensor bridge settings."""
        return self._sensors

    @property
    def timeouts(self) -> TimeoutConfig:
        """Shortcut to timeout config."""
        return self._config.timeouts

    @property
    def audit_log(self) -> AuditLogConfig:
        """Shortcut to audit log config."""
        return self._config.audit_log

    @property
    def server_host(self) -> str:
        return self._config.server.host

    @property
    def server_port(self) -> int:
        """Server port, PORT environment variable taking precedence."""
        if self._server_env.port:
            return self._server_env.port
        return self._config.server.port


def get_example_config() -> str:
    """Generate example configuration file content."""
    return """# hostguard configuration
# Every setting is optional. Sensor bridge credentials come from the
# environment (LHM_HOST, LHM_PORT, LHM_USERNAME, LHM_PASSWORD).

server:
  host: 127.0.0.1
  port: 4000  # overridden by PORT

# Seconds to wait for external calls before giving up
timeouts:
  command: 15
  audit: 30     # gateway audit CLI
  sensor: 3     # LibreHardwareMonitor HTTP bridge
  powershell: 15

# JSON-lines log of every fix invocation
audit_log:
  enabled: true
  max_size_mb: 10
  backup_count: 5
"""


def init_config(path: Path, force: bool = False) -> None:
    """Initialize a new configuration file.

    Raises:
        ConfigurationError: If file exists and force is False
    """
    if path.exists() and not force:
        raise ConfigurationError(
            f"Configuration file already exists: {path}",
            hint="Use --force to overwrite",
        )

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(get_example_config())
    path.chmod(0o600)
