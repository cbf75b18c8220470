"""LibreHardwareMonitor sensor bridge.

LibreHardwareMonitor (LHM) exposes its sensor tree as JSON at
`http://<host>:<port>/data.json` when its Remote Web Server is enabled.
Inside WSL2 the Windows host is reached through the resolv.conf
nameserver; if LHM only listens on the Windows loopback, the tree is
fetched through PowerShell on the Windows side instead.
"""

import asyncio
import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import requests

from hostguard.core.config import AppConfig, SensorSettings
from hostguard.core.exceptions import SensorError
from hostguard.core.executor import CommandRunner
from hostguard.core.platform import RESOLV_CONF, Platform, parse_nameserver


THRESHOLDS = {
    "cpu": {"warning": 75.0, "critical": 90.0},
    "gpu": {"warning": 80.0, "critical": 95.0},
}

_VALUE_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)")

# Checked in order. GPU comes first because GPU paths often name the vendor.
_CATEGORY_PATTERNS = (
    ("GPU", re.compile(r"NVIDIA|Radeon|GPU", re.IGNORECASE)),
    ("CPU", re.compile(r"Intel|AMD|CPU", re.IGNORECASE)),
    ("Memory", re.compile(r"DIMM|Memory", re.IGNORECASE)),
    ("Storage", re.compile(r"SSD|NVMe|WD_BLACK|Samsung|Drive", re.IGNORECASE)),
    ("Motherboard", re.compile(r"Nuvoton|ITE|Motherboard|System", re.IGNORECASE)),
)

_TYPE_SEGMENTS = {"Temperatures": "Temperature", "Fans": "Fan", "Load": "Load"}

# Reported as temperatures by LHM but not actual readings
_NON_READINGS = ("Distance", "Limit", "Resolution")


@dataclass
class SensorReading:
    """One leaf of the LHM sensor tree."""
    name: str
    value: float
    min: Optional[float]
    max: Optional[float]
    category: str
    type: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "category": self.category,
            "min": self.min,
            "max": self.max,
        }


def parse_value(raw: Optional[str]) -> Optional[float]:
    """Parse a value like '76.0 °C' or '1250 RPM'."""
    if not raw or raw == "Value":
        return None
    match = _VALUE_RE.match(str(raw))
    return float(match.group(1)) if match else None


def categorize(path: str) -> str:
    for category, pattern in _CATEGORY_PATTERNS:
        if pattern.search(path):
            return category
    return "Other"


def extract_sensors(node: dict[str, Any], path: tuple[str, ...] = ()) -> list[SensorReading]:
    """Flatten the LHM tree into readings with category and type."""
    readings: list[SensorReading] = []
    text = node.get("Text")
    current = path + (text,) if text else path

    raw = node.get("Value")
    if raw and raw != "Value":
        value = parse_value(raw)
        if value is not None:
            sensor_type = "Unknown"
            for segment in current:
                sensor_type = _TYPE_SEGMENTS.get(segment, sensor_type)
            readings.append(SensorReading(
                name=text or "",
                value=value,
                min=parse_value(node.get("Min")),
                max=parse_value(node.get("Max")),
                category=categorize(" ".join(current)),
                type=sensor_type,
            ))

    for child in node.get("Children") or []:
        readings.extend(extract_sensors(child, current))
    return readings


def threshold_status(temperature: float, kind: str) -> str:
    """'CRITICAL', 'WARNING' or 'OK' for a CPU or GPU temperature."""
    limits = THRESHOLDS[kind]
    if temperature >= limits["critical"]:
        return "CRITICAL"
    if temperature >= limits["warning"]:
        return "WARNING"
    return "OK"


@dataclass
class TemperatureSummary:
    """Key temperatures picked out of a reading list."""
    cpu_package: Optional[SensorReading]
    cpu_average: Optional[SensorReading]
    gpu_core: Optional[SensorReading]
    gpu_hotspot: Optional[SensorReading]
    temperatures: list[SensorReading]
    fans: list[SensorReading]

    @classmethod
    def from_readings(cls, readings: list[SensorReading]) -> "TemperatureSummary":
        temps = [r for r in readings if r.type == "Temperature"]
        cpu = [t for t in temps if t.category == "CPU" and "Distance" not in t.name]
        gpu = [t for t in temps if t.category == "GPU"]
        return cls(
            cpu_package=next((t for t in cpu if "Package" in t.name or t.name == "Core Max"), None),
            cpu_average=next((t for t in cpu if "Average" in t.name), None),
            gpu_core=next((t for t in gpu if t.name == "GPU Core"), None),
            gpu_hotspot=next((t for t in gpu if "Hot Spot" in t.name), None),
            temperatures=[t for t in temps if not any(s in t.name for s in _NON_READINGS)],
            fans=[r for r in readings if r.type == "Fan"],
        )

    @property
    def cpu(self) -> Optional[float]:
        return self.cpu_package.value if self.cpu_package else None

    @property
    def gpu(self) -> Optional[float]:
        return self.gpu_core.value if self.gpu_core else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "cpu": {
                "package": self.cpu,
                "average": self.cpu_average.value if self.cpu_average else None,
                "max": self.cpu_package.max if self.cpu_package else None,
            },
            "gpu": {
                "core": self.gpu,
                "hotspot": self.gpu_hotspot.value if self.gpu_hotspot else None,
                "max": self.gpu_core.max if self.gpu_core else None,
            },
        }


def _powershell_fetch_script(settings: SensorSettings) -> str:
    url = f"http://localhost:{settings.port}/data.json"
    if not settings.has_credentials:
        return f"Invoke-RestMethod -Uri '{url}' -TimeoutSec 5 | ConvertTo-Json -Depth 20"
    password = settings.password.replace("'", "''")
    username = settings.username.replace("'", "''")
    return (
        "$cred = [Convert]::ToBase64String([Text.Encoding]::ASCII.GetBytes("
        f"'{username}:{password}')); "
        '$headers = @{ Authorization = "Basic $cred" }; '
        f"Invoke-RestMethod -Uri '{url}' -Headers $headers -TimeoutSec 5 | ConvertTo-Json -Depth 20"
    )


class SensorBridge:
    """Client for the LHM web server."""

    def __init__(self, runner: CommandRunner, platform: Platform, config: AppConfig) -> None:
        self.runner = runner
        self.platform = platform
        self.settings = config.sensors
        self.timeout = config.timeouts.sensor
        self.powershell_timeout = config.timeouts.powershell

    async def resolve_host(self) -> str:
        """Configured host, or the Windows host address inside WSL2."""
        host = self.settings.host
        if self.settings.is_local_host and self.platform.is_wsl2:
            if self.platform.windows_host:
                return self.platform.windows_host
            try:
                nameserver = parse_nameserver(await self.runner.read_text(RESOLV_CONF))
            except OSError:
                nameserver = None
            if nameserver:
                return nameserver
        return host

    def _get(self, url: str) -> dict[str, Any]:
        auth = (self.settings.username, self.settings.password) if self.settings.has_credentials else None
        try:
            response = requests.get(url, auth=auth, timeout=self.timeout)
        except requests.Timeout as e:
            raise SensorError("Request timeout") from e
        except requests.RequestException as e:
            raise SensorError(f"Connection failed: {e}") from e

        if response.status_code == 401:
            raise SensorError("Authentication failed", hint="Check LHM_USERNAME and LHM_PASSWORD")
        if response.status_code != 200:
            raise SensorError(f"HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise SensorError(f"Invalid JSON: {e}") from e

    async def _fetch_powershell(self) -> dict[str, Any]:
        result = await self.runner.run(
            self.platform.powershell_command(_powershell_fetch_script(self.settings)),
            timeout=self.powershell_timeout,
        )
        if not result.success:
            raise SensorError(result.stderr.strip() or f"exit code {result.return_code}")
        try:
            return json.loads(result.stdout)
        except ValueError as e:
            raise SensorError(f"Invalid JSON: {e}") from e

    async def fetch(self) -> tuple[str, dict[str, Any]]:
        """Fetch the raw sensor tree.

        Returns:
            (host it was read from, decoded tree)

        Raises:
            SensorError: If neither HTTP nor the PowerShell fallback worked
        """
        host = await self.resolve_host()
        url = f"http://{host}:{self.settings.port}/data.json"
        try:
            return host, await asyncio.to_thread(self._get, url)
        except SensorError as http_error:
            if not (self.platform.is_wsl2 and self.platform.has_windows_side):
                raise
            try:
                return host, await self._fetch_powershell()
            except SensorError as ps_error:
                raise SensorError(
                    f"HTTP: {http_error.message}, PowerShell: {ps_error.message}",
                    hint="Ensure LibreHardwareMonitor is running with Remote Web Server enabled.",
                ) from ps_error

    async def readings(self) -> tuple[str, list[SensorReading]]:
        host, tree = await self.fetch()
        return host, extract_sensors(tree)


async def get_temperature_data(bridge: SensorBridge) -> dict[str, Any]:
    """Lightweight temperature read that bypasses the aggregator."""
    try:
        host, readings = await bridge.readings()
    except SensorError as e:
        return {"success": False, "error": e.message}

    summary = TemperatureSummary.from_readings(readings)
    return {
        "success": True,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "host": host,
        "summary": summary.to_dict(),
        "temperatures": [t.to_dict() for t in summary.temperatures],
    }
