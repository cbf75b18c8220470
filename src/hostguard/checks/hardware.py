"""Hardware health probe.

Temperature sources, tried in order until one yields a CPU or GPU
reading:

1. LibreHardwareMonitor through the sensor bridge
2. psutil sensors (Linux hwmon, FreeBSD)
3. The ACPI thermal zone via WMI on the Windows side (WSL2/Windows)

Load, memory, disk, battery and uptime always come from psutil.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import psutil

from hostguard.checks.base import Probe
from hostguard.checks.sensors import (
    THRESHOLDS,
    SensorBridge,
    TemperatureSummary,
    threshold_status,
)
from hostguard.core.exceptions import SensorError
from hostguard.models import (
    Category,
    CheckReport,
    CheckStatus,
    FixDescriptor,
    Severity,
)


# A stopped fan is only alarming when the part it cools is warm
FAN_STALL_TEMPERATURE = 45.0

USAGE_LIMIT = 90.0

CPU_SENSOR_CHIPS = ("coretemp", "k10temp", "zenpower", "cpu_thermal", "cpu-thermal", "acpitz")
GPU_SENSOR_CHIPS = ("amdgpu", "radeon", "nouveau")
_CPU_PRIMARY_LABELS = ("Package", "Tctl", "Tdie")

WMI_THERMAL_SCRIPT = (
    "Get-CimInstance MSAcpi_ThermalZoneTemperature -Namespace root/wmi "
    "-ErrorAction SilentlyContinue | Select-Object -First 1 -ExpandProperty CurrentTemperature"
)

LHM_HINT = "Ensure LibreHardwareMonitor is running with Remote Web Server enabled."

INSTALL_LHM_FIX = FixDescriptor(
    id="install-lhm",
    name="Install LibreHardwareMonitor",
    description="Download and run LibreHardwareMonitor with Options > Remote Web Server enabled",
    manual_steps=[
        "Download LibreHardwareMonitor from https://github.com/LibreHardwareMonitor/LibreHardwareMonitor/releases",
        "Run it as Administrator",
        "Enable Options > Remote Web Server (port 8085)",
    ],
)


@dataclass
class FanReading:
    name: str
    rpm: float
    category: str = "Other"

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "rpm": self.rpm, "category": self.category}


@dataclass
class ThermalSnapshot:
    """Temperatures and fans from whichever source answered."""
    source: str
    cpu: Optional[float] = None
    gpu: Optional[float] = None
    fans: list[FanReading] = field(default_factory=list)
    temperatures: list[dict[str, Any]] = field(default_factory=list)

    @property
    def has_temperature(self) -> bool:
        return self.cpu is not None or self.gpu is not None

    def fan_temperature(self, fan: FanReading) -> Optional[float]:
        """Temperature of the part a fan cools."""
        return self.gpu if fan.category == "GPU" else self.cpu


def snapshot_from_summary(summary: TemperatureSummary, host: str) -> ThermalSnapshot:
    return ThermalSnapshot(
        source=f"LibreHardwareMonitor ({host})",
        cpu=summary.cpu,
        gpu=summary.gpu,
        fans=[FanReading(f.name, f.value, f.category) for f in summary.fans],
        temperatures=[t.to_dict() for t in summary.temperatures],
    )


def snapshot_from_psutil(temps: dict[str, list], fans: dict[str, list]) -> ThermalSnapshot:
    """Build a snapshot from psutil.sensors_temperatures()/sensors_fans() output."""
    snapshot = ThermalSnapshot(source="psutil")

    for chip in CPU_SENSOR_CHIPS:
        entries = [e for e in temps.get(chip, []) if e.current is not None]
        if not entries:
            continue
        primary = [e for e in entries if e.label.startswith(_CPU_PRIMARY_LABELS)]
        snapshot.cpu = float((primary or [max(entries, key=lambda e: e.current)])[0].current)
        break

    gpu_values = [e.current for chip in GPU_SENSOR_CHIPS for e in temps.get(chip, []) if e.current is not None]
    if gpu_values:
        snapshot.gpu = float(max(gpu_values))

    for chip, entries in temps.items():
        category = "CPU" if chip in CPU_SENSOR_CHIPS else "GPU" if chip in GPU_SENSOR_CHIPS else "Other"
        for entry in entries:
            snapshot.temperatures.append({
                "name": entry.label or chip,
                "value": entry.current,
                "category": category,
                "max": entry.high,
            })

    for chip, entries in fans.items():
        category = "GPU" if chip in GPU_SENSOR_CHIPS else "Other"
        for entry in entries:
            snapshot.fans.append(FanReading(entry.label or chip, float(entry.current), category))

    return snapshot


def parse_wmi_kelvin(output: str) -> Optional[float]:
    """MSAcpi_ThermalZoneTemperature reports tenths of a kelvin."""
    text = output.strip().splitlines()[0] if output.strip() else ""
    if not text.isdigit() or int(text) <= 0:
        return None
    return round(int(text) / 10 - 273.15, 1)


def collect_system_metrics() -> dict[str, Any]:
    """Blocking psutil reads for load, memory, disks, battery and uptime."""
    metrics: dict[str, Any] = {
        "cpu": {
            "cores": psutil.cpu_count(logical=True),
            "physicalCores": psutil.cpu_count(logical=False),
        },
        "load": {"currentLoad": round(psutil.cpu_percent(interval=0.5))},
    }

    memory = psutil.virtual_memory()
    metrics["memory"] = {
        "total": format_bytes(memory.total),
        "used": format_bytes(memory.used),
        "available": format_bytes(memory.available),
        "usedPercent": round(memory.percent),
    }

    disks = []
    for partition in psutil.disk_partitions(all=False):
        try:
            usage = psutil.disk_usage(partition.mountpoint)
        except OSError:
            continue
        disks.append({
            "mount": partition.mountpoint,
            "size": format_bytes(usage.total),
            "used": format_bytes(usage.used),
            "usedPercent": round(usage.percent),
        })
    metrics["disks"] = disks

    battery = psutil.sensors_battery() if hasattr(psutil, "sensors_battery") else None
    if battery is not None:
        metrics["battery"] = {
            "percent": round(battery.percent),
            "isCharging": bool(battery.power_plugged),
        }

    metrics["uptime"] = format_uptime(time.time() - psutil.boot_time())
    return metrics


def format_bytes(size: float) -> str:
    if size < 1024:
        return f"{int(size)} B"
    for unit in ("KB", "MB", "GB"):
        size /= 1024
        if size < 1024:
            return f"{size:.2f} {unit}"
    return f"{size / 1024:.2f} TB"


def format_uptime(seconds: float) -> str:
    seconds = int(seconds)
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes = rest // 60
    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def evaluate_thermal(report: CheckReport, snapshot: ThermalSnapshot) -> None:
    """Apply temperature thresholds and the stalled-fan rule."""
    for kind, value in (("cpu", snapshot.cpu), ("gpu", snapshot.gpu)):
        if value is None:
            continue
        label = kind.upper()
        status = threshold_status(value, kind)
        if status == "CRITICAL":
            report.escalate(CheckStatus.CRITICAL)
            report.recommend(
                Severity.CRITICAL,
                f"{label} temperature is {value:.1f}°C - CRITICAL! Check cooling immediately.",
            )
        elif status == "WARNING":
            report.escalate(CheckStatus.WARNING)
            report.recommend(
                Severity.HIGH,
                f"{label} temperature is {value:.1f}°C - running warm. Check airflow and fans.",
            )

    for fan in snapshot.fans:
        if fan.rpm > 0:
            continue
        temperature = snapshot.fan_temperature(fan)
        if temperature is not None and temperature >= FAN_STALL_TEMPERATURE:
            report.escalate(CheckStatus.CRITICAL)
            report.recommend(
                Severity.CRITICAL,
                f'Fan "{fan.name}" is not spinning (0 RPM) at {temperature:.1f}°C! Check immediately.',
            )
        else:
            report.recommend(
                Severity.INFO,
                f'Fan "{fan.name}" reports 0 RPM (idle or fan-stop mode).',
            )


def evaluate_metrics(report: CheckReport, metrics: dict[str, Any]) -> None:
    """Flag CPU load, memory and disks above the usage limit."""
    load = metrics["load"]["currentLoad"]
    if load > USAGE_LIMIT:
        report.escalate(CheckStatus.WARNING)
        report.recommend(Severity.MEDIUM, f"CPU load is {load}% - system under heavy load.")

    memory = metrics["memory"]["usedPercent"]
    if memory > USAGE_LIMIT:
        report.escalate(CheckStatus.WARNING)
        report.recommend(Severity.HIGH, f"Memory usage is {memory}% - consider closing applications.")

    for disk in metrics["disks"]:
        if disk["usedPercent"] > USAGE_LIMIT:
            report.escalate(CheckStatus.WARNING)
            report.recommend(
                Severity.HIGH,
                f"Disk {disk['mount']} is {disk['usedPercent']}% full - consider cleanup.",
            )


class HardwareProbe(Probe):
    """Monitors temperatures, fan speeds and system health."""

    name = "Hardware Health"
    description = "Monitors CPU temperature, fan speeds, and system health"
    category = Category.HARDWARE

    def __init__(self, *args, bridge: Optional[SensorBridge] = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.bridge = bridge or SensorBridge(self.runner, self.platform, self.config)

    async def inspect(self, report: CheckReport) -> None:
        snapshot = await self.read_thermal(report)
        metrics = await asyncio.to_thread(collect_system_metrics)
        report.details.update(metrics)
        report.details["thresholds"] = THRESHOLDS

        if snapshot is not None:
            report.details["dataSource"] = snapshot.source
            report.details["temperature"] = {
                "cpu": snapshot.cpu,
                "gpu": snapshot.gpu,
                "cpuStatus": threshold_status(snapshot.cpu, "cpu") if snapshot.cpu is not None else "UNKNOWN",
                "gpuStatus": threshold_status(snapshot.gpu, "gpu") if snapshot.gpu is not None else "UNKNOWN",
                "all": snapshot.temperatures,
            }
            report.details["fans"] = [f.to_dict() for f in snapshot.fans]
            evaluate_thermal(report, snapshot)

        evaluate_metrics(report, metrics)

        if snapshot is None:
            report.status = CheckStatus.ERROR
            report.details["hint"] = LHM_HINT
            report.add_fix(INSTALL_LHM_FIX)
            report.message = "Temperature monitoring unavailable: no sensor source found"
        elif report.status == CheckStatus.CRITICAL:
            report.message = "Critical hardware issues detected!"
        elif report.status == CheckStatus.WARNING:
            report.message = "Hardware warnings detected"
        else:
            cpu = f"{snapshot.cpu:.0f}°C" if snapshot.cpu is not None else "N/A"
            gpu = f"{snapshot.gpu:.0f}°C" if snapshot.gpu is not None else "N/A"
            report.message = (
                f"System healthy - CPU: {cpu}, GPU: {gpu}, "
                f"Load: {metrics['load']['currentLoad']}%, RAM: {metrics['memory']['usedPercent']}%"
            )

    async def read_thermal(self, report: CheckReport) -> Optional[ThermalSnapshot]:
        """First temperature source that yields a CPU or GPU reading."""
        try:
            host, readings = await self.bridge.readings()
        except SensorError as e:
            self.record_tool(report, "librehardwaremonitor", False)
            report.details["sensorBridgeError"] = e.message
        else:
            self.record_tool(report, "librehardwaremonitor", True)
            snapshot = snapshot_from_summary(TemperatureSummary.from_readings(readings), host)
            if snapshot.has_temperature:
                return snapshot

        snapshot = await asyncio.to_thread(self._psutil_snapshot)
        self.record_tool(report, "psutil-sensors", snapshot is not None)
        if snapshot is not None and snapshot.has_temperature:
            return snapshot

        if self.platform.has_windows_side:
            result = await self.run_tool(
                report,
                "powershell",
                self.platform.powershell_command(WMI_THERMAL_SCRIPT),
                timeout=self.config.timeouts.powershell,
            )
            celsius = parse_wmi_kelvin(result.stdout) if result.success else None
            if celsius is not None:
                return ThermalSnapshot(source="wmi-thermal-zone", cpu=celsius)

        return None

    @staticmethod
    def _psutil_snapshot() -> Optional[ThermalSnapshot]:
        if not hasattr(psutil, "sensors_temperatures"):
            return None
        temps = psutil.sensors_temperatures()
        fans = psutil.sensors_fans() if hasattr(psutil, "sensors_fans") else {}
        if not temps and not fans:
            return None
        return snapshot_from_psutil(temps, fans)
