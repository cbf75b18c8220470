"""Probes: one read-only inspection of the host each."""

from hostguard.checks.base import Probe
from hostguard.checks.firewall import FirewallProbe
from hostguard.checks.gateway import GatewayProbe
from hostguard.checks.hardware import HardwareProbe
from hostguard.checks.network import NetworkProbe
from hostguard.checks.open_ports import OpenPortsProbe
from hostguard.checks.permissions import PermissionsProbe
from hostguard.checks.services import ServicesProbe
from hostguard.checks.ssh import SSHProbe
from hostguard.checks.updates import UpdatesProbe

__all__ = [
    "Probe",
    "FirewallProbe",
    "GatewayProbe",
    "HardwareProbe",
    "NetworkProbe",
    "OpenPortsProbe",
    "PermissionsProbe",
    "ServicesProbe",
    "SSHProbe",
    "UpdatesProbe",
]
