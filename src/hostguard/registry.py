"""Static check registry.

The probe set is fixed: CheckId enumerates every check and PROBES maps
each id to its probe class. Iteration order of PROBES is the order
checks appear in a result set.
"""

from enum import Enum
from typing import Optional

from hostguard.checks import (
    FirewallProbe,
    GatewayProbe,
    HardwareProbe,
    NetworkProbe,
    OpenPortsProbe,
    PermissionsProbe,
    Probe,
    ServicesProbe,
    SSHProbe,
    UpdatesProbe,
)
from hostguard.core.config import AppConfig
from hostguard.core.exceptions import UnknownCheckError
from hostguard.core.executor import CommandRunner
from hostguard.core.platform import Platform


class CheckId(Enum):
    OPEN_PORTS = "openPorts"
    FIREWALL = "firewall"
    SSH = "ssh"
    GATEWAY = "gateway"
    UPDATES = "updates"
    PERMISSIONS = "permissions"
    SERVICES = "services"
    NETWORK = "network"
    HARDWARE = "hardware"


PROBES: dict[CheckId, type[Probe]] = {
    CheckId.OPEN_PORTS: OpenPortsProbe,
    CheckId.FIREWALL: FirewallProbe,
    CheckId.SSH: SSHProbe,
    CheckId.GATEWAY: GatewayProbe,
    CheckId.UPDATES: UpdatesProbe,
    CheckId.PERMISSIONS: PermissionsProbe,
    CheckId.SERVICES: ServicesProbe,
    CheckId.NETWORK: NetworkProbe,
    CheckId.HARDWARE: HardwareProbe,
}


def resolve_check(check_id: str) -> CheckId:
    """Convert a raw id to a CheckId.

    Raises:
        UnknownCheckError: If the id is not registered
    """
    try:
        return CheckId(check_id)
    except ValueError:
        raise UnknownCheckError(check_id) from None


class ProbeRegistry:
    """Builds probe instances bound to one runner, platform and config."""

    def __init__(
        self,
        runner: CommandRunner,
        platform: Platform,
        config: AppConfig,
        probes: Optional[dict[CheckId, type[Probe]]] = None,
    ) -> None:
        self.runner = runner
        self.platform = platform
        self.config = config
        self.probes = PROBES if probes is None else probes

    def __len__(self) -> int:
        return len(self.probes)

    def ids(self) -> list[CheckId]:
        return list(self.probes)

    def build(self, check_id: CheckId) -> Probe:
        try:
            probe_class = self.probes[check_id]
        except KeyError:
            raise UnknownCheckError(check_id.value) from None
        return probe_class(self.runner, self.platform, self.config)
