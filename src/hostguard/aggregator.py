"""Check aggregation and scoring.

Every registered probe runs concurrently on the current event loop.
A probe that raises is replaced by a synthetic `error` report so the
other reports are never affected.

Score:
    round(((passed + info) * 100 + warnings * 50) / total_checks)

`info` counts like `pass`; `critical` and `error` contribute nothing.
It is an at-a-glance pass rate, not a risk quantification.
"""

import asyncio
import math
from datetime import datetime, timezone
from typing import Optional

from hostguard.checks.base import Probe
from hostguard.core.exceptions import UnknownCheckError
from hostguard.core.output import Console, console as default_console
from hostguard.models import CheckReport, CheckStatus, ResultSet
from hostguard.registry import CheckId, ProbeRegistry, resolve_check


def round_half_up(value: float) -> int:
    """Round like JavaScript's Math.round (Python's round() is banker's rounding)."""
    return int(math.floor(value + 0.5))


def compute_score(passed: int, info: int, warnings: int, total_checks: int) -> int:
    """Weighted pass rate in 0-100; 0 for an empty registry."""
    if total_checks <= 0:
        return 0
    return round_half_up(((passed + info) * 100 + warnings * 50) / total_checks)


def build_result_set(reports: list[CheckReport], total_checks: int) -> ResultSet:
    """Tally statuses and score a list of reports."""
    counts = {status: 0 for status in CheckStatus}
    for report in reports:
        counts[report.status] += 1

    passed = counts[CheckStatus.PASS]
    info = counts[CheckStatus.INFO]
    warnings = counts[CheckStatus.WARNING]

    return ResultSet(
        total_checks=total_checks,
        passed=passed,
        info=info,
        warnings=warnings,
        critical=counts[CheckStatus.CRITICAL],
        overall_score=compute_score(passed, info, warnings, total_checks),
        checks=reports,
        timestamp=datetime.now(timezone.utc),
    )


class Aggregator:
    """Runs probes from a registry and assembles result sets."""

    def __init__(self, registry: ProbeRegistry, console: Optional[Console] = None) -> None:
        self.registry = registry
        self.console = console or default_console

    async def run_all(self) -> ResultSet:
        """Run every registered probe concurrently."""
        ids = self.registry.ids()
        reports = await asyncio.gather(*(self._run_isolated(check_id) for check_id in ids))
        return build_result_set(list(reports), len(self.registry))

    async def run_one(self, check_id: str) -> CheckReport:
        """Run a single probe by id.

        Raises:
            UnknownCheckError: If the id is not registered
        """
        resolved = resolve_check(check_id)
        if resolved not in self.registry.probes:
            raise UnknownCheckError(check_id)
        return await self._run_isolated(resolved)

    async def _run_isolated(self, check_id: CheckId) -> CheckReport:
        probe_class = self.registry.probes[check_id]
        try:
            probe: Probe = self.registry.build(check_id)
            report = await probe.run()
        except Exception as e:
            self.console.debug(f"Check {check_id.value} failed: {e!r}")
            report = CheckReport(
                name=probe_class.name,
                description=probe_class.description,
                category=probe_class.category,
                status=CheckStatus.ERROR,
                message=str(e) or type(e).__name__,
                details={"tools": {}, "error": type(e).__name__},
            )
        report.id = check_id.value
        return report
