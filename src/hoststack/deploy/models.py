"""Data models for deployment outcomes and the aggregated report."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from ..errors import DeploymentError
from ..exit_codes import ExitCode


class DeployImpact(Enum):
    """Impact tier used to derive the deploy exit code."""

    OK = ExitCode.OK.value
    VALIDATION = ExitCode.VALIDATION.value
    ENVIRONMENT = ExitCode.ENVIRONMENT.value
    PROVIDER = ExitCode.PROVIDER.value


class UnitState(str, Enum):
    """Terminal state of one managed unit for a run."""

    SKIPPED = "skipped"
    APPLIED = "applied"
    RENDER_FAILED = "render_failed"
    APPLY_FAILED = "apply_failed"
    PROBE_FAILED = "probe_failed"

    @property
    def impact(self) -> DeployImpact:
        """Return the exit-code impact of this state."""
        return _UNIT_IMPACT[self]

    @property
    def is_failure(self) -> bool:
        """Return ``True`` when the state marks the run as failed."""
        return self.impact is not DeployImpact.OK


_UNIT_IMPACT: Mapping[UnitState, DeployImpact] = {
    UnitState.SKIPPED: DeployImpact.OK,
    UnitState.APPLIED: DeployImpact.OK,
    UnitState.RENDER_FAILED: DeployImpact.VALIDATION,
    UnitState.APPLY_FAILED: DeployImpact.PROVIDER,
    UnitState.PROBE_FAILED: DeployImpact.PROVIDER,
}


class GroupState(str, Enum):
    """Outcome of one service group for a run."""

    PROCESSED = "processed"
    SKIPPED_PRECONDITION = "skipped_precondition"
    SKIPPED_CONFIGURATION = "skipped_configuration"
    DISABLED = "disabled"


@dataclass(slots=True, frozen=True)
class UnitResult:
    """Outcome of running the unit deployer for one unit."""

    unit: str
    group: str
    state: UnitState
    error: DeploymentError | None = None
    debug_artifact: Path | None = None
    duration_ms: int | None = None
    warnings: Sequence[str] = field(default_factory=tuple)

    @property
    def impact(self) -> DeployImpact:
        """Return the exit-code impact of this result."""
        return self.state.impact

    @property
    def is_failure(self) -> bool:
        """Return ``True`` when the unit failed."""
        return self.state.is_failure


@dataclass(slots=True, frozen=True)
class GroupResult:
    """Outcome of one service group, including its unit results."""

    group: str
    state: GroupState
    units: Sequence[UnitResult] = field(default_factory=tuple)
    error: DeploymentError | None = None
    duration_ms: int | None = None

    @property
    def impact(self) -> DeployImpact:
        """Return the worst impact among the group and its units."""
        if self.state is GroupState.SKIPPED_PRECONDITION:
            return DeployImpact.ENVIRONMENT
        if self.state is GroupState.SKIPPED_CONFIGURATION:
            return DeployImpact.VALIDATION
        return _worst((unit.impact for unit in self.units), DeployImpact.OK)

    @property
    def is_failure(self) -> bool:
        """Return ``True`` when the group or any of its units failed."""
        return self.impact is not DeployImpact.OK


@dataclass(slots=True, frozen=True)
class DeploymentSummary:
    """Aggregated summary derived from group results."""

    impact: DeployImpact
    exit_code: int
    unit_totals: Mapping[UnitState, int]
    group_totals: Mapping[GroupState, int]

    @property
    def failed(self) -> bool:
        """Return ``True`` when any group or unit failed."""
        return self.impact is not DeployImpact.OK


@dataclass(slots=True, frozen=True)
class DeploymentReport:
    """Complete report for a deploy run."""

    groups: Sequence[GroupResult]
    summary: DeploymentSummary
    metadata: Mapping[str, Any] | None = None

    def units(self) -> Iterator[UnitResult]:
        """Iterate over every unit result in report order."""
        for group in self.groups:
            yield from group.units

    def unit(self, name: str) -> UnitResult | None:
        """Return the result for unit *name*, if it was processed."""
        for result in self.units():
            if result.unit == name:
                return result
        return None

    def group(self, name: str) -> GroupResult | None:
        """Return the result for group *name*, if present."""
        for result in self.groups:
            if result.group == name:
                return result
        return None


def _worst(impacts: Iterable[DeployImpact], default: DeployImpact) -> DeployImpact:
    worst = default
    for impact in impacts:
        if impact.value > worst.value:
            worst = impact
    return worst


def aggregate_results(groups: Iterable[GroupResult]) -> DeploymentSummary:
    """Compute totals and the overall exit code (worst impact wins)."""
    unit_totals: dict[UnitState, int] = {state: 0 for state in UnitState}
    group_totals: dict[GroupState, int] = {state: 0 for state in GroupState}
    worst_impact = DeployImpact.OK
    for group in groups:
        group_totals[group.state] += 1
        for unit in group.units:
            unit_totals[unit.state] += 1
        if group.impact.value > worst_impact.value:
            worst_impact = group.impact
    return DeploymentSummary(
        impact=worst_impact,
        exit_code=worst_impact.value,
        unit_totals=unit_totals,
        group_totals=group_totals,
    )


def build_report(
    groups: Sequence[GroupResult],
    metadata: Mapping[str, Any] | None = None,
) -> DeploymentReport:
    """Create a full DeploymentReport from group results."""
    summary = aggregate_results(groups)
    return DeploymentReport(groups=tuple(groups), summary=summary, metadata=metadata)
