"""Deployment engine: preconditions, existence probes, rendering, apply."""

from __future__ import annotations

from .coordinator import GroupCoordinator, run_deployment
from .deployer import UnitDeployer, write_artifact
from .models import (
    DeployImpact,
    DeploymentReport,
    DeploymentSummary,
    GroupResult,
    GroupState,
    UnitResult,
    UnitState,
    aggregate_results,
    build_report,
)
from .preconditions import validate_preconditions
from .prober import ExistenceProber
from .utils import serialize_report

__all__ = [
    "DeployImpact",
    "DeploymentReport",
    "DeploymentSummary",
    "ExistenceProber",
    "GroupCoordinator",
    "GroupResult",
    "GroupState",
    "UnitDeployer",
    "UnitResult",
    "UnitState",
    "aggregate_results",
    "build_report",
    "run_deployment",
    "serialize_report",
    "validate_preconditions",
    "write_artifact",
]
