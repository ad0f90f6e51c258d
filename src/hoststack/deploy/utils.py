"""Utility helpers for serialising deployment reports."""
from __future__ import annotations

from ..logging import sanitize
from .models import DeploymentReport, GroupResult, GroupState, UnitResult, UnitState


def serialize_unit(result: UnitResult) -> dict[str, object]:
    """Convert one unit result into a JSON-serialisable mapping."""
    payload: dict[str, object] = {
        "unit": result.unit,
        "group": result.group,
        "state": result.state.value,
        "impact": result.impact.name.lower(),
    }
    if result.error is not None:
        payload["error"] = result.error.to_dict()
    if result.debug_artifact is not None:
        payload["debug_artifact"] = str(result.debug_artifact)
    if result.duration_ms is not None:
        payload["duration_ms"] = result.duration_ms
    if result.warnings:
        payload["warnings"] = list(result.warnings)
    return payload


def serialize_group(result: GroupResult) -> dict[str, object]:
    """Convert one group result into a JSON-serialisable mapping."""
    payload: dict[str, object] = {
        "group": result.group,
        "state": result.state.value,
        "impact": result.impact.name.lower(),
        "units": [serialize_unit(unit) for unit in result.units],
    }
    if result.error is not None:
        payload["error"] = result.error.to_dict()
    if result.duration_ms is not None:
        payload["duration_ms"] = result.duration_ms
    return payload


def serialize_report(report: DeploymentReport) -> dict[str, object]:
    """Convert a deployment report into a JSON-serialisable mapping."""
    summary = report.summary
    summary_payload = {
        "failed": summary.failed,
        "impact": summary.impact.name.lower(),
        "impact_code": summary.impact.value,
        "exit_code": summary.exit_code,
        "units": {
            state.value: int(summary.unit_totals.get(state, 0)) for state in UnitState
        },
        "groups": {
            state.value: int(summary.group_totals.get(state, 0)) for state in GroupState
        },
    }
    metadata_payload = sanitize(report.metadata) if report.metadata else {}
    return {
        "summary": summary_payload,
        "groups": [serialize_group(group) for group in report.groups],
        "metadata": metadata_payload,
    }
