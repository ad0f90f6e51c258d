"""Per-unit pipeline: probe, render, optionally persist, apply."""

from __future__ import annotations

import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path

from ..context import ConfigurationContext
from ..errors import ApplyError, DeploymentError, InvalidTemplate
from ..providers.base import ResourceExecutor
from ..stack import ManagedUnit
from ..templates import TemplateEngine
from .models import UnitResult, UnitState
from .prober import ExistenceProber

LOGGER = logging.getLogger(__name__)

DEBUG_ARTIFACT_SUFFIX = ".yml"


def _duration_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def write_artifact(path: Path, text: str, *, mode: int = 0o600) -> None:
    """Atomically write *text* to *path*, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


@dataclass(slots=True)
class UnitDeployer:
    """Deploy one managed unit if, and only if, it does not exist yet.

    States: probe -> ``skipped`` when present; otherwise render ->
    ``render_failed`` on error; otherwise (debug copy) -> apply ->
    ``applied`` or ``apply_failed``. Apply is attempted at most once.
    """

    executor: ResourceExecutor
    templates: TemplateEngine
    debug: bool = False
    debug_dir: Path = Path("debug")
    prober: ExistenceProber = field(init=False)

    def __post_init__(self) -> None:
        """Bind the existence prober to the executor."""
        self.prober = ExistenceProber(self.executor)

    def debug_path_for(self, group: str, unit: ManagedUnit) -> Path:
        """Return where the inspection copy of *unit*'s artifact is written."""
        if unit.debug_path is not None:
            if unit.debug_path.is_absolute():
                return unit.debug_path
            return self.debug_dir / unit.debug_path
        return self.debug_dir / group / f"{unit.name}{DEBUG_ARTIFACT_SUFFIX}"

    def deploy(
        self,
        group: str,
        unit: ManagedUnit,
        context: ConfigurationContext,
    ) -> UnitResult:
        """Run the pipeline for *unit* and return its terminal state."""
        start = time.perf_counter()

        try:
            present = self.prober.exists(unit.name)
        except DeploymentError as exc:
            LOGGER.error("Existence probe for %s failed: %s", unit.name, exc)
            return self._result(group, unit, UnitState.PROBE_FAILED, start, error=exc)
        if present:
            LOGGER.info("Unit %s already exists; skipping.", unit.name)
            return self._result(group, unit, UnitState.SKIPPED, start)

        try:
            artifact = self.templates.render_artifact(
                unit.template, context.subset(unit.variables)
            )
        except DeploymentError as exc:
            LOGGER.error("Rendering %s failed: %s", unit.name, exc)
            return self._result(group, unit, UnitState.RENDER_FAILED, start, error=exc)
        except Exception as exc:
            error = InvalidTemplate(unit.template, repr(exc))
            LOGGER.error("Rendering %s failed: %s", unit.name, error)
            return self._result(group, unit, UnitState.RENDER_FAILED, start, error=error)

        debug_artifact: Path | None = None
        warnings: list[str] = []
        if self.debug:
            path = self.debug_path_for(group, unit)
            try:
                write_artifact(path, artifact)
                debug_artifact = path
            except OSError as exc:
                LOGGER.warning("Could not write debug artifact %s: %s", path, exc)
                warnings.append(f"debug artifact not written: {exc}")

        try:
            self.executor.apply(unit.name, artifact)
        except DeploymentError as exc:
            LOGGER.error("Applying %s failed: %s", unit.name, exc)
            return self._result(
                group,
                unit,
                UnitState.APPLY_FAILED,
                start,
                error=exc,
                debug_artifact=debug_artifact,
                warnings=warnings,
            )
        except Exception as exc:
            error = ApplyError(unit.name, repr(exc))
            LOGGER.error("Applying %s failed: %s", unit.name, error)
            return self._result(
                group,
                unit,
                UnitState.APPLY_FAILED,
                start,
                error=error,
                debug_artifact=debug_artifact,
                warnings=warnings,
            )

        LOGGER.info("Unit %s applied.", unit.name)
        return self._result(
            group,
            unit,
            UnitState.APPLIED,
            start,
            debug_artifact=debug_artifact,
            warnings=warnings,
        )

    def _result(
        self,
        group: str,
        unit: ManagedUnit,
        state: UnitState,
        start: float,
        *,
        error: DeploymentError | None = None,
        debug_artifact: Path | None = None,
        warnings: list[str] | None = None,
    ) -> UnitResult:
        return UnitResult(
            unit=unit.name,
            group=group,
            state=state,
            error=error,
            debug_artifact=debug_artifact,
            duration_ms=_duration_ms(start),
            warnings=tuple(warnings or ()),
        )


__all__ = ["UnitDeployer", "write_artifact"]
