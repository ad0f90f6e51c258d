"""Top-level driver running every enabled service group."""

from __future__ import annotations

import concurrent.futures
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from ..context import ConfigurationContext, ConfigurationSource, resolve
from ..errors import DeploymentError, MissingRequiredKey
from ..providers.base import ResourceExecutor
from ..stack import ServiceGroup, Stack
from ..templates import TemplateEngine
from .deployer import UnitDeployer
from .models import DeploymentReport, GroupResult, GroupState, build_report
from .preconditions import validate_preconditions

LOGGER = logging.getLogger(__name__)


def _duration_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


@dataclass(slots=True)
class GroupCoordinator:
    """Run preconditions and units group by group, isolating failures.

    A missing variable or a failing precondition skips its own group only;
    a failing unit affects only itself. Disabled groups are reported but never evaluated.
    """

    executor: ResourceExecutor
    deployer: UnitDeployer
    max_concurrency: int = 1

    def run(
        self,
        groups: Sequence[ServiceGroup],
        context: ConfigurationContext,
        *,
        metadata: Mapping[str, object] | None = None,
    ) -> DeploymentReport:
        """Deploy *groups* with the shared read-only *context*."""
        start = time.perf_counter()
        results: list[GroupResult | None] = [None] * len(groups)
        pending: list[tuple[int, ServiceGroup]] = []
        for index, group in enumerate(groups):
            if group.enabled:
                pending.append((index, group))
            else:
                LOGGER.info("Group %s disabled; not evaluated.", group.name)
                results[index] = GroupResult(group=group.name, state=GroupState.DISABLED)

        max_workers = max(1, self.max_concurrency)
        if max_workers == 1 or len(pending) <= 1:
            for index, group in pending:
                results[index] = self.run_group(group, context)
        else:
            with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as pool:
                future_to_index = {
                    pool.submit(self.run_group, group, context): index
                    for index, group in pending
                }
                for future in concurrent.futures.as_completed(future_to_index):
                    results[future_to_index[future]] = future.result()

        run_metadata: dict[str, object] = {
            "duration_ms": _duration_ms(start),
            "group_count": len(groups),
            "enabled_groups": len(pending),
            "concurrency": max_workers,
        }
        if metadata:
            run_metadata.update(metadata)
        return build_report(
            [result for result in results if result is not None],
            metadata=run_metadata,
        )

    def run_group(self, group: ServiceGroup, context: ConfigurationContext) -> GroupResult:
        """Check variables and preconditions, then deploy the units in order."""
        start = time.perf_counter()
        try:
            context.require(group.required_variables())
        except MissingRequiredKey as exc:
            LOGGER.warning("Skipping group %s: %s", group.name, exc)
            return GroupResult(
                group=group.name,
                state=GroupState.SKIPPED_CONFIGURATION,
                error=exc,
                duration_ms=_duration_ms(start),
            )
        try:
            validate_preconditions(group.resources, self.executor)
        except DeploymentError as exc:
            LOGGER.warning("Skipping group %s: %s", group.name, exc)
            return GroupResult(
                group=group.name,
                state=GroupState.SKIPPED_PRECONDITION,
                error=exc,
                duration_ms=_duration_ms(start),
            )
        units = tuple(self.deployer.deploy(group.name, unit, context) for unit in group.units)
        return GroupResult(
            group=group.name,
            state=GroupState.PROCESSED,
            units=units,
            duration_ms=_duration_ms(start),
        )


def run_deployment(
    stack: Stack,
    layers: Sequence[ConfigurationSource],
    *,
    executor: ResourceExecutor,
    templates: TemplateEngine,
    debug: bool = False,
    debug_dir: Path = Path("debug"),
    max_concurrency: int = 1,
    metadata: Mapping[str, object] | None = None,
) -> DeploymentReport:
    """Resolve the variable context once and deploy every group of *stack*.

    A group whose units need a variable no layer defines is reported as
    ``skipped_configuration`` before any executor call for it; the other
    groups still run.
    """
    context = resolve(layers)
    deployer = UnitDeployer(
        executor=executor,
        templates=templates,
        debug=debug,
        debug_dir=debug_dir,
    )
    coordinator = GroupCoordinator(
        executor=executor,
        deployer=deployer,
        max_concurrency=max_concurrency,
    )
    return coordinator.run(stack.groups, context, metadata=metadata)


__all__ = ["GroupCoordinator", "run_deployment"]
