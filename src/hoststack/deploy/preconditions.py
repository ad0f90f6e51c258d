"""Precondition checks run before any unit of a group is touched."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from ..errors import DeploymentError, ExecutorError, MissingResource
from ..providers.base import ResourceExecutor
from ..stack import ExternalResource

LOGGER = logging.getLogger(__name__)


def validate_preconditions(
    resources: Iterable[ExternalResource],
    executor: ResourceExecutor,
) -> tuple[ExternalResource, ...]:
    """Confirm every resource exists; return the resources checked.

    All resources are queried before this function returns, so callers can
    treat it as a barrier in front of any mutation. Raises
    :class:`MissingResource` naming the first absent resource (the detail
    lists all of them) or :class:`ExecutorError` when a check cannot be
    answered.
    """
    checked: list[ExternalResource] = []
    missing: list[ExternalResource] = []
    for resource in resources:
        try:
            present = executor.resource_exists(resource)
        except DeploymentError:
            raise
        except Exception as exc:
            raise ExecutorError(resource.name, repr(exc)) from exc
        LOGGER.debug("%s %s present=%s", resource.kind, resource.name, present)
        checked.append(resource)
        if not present:
            missing.append(resource)
    if missing:
        names = ", ".join(f"{item.kind} {item.name}" for item in missing)
        raise MissingResource(missing[0].name, f"missing: {names}")
    return tuple(checked)


__all__ = ["validate_preconditions"]
