"""Existence probe deciding whether a unit is deployed this run."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import DeploymentError, ExecutorError
from ..providers.base import ResourceExecutor

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ExistenceProber:
    """Ask the executor whether a unit already exists.

    Answers are never cached: every call reaches the executor, so units created
    or removed by someone else between runs (or between units) are noticed.
    """

    executor: ResourceExecutor

    def exists(self, unit_name: str) -> bool:
        """Return ``True`` when *unit_name* is already present."""
        try:
            present = self.executor.unit_exists(unit_name)
        except DeploymentError:
            raise
        except Exception as exc:
            raise ExecutorError(unit_name, repr(exc)) from exc
        LOGGER.debug("unit %s present=%s", unit_name, present)
        return present


__all__ = ["ExistenceProber"]
