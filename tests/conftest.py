"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Iterable, Iterator

import pytest

from hoststack.errors import ApplyError
from hoststack.stack import ExternalResource


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


class FakeExecutor:
    """In-memory executor recording every call in order."""

    def __init__(
        self,
        *,
        resources: Iterable[str] = (),
        units: Iterable[str] = (),
        failing_applies: Iterable[str] = (),
    ) -> None:
        """Seed the resources and units considered present."""
        self.resources = set(resources)
        self.units = set(units)
        self.failing_applies = set(failing_applies)
        self.calls: list[tuple[str, str]] = []
        self.received: dict[str, str] = {}
        self.applied: dict[str, str] = {}
        self._lock = threading.Lock()

    def _record(self, kind: str, name: str) -> None:
        with self._lock:
            self.calls.append((kind, name))

    def resource_exists(self, resource: ExternalResource) -> bool:
        """Return whether *resource* was seeded."""
        self._record("resource", resource.name)
        return resource.name in self.resources

    def unit_exists(self, name: str) -> bool:
        """Return whether unit *name* exists."""
        self._record("probe", name)
        return name in self.units

    def apply(self, name: str, artifact: str) -> None:
        """Record the artifact and mark the unit present unless it is set to fail."""
        self._record("apply", name)
        self.received[name] = artifact
        if name in self.failing_applies:
            raise ApplyError(name, "simulated failure")
        self.applied[name] = artifact
        self.units.add(name)

    def calls_for(self, kind: str) -> list[str]:
        """Return the names passed to calls of *kind*, in order."""
        return [name for call_kind, name in self.calls if call_kind == kind]


@pytest.fixture
def fake_executor() -> FakeExecutor:
    """Return an executor where the ``proxy`` network exists and no units do."""
    return FakeExecutor(resources={"proxy"})


@pytest.fixture(autouse=True)
def _reset_hoststack_logger() -> Iterator[None]:
    """Undo CLI logging setup so ``caplog`` sees library records."""
    yield
    logger = logging.getLogger("hoststack")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
