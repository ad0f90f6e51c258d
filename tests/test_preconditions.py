"""Tests for precondition validation and existence probing."""
from __future__ import annotations

import pytest
from conftest import FakeExecutor

from hoststack.deploy import ExistenceProber, validate_preconditions
from hoststack.errors import ExecutorError, MissingResource
from hoststack.stack import ExternalResource


class ExplodingExecutor(FakeExecutor):
    """Executor whose queries raise unexpected exceptions."""

    def resource_exists(self, resource: ExternalResource) -> bool:
        """Fail like a broken client library would."""
        raise ConnectionError("daemon unreachable")

    def unit_exists(self, name: str) -> bool:
        """Fail like a broken client library would."""
        raise ConnectionError("daemon unreachable")


def test_all_resources_present() -> None:
    """Every resource is checked and returned when all exist."""
    executor = FakeExecutor(resources={"proxy", "data"})
    resources = (ExternalResource("proxy"), ExternalResource("data", "volume"))

    assert validate_preconditions(resources, executor) == resources
    assert executor.calls_for("resource") == ["proxy", "data"]


def test_missing_resource_names_first_and_lists_all() -> None:
    """Absent resources raise MissingResource after every check has run."""
    executor = FakeExecutor(resources={"data"})
    resources = (
        ExternalResource("proxy"),
        ExternalResource("data", "volume"),
        ExternalResource("backend"),
    )

    with pytest.raises(MissingResource) as excinfo:
        validate_preconditions(resources, executor)

    assert excinfo.value.subject == "proxy"
    assert excinfo.value.detail == "missing: network proxy, network backend"
    assert executor.calls_for("resource") == ["proxy", "data", "backend"]


def test_no_resources_is_trivially_valid() -> None:
    """A group without preconditions passes without executor calls."""
    executor = FakeExecutor()

    assert validate_preconditions((), executor) == ()
    assert executor.calls == []


def test_unexpected_executor_failure_is_wrapped() -> None:
    """Arbitrary exceptions from the executor become ExecutorError."""
    with pytest.raises(ExecutorError, match="daemon unreachable"):
        validate_preconditions([ExternalResource("proxy")], ExplodingExecutor())


def test_prober_reflects_current_state_without_caching() -> None:
    """Each probe reaches the executor so external changes are seen."""
    executor = FakeExecutor()
    prober = ExistenceProber(executor)

    assert prober.exists("n8n") is False
    executor.units.add("n8n")
    assert prober.exists("n8n") is True
    assert executor.calls_for("probe") == ["n8n", "n8n"]


def test_prober_wraps_unexpected_errors() -> None:
    """Probe failures surface as ExecutorError naming the unit."""
    prober = ExistenceProber(ExplodingExecutor())

    with pytest.raises(ExecutorError) as excinfo:
        prober.exists("n8n")

    assert excinfo.value.subject == "n8n"
