"""Contract between the deployment engine and the container runtime."""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from ..stack import ExternalResource


@runtime_checkable
class ResourceExecutor(Protocol):
    """The only component allowed to observe or mutate runtime state.

    Implementations raise :class:`hoststack.errors.ExecutorError` when a query
    cannot be answered and :class:`hoststack.errors.ApplyError` when applying
    an artifact fails. Calls block until the runtime answers.
    """

    def resource_exists(self, resource: ExternalResource) -> bool:
        """Return ``True`` when the external *resource* is present."""
        ...

    def unit_exists(self, name: str) -> bool:
        """Return ``True`` when a managed unit called *name* is present."""
        ...

    def apply(self, name: str, artifact: str) -> None:
        """Create the unit *name* from the rendered *artifact*."""
        ...


__all__ = ["ResourceExecutor"]
