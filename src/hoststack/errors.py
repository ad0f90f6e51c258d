"""Error taxonomy shared by the deployment engine.

Every error raised while resolving, rendering or applying a unit carries a
``kind`` (stable, machine-readable) and the ``subject`` it is about: the
missing variable, the missing resource, the template or the unit. The
deployment report surfaces both so operators can see exactly what failed.
"""
from __future__ import annotations

from collections.abc import Iterable


class DeploymentError(RuntimeError):
    """Base class for errors surfaced in a deployment report."""

    kind = "error"

    def __init__(self, subject: str, detail: str | None = None) -> None:
        """Record the offending *subject* and an optional *detail* message."""
        self.subject = subject
        self.detail = detail
        super().__init__(self._format())

    def _format(self) -> str:
        if self.detail:
            return f"{self.kind}: {self.subject}: {self.detail}"
        return f"{self.kind}: {self.subject}"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        payload: dict[str, object] = {"kind": self.kind, "subject": self.subject}
        if self.detail:
            payload["detail"] = self.detail
        return payload


class MissingRequiredKey(DeploymentError):
    """Raised when required variables are absent from every configuration layer."""

    kind = "missing-required-key"

    def __init__(self, names: Iterable[str], detail: str | None = None) -> None:
        """Store every missing key; the first (sorted) becomes the subject."""
        self.names = tuple(sorted(set(names)))
        if not self.names:
            raise ValueError("MissingRequiredKey needs at least one key name.")
        super().__init__(self.names[0], detail or f"missing: {', '.join(self.names)}")


class MissingResource(DeploymentError):
    """Raised when an external resource required by a group does not exist."""

    kind = "missing-resource"


class TemplateNotFound(DeploymentError):
    """Raised when a unit's template cannot be located."""

    kind = "template-not-found"


class UnresolvedPlaceholder(DeploymentError):
    """Raised when a template references a variable absent from its context."""

    kind = "unresolved-placeholder"


class InvalidTemplate(DeploymentError):
    """Raised when a template exists but cannot be parsed."""

    kind = "invalid-template"


class ApplyError(DeploymentError):
    """Raised by a resource executor when applying an artifact fails."""

    kind = "apply-error"


class ExecutorError(DeploymentError):
    """Raised when the resource executor cannot answer a query."""

    kind = "executor-error"


__all__ = [
    "ApplyError",
    "DeploymentError",
    "ExecutorError",
    "InvalidTemplate",
    "MissingRequiredKey",
    "MissingResource",
    "TemplateNotFound",
    "UnresolvedPlaceholder",
]
