"""Docker-backed resource executor."""
from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass

from ..errors import ApplyError, ExecutorError
from ..stack import ExternalResource

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class DockerExecutor:
    """Check and create containers through the ``docker`` CLI.

    Existence checks use ``docker <kind> inspect``; units are applied with
    ``docker compose up`` reading the rendered compose document from stdin, so
    each unit becomes its own compose project named after the unit.
    """

    docker_bin: str = "docker"
    timeout: float = 600.0
    dry_run: bool = False

    def resource_exists(self, resource: ExternalResource) -> bool:
        """Return ``True`` when the network or volume *resource* exists."""
        return self._inspect(resource.kind, resource.name)

    def unit_exists(self, name: str) -> bool:
        """Return ``True`` when a container called *name* exists (any state)."""
        return self._inspect("container", name)

    def apply(self, name: str, artifact: str) -> None:
        """Start unit *name* from the compose document *artifact*."""
        args = ["compose", "--project-name", name, "--file", "-", "up", "--detach"]
        try:
            result = self._run(args, mutating=True, stdin=artifact)
        except ExecutorError as exc:
            raise ApplyError(name, exc.detail) from exc
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "no output").strip()
            raise ApplyError(
                name,
                f"{self.docker_bin} compose up failed (exit {result.returncode}): {message}",
            )

    # ------------------------------------------------------------------
    def _inspect(self, kind: str, name: str) -> bool:
        result = self._run([kind, "inspect", name], mutating=False)
        if result.returncode == 0:
            return True
        message = (result.stderr or result.stdout or "").strip()
        lowered = message.lower()
        if "no such" in lowered or "not found" in lowered:
            return False
        raise ExecutorError(
            name,
            f"{self.docker_bin} {kind} inspect failed (exit {result.returncode}): "
            f"{message or 'no output'}",
        )

    def _run(
        self,
        args: Sequence[str],
        *,
        mutating: bool,
        stdin: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        command = [self.docker_bin, *args]
        if mutating and self.dry_run:
            LOGGER.info("[dry-run] %s", " ".join(command))
            return subprocess.CompletedProcess(command, returncode=0, stdout="", stderr="")
        LOGGER.debug("Running %s", " ".join(command))
        try:
            return subprocess.run(  # noqa: S603
                command,
                input=stdin,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            raise ExecutorError(self.docker_bin, f"executable not found: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise ExecutorError(
                " ".join(command),
                f"timed out after {self.timeout:g}s",
            ) from exc


__all__ = ["DockerExecutor"]
