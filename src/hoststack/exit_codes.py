"""Process exit codes shared by every hoststack command.

A deploy run exits with the worst code among its outcomes, so a missing
network outranks a render error and an executor failure outranks both.
"""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Exit statuses, ordered by severity."""

    OK = 0
    # Bad configuration, unknown group or unit, unresolved template variable.
    VALIDATION = 2
    # A required external resource is missing, or the deploy lock is held.
    ENVIRONMENT = 3
    # Docker could not answer a probe or failed to start a unit.
    PROVIDER = 4


__all__ = ["ExitCode"]
