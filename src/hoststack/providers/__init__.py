"""Resource executor implementations for hoststack."""
from __future__ import annotations

from .base import ResourceExecutor
from .docker import DockerExecutor

__all__ = ["DockerExecutor", "ResourceExecutor"]
