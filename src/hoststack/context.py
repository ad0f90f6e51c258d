"""Resolution of service variables into an immutable configuration context.

Variables come from layered sources, lowest precedence first:

1. stack defaults (the ``variables:`` block of the stack definition),
2. environment variables prefixed with ``HOSTSTACK_VAR_``,
3. the secret store (a YAML mapping, usually ``/etc/hoststack/secrets.yml``),
4. run-time overrides (``--set KEY=VALUE`` on the command line).

A higher layer shadows a lower one key by key; nested mappings are replaced
wholesale, never merged. A ``null`` value does not define a key, so it never
shadows a lower layer.
"""
from __future__ import annotations

import logging
import os
import re
import stat
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

import yaml

from .config import VARIABLE_ENV_PREFIX, ConfigError, coerce_value
from .errors import MissingRequiredKey

LOGGER = logging.getLogger(__name__)

LAYER_DEFAULTS = "defaults"
LAYER_ENVIRONMENT = "environment"
LAYER_SECRETS = "secrets"
LAYER_OVERRIDES = "overrides"

REDACTED = "***"

_VARIABLE_NAME = re.compile(r"^[a-z_][a-z0-9_]*$")


@dataclass(frozen=True, slots=True)
class ConfigurationSource:
    """One named layer of variables."""

    name: str
    values: Mapping[str, object] = field(default_factory=dict)
    sensitive: bool = False


class ConfigurationContext(Mapping[str, object]):
    """Read-only mapping of variable name to resolved value.

    The context remembers which layer supplied each key so that values coming
    from the secret store can be redacted whenever the context is displayed.
    """

    __slots__ = ("_values", "_sources", "_sensitive")

    def __init__(
        self,
        values: Mapping[str, object],
        *,
        sources: Mapping[str, str] | None = None,
        sensitive: Iterable[str] = (),
    ) -> None:
        """Freeze *values* together with their provenance."""
        self._values: Mapping[str, object] = MappingProxyType(
            {key: _freeze(value) for key, value in values.items()}
        )
        self._sources: Mapping[str, str] = MappingProxyType(dict(sources or {}))
        self._sensitive = frozenset(sensitive)

    def __getitem__(self, key: str) -> object:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"ConfigurationContext(keys={sorted(self._values)!r})"

    def source_of(self, key: str) -> str | None:
        """Return the name of the layer that supplied *key*."""
        return self._sources.get(key)

    def is_sensitive(self, key: str) -> bool:
        """Return ``True`` when *key* came from a sensitive layer."""
        return key in self._sensitive

    def missing(self, keys: Iterable[str]) -> tuple[str, ...]:
        """Return the subset of *keys* absent from the context, sorted."""
        return tuple(sorted({key for key in keys if key not in self._values}))

    def require(self, keys: Iterable[str]) -> None:
        """Raise :class:`MissingRequiredKey` listing every absent key."""
        absent = self.missing(keys)
        if absent:
            raise MissingRequiredKey(absent)

    def subset(self, keys: Iterable[str]) -> ConfigurationContext:
        """Return a context restricted to *keys* (absent keys are dropped)."""
        wanted = [key for key in keys if key in self._values]
        return ConfigurationContext(
            {key: self._values[key] for key in wanted},
            sources={key: self._sources[key] for key in wanted if key in self._sources},
            sensitive=[key for key in wanted if key in self._sensitive],
        )

    def to_dict(self, *, redact: bool = True) -> dict[str, object]:
        """Return a plain, JSON-friendly copy of the context."""
        result: dict[str, object] = {}
        for key in sorted(self._values):
            if redact and key in self._sensitive:
                result[key] = REDACTED
            else:
                result[key] = _thaw(self._values[key])
        return result


def resolve(
    layers: Sequence[ConfigurationSource],
    *,
    required: Iterable[str] = (),
) -> ConfigurationContext:
    """Merge *layers* (lowest precedence first) into a context.

    Raises :class:`MissingRequiredKey` when any of *required* is defined by
    no layer, and :class:`ConfigError` for malformed variable names.
    """
    values: dict[str, object] = {}
    sources: dict[str, str] = {}
    sensitive: set[str] = set()
    for layer in layers:
        for key, value in layer.values.items():
            if not isinstance(key, str) or not _VARIABLE_NAME.match(key):
                raise ConfigError(
                    f"Invalid variable name {key!r} in {layer.name} layer; "
                    "use lower-case letters, digits and underscores."
                )
            if value is None:
                continue
            values[key] = value
            sources[key] = layer.name
            if layer.sensitive:
                sensitive.add(key)
            else:
                sensitive.discard(key)
    context = ConfigurationContext(values, sources=sources, sensitive=sensitive)
    context.require(required)
    LOGGER.debug(
        "Resolved %d variables from layers: %s",
        len(context),
        ", ".join(layer.name for layer in layers),
    )
    return context


def defaults_source(variables: Mapping[str, object]) -> ConfigurationSource:
    """Wrap the stack's built-in variable defaults."""
    return ConfigurationSource(name=LAYER_DEFAULTS, values=dict(variables))


def environment_source(
    env: Mapping[str, str] | None = None,
    *,
    prefix: str = VARIABLE_ENV_PREFIX,
) -> ConfigurationSource:
    """Collect ``HOSTSTACK_VAR_<NAME>`` variables as lower-case keys."""
    resolved_env = os.environ if env is None else env
    values: dict[str, object] = {}
    for key, raw in resolved_env.items():
        if not key.startswith(prefix):
            continue
        name = key[len(prefix) :].lower()
        if name:
            values[name] = coerce_value(raw)
    return ConfigurationSource(name=LAYER_ENVIRONMENT, values=values)


def secret_store_source(path: Path) -> ConfigurationSource:
    """Load the secret store YAML file; a missing file is an empty layer."""
    if not path.exists():
        LOGGER.debug("Secret store %s not found; continuing without secrets.", path)
        return ConfigurationSource(name=LAYER_SECRETS, sensitive=True)
    mode = stat.S_IMODE(path.stat().st_mode)
    if mode & 0o007:
        LOGGER.warning("Secret store %s is world-accessible (mode %03o).", path, mode)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse secret store {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Secret store {path} must contain a mapping at the top level.")
    return ConfigurationSource(name=LAYER_SECRETS, values=dict(data), sensitive=True)


def overrides_source(assignments: Sequence[str]) -> ConfigurationSource:
    """Parse ``KEY=VALUE`` assignments supplied at run time."""
    values: dict[str, object] = {}
    for assignment in assignments:
        key, sep, raw = assignment.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ConfigError(f"Invalid variable assignment {assignment!r}; expected KEY=VALUE.")
        values[key] = coerce_value(raw)
    return ConfigurationSource(name=LAYER_OVERRIDES, values=values)


def _freeze(value: object) -> object:
    if isinstance(value, Mapping):
        return MappingProxyType({str(key): _freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


def _thaw(value: object) -> object:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


__all__ = [
    "ConfigurationContext",
    "ConfigurationSource",
    "LAYER_DEFAULTS",
    "LAYER_ENVIRONMENT",
    "LAYER_OVERRIDES",
    "LAYER_SECRETS",
    "REDACTED",
    "defaults_source",
    "environment_source",
    "overrides_source",
    "resolve",
    "secret_store_source",
]
