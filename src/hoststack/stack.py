"""Static stack definition: service groups, managed units, external resources.

The stack is inert data loaded from YAML. A built-in definition ships with the
package; operators may point ``stack_file`` at their own. Example::

    variables:
      proxy_network: proxy
    groups:
      - name: automation
        enabled: true
        resources: [proxy]
        units:
          - name: n8n
            template: automation/n8n.yml.j2
            variables: [proxy_network, n8n_image]
"""
from __future__ import annotations

from collections.abc import Collection, Iterator, Mapping, Sequence
from dataclasses import dataclass, field, replace
from importlib import resources
from pathlib import Path

import yaml

from .config import ConfigError

BUILTIN_STACK = "stack.yml"
RESOURCE_KINDS = ("network", "volume")


class StackError(ConfigError):
    """Raised when the stack definition is malformed."""


@dataclass(frozen=True, slots=True)
class ExternalResource:
    """A pre-existing resource a group depends on but never creates."""

    name: str
    kind: str = "network"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"name": self.name, "kind": self.kind}


@dataclass(frozen=True, slots=True)
class ManagedUnit:
    """One deployable service instance."""

    name: str
    template: str
    variables: tuple[str, ...] = ()
    debug_path: Path | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name": self.name,
            "template": self.template,
            "variables": list(self.variables),
            "debug_path": str(self.debug_path) if self.debug_path else None,
        }


@dataclass(frozen=True, slots=True)
class ServiceGroup:
    """A togglable collection of units sharing preconditions."""

    name: str
    units: tuple[ManagedUnit, ...]
    resources: tuple[ExternalResource, ...] = ()
    enabled: bool = True

    def required_variables(self) -> tuple[str, ...]:
        """Return every variable declared by the group's units, sorted."""
        return tuple(sorted({key for unit in self.units for key in unit.variables}))

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name": self.name,
            "enabled": self.enabled,
            "resources": [resource.to_dict() for resource in self.resources],
            "units": [unit.to_dict() for unit in self.units],
        }


@dataclass(frozen=True, slots=True)
class Stack:
    """The full set of groups plus the default variable layer."""

    groups: tuple[ServiceGroup, ...]
    variables: Mapping[str, object] = field(default_factory=dict)

    def __iter__(self) -> Iterator[ServiceGroup]:
        return iter(self.groups)

    @property
    def group_names(self) -> tuple[str, ...]:
        """Return group names in declaration order."""
        return tuple(group.name for group in self.groups)

    def group(self, name: str) -> ServiceGroup | None:
        """Return the group called *name*, if any."""
        for group in self.groups:
            if group.name == name:
                return group
        return None

    def find_unit(self, name: str) -> tuple[ServiceGroup, ManagedUnit] | None:
        """Return ``(group, unit)`` for the unit called *name*, if any."""
        for group in self.groups:
            for unit in group.units:
                if unit.name == name:
                    return group, unit
        return None

    def enabled_groups(self) -> tuple[ServiceGroup, ...]:
        """Return the groups whose enable flag is set."""
        return tuple(group for group in self.groups if group.enabled)

    def with_toggles(
        self,
        toggles: Mapping[str, bool] | None = None,
        *,
        enable: Collection[str] = (),
        disable: Collection[str] = (),
    ) -> Stack:
        """Return a copy with group enable flags overridden.

        *toggles* (from configuration) apply first, then the explicit *enable*
        and *disable* collections (from the command line).
        """
        toggles = dict(toggles or {})
        conflicting = set(enable) & set(disable)
        if conflicting:
            joined = ", ".join(sorted(conflicting))
            raise StackError(f"Groups both enabled and disabled: {joined}.")
        known = set(self.group_names)
        unknown = (set(toggles) | set(enable) | set(disable)) - known
        if unknown:
            joined = ", ".join(sorted(unknown))
            available = ", ".join(self.group_names) or "none"
            raise StackError(f"Unknown groups: {joined}. Available groups: {available}.")

        groups: list[ServiceGroup] = []
        for group in self.groups:
            flag = toggles.get(group.name, group.enabled)
            if group.name in enable:
                flag = True
            if group.name in disable:
                flag = False
            groups.append(group if flag == group.enabled else replace(group, enabled=flag))
        return replace(self, groups=tuple(groups))


def load_stack(path: Path | None = None) -> Stack:
    """Load the stack at *path*, or the built-in stack when *path* is ``None``."""
    if path is None:
        text = resources.files("hoststack").joinpath("data", BUILTIN_STACK).read_text(
            encoding="utf-8"
        )
        label = f"builtin:{BUILTIN_STACK}"
    else:
        if not path.exists():
            raise StackError(f"Stack file {path} does not exist.")
        text = path.read_text(encoding="utf-8")
        label = str(path)
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise StackError(f"Failed to parse stack file {label}: {exc}") from exc
    return parse_stack(data, label=label)


def parse_stack(data: object, *, label: str = "stack") -> Stack:
    """Validate raw YAML data and build a :class:`Stack`."""
    mapping = _as_mapping(data, label)
    unknown = set(mapping) - {"groups", "variables"}
    if unknown:
        raise StackError(f"Unknown keys in {label}: {', '.join(sorted(unknown))}.")

    variables = _as_mapping(mapping.get("variables") or {}, f"{label}.variables")
    groups = tuple(
        _parse_group(entry, f"{label}.groups[{index}]")
        for index, entry in enumerate(_as_list(mapping.get("groups") or [], f"{label}.groups"))
    )

    seen_groups: set[str] = set()
    seen_units: set[str] = set()
    for group in groups:
        if group.name in seen_groups:
            raise StackError(f"Duplicate group name '{group.name}' in {label}.")
        seen_groups.add(group.name)
        for unit in group.units:
            if unit.name in seen_units:
                raise StackError(f"Duplicate unit name '{unit.name}' in {label}.")
            seen_units.add(unit.name)

    return Stack(groups=groups, variables=dict(variables))


def _parse_group(raw: object, label: str) -> ServiceGroup:
    mapping = _as_mapping(raw, label)
    unknown = set(mapping) - {"name", "enabled", "resources", "units"}
    if unknown:
        raise StackError(f"Unknown keys in {label}: {', '.join(sorted(unknown))}.")
    name = _expect_name(mapping.get("name"), f"{label}.name")
    enabled = mapping.get("enabled", True)
    if not isinstance(enabled, bool):
        raise StackError(f"{label}.enabled must be a boolean. Got {enabled!r}.")
    resources_raw = _as_list(mapping.get("resources") or [], f"{label}.resources")
    units_raw = _as_list(mapping.get("units") or [], f"{label}.units")
    if not units_raw:
        raise StackError(f"Group '{name}' declares no units.")
    return ServiceGroup(
        name=name,
        enabled=enabled,
        resources=tuple(
            _parse_resource(item, f"{label}.resources[{index}]")
            for index, item in enumerate(resources_raw)
        ),
        units=tuple(
            _parse_unit(item, f"{label}.units[{index}]")
            for index, item in enumerate(units_raw)
        ),
    )


def _parse_resource(raw: object, label: str) -> ExternalResource:
    if isinstance(raw, str):
        return ExternalResource(name=_expect_name(raw, label))
    mapping = _as_mapping(raw, label)
    unknown = set(mapping) - {"name", "kind"}
    if unknown:
        raise StackError(f"Unknown keys in {label}: {', '.join(sorted(unknown))}.")
    kind = str(mapping.get("kind", "network"))
    if kind not in RESOURCE_KINDS:
        allowed = ", ".join(RESOURCE_KINDS)
        raise StackError(f"Unsupported resource kind '{kind}' in {label}. Allowed: {allowed}.")
    return ExternalResource(name=_expect_name(mapping.get("name"), f"{label}.name"), kind=kind)


def _parse_unit(raw: object, label: str) -> ManagedUnit:
    mapping = _as_mapping(raw, label)
    unknown = set(mapping) - {"name", "template", "variables", "debug_path"}
    if unknown:
        raise StackError(f"Unknown keys in {label}: {', '.join(sorted(unknown))}.")
    variables = _as_list(mapping.get("variables") or [], f"{label}.variables")
    for index, key in enumerate(variables):
        if not isinstance(key, str) or not key.strip():
            raise StackError(f"{label}.variables[{index}] must be a non-empty string.")
    debug_path = mapping.get("debug_path")
    if debug_path is not None and not isinstance(debug_path, str):
        raise StackError(f"{label}.debug_path must be a string when provided.")
    return ManagedUnit(
        name=_expect_name(mapping.get("name"), f"{label}.name"),
        template=_expect_name(mapping.get("template"), f"{label}.template"),
        variables=tuple(dict.fromkeys(str(key).strip() for key in variables)),
        debug_path=Path(debug_path).expanduser() if debug_path else None,
    )


def _expect_name(value: object, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise StackError(f"{label} must be a non-empty string.")
    return value.strip()


def _as_mapping(value: object, label: str) -> Mapping[str, object]:
    if not isinstance(value, Mapping):
        raise StackError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    return value


def _as_list(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise StackError(f"Expected {label} to be a list. Got {type(value).__name__}.")
    return value


__all__ = [
    "ExternalResource",
    "ManagedUnit",
    "ServiceGroup",
    "Stack",
    "StackError",
    "load_stack",
    "parse_stack",
]
