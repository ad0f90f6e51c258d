"""Tool settings for hoststack.

Settings (where to find the stack, templates, secrets, logs and locks, plus
docker and group toggles) are layered, lowest precedence first:

1. the built-in ``DEFAULTS`` below,
2. the YAML file ``/etc/hoststack/config.yml`` (``--config-file`` or
   ``HOSTSTACK_CONFIG_FILE`` pick another one),
3. ``HOSTSTACK_<KEY>`` environment variables, where ``__`` descends into a
   section::

       export HOSTSTACK_DOCKER__TIMEOUT=900
       export HOSTSTACK_GROUPS__LLMS=false

4. overrides passed in by the CLI.

Environment strings go through ``yaml.safe_load`` so ``false`` and ``900``
arrive as a bool and an int. ``HOSTSTACK_VAR_*`` names feed the service
variable layer in :mod:`hoststack.context` and never reach these settings.
"""
from __future__ import annotations

import copy
import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from pathlib import Path

import yaml

ENV_PREFIX = "HOSTSTACK_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
VARIABLE_ENV_PREFIX = f"{ENV_PREFIX}VAR_"

_DOCKER_KEYS = frozenset({"bin", "timeout"})


class ConfigError(RuntimeError):
    """Raised when settings, the stack file or a variable layer is invalid."""


@dataclass(frozen=True)
class DockerConfig:
    """How the docker executor is invoked."""

    bin: str = "docker"
    timeout: float = 600.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"bin": self.bin, "timeout": self.timeout}


@dataclass(frozen=True)
class AppConfig:
    """Effective hoststack settings after every layer is applied."""

    config_file: Path
    stack_file: Path | None
    templates_dir: Path
    secrets_file: Path
    logs_dir: Path
    runtime_dir: Path
    debug_dir: Path
    debug: bool
    lock_timeout: float
    docker: DockerConfig
    groups: Mapping[str, bool] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-friendly view used by ``config show``."""
        return {
            "config_file": str(self.config_file),
            "stack_file": str(self.stack_file) if self.stack_file else None,
            "templates_dir": str(self.templates_dir),
            "secrets_file": str(self.secrets_file),
            "logs_dir": str(self.logs_dir),
            "runtime_dir": str(self.runtime_dir),
            "debug_dir": str(self.debug_dir),
            "debug": self.debug,
            "lock_timeout": self.lock_timeout,
            "docker": self.docker.to_dict(),
            "groups": dict(self.groups),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/hoststack/config.yml",
    "stack_file": None,  # packaged stack when unset
    "templates_dir": "/etc/hoststack/templates",
    "secrets_file": "/etc/hoststack/secrets.yml",
    "logs_dir": "/var/log/hoststack",
    "runtime_dir": "/run/hoststack",
    "debug_dir": "/var/lib/hoststack/debug",
    "debug": False,
    "lock_timeout": 30.0,
    "docker": {"bin": "docker", "timeout": 600.0},
    "groups": {},
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Merge every settings layer into an :class:`AppConfig`."""
    environ = os.environ if env is None else env
    if config_file:
        path = Path(config_file)
    else:
        path = Path(environ.get(CONFIG_ENV_VAR) or str(DEFAULTS["config_file"]))

    merged = copy.deepcopy(DEFAULTS)
    for layer in (_read_config_file(path), _settings_from_env(environ), overrides or {}):
        _merge_into(merged, layer)
    merged["config_file"] = str(path)
    return _build(merged)


def coerce_value(raw: str) -> object:
    """Parse an environment or command-line string the way YAML would."""
    text = raw.strip()
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError:
        return text


def _read_config_file(path: Path) -> Mapping[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _section(data, str(path))


def _settings_from_env(environ: Mapping[str, str]) -> dict[str, object]:
    settings: dict[str, object] = {}
    for name, raw in environ.items():
        if not name.startswith(ENV_PREFIX) or name.startswith(VARIABLE_ENV_PREFIX):
            continue
        if name == CONFIG_ENV_VAR:
            continue
        keys = [part.lower() for part in name[len(ENV_PREFIX) :].split("__") if part]
        if not keys:
            continue
        node = settings
        for key in keys[:-1]:
            child = node.setdefault(key, {})
            if not isinstance(child, dict):
                raise ConfigError(f"{name} conflicts with another environment setting.")
            node = child
        node[keys[-1]] = coerce_value(raw)
    return settings


def _merge_into(target: MutableMapping[str, object], layer: Mapping[str, object]) -> None:
    for key, value in layer.items():
        current = target.get(key)
        if isinstance(current, MutableMapping) and isinstance(value, Mapping):
            _merge_into(current, _section(value, key))
        else:
            target[key] = value


def _build(raw: Mapping[str, object]) -> AppConfig:
    unknown = set(raw) - set(DEFAULTS)
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}.")

    debug = raw["debug"]
    if not isinstance(debug, bool):
        raise ConfigError(f"debug must be a boolean. Got {debug!r}.")

    docker = _section(raw["docker"], "docker")
    unknown = set(docker) - _DOCKER_KEYS
    if unknown:
        raise ConfigError(f"Unknown docker configuration keys: {', '.join(sorted(unknown))}.")

    groups = _section(raw["groups"], "groups")
    for name, flag in groups.items():
        if not isinstance(flag, bool):
            raise ConfigError(f"groups.{name} must be a boolean toggle. Got {flag!r}.")

    stack_file = raw.get("stack_file")
    return AppConfig(
        config_file=_path(raw["config_file"], "config_file"),
        stack_file=_path(stack_file, "stack_file") if stack_file else None,
        templates_dir=_path(raw["templates_dir"], "templates_dir"),
        secrets_file=_path(raw["secrets_file"], "secrets_file"),
        logs_dir=_path(raw["logs_dir"], "logs_dir"),
        runtime_dir=_path(raw["runtime_dir"], "runtime_dir"),
        debug_dir=_path(raw["debug_dir"], "debug_dir"),
        debug=debug,
        lock_timeout=_positive(raw["lock_timeout"], "lock_timeout"),
        docker=DockerConfig(
            bin=str(docker.get("bin") or "docker"),
            timeout=_positive(docker.get("timeout", 600.0), "docker.timeout"),
        ),
        groups=dict(groups),
    )


def _path(value: object, key: str) -> Path:
    if isinstance(value, (str, Path)) and str(value).strip():
        return Path(value).expanduser()
    raise ConfigError(f"{key} must be a filesystem path. Got {value!r}.")


def _positive(value: object, key: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be a number. Got {value!r}.")
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must be a number. Got {value!r}.") from exc
    if number <= 0:
        raise ConfigError(f"{key} must be greater than zero. Got {number}.")
    return number


def _section(value: object, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    for key in value:
        if not isinstance(key, str):
            raise ConfigError(f"{label} must use string keys. Got {key!r}.")
    return dict(value)


__all__ = [
    "AppConfig",
    "CONFIG_ENV_VAR",
    "ConfigError",
    "DEFAULTS",
    "DockerConfig",
    "ENV_PREFIX",
    "VARIABLE_ENV_PREFIX",
    "coerce_value",
    "load_config",
]
