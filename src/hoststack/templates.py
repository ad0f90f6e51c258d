"""Template rendering engine backed by Jinja2.

Templates are looked up in an optional operator override directory first and
then in the templates shipped with the package. Rendering is strict: any
placeholder without a value is an error, never an empty string.
"""
from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from importlib import resources
from pathlib import Path

import jinja2
from jinja2 import meta

from .errors import InvalidTemplate, TemplateNotFound, UnresolvedPlaceholder

_UNDEFINED_NAME = re.compile(r"'([^']+)' is undefined")
_MISSING_ATTRIBUTE = re.compile(r"has no attribute '([^']+)'")


def builtin_templates_dir() -> Path:
    """Return the directory holding the packaged templates."""
    return Path(str(resources.files("hoststack").joinpath("data", "templates")))


class TemplateEngine:
    """Render unit templates from a chain of search paths."""

    def __init__(self, search_paths: Sequence[Path]) -> None:
        """Create an engine searching *search_paths* in order."""
        self._search_paths = tuple(search_paths)
        self._env = jinja2.Environment(
            loader=jinja2.FileSystemLoader([str(path) for path in self._search_paths]),
            undefined=jinja2.StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,
        )

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine where *override_dir* shadows the built-in templates."""
        paths: list[Path] = []
        if override_dir is not None and override_dir.is_dir():
            paths.append(override_dir)
        paths.append(builtin_templates_dir())
        return cls(paths)

    @property
    def search_paths(self) -> tuple[Path, ...]:
        """Return the directories searched for templates, highest priority first."""
        return self._search_paths

    def exists(self, template_name: str) -> bool:
        """Return ``True`` when *template_name* can be located."""
        try:
            self._env.loader.get_source(self._env, template_name)  # type: ignore[union-attr]
        except jinja2.TemplateNotFound:
            return False
        return True

    def placeholders(self, template_name: str) -> frozenset[str]:
        """Return the top-level variables *template_name* references."""
        try:
            source, _, _ = self._env.loader.get_source(  # type: ignore[union-attr]
                self._env, template_name
            )
        except jinja2.TemplateNotFound as exc:
            raise TemplateNotFound(template_name) from exc
        try:
            parsed = self._env.parse(source)
        except jinja2.TemplateSyntaxError as exc:
            raise InvalidTemplate(template_name, f"line {exc.lineno}: {exc.message}") from exc
        referenced = meta.find_undeclared_variables(parsed)
        return frozenset(name for name in referenced if name not in self._env.globals)

    def render_artifact(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render *template_name* with exactly the variables in *context*.

        Raises :class:`TemplateNotFound` when the template is missing,
        :class:`UnresolvedPlaceholder` naming the first variable without a
        value, and :class:`InvalidTemplate` on syntax errors or when the
        template fails while running (bad arithmetic, a failing filter).
        """
        missing = sorted(self.placeholders(template_name) - set(context))
        if missing:
            raise UnresolvedPlaceholder(
                missing[0],
                f"template {template_name} references undefined variables: "
                f"{', '.join(missing)}",
            )
        try:
            template = self._env.get_template(template_name)
        except jinja2.TemplateNotFound as exc:
            raise TemplateNotFound(template_name) from exc
        except jinja2.TemplateSyntaxError as exc:
            raise InvalidTemplate(template_name, f"line {exc.lineno}: {exc.message}") from exc
        try:
            return template.render(dict(context))
        except jinja2.UndefinedError as exc:
            raise UnresolvedPlaceholder(
                _placeholder_name(exc),
                f"template {template_name}: {exc.message}",
            ) from exc
        except jinja2.TemplateError as exc:
            raise InvalidTemplate(template_name, str(exc)) from exc
        except (TypeError, ValueError, ArithmeticError, LookupError) as exc:
            raise InvalidTemplate(template_name, f"{type(exc).__name__}: {exc}") from exc


def _placeholder_name(exc: jinja2.UndefinedError) -> str:
    message = exc.message or str(exc)
    for pattern in (_UNDEFINED_NAME, _MISSING_ATTRIBUTE):
        match = pattern.search(message)
        if match:
            return match.group(1)
    return message


__all__ = ["TemplateEngine", "builtin_templates_dir"]
