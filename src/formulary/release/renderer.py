"""
Manifest rendering with Jinja2.

Templates are compiled once per repository; rendering a record is a pure
function of the compiled template and the record's fields.
"""

import re
from pathlib import Path
from typing import Any, Mapping, Optional

from jinja2 import (
    Environment,
    FileSystemLoader,
    StrictUndefined,
    Template,
    TemplateError,
    TemplateNotFound,
    TemplateSyntaxError,
)

from formulary.exceptions import RenderError

_WORD_SPLIT = re.compile(r"[^0-9A-Za-z]+")


def formula_class(name: str) -> str:
    """
    CamelCase a hyphenated package name the way Homebrew names formula classes.

    "protoc-gen-go-extend" -> "ProtocGenGoExtend"
    """
    return "".join(part[:1].upper() + part[1:] for part in _WORD_SPLIT.split(name) if part)


def _build_environment(search_path: Optional[Path] = None) -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(search_path)) if search_path else None,
        undefined=StrictUndefined,
        keep_trailing_newline=True,
        autoescape=False,
    )
    env.filters["formula_class"] = formula_class
    return env


class ManifestRenderer:
    """A compiled manifest template."""

    def __init__(self, template: Template, name: str) -> None:
        self.template = template
        self.name = name

    @classmethod
    def from_file(cls, path: Path) -> "ManifestRenderer":
        """
        Load and compile the template at `path`.

        Raises:
            RenderError: If the file is missing, unreadable, or not a valid template.
        """
        path = Path(path)
        env = _build_environment(path.parent)
        try:
            template = env.get_template(path.name)
        except TemplateSyntaxError as exc:
            raise RenderError(
                f"Template syntax error on line {exc.lineno}",
                template=str(path),
                details=exc.message,
            ) from exc
        except TemplateNotFound as exc:
            raise RenderError(
                "Template file not found", template=str(path)
            ) from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise RenderError(
                "Template file could not be read", template=str(path), details=str(exc)
            ) from exc
        return cls(template, str(path))

    @classmethod
    def from_string(cls, source: str, name: str = "<string>") -> "ManifestRenderer":
        """Compile a template from source text."""
        env = _build_environment()
        try:
            template = env.from_string(source)
        except TemplateSyntaxError as exc:
            raise RenderError(
                f"Template syntax error on line {exc.lineno}",
                template=name,
                details=exc.message,
            ) from exc
        return cls(template, name)

    def render(self, context: Mapping[str, Any]) -> bytes:
        """
        Render the template with `context` and return UTF-8 bytes.

        Raises:
            RenderError: If the template references a missing field or an expression
                or filter fails on the values it is given.
        """
        try:
            return self.template.render(**context).encode("utf-8")
        except (TemplateError, TypeError, ValueError, AttributeError) as exc:
            raise RenderError(
                "Template rendering failed", template=self.name, details=str(exc)
            ) from exc
