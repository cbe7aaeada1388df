"""
renderer.py

Responsibility: Render a single templated manifest document.

Rules:
- Placeholders use field-accessor syntax: `{{ .Namespace }}`, `{{ .Image.Tag }}`.
  Accessors are rewritten to plain Jinja2 names before parsing, so the inside
  of `{{ }}` is a Jinja2 expression (`{{ Namespace | upper }}` works).
- `{{ }}` is the only markup. `{%` and `{#` are literal text, as in shell
  (`${#ARGS[@]}`) or printf formats (`"{%d}"`) embedded in manifests.
- Undefined fields are errors (StrictUndefined), never empty strings.
- Every failure is raised as RenderError tagged with the source key.

This module intentionally does NOT know about the builder, the cluster, or the CLI.
"""

from __future__ import annotations

import dataclasses
import re
from collections.abc import Mapping
from typing import Any

from jinja2 import Environment, StrictUndefined, TemplateError, TemplateSyntaxError


class RenderError(RuntimeError):
    def __init__(self, key: str, message: str) -> None:
        super().__init__(message)
        self.key = key


# `{{ .Field` / `{{- .Field` -> `{{ Field`; the dot is only dropped right after the opening delimiter.
_FIELD_ACCESSOR = re.compile(r"(\{\{-?\s*)\.(?=[A-Za-z_])")

# Block and comment delimiters start with NUL, which never occurs in YAML text.
_env = Environment(
    block_start_string="\x00{%",
    block_end_string="%}\x00",
    comment_start_string="\x00{#",
    comment_end_string="#}\x00",
    autoescape=False,
    undefined=StrictUndefined,
    keep_trailing_newline=True,
)


def template_values(data: Any) -> dict[str, Any]:
    """
    Normalize a template data object into the name -> value mapping the renderer reads.

    Accepted shapes:
    - any Mapping (keys must be strings)
    - a dataclass instance (its fields, recursively)
    - an object exposing `template_values()` returning a Mapping
    """
    if isinstance(data, Mapping):
        values = dict(data)
    elif dataclasses.is_dataclass(data) and not isinstance(data, type):
        values = dataclasses.asdict(data)
    elif callable(getattr(data, "template_values", None)):
        values = dict(data.template_values())
    else:
        raise TypeError(f"Unsupported template data of type {type(data).__name__}; use a mapping or a dataclass")

    bad = [k for k in values if not isinstance(k, str)]
    if bad:
        raise TypeError(f"Template field names must be strings, got: {bad!r}")
    return values


def _to_jinja(source: str) -> str:
    return _FIELD_ACCESSOR.sub(r"\1", source)


def render_template(key: str, template: bytes, data: Any) -> bytes:
    """
    Render `template` against `data` and return the UTF-8 encoded result.

    Pure function: a fresh template object is compiled per call and the shared
    Environment holds no per-render state.
    """
    try:
        source = template.decode("utf-8")
    except UnicodeDecodeError as e:
        raise RenderError(key, f"failed to decode template for file {key}: {e}") from e

    try:
        compiled = _env.from_string(_to_jinja(source))
    except TemplateSyntaxError as e:
        raise RenderError(key, f"failed to parse template for file {key}: line {e.lineno}: {e.message}") from e

    try:
        out = compiled.render(template_values(data))
    except (TemplateError, TypeError) as e:
        raise RenderError(key, f"failed to render template for file {key}: {e}") from e

    return out.encode("utf-8")
