"""Placeholder rendering for validation documents.

Supports ``{{ .const.<path> }}`` and ``{{ .var.<key> }}`` placeholders, with
an optional ``| concatToRegoList`` pipe for rendering lists into Rego set
literals.
"""

from __future__ import annotations

import json
import re
from enum import Enum
from typing import Any, Optional

from .errors import TemplateError

MASK = "********"

_PLACEHOLDER = re.compile(r"\{\{-?\s*(.*?)\s*-?\}\}", re.DOTALL)
_REFERENCE = re.compile(r"^\.(const|var)((?:\.[A-Za-z0-9_-]+)+)$")


class RenderMode(str, Enum):
    ALL = "all"
    CONSTANTS = "constants"
    NON_SENSITIVE = "non-sensitive"
    MASKED = "masked"


def concat_to_rego_list(value: Any) -> str:
    """Render a list as the body of a Rego set/array literal."""
    if not isinstance(value, (list, tuple)):
        raise TemplateError(f"concatToRegoList expects a list, got {type(value).__name__}")
    return ", ".join(json.dumps(item) for item in value)


PIPE_FUNCTIONS = {
    "concatToRegoList": concat_to_rego_list,
}


def _format(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def _lookup(root: dict, path: list[str], expr: str) -> Any:
    current: Any = root
    for part in path:
        if not isinstance(current, dict) or part not in current:
            raise TemplateError(f"map has no entry for key {part!r} in {{{{ {expr} }}}}")
        current = current[part]
    return current


def render_template(
    document: str,
    constants: Optional[dict] = None,
    variables: Optional[dict] = None,
    sensitive: Optional[set[str]] = None,
    mode: RenderMode = RenderMode.ALL,
) -> str:
    """Render placeholders in a document.

    Placeholders that the mode does not cover are left in place, so a
    ``constants`` render keeps every ``{{ .var.* }}`` untouched.
    """
    constants = constants or {}
    variables = variables or {}
    sensitive = sensitive or set()
    mode = RenderMode(mode)

    def replace(match: re.Match) -> str:
        expr = match.group(1).strip()
        parts = [p.strip() for p in expr.split("|")]
        ref = _REFERENCE.match(parts[0])
        if not ref:
            raise TemplateError(f"unsupported template expression {{{{ {expr} }}}}")

        kind = ref.group(1)
        path = ref.group(2).lstrip(".").split(".")

        if kind == "const":
            value = _lookup(constants, path, expr)
        else:
            if mode == RenderMode.CONSTANTS:
                return match.group(0)
            is_sensitive = path[0] in sensitive
            if is_sensitive and mode == RenderMode.NON_SENSITIVE:
                return match.group(0)
            value = _lookup(variables, path, expr)
            if is_sensitive and mode == RenderMode.MASKED:
                return MASK

        for fn_name in parts[1:]:
            fn = PIPE_FUNCTIONS.get(fn_name)
            if fn is None:
                raise TemplateError(f"function {fn_name!r} not defined")
            value = fn(value)
        return _format(value)

    return _PLACEHOLDER.sub(replace, document)
