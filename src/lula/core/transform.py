"""Apply validation test changes to a collected resource map.

Paths are dotted keys with optional list selectors::

    podsvt.[metadata.name=demo-1].metadata.labels.foo
    data.containers.[0].image
"""

from __future__ import annotations

import copy
import re
from typing import Any, Union

from ..models.validation import ValidationTestChange
from .config import deep_merge
from .errors import TransformError

Token = Union[str, int, tuple[str, str]]

_TOKEN = re.compile(r"\[([^\]]*)\]|[^.\[\]]+")


def parse_path(path: str) -> list[Token]:
    """Split a change path into keys, list indexes and ``(field, value)`` filters."""
    tokens: list[Token] = []
    pos = 0
    for m in _TOKEN.finditer(path):
        if path[pos:m.start()].strip("."):
            raise TransformError(f"invalid path {path!r}")
        pos = m.end()

        if m.group(1) is None:
            tokens.append(m.group(0).strip())
            continue
        selector = m.group(1).strip()
        if re.fullmatch(r"-?\d+", selector):
            tokens.append(int(selector))
        elif "=" in selector and selector.split("=", 1)[0].strip():
            field, value = selector.split("=", 1)
            tokens.append((field.strip(), value.strip().strip("\"'")))
        else:
            raise TransformError(f"invalid selector [{selector}] in {path!r}")

    if path[pos:].strip(".") or not tokens:
        raise TransformError(f"invalid path {path!r}")
    return tokens


def _field(item: Any, dotted: str) -> Any:
    current = item
    for part in dotted.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


def _index(container: Any, token: Token, path: str) -> int:
    if not isinstance(container, list):
        raise TransformError(f"{path}: list selector applied to a non-list value")
    if isinstance(token, int):
        if -len(container) <= token < len(container):
            return token
        raise TransformError(f"{path}: index {token} out of range")
    field, value = token
    for i, item in enumerate(container):
        found = _field(item, field)
        if found is not None and str(found) == value:
            return i
    raise TransformError(f"{path}: no item with {field}={value}")


def _child(container: Any, token: Token, path: str, create: bool) -> Any:
    if not isinstance(token, str):
        return container[_index(container, token, path)]
    if not isinstance(container, dict):
        raise TransformError(f"{path}: {token!r} is not reachable through a non-mapping value")
    if token not in container:
        if not create:
            raise TransformError(f"{path}: {token} not found")
        container[token] = {}
    return container[token]


def _combine(current: Any, change: ValidationTestChange) -> Any:
    if change.value_map is not None:
        new_value = copy.deepcopy(change.value_map)
        if isinstance(current, dict):
            return deep_merge(current, new_value)
    else:
        new_value = copy.deepcopy(change.value)
    if change.type == "add" and isinstance(current, list):
        return current + (new_value if isinstance(new_value, list) else [new_value])
    return new_value


def apply_change(resources: dict[str, Any], change: ValidationTestChange) -> None:
    """Apply one change in place.

    ``update`` replaces the target (``value-map`` merges into a mapping),
    ``add`` also appends to lists, ``delete`` removes the key or list item.
    Missing intermediate keys are created except for ``delete``.
    """
    tokens = parse_path(change.path)
    parent: Any = resources
    for token in tokens[:-1]:
        parent = _child(parent, token, change.path, create=change.type != "delete")
    last = tokens[-1]

    if change.type == "delete":
        if isinstance(last, str):
            if not isinstance(parent, dict) or last not in parent:
                raise TransformError(f"{change.path}: {last} not found")
            del parent[last]
        else:
            del parent[_index(parent, last, change.path)]
        return

    if isinstance(last, str):
        if not isinstance(parent, dict):
            raise TransformError(f"{change.path}: {last!r} is not reachable through a non-mapping value")
        parent[last] = _combine(parent.get(last), change)
    else:
        i = _index(parent, last, change.path)
        parent[i] = _combine(parent[i], change)


def apply_changes(resources: dict[str, Any], changes: list[ValidationTestChange]) -> dict[str, Any]:
    """Return a copy of ``resources`` with every change applied in order."""
    changed = copy.deepcopy(resources)
    for change in changes:
        apply_change(changed, change)
    return changed
