"""Merge OSCAL models without losing pre-existing content."""

from __future__ import annotations

import copy
from typing import Any

from ..core.errors import MergeError

MODEL_KINDS = (
    "catalog",
    "profile",
    "component-definition",
    "system-security-plan",
    "assessment-plan",
    "assessment-results",
    "plan-of-action-and-milestones",
)


def merge_oscal_models(existing: dict, incoming: dict) -> dict:
    """Merge ``incoming`` into ``existing``, returning a new document.

    Model kinds present only in ``incoming`` are added; kinds present in both
    are merged recursively with :func:`merge_values`.
    """
    if not isinstance(existing, dict):
        raise MergeError("existing OSCAL document is not a mapping")
    if not isinstance(incoming, dict):
        raise MergeError("incoming OSCAL document is not a mapping")

    result = copy.deepcopy(existing)
    for kind, model in incoming.items():
        if kind not in result:
            result[kind] = copy.deepcopy(model)
            continue
        if not isinstance(result[kind], dict):
            raise MergeError(f"existing {kind} is malformed: expected a mapping")
        if not isinstance(model, dict):
            raise MergeError(f"incoming {kind} is malformed: expected a mapping")
        result[kind] = merge_values(result[kind], model)
    return result


def merge_values(base: Any, override: Any) -> Any:
    """Deep merge. Lists of uuid-bearing objects merge by uuid; other lists are replaced."""
    if isinstance(base, dict) and isinstance(override, dict):
        result = {}
        for key in base:
            result[key] = base[key]
        for key, value in override.items():
            if key in result:
                result[key] = merge_values(result[key], value)
            else:
                result[key] = copy.deepcopy(value)
        return result

    if isinstance(base, list) and isinstance(override, list) and _keyed(base) and _keyed(override):
        return merge_by_uuid(base, override)

    return copy.deepcopy(override)


def merge_by_uuid(base: list[dict], incoming: list[dict]) -> list[dict]:
    """Replace matching entries in place, append new ones, keep the rest."""
    result = list(base)
    index = {item["uuid"]: i for i, item in enumerate(result)}
    for item in incoming:
        position = index.get(item["uuid"])
        if position is None:
            index[item["uuid"]] = len(result)
            result.append(copy.deepcopy(item))
        else:
            result[position] = copy.deepcopy(item)
    return result


def _keyed(items: list) -> bool:
    # empty lists count as keyed
    return all(isinstance(i, dict) and "uuid" in i for i in items)
