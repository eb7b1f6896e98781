"""Assertion-tree policy engine.

Evaluates ``ValidatingPolicy`` documents against a JSON-like resource. A rule
holds optional ``match``/``exclude`` blocks and an ``assert`` block, each made
of assertion trees. Tree keys are resolved as follows:

- ``~name.key`` / ``~.(expr)`` iterate over the selected array (or map values)
  and apply the subtree to every element
- ``(expr)`` projects the current node through a JMESPath expression
- anything else is a plain field lookup

Leaf values compare by equality; strings with ``*`` or ``?`` match as
wildcards and ``(expr)`` strings are evaluated against the enclosing node.
"""

from __future__ import annotations

import fnmatch
from dataclasses import dataclass, field
from typing import Any, Optional

import jmespath
import yaml
from jmespath.exceptions import JMESPathError

from ..core.errors import EvaluationError


class TreeError(Exception):
    """An assertion tree could not be evaluated (bad expression, bad foreach)."""


@dataclass
class Rule:
    name: str
    assertion: dict[str, Any]
    match: Optional[dict[str, Any]] = None
    exclude: Optional[dict[str, Any]] = None


@dataclass
class Policy:
    name: str
    rules: list[Rule] = field(default_factory=list)


@dataclass
class Violation:
    message: str
    details: list[str] = field(default_factory=list)


@dataclass
class RuleResponse:
    rule: str
    violations: list[Violation] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class PolicyResponse:
    policy: str
    rules: list[RuleResponse] = field(default_factory=list)


def parse_policies(raw: Any) -> list[Policy]:
    """Accept a policy mapping, a list of them, or YAML text."""
    if isinstance(raw, str):
        try:
            documents = [d for d in yaml.safe_load_all(raw) if d is not None]
        except yaml.YAMLError as e:
            raise EvaluationError(f"failed to parse policy: {e}") from e
    elif isinstance(raw, list):
        documents = raw
    elif isinstance(raw, dict):
        documents = [raw]
    else:
        raise EvaluationError("failed to parse policy: expected a mapping or a list of mappings")

    if not documents:
        raise EvaluationError("failed to parse policy: no policies found")

    policies: list[Policy] = []
    for i, doc in enumerate(documents):
        if not isinstance(doc, dict):
            raise EvaluationError(f"failed to parse policy [{i}]: expected a mapping")
        name = (doc.get("metadata") or {}).get("name")
        if not name:
            raise EvaluationError(f"failed to parse policy [{i}]: metadata.name is required")
        raw_rules = (doc.get("spec") or {}).get("rules")
        if not isinstance(raw_rules, list):
            raise EvaluationError(f"failed to parse policy {name}: spec.rules must be a list")

        rules: list[Rule] = []
        for j, r in enumerate(raw_rules):
            if not isinstance(r, dict) or not r.get("name"):
                raise EvaluationError(f"failed to parse policy {name}: rules[{j}] requires a name")
            assertion = r.get("assert")
            if not isinstance(assertion, dict):
                raise EvaluationError(f"failed to parse policy {name}: rule {r['name']} requires assert")
            rules.append(Rule(
                name=r["name"],
                assertion=assertion,
                match=r.get("match"),
                exclude=r.get("exclude"),
            ))
        policies.append(Policy(name=name, rules=rules))

    return policies


def run(policies: list[Policy], resource: Any) -> list[PolicyResponse]:
    """Run every rule of every policy; rules that do not match are omitted."""
    responses: list[PolicyResponse] = []
    for policy in policies:
        response = PolicyResponse(policy=policy.name)
        for rule in policy.rules:
            try:
                if not _selected(rule, resource):
                    continue
                response.rules.append(
                    RuleResponse(rule=rule.name, violations=_check_rule(rule, resource))
                )
            except TreeError as e:
                response.rules.append(RuleResponse(rule=rule.name, error=str(e)))
        responses.append(response)
    return responses


def _selected(rule: Rule, resource: Any) -> bool:
    if rule.match and not _matches(rule.match, resource):
        return False
    if rule.exclude and _matches(rule.exclude, resource):
        return False
    return True


def _matches(block: dict[str, Any], resource: Any) -> bool:
    any_trees = block.get("any") or []
    all_trees = block.get("all") or []
    if any_trees and not any(not assert_tree(t, resource) for t in any_trees):
        return False
    return all(not assert_tree(t, resource) for t in all_trees)


def _check_rule(rule: Rule, resource: Any) -> list[Violation]:
    violations: list[Violation] = []

    for entry in rule.assertion.get("all") or []:
        failures = assert_tree(entry.get("check") or {}, resource)
        if failures:
            violations.append(_violation(entry, failures))

    any_entries = rule.assertion.get("any") or []
    if any_entries:
        pending: list[Violation] = []
        for entry in any_entries:
            failures = assert_tree(entry.get("check") or {}, resource)
            if not failures:
                pending = []
                break
            pending.append(_violation(entry, failures))
        violations.extend(pending)

    return violations


def _violation(entry: dict[str, Any], failures: list[str]) -> Violation:
    message = entry.get("message") or "; ".join(failures)
    return Violation(message=message, details=failures)


def assert_tree(expected: Any, actual: Any, path: str = "") -> list[str]:
    """Compare ``actual`` against an assertion tree; returns failure descriptions."""
    if isinstance(expected, dict):
        failures: list[str] = []
        for key, subtree in expected.items():
            key = str(key)
            if key.startswith("~"):
                _, _, selector = key[1:].partition(".")
                child = _join(path, selector)
                items = _project(selector, actual, child)
                if isinstance(items, dict):
                    items = list(items.values())
                if not isinstance(items, list):
                    raise TreeError(f"{child or '$'}: foreach requires an array, got {type(items).__name__}")
                for i, item in enumerate(items):
                    failures.extend(_assert_value(subtree, item, actual, f"{child}[{i}]"))
            else:
                child = _join(path, key)
                failures.extend(_assert_value(subtree, _project(key, actual, child), actual, child))
        return failures

    return _assert_value(expected, actual, None, path)


def _assert_value(expected: Any, actual: Any, parent: Any, path: str) -> list[str]:
    if isinstance(expected, dict):
        if not isinstance(actual, dict) and not _has_projection(expected):
            return [f"{path or '$'}: Invalid value: {actual!r}: Expected an object"]
        return assert_tree(expected, actual, path)

    if isinstance(expected, list):
        if not isinstance(actual, list) or len(actual) != len(expected):
            return [f"{path or '$'}: Invalid value: {actual!r}: Expected {len(expected)} items"]
        failures: list[str] = []
        for i, (e, a) in enumerate(zip(expected, actual)):
            failures.extend(_assert_value(e, a, actual, f"{path}[{i}]"))
        return failures

    if _is_expression(expected):
        expected = _search(expected[1:-1], parent, path)

    if _equal(expected, actual):
        return []
    return [f"{path or '$'}: Invalid value: {actual!r}: Expected value: {expected!r}"]


def _equal(expected: Any, actual: Any) -> bool:
    if expected is None:
        return actual is None
    if isinstance(expected, bool) or isinstance(actual, bool):
        return isinstance(expected, bool) and isinstance(actual, bool) and expected == actual
    if isinstance(expected, str):
        if not isinstance(actual, str):
            return False
        if "*" in expected or "?" in expected:
            return fnmatch.fnmatchcase(actual, expected)
        return expected == actual
    return expected == actual


def _project(key: str, actual: Any, path: str) -> Any:
    if _is_expression(key):
        return _search(key[1:-1], actual, path)
    if isinstance(actual, dict):
        return actual.get(key)
    return None


def _search(expression: str, data: Any, path: str) -> Any:
    try:
        return jmespath.search(expression, data)
    except JMESPathError as e:
        raise TreeError(f"{path or '$'}: failed to evaluate ({expression}): {e}") from e


def _is_expression(value: Any) -> bool:
    return isinstance(value, str) and len(value) > 1 and value.startswith("(") and value.endswith(")")


def _has_projection(tree: dict[str, Any]) -> bool:
    return any(_is_expression(str(k)) or str(k).startswith("~") for k in tree)


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key
