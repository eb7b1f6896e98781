"""Structural lint for OSCAL documents and Lula validation documents.

OSCAL documents are checked for the fields the OSCAL 1.1.2 model requires of
the parts Lula reads and writes (metadata, component definitions and
assessment results); other model kinds get the common checks only.
Validation documents, standalone or embedded in component back-matter, are
checked by building them the way a run would.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import yaml
from packaging.specifiers import InvalidSpecifier
from pydantic import BaseModel, ValidationError

from ..core.errors import LulaError
from ..core.resolver import parse_constraint
from ..domains.base import get_domain
from ..models.validation import ValidationDocument
from ..providers.base import get_provider
from .assessment_results import OSCAL_VERSION
from .component import is_lula_link
from .merge import MODEL_KINDS

UUID_PATTERN = re.compile(
    r"^[0-9A-Fa-f]{8}-[0-9A-Fa-f]{4}-[45][0-9A-Fa-f]{3}-[89ABab][0-9A-Fa-f]{3}-[0-9A-Fa-f]{12}$"
)
FINDING_STATES = ("satisfied", "not-satisfied")


class LintResult(BaseModel):
    path: str
    model_type: str = ""
    errors: list[str] = []
    warnings: list[str] = []

    @property
    def valid(self) -> bool:
        return not self.errors


def _require(obj: Any, fields: tuple[str, ...], where: str, errors: list[str]) -> None:
    if not isinstance(obj, dict):
        errors.append(f"{where}: expected a mapping")
        return
    for name in fields:
        if obj.get(name) in (None, "", [], {}):
            errors.append(f"{where}: {name} is required")
    if "uuid" in fields and obj.get("uuid") and not UUID_PATTERN.match(str(obj["uuid"])):
        errors.append(f"{where}: uuid {obj['uuid']!r} is not a valid UUID")


def _items(parent: dict, key: str) -> list:
    value = parent.get(key) if isinstance(parent, dict) else None
    return value if isinstance(value, list) else []


def lint_validation(raw: Any, where: str = "validation") -> list[str]:
    """Return the problems that would stop a validation document from running."""
    if not isinstance(raw, dict):
        return [f"{where}: expected a mapping"]
    try:
        document = ValidationDocument.model_validate(raw)
    except ValidationError as e:
        return [
            f"{where}: {'.'.join(str(p) for p in error['loc'])}: {error['msg']}"
            for error in e.errors()
        ]

    errors: list[str] = []
    if document.lula_version:
        try:
            parse_constraint(document.lula_version)
        except InvalidSpecifier as e:
            errors.append(f"{where}: lula-version: {e}")
    try:
        get_domain(document.domain)
    except (LulaError, ValueError) as e:
        errors.append(f"{where}: domain: {e}")
    try:
        get_provider(document.provider)
    except (LulaError, ValueError) as e:
        errors.append(f"{where}: provider: {e}")

    names = [test.name for test in document.tests]
    for name in sorted({n for n in names if names.count(n) > 1}):
        errors.append(f"{where}: duplicate test name {name!r}")
    return errors


def _lint_component_definition(inner: dict, errors: list[str], warnings: list[str]) -> None:
    components = _items(inner, "components")
    if not components:
        warnings.append("component-definition: no components defined")
    for i, component in enumerate(components):
        where = f"components[{i}]"
        _require(component, ("uuid", "type", "title", "description"), where, errors)
        for j, implementation in enumerate(_items(component, "control-implementations")):
            impl_where = f"{where}.control-implementations[{j}]"
            _require(implementation, ("uuid", "source", "description", "implemented-requirements"),
                     impl_where, errors)
            for k, requirement in enumerate(_items(implementation, "implemented-requirements")):
                _require(requirement, ("uuid", "control-id", "description"),
                         f"{impl_where}.implemented-requirements[{k}]", errors)

    linked = {
        link.get("href", "")[1:]
        for component in components
        for implementation in _items(component, "control-implementations")
        for requirement in _items(implementation, "implemented-requirements")
        for link in _items(requirement, "links")
        if isinstance(link, dict) and is_lula_link(link) and str(link.get("href", "")).startswith("#")
    }
    back_matter = inner.get("back-matter") if isinstance(inner.get("back-matter"), dict) else {}
    for i, resource in enumerate(_items(back_matter, "resources")):
        where = f"back-matter.resources[{i}]"
        _require(resource, ("uuid",), where, errors)
        if not isinstance(resource, dict) or resource.get("uuid") not in linked:
            continue
        description = resource.get("description") or ""
        if "{{" in description:
            warnings.append(f"{where}: validation contains template placeholders and was not linted")
            continue
        try:
            documents = [d for d in yaml.safe_load_all(description) if d is not None]
        except yaml.YAMLError as e:
            errors.append(f"{where}: invalid validation YAML: {e}")
            continue
        if not documents:
            errors.append(f"{where}: linked resource has no validation")
        for n, document in enumerate(documents):
            label = where if len(documents) == 1 else f"{where}[{n}]"
            errors.extend(lint_validation(document, label))


def _lint_assessment_results(inner: dict, errors: list[str], warnings: list[str]) -> None:
    if not isinstance(inner.get("import-ap"), dict) or "href" not in inner["import-ap"]:
        errors.append("assessment-results: import-ap.href is required")
    results = _items(inner, "results")
    if not results:
        errors.append("assessment-results: at least one result is required")
    for i, result in enumerate(results):
        where = f"results[{i}]"
        _require(result, ("uuid", "title", "description", "start"), where, errors)
        for j, finding in enumerate(_items(result, "findings")):
            finding_where = f"{where}.findings[{j}]"
            _require(finding, ("uuid", "title", "description", "target"), finding_where, errors)
            target = finding.get("target") if isinstance(finding, dict) else None
            if isinstance(target, dict):
                _require(target, ("type", "target-id"), f"{finding_where}.target", errors)
                state = (target.get("status") or {}).get("state")
                if state not in FINDING_STATES:
                    errors.append(f"{finding_where}.target: status.state must be one of {', '.join(FINDING_STATES)}")
        for j, observation in enumerate(_items(result, "observations")):
            _require(observation, ("uuid", "description", "methods", "collected"),
                     f"{where}.observations[{j}]", errors)


def lint_oscal(model: dict, result: LintResult) -> None:
    kinds = [kind for kind in MODEL_KINDS if kind in model]
    result.model_type = ", ".join(kinds)
    for kind in kinds:
        inner = model[kind]
        errors: list[str] = []
        _require(inner, ("uuid", "metadata"), kind, errors)
        if isinstance(inner, dict) and isinstance(inner.get("metadata"), dict):
            metadata = inner["metadata"]
            _require(metadata, ("title", "last-modified", "version", "oscal-version"), f"{kind}.metadata", errors)
            version = metadata.get("oscal-version")
            if version and version != OSCAL_VERSION:
                result.warnings.append(f"{kind}: oscal-version {version} is not {OSCAL_VERSION}")

        if kind == "component-definition" and isinstance(inner, dict):
            _lint_component_definition(inner, errors, result.warnings)
        elif kind == "assessment-results" and isinstance(inner, dict):
            _lint_assessment_results(inner, errors, result.warnings)
        elif isinstance(inner, dict):
            result.warnings.append(f"{kind}: only common fields are checked")
        result.errors.extend(errors)


def lint_file(path: Path | str) -> LintResult:
    """Lint one file: an OSCAL document or one or more validation documents."""
    path = Path(path)
    result = LintResult(path=str(path))
    if path.suffix.lower() not in (".json", ".yaml", ".yml"):
        result.errors.append(f"unsupported file extension {path.suffix!r}, requires .json or .yaml")
        return result
    try:
        documents = [d for d in yaml.safe_load_all(path.read_text(encoding="utf-8-sig")) if d is not None]
    except OSError as e:
        result.errors.append(f"cannot read file: {e.strerror or e}")
        return result
    except yaml.YAMLError as e:
        result.errors.append(f"invalid YAML: {e}")
        return result

    if len(documents) == 1 and isinstance(documents[0], dict) and any(k in documents[0] for k in MODEL_KINDS):
        lint_oscal(documents[0], result)
    elif documents and all(isinstance(d, dict) and "domain" in d for d in documents):
        result.model_type = "validation"
        for i, document in enumerate(documents):
            result.errors.extend(lint_validation(document, "validation" if len(documents) == 1 else f"validation[{i}]"))
    else:
        result.errors.append("no OSCAL model or validation document found")
    return result
