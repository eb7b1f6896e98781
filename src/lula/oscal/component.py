"""Component definition helpers: requirements, Lula links and back-matter."""

from __future__ import annotations

from typing import Any, Iterator

from ..models.requirement import Requirement

LULA_REL = "lula"
LULA_LINK_TEXT = "Lula Validation"


def component_definition(model: dict) -> dict:
    """Return the inner component-definition, accepting the wrapped or bare form."""
    inner = model.get("component-definition", model)
    if not isinstance(inner, dict):
        raise ValueError("component-definition must be a mapping")
    return inner


def back_matter_resources(model: dict) -> dict[str, dict]:
    """Map back-matter resource uuid to the resource."""
    back_matter = component_definition(model).get("back-matter") or {}
    return {
        resource["uuid"]: resource
        for resource in back_matter.get("resources") or []
        if isinstance(resource, dict) and resource.get("uuid")
    }


def is_lula_link(link: dict) -> bool:
    rel = (link.get("rel") or "").strip()
    return rel == LULA_REL or rel.startswith(LULA_REL + ".") or link.get("text") == LULA_LINK_TEXT


def lula_links(implemented_requirement: dict) -> list[str]:
    """Hrefs of the Lula links on a requirement, in order."""
    return [
        link["href"]
        for link in implemented_requirement.get("links") or []
        if isinstance(link, dict) and link.get("href") and is_lula_link(link)
    ]


def iter_implemented_requirements(model: dict) -> Iterator[tuple[dict, dict[str, Any]]]:
    """Yield ``(control_implementation, implemented_requirement)`` pairs.

    The yielded dicts are the ones inside ``model``, so edits write back.
    """
    for component in component_definition(model).get("components") or []:
        for control_implementation in component.get("control-implementations") or []:
            for requirement in control_implementation.get("implemented-requirements") or []:
                yield control_implementation, requirement


def extract_requirements(model: dict) -> list[tuple[Requirement, dict]]:
    """Build Requirements along with the source dict each came from."""
    extracted: list[tuple[Requirement, dict]] = []
    for control_implementation, source in iter_implemented_requirements(model):
        requirement = Requirement(
            uuid=source.get("uuid", ""),
            control_id=source.get("control-id", ""),
            links=lula_links(source),
            control_implementation_uuid=control_implementation.get("uuid", ""),
        )
        extracted.append((requirement, source))
    return extracted
