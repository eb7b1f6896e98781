"""Generate OSCAL assessment-results from requirement store output."""

from __future__ import annotations

import uuid as uuidlib
from datetime import datetime, timezone
from typing import Optional

from .. import __version__
from ..models.requirement import RequirementResult, RequirementStatus
from ..models.result import ValidationRun

OSCAL_VERSION = "1.1.2"
LULA_NS = "https://docs.lula.dev/ns"


def _timestamp(when: Optional[datetime] = None) -> str:
    return (when or datetime.now(timezone.utc)).isoformat(timespec="seconds")


def _new_uuid() -> str:
    return str(uuidlib.uuid4())


def create_observation(run: ValidationRun, collected: str) -> dict:
    """One observation per validation run, carrying its outcome as evidence."""
    status = RequirementStatus.SATISFIED if run.succeeded else RequirementStatus.NOT_SATISFIED
    evidence = [f"Result: {status.value}", f"Passing: {run.result.passing}, Failing: {run.result.failing}"]
    if run.error:
        evidence.append(f"Error: {run.error}")
    for key, value in run.result.observations.items():
        evidence.append(f"{key}: {value}")

    observation = {
        "uuid": _new_uuid(),
        "description": f"[TEST]: {run.uuid or run.identity} - {run.name or run.identity}",
        "methods": ["TEST"],
        "relevant-evidence": [{"description": "\n".join(evidence)}],
        "collected": collected,
    }
    if run.uuid:
        observation["props"] = [{"ns": LULA_NS, "name": "validation", "value": run.uuid}]
    return observation


def create_finding(result: RequirementResult, observation_uuids: list[str]) -> dict:
    finding = {
        "uuid": _new_uuid(),
        "title": f"Validation Result - Control: {result.control_id}",
        "description": result.control_id,
        "target": {
            "type": "objective-id",
            "target-id": result.control_id,
            "status": {"state": result.status.value},
        },
        "implementation-statement-uuid": result.uuid,
    }
    if observation_uuids:
        finding["related-observations"] = [{"observation-uuid": u} for u in observation_uuids]
    if result.remarks:
        finding["remarks"] = result.remarks
    return finding


def create_result(
    results: dict[str, RequirementResult],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> dict:
    """Build one OSCAL result holding a finding per requirement."""
    collected = _timestamp(end)
    observations: list[dict] = []
    observation_by_identity: dict[str, str] = {}
    findings: list[dict] = []
    control_ids: list[str] = []

    for result in results.values():
        related: list[str] = []
        for run in result.validations:
            # a validation shared by several requirements is observed once
            if run.identity not in observation_by_identity:
                observation = create_observation(run, collected)
                observations.append(observation)
                observation_by_identity[run.identity] = observation["uuid"]
            related.append(observation_by_identity[run.identity])
        findings.append(create_finding(result, related))
        if result.control_id not in control_ids:
            control_ids.append(result.control_id)

    oscal_result = {
        "uuid": _new_uuid(),
        "title": "Lula Validation Result",
        "description": f"Assessment results for performing Validations with Lula version {__version__}",
        "start": _timestamp(start),
        "end": collected,
        "props": [{"ns": LULA_NS, "name": "threshold", "value": "false"}],
        "reviewed-controls": {
            "description": "Controls validated",
            "remarks": "Validation performed may indicate full or partial satisfaction",
            "control-selections": [{
                "description": "Controls Assessed by Lula",
                "include-controls": [{"control-id": c} for c in control_ids],
            }],
        },
        "findings": findings,
    }
    if observations:
        oscal_result["observations"] = observations
    return oscal_result


def generate_assessment_results(
    results: dict[str, RequirementResult],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    title: str = "[System Name] Security Assessment Results (SAR)",
) -> dict:
    now = _timestamp(end)
    return {
        "assessment-results": {
            "uuid": _new_uuid(),
            "metadata": {
                "title": title,
                "version": "0.0.1",
                "oscal-version": OSCAL_VERSION,
                "published": now,
                "last-modified": now,
                "remarks": "Assessment Results generated from Lula",
            },
            "import-ap": {"href": ""},
            "results": [create_result(results, start, end)],
        }
    }

