"""Evaluate assessment results against a threshold result.

The threshold is the result marked with the ``threshold=true`` prop (or, if
none is marked, the result before the latest). The latest result passes when
no finding went from satisfied to not-satisfied and no threshold finding
disappeared. A passing result with newly satisfied findings becomes the new
threshold.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from ..core.errors import ComparisonError
from ..models.requirement import RequirementStatus
from .assessment_results import LULA_NS

THRESHOLD_PROP = "threshold"

_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


def get_prop(props: Optional[list[dict]], name: str, ns: str = LULA_NS) -> Optional[str]:
    for prop in props or []:
        if prop.get("name") == name and prop.get("ns", ns) == ns:
            return prop.get("value")
    return None


def update_prop(result: dict, name: str, value: str, ns: str = LULA_NS) -> None:
    """Set a prop on an OSCAL result, adding it when missing."""
    props = result.setdefault("props", [])
    for prop in props:
        if prop.get("name") == name and prop.get("ns", ns) == ns:
            prop["value"] = value
            return
    props.append({"ns": ns, "name": name, "value": value})


def _start(result: dict) -> datetime:
    value = result.get("start")
    # unquoted timestamps in hand-written YAML load as datetimes
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return _EARLIEST
    else:
        return _EARLIEST
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def collect_results(models: dict[str, dict]) -> list[dict]:
    """All results across the given assessment-results documents, oldest first."""
    results = []
    for path, model in models.items():
        document = model.get("assessment-results")
        if not isinstance(document, dict):
            raise ComparisonError(f"{path} does not contain assessment-results")
        results.extend(r for r in document.get("results") or [] if isinstance(r, dict))
    return sorted(results, key=_start)


def identify_results(results: list[dict]) -> tuple[Optional[dict], Optional[dict]]:
    """Pick the threshold and latest results from time-ordered results.

    ``latest`` is None when there is nothing newer than the threshold to
    compare.
    """
    if not results:
        return None, None
    if len(results) == 1:
        return results[0], None

    latest = results[-1]
    thresholds = [r for r in results if get_prop(r.get("props"), THRESHOLD_PROP) == "true"]
    if not thresholds:
        return results[-2], latest

    threshold = thresholds[-1]
    if threshold is latest:
        if len(thresholds) == 1:
            return threshold, None
        threshold = thresholds[-2]
    return threshold, latest


@dataclass
class Comparison:
    no_longer_satisfied: list[dict] = field(default_factory=list)
    removed: list[dict] = field(default_factory=list)
    new_passing: list[dict] = field(default_factory=list)
    new_failing: list[dict] = field(default_factory=list)
    unchanged: list[dict] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.no_longer_satisfied and not self.removed


def _state(finding: dict) -> str:
    return ((finding.get("target") or {}).get("status") or {}).get("state", "")


def _findings_by_target(result: dict) -> dict[str, dict]:
    findings = result.get("findings")
    if findings is None:
        raise ComparisonError(f"result {result.get('uuid', '?')} has no findings to evaluate")
    return {(f.get("target") or {}).get("target-id", ""): f for f in findings}


def compare_results(threshold: dict, latest: dict) -> Comparison:
    """Compare findings by target-id between the threshold and latest results."""
    before = _findings_by_target(threshold)
    after = _findings_by_target(latest)
    satisfied = RequirementStatus.SATISFIED.value

    comparison = Comparison()
    for target_id, finding in before.items():
        current = after.pop(target_id, None)
        if current is None:
            comparison.removed.append(finding)
        elif _state(finding) == satisfied and _state(current) != satisfied:
            comparison.no_longer_satisfied.append(current)
        elif _state(finding) != satisfied and _state(current) == satisfied:
            comparison.new_passing.append(current)
        else:
            comparison.unchanged.append(current)

    for finding in after.values():
        if _state(finding) == satisfied:
            comparison.new_passing.append(finding)
        else:
            comparison.new_failing.append(finding)
    return comparison


@dataclass
class Evaluation:
    threshold: dict
    latest: Optional[dict] = None
    comparison: Optional[Comparison] = None

    @property
    def passed(self) -> bool:
        return self.comparison is None or self.comparison.passed


def evaluate_assessments(models: dict[str, dict]) -> Evaluation:
    """Evaluate the latest result against the threshold, updating threshold props in place.

    Props are only changed when the evaluation passes: the threshold keeps
    ``threshold=true`` unless the latest result satisfies new findings, in
    which case the latest result takes over.
    """
    results = collect_results(models)
    threshold, latest = identify_results(results)
    if threshold is None:
        raise ComparisonError("no results found to evaluate")

    evaluation = Evaluation(threshold=threshold, latest=latest)
    if latest is not None:
        evaluation.comparison = compare_results(threshold, latest)
    if not evaluation.passed:
        return evaluation

    new_threshold = threshold
    if evaluation.comparison is not None and evaluation.comparison.new_passing:
        new_threshold = latest
    for result in results:
        if result is new_threshold:
            update_prop(result, THRESHOLD_PROP, "true")
        elif get_prop(result.get("props"), THRESHOLD_PROP) is not None:
            update_prop(result, THRESHOLD_PROP, "false")
    return evaluation
