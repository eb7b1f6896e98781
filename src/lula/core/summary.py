"""Run summary: totals, exit code and a markdown report."""

from __future__ import annotations

from datetime import datetime

from .. import __version__
from ..models.requirement import RequirementResult, RequirementStatus


def count_statuses(results: dict[str, RequirementResult]) -> dict[str, int]:
    totals = {"satisfied": 0, "not_satisfied": 0, "total": 0}
    for result in results.values():
        if result.status == RequirementStatus.SATISFIED:
            totals["satisfied"] += 1
        else:
            totals["not_satisfied"] += 1
        totals["total"] += 1
    return totals


def get_exit_code(results: dict[str, RequirementResult]) -> int:
    """1 when any requirement is not satisfied, otherwise 0."""
    return 1 if count_statuses(results)["not_satisfied"] else 0


def generate_summary_report(
    results: dict[str, RequirementResult],
    source: str = "",
    duration_seconds: float = 0,
) -> str:
    """Generate a markdown summary of a validation run."""
    totals = count_statuses(results)
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

    lines: list[str] = []
    lines.append("# Lula Validation Summary")
    lines.append("")
    if source:
        lines.append(f"**Component Definition:** {source}")
    lines.append(f"**Date:** {timestamp}")
    lines.append(f"**Duration:** {round(duration_seconds, 1)}s")
    lines.append("")

    lines.append("| Status | Count |")
    lines.append("|--------|-------|")
    lines.append(f"| Satisfied | {totals['satisfied']} |")
    lines.append(f"| Not Satisfied | {totals['not_satisfied']} |")
    lines.append(f"| **Total** | **{totals['total']}** |")
    lines.append("")

    lines.append("## Requirements")
    lines.append("")
    lines.append("| Control | Status | Passing | Failing | Validations |")
    lines.append("|---------|--------|---------|---------|-------------|")

    # not-satisfied first, then by control id
    ordered = sorted(
        results.values(),
        key=lambda r: (r.status == RequirementStatus.SATISFIED, r.control_id),
    )
    for result in ordered:
        combined = result.result
        lines.append(
            f"| {result.control_id} | {result.status.value} | {combined.passing} "
            f"| {combined.failing} | {len(result.validations)} |"
        )
    lines.append("")

    errored = [
        (result, run)
        for result in ordered
        for run in result.validations
        if run.error
    ]
    if errored:
        lines.append("## Errors")
        lines.append("")
        for result, run in errored:
            lines.append(f"- **{result.control_id}** {run.name or run.identity}: {run.error}")
        lines.append("")

    lines.append("---")
    lines.append(f"*Generated by Lula v{__version__} at {timestamp}*")

    return "\n".join(lines)
