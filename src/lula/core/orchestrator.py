"""Command orchestration: validate, evaluate and lint OSCAL artifacts, and develop validations."""

from __future__ import annotations

import json
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .. import __version__
from ..models.requirement import RequirementResult, RequirementStatus
from ..models.result import ValidationTestResult
from ..oscal.assessment_results import generate_assessment_results
from ..oscal.evaluate import Comparison, evaluate_assessments
from ..oscal.io import SUPPORTED_EXTENSIONS, parse_oscal, serialize_oscal, write_oscal_model
from ..oscal.lint import lint_file
from .config import get_effective_config
from .errors import LulaError
from .log import setup_logging
from .requirement_store import RequirementStore
from .resolver import ValidationResolver
from .runner import collect_resources
from .summary import count_statuses, generate_summary_report, get_exit_code
from .validation_tests import run_validation_tests

console = Console()

EXIT_INVALID_INPUT = 2


def _report_requirement(result: RequirementResult) -> None:
    combined = result.result
    if result.status == RequirementStatus.SATISFIED:
        label = "[green]SATISFIED[/green]"
    else:
        label = "[red]NOT SATISFIED[/red]"
    console.print(
        f"  {label} {escape(result.control_id)}: "
        f"{len(result.validations)} validations, "
        f"{combined.passing} passing / {combined.failing} failing"
    )


def _load_config(base_dir: Path, cli_overrides: Optional[dict], log_level: Optional[str]) -> dict:
    config = get_effective_config(base_dir, cli_overrides or None)
    setup_logging(log_level or config.get("log_level", "info"))
    return config


async def run_validate(
    component_path: Path,
    output: Optional[Path] = None,
    confirm_execution: Optional[bool] = None,
    aggregation: Optional[str] = None,
    remark_target: Optional[str] = None,
    summary_path: Optional[Path] = None,
    update_component: bool = False,
    log_level: Optional[str] = None,
) -> int:
    """Validate every requirement in a component definition. Returns exit code."""
    start_time = time.time()
    started = datetime.now(timezone.utc)

    component_path = Path(component_path).resolve()
    if not component_path.is_file():
        console.print(f"  [red]ERROR[/red] Component definition not found: {component_path}")
        return EXIT_INVALID_INPUT

    cli_overrides: dict = {}
    if aggregation:
        cli_overrides.setdefault("run", {})["aggregation"] = aggregation
    if remark_target:
        cli_overrides.setdefault("run", {})["remark_target"] = remark_target
    if confirm_execution is not None:
        cli_overrides.setdefault("run", {})["confirm_execution"] = confirm_execution

    try:
        config = _load_config(component_path.parent, cli_overrides, log_level)
        model = parse_oscal(component_path.read_bytes())
    except (OSError, ValueError) as e:
        console.print(f"  [red]ERROR[/red] {escape(str(e))}")
        return EXIT_INVALID_INPUT

    if "component-definition" not in model:
        console.print("  [red]ERROR[/red] Document does not contain a component-definition")
        return EXIT_INVALID_INPUT

    try:
        store = RequirementStore.from_component_definition(
            model,
            base_path=component_path.parent,
            config=config,
        )
    except ValueError as e:
        console.print(f"  [red]ERROR[/red] {escape(str(e))}")
        return EXIT_INVALID_INPUT

    console.print()
    console.print(f"  [bold cyan]LULA[/bold cyan] v{__version__}")
    console.print(f"  Component:    [white]{component_path.name}[/white]")
    console.print(f"  Requirements: [white]{len(store.requirements)}[/white]")
    console.print(f"  Aggregation:  [white]{store.aggregation.value}[/white]")
    console.print()

    results = await store.run(
        confirm_execution=bool(config.get("run", {}).get("confirm_execution")),
        progress=_report_requirement,
    )
    ended = datetime.now(timezone.utc)
    store.annotate(results)

    if output:
        try:
            written = write_oscal_model(output, generate_assessment_results(results, start=started, end=ended))
            console.print(f"  [green]OK[/green] Assessment results: {written}")
        except (LulaError, ValueError, OSError) as e:
            # results are still reported below
            console.print(f"  [red]ERROR[/red] Could not write assessment results: {escape(str(e))}")

    if update_component:
        try:
            write_oscal_model(component_path, model)
            console.print(f"  [green]OK[/green] Remarks written to {component_path.name}")
        except (LulaError, ValueError, OSError) as e:
            console.print(f"  [red]ERROR[/red] Could not update component definition: {escape(str(e))}")

    if summary_path:
        report = generate_summary_report(
            results,
            source=component_path.name,
            duration_seconds=time.time() - start_time,
        )
        Path(summary_path).write_text(report, encoding="utf-8")

    totals = count_statuses(results)
    exit_code = get_exit_code(results)
    color = "green" if exit_code == 0 else "red"
    console.print(
        f"\n  [{color}]{totals['satisfied']} satisfied, "
        f"{totals['not_satisfied']} not satisfied[/{color}]"
    )
    console.print()
    return exit_code


async def _resolve_single(validation_path: Path, config: dict):
    resolver = ValidationResolver(base_path=validation_path.parent, config=config)
    return await resolver.resolve(str(validation_path))


async def dev_get_resources(
    validation_path: Path,
    output: Optional[Path] = None,
    confirm_execution: bool = False,
    log_level: Optional[str] = None,
) -> int:
    """Collect and print (or save) the resources a validation would evaluate."""
    validation_path = Path(validation_path).resolve()
    try:
        config = _load_config(validation_path.parent, None, log_level)
        validation = await _resolve_single(validation_path, config)
        if validation.preset is not None:
            for key, value in validation.preset.observations.items():
                console.print(f"  [red]ERROR[/red] {escape(key)}: {escape(value)}")
            return 1
        resources = await collect_resources(validation, confirm_execution)
    except (LulaError, ValueError) as e:
        console.print(f"  [red]ERROR[/red] {escape(str(e))}")
        return 1

    if output:
        Path(output).write_text(json.dumps(resources, indent=2, default=str) + "\n", encoding="utf-8")
        console.print(f"  [green]OK[/green] Resources written to {output}")
    else:
        console.print_json(data=resources, default=str)
    return 0


def _report_tests(outcomes: list[ValidationTestResult]) -> None:
    console.print(f"\n  [bold]Tests[/bold] ({len(outcomes)})")
    for outcome in outcomes:
        label = "[green]PASS[/green]" if outcome.passed else "[red]FAIL[/red]"
        detail = f"error: {outcome.error}" if outcome.error else \
            f"expected {outcome.expected}, got {outcome.result}"
        console.print(f"    {label} {escape(outcome.name)}: {escape(detail)}")
        if outcome.resources_path:
            console.print(f"         resources: {escape(outcome.resources_path)}")


async def dev_validate(
    validation_path: Path,
    resources_path: Optional[Path] = None,
    confirm_execution: bool = False,
    run_tests: bool = False,
    test_resources_dir: Optional[Path] = None,
    log_level: Optional[str] = None,
) -> int:
    """Evaluate a single validation, optionally against saved resources.

    With ``run_tests`` the validation's tests are run against the same
    resources; the exit code is 0 only when the validation and every test
    pass.
    """
    validation_path = Path(validation_path).resolve()
    outcomes: list[ValidationTestResult] = []
    try:
        config = _load_config(validation_path.parent, None, log_level)
        validation = await _resolve_single(validation_path, config)
        if validation.preset is not None:
            result = validation.preset
        else:
            if resources_path:
                resources: dict[str, Any] = json.loads(Path(resources_path).read_text(encoding="utf-8"))
            else:
                resources = await collect_resources(validation, confirm_execution)
            result = await validation.provider.evaluate(resources)
            if run_tests:
                outcomes = await run_validation_tests(validation, resources, test_resources_dir)
    except (LulaError, ValueError, OSError) as e:
        console.print(f"  [red]ERROR[/red] {escape(str(e))}")
        return 1

    color = "green" if result.succeeded else "red"
    console.print(f"  [bold]{escape(validation.name)}[/bold]")
    console.print(f"  [{color}]Passing: {result.passing}, Failing: {result.failing}[/{color}]")
    for key, value in result.observations.items():
        console.print(f"    {key}: {value}", markup=False)

    if run_tests:
        if validation.preset is not None:
            console.print("  [yellow]WARN[/yellow] Validation was not evaluated; tests were skipped")
        elif not validation.document.tests:
            console.print("  [yellow]WARN[/yellow] Validation declares no tests")
        else:
            _report_tests(outcomes)

    if not result.succeeded:
        return 1
    return 0 if all(outcome.passed for outcome in outcomes) else 1


def _report_comparison(comparison: Comparison) -> None:
    table = Table(title="Findings compared with the threshold", show_lines=False)
    table.add_column("Target")
    table.add_column("Change")
    table.add_column("State")
    rows = [
        ("no longer satisfied", "red", comparison.no_longer_satisfied),
        ("removed", "red", comparison.removed),
        ("new failing", "yellow", comparison.new_failing),
        ("new passing", "green", comparison.new_passing),
        ("unchanged", "white", comparison.unchanged),
    ]
    for change, color, findings in rows:
        for finding in findings:
            target = finding.get("target") or {}
            table.add_row(
                escape(str(target.get("target-id", "?"))),
                f"[{color}]{change}[/{color}]",
                escape(str((target.get("status") or {}).get("state", ""))),
            )
    console.print(table)


def run_evaluate(
    paths: list[Path],
    summary: bool = False,
    log_level: Optional[str] = None,
) -> int:
    """Evaluate the latest assessment result against the threshold. Returns exit code.

    Files are rewritten with updated threshold props only when the
    evaluation passes.
    """
    setup_logging(log_level or "info")
    if not paths:
        console.print("  [red]ERROR[/red] No assessment results files given")
        return EXIT_INVALID_INPUT

    models: dict[Path, dict] = {}
    try:
        for path in paths:
            path = Path(path)
            if path.suffix.lower() not in SUPPORTED_EXTENSIONS:
                raise ValueError(f"invalid file extension: {path.name}, requires .json or .yaml")
            models[path] = parse_oscal(path.read_bytes())
        evaluation = evaluate_assessments(models)
    except (LulaError, ValueError, OSError) as e:
        console.print(f"  [red]ERROR[/red] {escape(str(e))}")
        return EXIT_INVALID_INPUT

    console.print()
    console.print(f"  [bold cyan]LULA[/bold cyan] v{__version__} evaluate")
    comparison = evaluation.comparison
    if comparison is None:
        console.print("  [yellow]WARN[/yellow] Fewer than 2 results to compare; "
                      f"result {escape(evaluation.threshold.get('uuid', '?'))} is the threshold")
    else:
        console.print(f"  Threshold: [white]{escape(evaluation.threshold.get('uuid', '?'))}[/white]")
        console.print(f"  Latest:    [white]{escape(evaluation.latest.get('uuid', '?'))}[/white]")
        if summary:
            _report_comparison(comparison)

    if not evaluation.passed:
        for finding in comparison.no_longer_satisfied + comparison.removed:
            target_id = (finding.get("target") or {}).get("target-id", "?")
            console.print(f"  [red]FAIL[/red] {escape(str(target_id))}")
        console.print("\n  [red]Failed to meet the established threshold[/red]\n")
        return 1

    for path, model in models.items():
        path.write_bytes(serialize_oscal(model, path.suffix))

    if comparison is not None and comparison.new_passing:
        console.print(f"  [green]New threshold:[/green] {escape(evaluation.latest.get('uuid', '?'))}")
    console.print("\n  [green]Evaluation passed[/green]\n")
    return 0


def run_lint(
    paths: list[Path],
    result_file: Optional[Path] = None,
    log_level: Optional[str] = None,
) -> int:
    """Lint OSCAL and validation files. Returns 1 if any file has errors."""
    setup_logging(log_level or "info")
    results = [lint_file(path) for path in paths]

    for result in results:
        label = "[green]OK[/green]" if result.valid else "[red]FAIL[/red]"
        kind = f" ({result.model_type})" if result.model_type else ""
        console.print(f"  {label} {escape(result.path)}{escape(kind)}")
        for warning in result.warnings:
            console.print(f"    [yellow]warning[/yellow] {escape(warning)}")
        for error in result.errors:
            console.print(f"    [red]error[/red] {escape(error)}")

    if result_file:
        payload = [{**r.model_dump(), "valid": r.valid} for r in results]
        Path(result_file).write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")

    return 0 if all(r.valid for r in results) else 1
