"""Lula command line: validate, evaluate and lint OSCAL artifacts, and develop validations."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import click

from .. import __version__

LOG_LEVEL_CHOICES = click.Choice(["debug", "info", "warn", "error"], case_sensitive=False)


@click.group()
@click.version_option(__version__, prog_name="lula")
@click.option("--log-level", "-l", type=LOG_LEVEL_CHOICES, help="Log level (default from config)")
@click.pass_context
def lula_cli(ctx: click.Context, log_level: str | None) -> None:
    """Lula - compliance validation for OSCAL component definitions."""
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level


@lula_cli.command()
@click.option("--file", "-f", "file_", type=click.Path(exists=True, dir_okay=False), required=True,
              help="Component definition to validate")
@click.option("--output-file", "-o", type=click.Path(), help="Assessment results to write or merge into")
@click.option("--confirm-execution", is_flag=True, default=None,
              help="Allow validations that create resources or execute requests")
@click.option("--aggregation", type=click.Choice(["all", "any"]), help="How validations combine per requirement")
@click.option("--remark-target", type=click.Choice(["statement", "requirement", "both"]),
              help="Where requirement remarks are written")
@click.option("--summary", "summary_file", type=click.Path(), help="Write a markdown summary report")
@click.option("--update-component", is_flag=True, help="Write remarks back into the component definition")
@click.pass_context
def validate(
    ctx: click.Context,
    file_: str,
    output_file: str | None,
    confirm_execution: bool | None,
    aggregation: str | None,
    remark_target: str | None,
    summary_file: str | None,
    update_component: bool,
) -> None:
    """Validate every requirement in a component definition.

    Exits 1 when any requirement is not satisfied.

    Example: lula validate -f oscal-component.yaml -o assessment-results.yaml
    """
    from ..core.orchestrator import run_validate

    exit_code = asyncio.run(
        run_validate(
            component_path=Path(file_),
            output=Path(output_file) if output_file else None,
            confirm_execution=confirm_execution,
            aggregation=aggregation,
            remark_target=remark_target,
            summary_path=Path(summary_file) if summary_file else None,
            update_component=update_component,
            log_level=ctx.obj.get("log_level"),
        )
    )
    sys.exit(exit_code)


@lula_cli.group()
def dev() -> None:
    """Tools for developing and debugging validations."""


@dev.command("get-resources")
@click.option("--file", "-f", "file_", type=click.Path(exists=True, dir_okay=False), required=True,
              help="Validation file")
@click.option("--output-file", "-o", type=click.Path(), help="Write resources as JSON")
@click.option("--confirm-execution", is_flag=True, help="Allow resource creation and executable requests")
@click.pass_context
def get_resources(ctx: click.Context, file_: str, output_file: str | None, confirm_execution: bool) -> None:
    """Collect the resources a validation would evaluate."""
    from ..core.orchestrator import dev_get_resources

    exit_code = asyncio.run(
        dev_get_resources(
            validation_path=Path(file_),
            output=Path(output_file) if output_file else None,
            confirm_execution=confirm_execution,
            log_level=ctx.obj.get("log_level"),
        )
    )
    sys.exit(exit_code)


@dev.command("validate")
@click.option("--file", "-f", "file_", type=click.Path(exists=True, dir_okay=False), required=True,
              help="Validation file")
@click.option("--resources-file", "-r", type=click.Path(exists=True, dir_okay=False),
              help="Evaluate against saved resources instead of collecting")
@click.option("--confirm-execution", is_flag=True, help="Allow resource creation and executable requests")
@click.option("--run-tests", is_flag=True, help="Also run the tests declared in the validation")
@click.option("--print-test-resources", type=click.Path(file_okay=False),
              help="Directory to write each test's changed resources to")
@click.pass_context
def dev_validate(
    ctx: click.Context,
    file_: str,
    resources_file: str | None,
    confirm_execution: bool,
    run_tests: bool,
    print_test_resources: str | None,
) -> None:
    """Evaluate a single validation. Exits 1 unless it (and any tests run) pass.

    Example: lula dev validate -f validation.yaml -r resources.json --run-tests
    """
    from ..core.orchestrator import dev_validate as run_dev_validate

    exit_code = asyncio.run(
        run_dev_validate(
            validation_path=Path(file_),
            resources_path=Path(resources_file) if resources_file else None,
            confirm_execution=confirm_execution,
            run_tests=run_tests or bool(print_test_resources),
            test_resources_dir=Path(print_test_resources) if print_test_resources else None,
            log_level=ctx.obj.get("log_level"),
        )
    )
    sys.exit(exit_code)


@lula_cli.command()
@click.option("--file", "-f", "files", type=click.Path(exists=True, dir_okay=False), multiple=True,
              required=True, help="Assessment results file (repeatable)")
@click.option("--summary", "-s", is_flag=True, help="Print a table of the compared findings")
@click.pass_context
def evaluate(ctx: click.Context, files: tuple[str, ...], summary: bool) -> None:
    """Evaluate the latest assessment result against the threshold.

    Exits 1 when a finding is no longer satisfied or was removed.

    \b
    Examples:
      lula evaluate -f assessment-results.yaml
      lula evaluate -f threshold.yaml -f latest.yaml --summary
    """
    from ..core.orchestrator import run_evaluate

    exit_code = run_evaluate(
        paths=[Path(f) for f in files],
        summary=summary,
        log_level=ctx.obj.get("log_level"),
    )
    sys.exit(exit_code)


@lula_cli.group()
def tools() -> None:
    """Utilities for OSCAL and validation files."""


@tools.command()
@click.option("--input-files", "-f", "input_files", multiple=True, required=True,
              help="Files to lint (repeatable or comma-separated)")
@click.option("--result-file", "-r", type=click.Path(dir_okay=False), help="Write lint results as JSON")
@click.pass_context
def lint(ctx: click.Context, input_files: tuple[str, ...], result_file: str | None) -> None:
    """Check OSCAL and validation documents for structural errors."""
    from ..core.orchestrator import run_lint

    paths = [Path(p.strip()) for entry in input_files for p in entry.split(",") if p.strip()]
    exit_code = run_lint(
        paths=paths,
        result_file=Path(result_file) if result_file else None,
        log_level=ctx.obj.get("log_level"),
    )
    sys.exit(exit_code)


def main() -> None:
    lula_cli(obj={})


if __name__ == "__main__":
    main()
