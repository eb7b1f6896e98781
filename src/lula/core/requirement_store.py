"""Requirement store: resolves, runs and aggregates validations per requirement.

A store is created once per run. Validations shared by several requirements
are resolved and executed once; each distinct validation identity maps to a
single task whose outcome every requirement awaits.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Optional

import httpx

from ..models.requirement import (
    Aggregation,
    RemarkTarget,
    Requirement,
    RequirementResult,
    RequirementStatus,
)
from ..models.result import ValidationRun
from ..oscal.component import back_matter_resources, extract_requirements
from ..utils.sanitize import sanitize_error
from .errors import LulaError
from .resolver import ValidationResolver
from .runner import run_validation

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[RequirementResult], None]

NO_VALIDATIONS_REMARK = "No Lula validations are linked to this requirement."


def is_satisfied(runs: list[ValidationRun], aggregation: Aggregation) -> bool:
    if not runs:
        return False
    if aggregation == Aggregation.ANY:
        return any(run.succeeded for run in runs)
    return all(run.succeeded for run in runs)


def build_remarks(status: RequirementStatus, runs: list[ValidationRun]) -> str:
    """Human-readable summary attached to the requirement."""
    if not runs:
        return NO_VALIDATIONS_REMARK

    passing = sum(run.result.passing for run in runs)
    failing = sum(run.result.failing for run in runs)
    lines = [
        f"Status: {status.value}",
        f"Passing: {passing}, Failing: {failing}",
    ]
    for run in runs:
        state = "satisfied" if run.succeeded else "not-satisfied"
        lines.append(f"Validation {run.name or run.identity}: {state}")
        if run.error:
            lines.append(f"  Error: {run.error}")
        for key, value in run.result.observations.items():
            lines.append(f"  {key}: {value}")
    return "\n".join(lines)


class RequirementStore:
    def __init__(
        self,
        requirements: list[Requirement],
        resolver: ValidationResolver,
        aggregation: Aggregation = Aggregation.ALL,
        remark_target: RemarkTarget = RemarkTarget.REQUIREMENT,
        concurrency: int = 4,
        sources: Optional[dict[str, dict]] = None,
    ):
        self.requirements = requirements
        self.resolver = resolver
        self.aggregation = Aggregation(aggregation)
        self.remark_target = RemarkTarget(remark_target)
        self.concurrency = max(1, int(concurrency))
        # uuid -> implemented-requirement dict inside the loaded model
        self.sources = sources or {}
        self.results: dict[str, RequirementResult] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._confirm_execution = False

    @classmethod
    def from_component_definition(
        cls,
        model: dict,
        base_path: Path | str = ".",
        config: Optional[dict] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        cluster: Any = None,
        aggregation: Optional[Aggregation | str] = None,
        remark_target: Optional[RemarkTarget | str] = None,
    ) -> "RequirementStore":
        config = config or {}
        run_config = config.get("run") or {}
        extracted = extract_requirements(model)
        resolver = ValidationResolver(
            back_matter=back_matter_resources(model),
            base_path=base_path,
            config=config,
            transport=transport,
            cluster=cluster,
        )
        return cls(
            requirements=[req for req, _ in extracted],
            resolver=resolver,
            aggregation=aggregation or run_config.get("aggregation", Aggregation.ALL),
            remark_target=remark_target or run_config.get("remark_target", RemarkTarget.REQUIREMENT),
            concurrency=run_config.get("concurrency", 4),
            sources={req.uuid: source for req, source in extracted},
        )

    async def run(
        self,
        confirm_execution: bool = False,
        progress: Optional[ProgressCallback] = None,
    ) -> dict[str, RequirementResult]:
        """Evaluate every requirement. Returns results keyed by requirement uuid."""
        self._confirm_execution = confirm_execution
        self._semaphore = asyncio.Semaphore(self.concurrency)
        self._tasks = {}

        evaluated = await asyncio.gather(
            *(self._evaluate_requirement(req, progress) for req in self.requirements)
        )
        self.results = {result.uuid: result for result in evaluated}
        return self.results

    async def _evaluate_requirement(
        self,
        requirement: Requirement,
        progress: Optional[ProgressCallback],
    ) -> RequirementResult:
        result = RequirementResult(uuid=requirement.uuid, control_id=requirement.control_id)

        if requirement.links:
            batches = await asyncio.gather(*(self._run_link(link) for link in requirement.links))
            result.validations = [run for batch in batches for run in batch]
            if is_satisfied(result.validations, self.aggregation):
                result.status = RequirementStatus.SATISFIED

        result.remarks = build_remarks(result.status, result.validations)
        logger.debug("requirement %s (%s): %s", requirement.control_id, requirement.uuid, result.status.value)

        if progress is not None:
            progress(result)
        return result

    def _run_link(self, link: str) -> asyncio.Task:
        identity = self.resolver.identity(link)
        task = self._tasks.get(identity)
        if task is None:
            task = asyncio.create_task(self._execute(link, identity))
            self._tasks[identity] = task
        return task

    async def _execute(self, link: str, identity: str) -> list[ValidationRun]:
        async with self._semaphore:
            try:
                validations = await self.resolver.resolve_all(link)
            except LulaError as e:
                logger.warning("could not resolve %s: %s", link, sanitize_error(str(e)))
                return [ValidationRun(
                    identity=identity,
                    error=sanitize_error(str(e)),
                    error_type=type(e).__name__,
                )]
            except Exception as e:
                logger.exception("unexpected error resolving %s", link)
                return [ValidationRun(
                    identity=identity,
                    error=sanitize_error(f"{type(e).__name__}: {e}"),
                    error_type=type(e).__name__,
                )]

            runs: list[ValidationRun] = []
            for validation in validations:
                runs.append(await run_validation(validation, self._confirm_execution))
            return runs

    def annotate(self, results: Optional[dict[str, RequirementResult]] = None) -> int:
        """Write remarks back into the loaded model. Returns the number annotated."""
        results = results if results is not None else self.results
        count = 0
        for uuid, result in results.items():
            source = self.sources.get(uuid)
            if source is None:
                continue
            if self.remark_target in (RemarkTarget.REQUIREMENT, RemarkTarget.BOTH):
                source["remarks"] = result.remarks
            if self.remark_target in (RemarkTarget.STATEMENT, RemarkTarget.BOTH):
                for statement in source.get("statements") or []:
                    statement["remarks"] = result.remarks
            count += 1
        return count
