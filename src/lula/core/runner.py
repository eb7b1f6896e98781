"""Run a single resolved validation: prepare, collect, evaluate."""

from __future__ import annotations

import logging
import time

from ..domains.base import Resources
from ..models.result import Result, ValidationRun
from ..models.validation import Validation
from ..utils.sanitize import sanitize_error
from .errors import ExecutionNotConfirmedError, LulaError

logger = logging.getLogger(__name__)


def _check_confirmed(validation: Validation, confirm_execution: bool) -> None:
    if validation.domain.is_executable() and not confirm_execution:
        raise ExecutionNotConfirmedError(
            f"validation {validation.name} is executable and execution was not confirmed"
        )


async def collect_resources(validation: Validation, confirm_execution: bool = False) -> Resources:
    """Collect a validation's resources without evaluating them."""
    _check_confirmed(validation, confirm_execution)
    async with validation.domain.prepare():
        return await validation.domain.get_resources()


async def collect_and_evaluate(validation: Validation, confirm_execution: bool = False) -> Result:
    """Collect resources and evaluate them, raising on any failure."""
    if validation.preset is not None:
        return validation.preset

    _check_confirmed(validation, confirm_execution)
    async with validation.domain.prepare():
        resources = await validation.domain.get_resources()
        return await validation.provider.evaluate(resources)


async def run_validation(validation: Validation, confirm_execution: bool = False) -> ValidationRun:
    """Run one validation, converting failures into an errored ValidationRun."""
    run = ValidationRun(identity=validation.identity, name=validation.name, uuid=validation.uuid)
    start = time.monotonic()

    try:
        run.result = await collect_and_evaluate(validation, confirm_execution)
        run.evaluated = True
    except LulaError as e:
        run.error = sanitize_error(str(e))
        run.error_type = type(e).__name__
        logger.warning("validation %s failed: %s", validation.name, run.error)
    except Exception as e:
        # Unexpected failures are isolated to this validation
        run.error = sanitize_error(f"{type(e).__name__}: {e}")
        run.error_type = type(e).__name__
        logger.exception("validation %s raised an unexpected error", validation.name)
    finally:
        run.duration_seconds = round(time.monotonic() - start, 3)

    if run.evaluated:
        logger.debug(
            "validation %s: passing=%d failing=%d",
            validation.name, run.result.passing, run.result.failing,
        )
    return run
