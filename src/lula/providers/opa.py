"""OPA provider: evaluates Rego policies with the ``opa`` binary.

The resource map is bound as ``input``. The value at the validation path
(``validate.validate`` by default) decides the outcome: ``true`` passes,
anything else fails, and a list of booleans counts each element.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Any, Optional

from ..core.errors import EvaluationError, SpecValidationError
from ..models.result import Result
from ..models.validation import OpaOutput, OpaSpec
from .base import BaseProvider

logger = logging.getLogger(__name__)


class OpaEngine:
    """Runs ``opa eval`` and returns the evaluated ``data`` document."""

    def __init__(self, binary: str = "opa", timeout: float = 60):
        self.binary = binary
        self.timeout = timeout

    async def evaluate(self, rego: str, input_data: dict[str, Any]) -> dict[str, Any]:
        executable = shutil.which(self.binary)
        if executable is None:
            raise EvaluationError(f"opa binary {self.binary!r} not found on PATH")

        with tempfile.TemporaryDirectory(prefix="lula-opa-") as tmp:
            policy_path = Path(tmp) / "policy.rego"
            policy_path.write_text(rego, encoding="utf-8")

            proc = await asyncio.create_subprocess_exec(
                executable, "eval",
                "--format", "json",
                "--stdin-input",
                "--data", str(policy_path),
                "data",
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            try:
                stdout, stderr = await asyncio.wait_for(
                    proc.communicate(json.dumps(input_data).encode("utf-8")),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError as e:
                proc.kill()
                await proc.wait()
                raise EvaluationError(f"opa eval timed out after {self.timeout}s") from e
            except asyncio.CancelledError:
                proc.kill()
                raise

        return parse_eval_output(proc.returncode, stdout.decode("utf-8"), stderr.decode("utf-8"))


def parse_eval_output(returncode: Optional[int], stdout: str, stderr: str) -> dict[str, Any]:
    """Extract the ``data`` value from ``opa eval --format json`` output."""
    try:
        payload = json.loads(stdout) if stdout.strip() else {}
    except json.JSONDecodeError:
        payload = {}

    if payload.get("errors"):
        messages = "; ".join(e.get("message", str(e)) for e in payload["errors"])
        raise EvaluationError(f"rego evaluation failed: {messages}")
    if returncode:
        raise EvaluationError(f"opa eval exited with {returncode}: {stderr.strip() or stdout.strip()}")

    for result in payload.get("result") or []:
        for expression in result.get("expressions") or []:
            value = expression.get("value")
            if isinstance(value, dict):
                return value
    return {}


def lookup_path(data: dict[str, Any], path: str) -> Any:
    """Walk a dotted path (``validate.msg``); None when undefined."""
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


class OpaProvider(BaseProvider):
    name = "opa"

    def __init__(
        self,
        spec: OpaSpec,
        common_config: Optional[dict] = None,
        engine: Optional[Any] = None,
    ):
        super().__init__(common_config)
        if not spec.rego.strip():
            raise SpecValidationError("opa-spec requires a rego policy")
        self.spec = spec
        self.output = spec.output or OpaOutput()
        self.engine = engine or OpaEngine(
            binary=self.common.get("binary", "opa"),
            timeout=self.common.get("timeout_seconds", 60),
        )

    async def evaluate(self, resources: dict[str, Any]) -> Result:
        if not resources:
            return Result()

        data = await self.engine.evaluate(self.spec.rego, resources)

        result = Result()
        decision = lookup_path(data, self.output.validation)
        if isinstance(decision, list) and decision and all(isinstance(d, bool) for d in decision):
            result.passing = sum(1 for d in decision if d)
            result.failing = len(decision) - result.passing
        elif decision is True:
            result.passing = 1
        else:
            # false, undefined and non-boolean values all fail
            result.failing = 1

        observations: dict[str, str] = {}
        for path in self.output.observations:
            value = lookup_path(data, path)
            if value is None:
                logger.debug("observation %s is undefined", path)
                continue
            observations[path] = value if isinstance(value, str) else json.dumps(value)
        result.observations = observations

        return result
