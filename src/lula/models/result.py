"""Evaluation result data models."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class Result(BaseModel):
    passing: int = 0
    failing: int = 0
    observations: dict[str, str] = {}

    @property
    def total(self) -> int:
        return self.passing + self.failing

    @property
    def succeeded(self) -> bool:
        """True when something was evaluated and nothing failed."""
        return self.failing == 0 and self.passing > 0


class ValidationRun(BaseModel):
    """The outcome of running one validation within a requirement store run."""

    identity: str
    name: str = ""
    uuid: str = ""
    result: Result = Result()
    evaluated: bool = False
    error: Optional[str] = None
    error_type: Optional[str] = None
    duration_seconds: float = 0

    @property
    def succeeded(self) -> bool:
        return self.evaluated and self.error is None and self.result.succeeded


class ValidationTestResult(BaseModel):
    """The outcome of one validation test: the provider re-run on changed resources."""

    name: str
    expected: str
    result: str = ""
    passed: bool = False
    error: Optional[str] = None
    resources_path: Optional[str] = None
