"""Requirement data models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel

from .result import Result, ValidationRun


class RequirementStatus(str, Enum):
    SATISFIED = "satisfied"
    NOT_SATISFIED = "not-satisfied"


class Aggregation(str, Enum):
    ALL = "all"
    ANY = "any"


class RemarkTarget(str, Enum):
    STATEMENT = "statement"
    REQUIREMENT = "requirement"
    BOTH = "both"


class Requirement(BaseModel):
    """An implemented-requirement taken from a control implementation."""

    uuid: str
    control_id: str
    links: list[str] = []
    control_implementation_uuid: str = ""


class RequirementResult(BaseModel):
    uuid: str
    control_id: str
    status: RequirementStatus = RequirementStatus.NOT_SATISFIED
    validations: list[ValidationRun] = []
    remarks: str = ""

    @property
    def result(self) -> Result:
        """Combined counts and observations across every validation."""
        combined = Result()
        observations: dict[str, str] = {}
        for run in self.validations:
            combined.passing += run.result.passing
            combined.failing += run.result.failing
            observations.update(run.result.observations)
        combined.observations = observations
        return combined
