"""Kyverno provider: runs assertion-tree ValidatingPolicies over the resource map."""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..core.errors import SpecValidationError
from ..models.result import Result
from ..models.validation import KyvernoOutput, KyvernoSpec
from . import assertions
from .base import BaseProvider

logger = logging.getLogger(__name__)


def parse_rule_filter(entries: list[str]) -> set[tuple[str, str]]:
    """Parse ``policy.rule`` pairs. Malformed entries are dropped."""
    pairs: set[tuple[str, str]] = set()
    for entry in entries:
        parts = entry.split(".")
        if len(parts) != 2:
            logger.debug("Invalid policy.rule pair: %s", entry)
            continue
        pairs.add((parts[0].strip(), parts[1].strip()))
    return pairs


class KyvernoProvider(BaseProvider):
    name = "kyverno"

    def __init__(self, spec: KyvernoSpec, common_config: Optional[dict] = None):
        super().__init__(common_config)
        if spec.policy is None:
            raise SpecValidationError("kyverno-spec requires a policy")
        self.spec = spec
        self.output = spec.output or KyvernoOutput()
        self.validation_filter = parse_rule_filter(
            [p for p in self.output.validation.split(",") if p.strip()]
        )
        self.observation_filter = parse_rule_filter(self.output.observations)

    async def evaluate(self, resources: dict[str, Any]) -> Result:
        result = Result()
        if not resources:
            return result

        policies = assertions.parse_policies(self.spec.policy)
        responses = assertions.run(policies, resources)

        observations: dict[str, str] = {}
        for i, policy in enumerate(responses):
            for j, rule in enumerate(policy.rules):
                if rule.error is not None:
                    logger.debug("Error while evaluating rule %s.%s: %s", policy.policy, rule.rule, rule.error)
                    continue

                key = (policy.policy, rule.rule)
                if not self.output.validation or key in self.validation_filter:
                    if rule.violations:
                        result.failing += 1
                    else:
                        result.passing += 1

                if not self.output.observations or key in self.observation_filter:
                    if rule.violations:
                        observations[f"{policy.policy},{rule.rule}-{i},{j}"] = rule.violations[0].message

        result.observations = observations
        return result
