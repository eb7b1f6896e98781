"""Provider abstraction: pluggable policy evaluators."""

from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from ..core.errors import SpecValidationError, UnknownProviderError
from ..models.result import Result
from ..models.validation import ProviderSpec


@runtime_checkable
class Provider(Protocol):
    """Protocol that all providers must implement."""

    name: str

    async def evaluate(self, resources: dict[str, Any]) -> Result: ...


class BaseProvider:
    """Base class with shared config handling."""

    name: str = "base"

    def __init__(self, common_config: Optional[dict] = None):
        self.common = common_config or {}

    async def evaluate(self, resources: dict[str, Any]) -> Result:
        raise NotImplementedError


def get_provider(spec: ProviderSpec, config: Optional[dict] = None) -> BaseProvider:
    """Factory function to create the configured provider."""
    config = config or {}
    provider_type = (spec.type or "").lower()

    if provider_type == "opa":
        if spec.opa_spec is None:
            raise SpecValidationError("opa provider requires opa-spec")
        from .opa import OpaProvider
        return OpaProvider(spec.opa_spec, config.get("opa", {}))
    elif provider_type == "kyverno":
        if spec.kyverno_spec is None:
            raise SpecValidationError("kyverno provider requires kyverno-spec")
        from .kyverno import KyvernoProvider
        return KyvernoProvider(spec.kyverno_spec, config.get("kyverno", {}))
    else:
        raise UnknownProviderError(f"Unknown provider: {spec.type}")
