"""Domain abstraction: pluggable resource collectors."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Protocol, runtime_checkable

from ..core.errors import SpecValidationError, UnknownDomainError
from ..models.validation import DomainSpec

Resources = dict[str, Any]


@runtime_checkable
class Domain(Protocol):
    """Protocol that all domains must implement."""

    name: str

    async def get_resources(self) -> Resources: ...

    def is_executable(self) -> bool: ...

    def prepare(self): ...


class BaseDomain:
    """Base class with the no-op preparation step and the executable flag."""

    name: str = "base"

    def __init__(self, common_config: Optional[dict] = None):
        self.common = common_config or {}
        self.executable = False

    async def get_resources(self) -> Resources:
        raise NotImplementedError

    def is_executable(self) -> bool:
        return self.executable

    @asynccontextmanager
    async def prepare(self) -> AsyncIterator[None]:
        """Scope in which collection and evaluation run.

        Domains that create side effects acquire them on entry and release
        them on exit.
        """
        yield


def get_domain(
    spec: DomainSpec,
    config: Optional[dict] = None,
    cluster: Any = None,
    transport: Any = None,
) -> BaseDomain:
    """Factory function to create the configured domain.

    ``cluster`` and ``transport`` let callers supply the Kubernetes client and
    the httpx transport (tests pass fakes here).
    """
    config = config or {}
    domain_type = (spec.type or "").lower()

    if domain_type == "kubernetes":
        if spec.kubernetes_spec is None:
            raise SpecValidationError("kubernetes domain requires kubernetes-spec")
        from .kubernetes import KubernetesDomain
        return KubernetesDomain(spec.kubernetes_spec, config.get("kubernetes", {}), cluster=cluster)
    elif domain_type == "api":
        if spec.api_spec is None:
            raise SpecValidationError("api domain requires api-spec")
        from .api import ApiDomain
        return ApiDomain(spec.api_spec, config.get("api", {}), transport=transport)
    else:
        raise UnknownDomainError(f"Unknown domain: {spec.type}")
