"""Validation document data models.

Validation documents are authored in YAML with kebab-case keys, e.g.::

    metadata:
      name: Validate pods with label foo=bar
      uuid: 6c00ae8d-7187-42ab-8d89-f383447a0824
    domain:
      type: kubernetes
      kubernetes-spec:
        resources:
          - name: podsvt
            resource-rule:
              version: v1
              resource: pods
              namespaces: [validation-test]
    provider:
      type: opa
      opa-spec:
        rego: |
          package validate
          ...
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, Optional

from pydantic import BaseModel, ConfigDict

from .result import Result

if TYPE_CHECKING:
    from ..domains.base import Domain
    from ..providers.base import Provider


def _kebab(name: str) -> str:
    return name.replace("_", "-")


class SpecModel(BaseModel):
    model_config = ConfigDict(alias_generator=_kebab, populate_by_name=True)


# ---------------------------------------------------------------------------
# Kubernetes domain
# ---------------------------------------------------------------------------


class FieldSpec(SpecModel):
    jsonpath: str
    type: Literal["json", "yaml"] = "yaml"
    base64: bool = False


class ResourceRule(SpecModel):
    name: str = ""
    group: str = ""
    version: str = ""
    resource: str = ""
    namespaces: list[str] = []
    field: Optional[FieldSpec] = None

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version


class ResourceSpec(SpecModel):
    name: str = ""
    resource_rule: Optional[ResourceRule] = None


class WaitSpec(SpecModel):
    group: str = ""
    version: str = "v1"
    resource: str = ""
    name: str = ""
    namespace: str = ""
    condition: str = ""
    timeout: str = ""

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version


class CreateResource(SpecModel):
    name: str = ""
    namespace: str = ""
    manifest: str = ""
    file: str = ""


class KubernetesSpec(SpecModel):
    resources: list[ResourceSpec] = []
    wait: Optional[WaitSpec] = None
    create_resources: list[CreateResource] = []


# ---------------------------------------------------------------------------
# API domain
# ---------------------------------------------------------------------------


class ApiOptions(SpecModel):
    timeout: str = ""
    proxy: str = ""
    headers: dict[str, str] = {}


class ApiRequest(SpecModel):
    name: str = ""
    url: str = ""
    method: str = "GET"
    params: dict[str, str] = {}
    body: str = ""
    executable: bool = False
    options: Optional[ApiOptions] = None


class ApiSpec(SpecModel):
    requests: list[ApiRequest] = []
    options: Optional[ApiOptions] = None


class DomainSpec(SpecModel):
    type: str
    kubernetes_spec: Optional[KubernetesSpec] = None
    api_spec: Optional[ApiSpec] = None


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class OpaOutput(SpecModel):
    validation: str = "validate.validate"
    observations: list[str] = []


class OpaSpec(SpecModel):
    rego: str = ""
    output: Optional[OpaOutput] = None


class KyvernoOutput(SpecModel):
    validation: str = ""
    observations: list[str] = []


class KyvernoSpec(SpecModel):
    policy: Any = None
    output: Optional[KyvernoOutput] = None


class ProviderSpec(SpecModel):
    type: str
    opa_spec: Optional[OpaSpec] = None
    kyverno_spec: Optional[KyvernoSpec] = None


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationMetadata(SpecModel):
    name: str = ""
    uuid: str = ""


class ValidationTestChange(SpecModel):
    """One edit applied to the collected resources before re-evaluating.

    ``path`` is dotted (``podsvt.[metadata.name=demo].metadata.labels``);
    ``[key=value]`` selects the first list item whose field matches and
    ``[N]`` selects by index.
    """

    path: str
    type: Literal["update", "add", "delete"] = "update"
    value: Any = None
    value_map: Optional[dict[str, Any]] = None


class ValidationTest(SpecModel):
    name: str
    changes: list[ValidationTestChange] = []
    expected_result: Literal["satisfied", "not-satisfied"] = "satisfied"


class ValidationDocument(SpecModel):
    lula_version: str = ""
    metadata: ValidationMetadata = ValidationMetadata()
    domain: DomainSpec
    provider: ProviderSpec
    tests: list[ValidationTest] = []


@dataclass(frozen=True)
class Validation:
    """A resolved validation: a constructed domain/provider pair plus metadata.

    ``preset`` carries a result that was decided at resolution time (for
    example, a version constraint the running engine does not satisfy); such
    a validation is never executed and has no domain or provider.
    """

    identity: str
    document: ValidationDocument
    domain: Optional["Domain"]
    provider: Optional["Provider"]
    preset: Optional[Result] = None

    @property
    def name(self) -> str:
        return self.document.metadata.name or self.identity

    @property
    def uuid(self) -> str:
        return self.document.metadata.uuid
