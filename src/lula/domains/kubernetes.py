"""Kubernetes domain: collects cluster resources for policy evaluation.

Resources are listed by group/version/resource through the dynamic client,
optionally reduced to a single named object and a decoded field. The domain
can also wait for a resource to become ready, and create ephemeral resources
that live only for the duration of one validation.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Optional

import httpx
import yaml

from ..core.durations import parse_duration
from ..core.errors import CollectionError, LulaError, SpecValidationError, WaitTimeoutError
from ..models.validation import CreateResource, FieldSpec, KubernetesSpec, ResourceRule, WaitSpec
from .base import BaseDomain, Resources
from .cluster import ClusterClient, is_rejection

logger = logging.getLogger(__name__)

DEFAULT_WAIT_TIMEOUT = "30s"

# Built-in resources that a named wait may address without a namespace
CLUSTER_SCOPED_RESOURCES = frozenset({
    "namespaces",
    "nodes",
    "persistentvolumes",
    "storageclasses",
    "clusterroles",
    "clusterrolebindings",
    "customresourcedefinitions",
    "priorityclasses",
    "ingressclasses",
    "runtimeclasses",
    "csidrivers",
    "csinodes",
    "volumeattachments",
    "apiservices",
    "mutatingwebhookconfigurations",
    "validatingwebhookconfigurations",
})


class KubernetesDomain(BaseDomain):
    name = "kubernetes"

    def __init__(
        self,
        spec: KubernetesSpec,
        common_config: Optional[dict] = None,
        cluster: Optional[Any] = None,
    ):
        super().__init__(common_config)
        validate_spec(spec)
        self.spec = spec
        self.cluster = cluster or ClusterClient(
            request_timeout=self.common.get("request_timeout_seconds", 30)
        )
        self.poll_interval = float(self.common.get("poll_interval_seconds", 2))
        self.default_wait_timeout = parse_duration(
            self.common.get("default_wait_timeout", DEFAULT_WAIT_TIMEOUT)
        )
        self.base_path = Path(self.common.get("_base_path") or ".")
        self.executable = bool(spec.create_resources)
        self._created: dict[str, list[dict]] = {}

    # ------------------------------------------------------------------
    # Collection
    # ------------------------------------------------------------------

    async def get_resources(self) -> Resources:
        """Wait (if configured), then collect every resource rule in order."""
        if self.spec.wait:
            await self.wait_for(self.spec.wait)

        collection: Resources = {}
        for name, objects in self._created.items():
            collection[name] = objects

        for resource in self.spec.resources:
            rule = resource.resource_rule
            items = await self.query(rule)
            if items:
                # Named rules resolve to a single object
                collection[resource.name] = items[0] if rule.name else items
        return collection

    async def query(self, rule: ResourceRule) -> list[dict]:
        """List a rule's resources across its namespaces."""
        namespaces = rule.namespaces or [""]
        collection: list[dict] = []

        for namespace in namespaces:
            try:
                items = await asyncio.to_thread(
                    self.cluster.list, rule.api_version, rule.resource, namespace
                )
            except LulaError:
                raise
            except Exception as e:
                raise CollectionError(
                    f"failed to list {rule.resource} in {namespace or 'all namespaces'}: {e}"
                ) from e

            if rule.name:
                item = reduce_by_name(rule.name, items)
                if rule.field and rule.field.jsonpath:
                    item = get_field_value(item, rule.field)
                collection.append(item)
            else:
                collection.extend(items)

        clean_resources(collection)
        return collection

    # ------------------------------------------------------------------
    # Wait
    # ------------------------------------------------------------------

    async def wait_for(self, wait: WaitSpec) -> None:
        """Poll until the wait target is ready or the timeout elapses."""
        timeout = parse_duration(wait.timeout) if wait.timeout else self.default_wait_timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        target = f"{wait.resource}/{wait.name}" if wait.name else wait.resource
        logger.debug("waiting up to %ss for %s to be ready", timeout, target)

        while True:
            try:
                if wait.name:
                    obj = await asyncio.to_thread(
                        self.cluster.get, wait.api_version, wait.resource, wait.name, wait.namespace
                    )
                    ready = obj is not None and is_ready(obj, wait.condition)
                else:
                    objs = await asyncio.to_thread(
                        self.cluster.list, wait.api_version, wait.resource, wait.namespace
                    )
                    ready = bool(objs) and all(is_ready(o, wait.condition) for o in objs)
            except LulaError:
                raise
            except Exception as e:
                raise CollectionError(f"failed waiting for {target}: {e}") from e

            if ready:
                return

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise WaitTimeoutError(f"timed out after {timeout:g}s waiting for {target}")
            await asyncio.sleep(min(self.poll_interval, remaining))

    async def _wait_created(self, objects: list[dict]) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.default_wait_timeout
        pending = list(objects)

        while pending:
            still_pending = []
            for obj in pending:
                current = await asyncio.to_thread(self.cluster.get_object, obj)
                if current is None or not is_ready(current):
                    still_pending.append(obj)
            pending = still_pending
            if not pending:
                return
            remaining = deadline - loop.time()
            if remaining <= 0:
                names = ", ".join(_describe(o) for o in pending)
                raise WaitTimeoutError(f"timed out waiting for created resources: {names}")
            await asyncio.sleep(min(self.poll_interval, remaining))

    # ------------------------------------------------------------------
    # Ephemeral resources
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def prepare(self) -> AsyncIterator[None]:
        """Create ephemeral resources for the duration of the block.

        Teardown runs on every exit path; its failures are logged only.
        """
        if not self.spec.create_resources:
            yield
            return

        created: list[dict] = []
        created_namespaces: list[str] = []
        by_name: dict[str, list[dict]] = {}
        try:
            for create in self.spec.create_resources:
                manifests = await self._load_manifests(create)
                if create.namespace:
                    await self._ensure_namespace(create.namespace, created_namespaces)
                by_name[create.name] = []
                for obj in manifests:
                    if create.namespace:
                        obj.setdefault("metadata", {}).setdefault("namespace", create.namespace)
                    try:
                        result = await asyncio.to_thread(self.cluster.create, obj, create.namespace)
                    except Exception as e:
                        if is_rejection(e):
                            logger.warning("%s was not created: %s", _describe(obj), getattr(e, "reason", e))
                            continue
                        raise CollectionError(f"failed to create {_describe(obj)}: {e}") from e
                    created.append(result)
                    by_name[create.name].append(result)

            await self._wait_created(created)

            for name, objects in by_name.items():
                snapshots = []
                for obj in objects:
                    current = await asyncio.to_thread(self.cluster.get_object, obj)
                    if current is not None:
                        snapshots.append(current)
                clean_resources(snapshots)
                self._created[name] = snapshots

            yield
        finally:
            self._created = {}
            await self._teardown(created, created_namespaces)

    async def _load_manifests(self, create: CreateResource) -> list[dict]:
        if create.manifest:
            text = create.manifest
        elif create.file.startswith(("http://", "https://")):
            try:
                async with httpx.AsyncClient(timeout=30) as client:
                    response = await client.get(create.file)
                    response.raise_for_status()
                    text = response.text
            except httpx.HTTPError as e:
                raise CollectionError(f"failed to fetch manifest {create.file}: {e}") from e
        else:
            path = Path(create.file.removeprefix("file://"))
            if not path.is_absolute():
                path = self.base_path / path
            try:
                text = path.read_text(encoding="utf-8")
            except OSError as e:
                raise CollectionError(f"failed to read manifest {path}: {e}") from e

        try:
            return [doc for doc in yaml.safe_load_all(text) if isinstance(doc, dict)]
        except yaml.YAMLError as e:
            raise CollectionError(f"invalid manifest for {create.name}: {e}") from e

    async def _ensure_namespace(self, namespace: str, created_namespaces: list[str]) -> None:
        if namespace in created_namespaces:
            return
        existing = await asyncio.to_thread(self.cluster.get, "v1", "namespaces", namespace)
        if existing is not None:
            return
        body = {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": namespace}}
        try:
            await asyncio.to_thread(self.cluster.create, body, "")
        except Exception as e:
            raise CollectionError(f"failed to create namespace {namespace}: {e}") from e
        created_namespaces.append(namespace)

    async def _teardown(self, created: list[dict], namespaces: list[str]) -> None:
        for obj in reversed(created):
            try:
                await asyncio.to_thread(self.cluster.delete, obj)
            except Exception as e:
                logger.warning("failed to delete %s: %s", _describe(obj), e)
        for namespace in reversed(namespaces):
            body = {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": namespace}}
            try:
                await asyncio.to_thread(self.cluster.delete, body)
            except Exception as e:
                logger.warning("failed to delete namespace %s: %s", namespace, e)


def validate_spec(spec: KubernetesSpec) -> None:
    """Validate a kubernetes spec, raising SpecValidationError with every problem found."""
    errors: list[str] = []

    if not spec.resources and not spec.create_resources:
        errors.append("at least one resource or create-resource is required")

    for i, resource in enumerate(spec.resources):
        label = resource.name or f"resources[{i}]"
        if not resource.name:
            errors.append(f"{label}: name is required")
        rule = resource.resource_rule
        if rule is None:
            errors.append(f"{label}: resource-rule is required")
            continue
        if not rule.version or not rule.resource:
            errors.append(f"{label}: resource-rule requires version and resource")
        if rule.name and len(rule.namespaces) > 1:
            errors.append(f"{label}: a named resource-rule supports at most one namespace")
        if rule.field and not rule.name:
            errors.append(f"{label}: field extraction requires a named resource-rule")

    if spec.wait:
        if not spec.wait.resource:
            errors.append("wait: resource is required")
        elif spec.wait.name and not spec.wait.namespace \
                and spec.wait.resource.lower() not in CLUSTER_SCOPED_RESOURCES:
            errors.append(f"wait: namespace is required to wait for {spec.wait.resource}/{spec.wait.name}")
        if spec.wait.timeout:
            try:
                parse_duration(spec.wait.timeout)
            except ValueError as e:
                errors.append(f"wait: {e}")

    for i, create in enumerate(spec.create_resources):
        label = create.name or f"create-resources[{i}]"
        if not create.name:
            errors.append(f"{label}: name is required")
        if bool(create.manifest) == bool(create.file):
            errors.append(f"{label}: exactly one of manifest or file is required")

    if errors:
        raise SpecValidationError("invalid kubernetes spec: " + "; ".join(errors))


def reduce_by_name(name: str, items: list[dict]) -> dict:
    """Return the first item whose metadata.name matches."""
    for item in items:
        if (item.get("metadata") or {}).get("name") == name:
            return item
    raise CollectionError(f"no resource found with name {name}")


def get_field_value(item: dict, field: FieldSpec) -> dict:
    """Extract and decode a string field from a resource.

    The path is walked one key at a time; when a key is missing, the rest of
    the path is tried as a single key so that dotted keys like
    ``.data.app-config.yaml`` resolve.
    """
    parts = field.jsonpath.split(".")[1:]
    current: Any = item
    value: Optional[str] = None

    for i, part in enumerate(parts):
        if isinstance(current, dict) and isinstance(current.get(part), dict):
            current = current[part]
            continue
        remainder = ".".join(parts[i:])
        candidate = current.get(remainder) if isinstance(current, dict) else None
        if isinstance(candidate, str):
            value = candidate
            break
        raise CollectionError(f"path not found: {'.'.join(parts[:i + 1])}")

    if value is None:
        raise CollectionError(f"field {field.jsonpath} is not a string value")

    if field.base64:
        try:
            value = base64.b64decode(value, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise CollectionError(f"failed to base64 decode {field.jsonpath}: {e}") from e

    try:
        if field.type == "json":
            data = json.loads(value)
        else:
            data = yaml.safe_load(value)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise CollectionError(f"failed to decode {field.type} field {field.jsonpath}: {e}") from e

    if not isinstance(data, dict):
        raise CollectionError(f"expected {field.type.upper()} to decode to a map for field {field.jsonpath}")
    return data


def clean_resources(resources: list[dict]) -> None:
    """Remove metadata.managedFields from each item to reduce noise."""
    for item in resources:
        metadata = item.get("metadata")
        if isinstance(metadata, dict):
            metadata.pop("managedFields", None)


def _condition_true(obj: dict, condition_type: str) -> bool:
    for condition in (obj.get("status") or {}).get("conditions") or []:
        if condition.get("type") == condition_type:
            return str(condition.get("status")) == "True"
    return False


def is_ready(obj: dict, condition: str = "") -> bool:
    """Kind-aware readiness check.

    With an explicit ``condition``, that status condition must be True.
    """
    if condition:
        return _condition_true(obj, condition)

    kind = obj.get("kind", "")
    status = obj.get("status") or {}
    spec = obj.get("spec") or {}

    if kind == "Pod":
        # a completed pod drops Ready but has run to success
        return status.get("phase") == "Succeeded" or _condition_true(obj, "Ready")
    if kind in ("Deployment", "StatefulSet", "ReplicaSet"):
        desired = spec.get("replicas", 1)
        return (status.get("readyReplicas") or 0) >= desired
    if kind == "DaemonSet":
        return (status.get("numberReady") or 0) >= (status.get("desiredNumberScheduled") or 0) \
            and status.get("desiredNumberScheduled") is not None
    if kind == "Job":
        return (status.get("succeeded") or 0) > 0 or _condition_true(obj, "Complete")
    return True


def _describe(obj: dict) -> str:
    metadata = obj.get("metadata") or {}
    namespace = metadata.get("namespace")
    name = metadata.get("name", "?")
    return f"{obj.get('kind', '?')} {namespace + '/' if namespace else ''}{name}"
