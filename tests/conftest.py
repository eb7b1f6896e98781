"""Shared fixtures for Lula tests."""

from __future__ import annotations

import copy
from typing import Optional

import httpx
import pytest
import yaml
from kubernetes.client.exceptions import ApiException

KINDS = {
    "Pod": ("v1", "pods"),
    "Namespace": ("v1", "namespaces"),
    "ConfigMap": ("v1", "configmaps"),
    "Secret": ("v1", "secrets"),
    "Deployment": ("apps/v1", "deployments"),
}


class FakeCluster:
    """In-memory stand-in for ClusterClient."""

    def __init__(self):
        self.objects: dict[tuple[str, str], list[dict]] = {}
        self.created: list[dict] = []
        self.deleted: list[str] = []
        self.reject: set[str] = set()
        self.list_calls = 0

    def add(self, obj: dict) -> dict:
        api_version, resource = KINDS[obj["kind"]]
        self.objects.setdefault((api_version, resource), []).append(obj)
        return obj

    def add_pod(self, name: str, namespace: str = "validation-test", labels: Optional[dict] = None, ready: bool = True) -> dict:
        return self.add({
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": {
                "name": name,
                "namespace": namespace,
                "labels": labels or {},
                "managedFields": [{"manager": "kubectl"}],
            },
            "status": {
                "phase": "Running",
                "conditions": [{"type": "Ready", "status": "True" if ready else "False"}],
            },
        })

    def _find(self, api_version: str, resource: str, name: str, namespace: str = "") -> Optional[dict]:
        for obj in self.objects.get((api_version, resource), []):
            metadata = obj.get("metadata") or {}
            if metadata.get("name") == name and (not namespace or metadata.get("namespace") == namespace):
                return obj
        return None

    def list(self, api_version: str, resource: str, namespace: str = "") -> list[dict]:
        self.list_calls += 1
        items = self.objects.get((api_version, resource), [])
        if namespace:
            items = [o for o in items if (o.get("metadata") or {}).get("namespace") == namespace]
        return copy.deepcopy(items)

    def get(self, api_version: str, resource: str, name: str, namespace: str = "") -> Optional[dict]:
        found = self._find(api_version, resource, name, namespace)
        return copy.deepcopy(found) if found else None

    def get_object(self, obj: dict) -> Optional[dict]:
        api_version, resource = KINDS[obj["kind"]]
        metadata = obj.get("metadata") or {}
        return self.get(api_version, resource, metadata.get("name"), metadata.get("namespace", ""))

    def create(self, obj: dict, namespace: str = "") -> dict:
        name = obj["metadata"]["name"]
        if name in self.reject:
            raise ApiException(status=403, reason="admission webhook denied the request")
        created = copy.deepcopy(obj)
        if namespace and created["kind"] != "Namespace":
            created["metadata"]["namespace"] = namespace
        if created["kind"] == "Pod":
            created.setdefault("status", {"phase": "Running", "conditions": [{"type": "Ready", "status": "True"}]})
        self.add(created)
        self.created.append(created)
        return copy.deepcopy(created)

    def delete(self, obj: dict) -> None:
        api_version, resource = KINDS[obj["kind"]]
        metadata = obj.get("metadata") or {}
        found = self._find(api_version, resource, metadata.get("name"), metadata.get("namespace", ""))
        if found is not None:
            self.objects[(api_version, resource)].remove(found)
        self.deleted.append(f"{obj['kind']}/{metadata.get('name')}")


@pytest.fixture
def fake_cluster() -> FakeCluster:
    return FakeCluster()


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, routes: dict[str, tuple[int, dict]]):
        self.requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            route = routes.get(request.url.path)
            if route is None:
                return httpx.Response(404, json={"error": "not found"})
            status, kwargs = route
            return httpx.Response(status, **kwargs)

        super().__init__(handler)


@pytest.fixture
def api_transport() -> RecordingTransport:
    """Serves /healthy (healthy), /unhealthy and /text."""
    return RecordingTransport({
        "/healthy": (200, {"json": {"healthy": True}}),
        "/unhealthy": (200, {"json": {"healthy": False}}),
        "/text": (200, {"text": "not json"}),
    })


@pytest.fixture
def transport_factory():
    """Build a RecordingTransport from ``{path: (status, response kwargs)}``."""
    return RecordingTransport


HEALTH_POLICY = {
    "apiVersion": "json.kyverno.io/v1alpha1",
    "kind": "ValidatingPolicy",
    "metadata": {"name": "health"},
    "spec": {
        "rules": [{
            "name": "healthy",
            "assert": {"all": [{"check": {"healthcheck": {"response": {"healthy": True}}}}]},
        }],
    },
}


def api_validation(name: str, uuid: str, path: str, executable: bool = False) -> dict:
    return {
        "lula-version": "",
        "metadata": {"name": name, "uuid": uuid},
        "domain": {
            "type": "api",
            "api-spec": {
                "requests": [{
                    "name": "healthcheck",
                    "url": f"https://service.local{path}",
                    "executable": executable,
                }],
            },
        },
        "provider": {"type": "kyverno", "kyverno-spec": {"policy": HEALTH_POLICY}},
    }


@pytest.fixture
def validation_factory():
    """Build an api/kyverno validation document checking a health endpoint."""
    return api_validation


@pytest.fixture
def component_definition() -> dict:
    """Component definition with a healthy, an unhealthy and an unlinked requirement."""
    healthy = api_validation("Service is healthy", "11111111-0000-4000-8000-000000000001", "/healthy")
    unhealthy = api_validation("Service is unhealthy", "11111111-0000-4000-8000-000000000002", "/unhealthy")
    return {
        "component-definition": {
            "uuid": "c0000000-0000-4000-8000-000000000000",
            "metadata": {"title": "Test Component", "version": "0.0.1", "oscal-version": "1.1.2"},
            "components": [{
                "uuid": "c0000000-0000-4000-8000-000000000001",
                "type": "software",
                "title": "service",
                "control-implementations": [{
                    "uuid": "d0000000-0000-4000-8000-000000000001",
                    "source": "https://example.com/catalog.json",
                    "implemented-requirements": [
                        {
                            "uuid": "a0000000-0000-4000-8000-000000000001",
                            "control-id": "ac-1",
                            "links": [{"href": "#11111111-0000-4000-8000-000000000001", "rel": "lula"}],
                            "statements": [{"statement-id": "ac-1_smt", "uuid": "e0000000-0000-4000-8000-000000000001"}],
                        },
                        {
                            "uuid": "a0000000-0000-4000-8000-000000000002",
                            "control-id": "ac-2",
                            "links": [{"href": "#11111111-0000-4000-8000-000000000002", "rel": "lula"}],
                        },
                        {
                            "uuid": "a0000000-0000-4000-8000-000000000003",
                            "control-id": "ac-3",
                            "links": [{"href": "https://example.com/docs", "rel": "reference"}],
                        },
                    ],
                }],
            }],
            "back-matter": {
                "resources": [
                    {
                        "uuid": healthy["metadata"]["uuid"],
                        "title": "Lula Validation",
                        "description": yaml.safe_dump(healthy, sort_keys=False),
                    },
                    {
                        "uuid": unhealthy["metadata"]["uuid"],
                        "title": "Lula Validation",
                        "description": yaml.safe_dump(unhealthy, sort_keys=False),
                    },
                ],
            },
        }
    }
