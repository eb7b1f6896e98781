"""Thin synchronous wrapper over the Kubernetes dynamic client.

Connects lazily with the active kube context (the same way kubectl does when
no flags are passed), falling back to in-cluster configuration.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from kubernetes import config as kube_config
from kubernetes import dynamic
from kubernetes.client import ApiClient
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic.exceptions import NotFoundError, ResourceNotFoundError

from ..core.errors import CollectionError

logger = logging.getLogger(__name__)


class ClusterClient:
    """List/get/create/delete arbitrary resources by api version and resource or kind."""

    def __init__(self, request_timeout: float = 30, client: Optional[dynamic.DynamicClient] = None):
        self.request_timeout = request_timeout
        self._client = client

    @property
    def client(self) -> dynamic.DynamicClient:
        if self._client is None:
            self._client = connect()
        return self._client

    def _resource(self, api_version: str, resource: str = "", kind: str = ""):
        try:
            if kind:
                return self.client.resources.get(api_version=api_version, kind=kind)
            return self.client.resources.get(api_version=api_version, name=resource)
        except ResourceNotFoundError as e:
            raise CollectionError(
                f"resource {resource or kind} not found in {api_version}"
            ) from e

    def list(self, api_version: str, resource: str, namespace: str = "") -> list[dict]:
        res = self._resource(api_version, resource=resource)
        kwargs: dict[str, Any] = {"_request_timeout": self.request_timeout}
        if namespace and res.namespaced:
            kwargs["namespace"] = namespace
        listing = res.get(**kwargs).to_dict()
        return listing.get("items") or []

    def get(self, api_version: str, resource: str, name: str, namespace: str = "") -> Optional[dict]:
        res = self._resource(api_version, resource=resource)
        kwargs: dict[str, Any] = {"name": name, "_request_timeout": self.request_timeout}
        if namespace and res.namespaced:
            kwargs["namespace"] = namespace
        try:
            return res.get(**kwargs).to_dict()
        except NotFoundError:
            return None

    def get_object(self, obj: dict) -> Optional[dict]:
        """Re-read an object previously created from a manifest."""
        res = self._resource(obj.get("apiVersion", "v1"), kind=obj.get("kind", ""))
        metadata = obj.get("metadata") or {}
        kwargs: dict[str, Any] = {"name": metadata.get("name"), "_request_timeout": self.request_timeout}
        if res.namespaced and metadata.get("namespace"):
            kwargs["namespace"] = metadata["namespace"]
        try:
            return res.get(**kwargs).to_dict()
        except NotFoundError:
            return None

    def create(self, obj: dict, namespace: str = "") -> dict:
        res = self._resource(obj.get("apiVersion", "v1"), kind=obj.get("kind", ""))
        kwargs: dict[str, Any] = {"body": obj, "_request_timeout": self.request_timeout}
        if res.namespaced:
            kwargs["namespace"] = namespace or (obj.get("metadata") or {}).get("namespace") or "default"
        return res.create(**kwargs).to_dict()

    def delete(self, obj: dict) -> None:
        res = self._resource(obj.get("apiVersion", "v1"), kind=obj.get("kind", ""))
        metadata = obj.get("metadata") or {}
        kwargs: dict[str, Any] = {"name": metadata.get("name"), "_request_timeout": self.request_timeout}
        if res.namespaced and metadata.get("namespace"):
            kwargs["namespace"] = metadata["namespace"]
        try:
            res.delete(**kwargs)
        except NotFoundError:
            logger.debug("%s %s already gone", obj.get("kind"), metadata.get("name"))


def is_rejection(error: Exception) -> bool:
    """True when the API server refused an object (admission, validation, conflict)."""
    return isinstance(error, ApiException) and error.status is not None and 400 <= error.status < 500


def connect() -> dynamic.DynamicClient:
    try:
        kube_config.load_kube_config()
    except kube_config.ConfigException:
        kube_config.load_incluster_config()
    return dynamic.DynamicClient(ApiClient())
