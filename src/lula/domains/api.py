"""API domain: collects resources by issuing configured HTTP requests."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from ..core.durations import parse_duration
from ..core.errors import CollectionError, SpecValidationError
from ..models.validation import ApiOptions, ApiSpec
from ..utils.sanitize import redact_url, sanitize_error
from .base import BaseDomain, Resources

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = "30s"
ALLOWED_METHODS = {"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"}


@dataclass
class RequestOptions:
    """Parsed request options."""

    timeout: float
    headers: dict[str, str] = field(default_factory=dict)
    proxy: Optional[str] = None


@dataclass
class PreparedRequest:
    """A validated request ready to be sent."""

    name: str
    url: httpx.URL
    method: str = "GET"
    params: dict[str, str] = field(default_factory=dict)
    body: str = ""
    executable: bool = False
    options: Optional[RequestOptions] = None


class ApiDomain(BaseDomain):
    name = "api"

    def __init__(
        self,
        spec: ApiSpec,
        common_config: Optional[dict] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(common_config)
        default_timeout = parse_duration(self.common.get("default_timeout", DEFAULT_TIMEOUT))
        self.defaults, self.requests = validate_and_mutate_spec(spec, default_timeout)
        # Executable if *any* request is flagged executable
        self.executable = any(r.executable for r in self.requests)
        self.transport = transport

    async def get_resources(self) -> Resources:
        """Send each request in order; any failure aborts the collection."""
        collection: Resources = {}
        for request in self.requests:
            # Request-level options replace the defaults wholesale
            opts = request.options or self.defaults
            collection[request.name] = await self._send(request, opts)
        return collection

    async def _send(self, request: PreparedRequest, opts: RequestOptions) -> dict[str, Any]:
        logger.debug("%s %s", request.method, redact_url(request.url))
        try:
            async with httpx.AsyncClient(
                timeout=opts.timeout,
                headers=opts.headers,
                proxy=opts.proxy,
                transport=self.transport,
            ) as client:
                response = await client.request(
                    request.method,
                    request.url,
                    params=request.params or None,
                    content=request.body or None,
                )
        except httpx.HTTPError as e:
            raise CollectionError(
                sanitize_error(f"request {request.name} to {redact_url(request.url)} failed: {e}")
            ) from e

        if not response.is_success:
            raise CollectionError(
                f"request {request.name} to {redact_url(request.url)} "
                f"returned status {response.status_code}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise CollectionError(f"request {request.name}: response is not valid JSON: {e}") from e

        return {"status": response.status_code, "response": body}


def validate_and_mutate_options(opts: ApiOptions, default_timeout: float) -> tuple[RequestOptions, list[str]]:
    """Parse timeout and proxy. Returns the parsed options and any errors."""
    errors: list[str] = []
    timeout = default_timeout

    if opts.timeout:
        try:
            timeout = parse_duration(opts.timeout)
        except ValueError as e:
            errors.append(f"invalid timeout: {e}")

    proxy: Optional[str] = None
    if opts.proxy:
        try:
            proxy_url = httpx.URL(opts.proxy)
            if not proxy_url.scheme or not proxy_url.host:
                raise httpx.InvalidURL("proxy requires a scheme and host")
            proxy = str(proxy_url)
        except httpx.InvalidURL as e:
            errors.append(f"invalid proxy {opts.proxy!r}: {e}")

    return RequestOptions(timeout=timeout, headers=dict(opts.headers), proxy=proxy), errors


def validate_and_mutate_spec(
    spec: Optional[ApiSpec],
    default_timeout: float,
) -> tuple[RequestOptions, list[PreparedRequest]]:
    """Validate an api spec and parse URLs/options, raising with every problem found."""
    if spec is None:
        raise SpecValidationError("api spec is nil")

    errors: list[str] = []

    if spec.options is None:
        defaults = RequestOptions(timeout=default_timeout)
    else:
        defaults, opt_errors = validate_and_mutate_options(spec.options, default_timeout)
        errors.extend(f"options: {e}" for e in opt_errors)

    if not spec.requests:
        errors.append("some requests must be specified")

    prepared: list[PreparedRequest] = []
    for i, request in enumerate(spec.requests):
        label = request.name or f"requests[{i}]"
        if not request.name:
            errors.append(f"{label}: name must be non-empty")
        if not request.url:
            errors.append(f"{label}: url must be non-empty")
            continue

        method = (request.method or "GET").upper()
        if method not in ALLOWED_METHODS:
            errors.append(f"{label}: unsupported method {request.method}")

        try:
            url = httpx.URL(request.url)
        except httpx.InvalidURL as e:
            errors.append(f"{label}: invalid url: {e}")
            continue

        options = None
        if request.options is not None:
            options, opt_errors = validate_and_mutate_options(request.options, default_timeout)
            errors.extend(f"{label}: {e}" for e in opt_errors)

        prepared.append(PreparedRequest(
            name=request.name,
            url=url,
            method=method,
            params=dict(request.params),
            body=request.body,
            executable=request.executable,
            options=options,
        ))

    if errors:
        raise SpecValidationError("invalid api spec: " + "; ".join(errors))

    return defaults, prepared
