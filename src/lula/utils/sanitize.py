"""Error message sanitization to prevent credential leakage."""

from __future__ import annotations

import os
import re

import httpx


def sanitize_error(message: str) -> str:
    """Sanitize error messages to prevent token, URL credential and path leakage."""
    if not message:
        return message

    sanitized = message
    # Redact bearer tokens and auth headers
    sanitized = re.sub(r"Bearer\s+\S+", "Bearer [REDACTED]", sanitized)
    sanitized = re.sub(r"Authorization:\s*\S+", "Authorization: [REDACTED]", sanitized)
    sanitized = re.sub(r"x-api-key:\s*\S+", "x-api-key: [REDACTED]", sanitized, flags=re.IGNORECASE)
    # Redact user:password@ in URLs
    sanitized = re.sub(r"(\w+://)[^/\s:@]+:[^/\s@]+@", r"\1[REDACTED]@", sanitized)

    # Redact user home paths
    home = os.environ.get("USERPROFILE") or os.environ.get("HOME") or ""
    if home and home != "/":
        sanitized = sanitized.replace(home, "[USER_HOME]")

    return sanitized


def redact_url(url: httpx.URL | str) -> str:
    """Render a URL for logs with any password replaced."""
    parsed = httpx.URL(str(url))
    if parsed.password:
        parsed = parsed.copy_with(password="xxxxx")
    return str(parsed)
