"""Checksum suffixes on validation references (``<href>@<hex digest>``)."""

from __future__ import annotations

import hashlib
import re
from typing import Optional

from .errors import ChecksumError, UnsupportedChecksumError

ALGORITHMS_BY_LENGTH = {
    32: "md5",
    40: "sha1",
    64: "sha256",
    128: "sha512",
}

_HEX = re.compile(r"^[0-9a-fA-F]+$")


def split_checksum(href: str) -> tuple[str, Optional[str]]:
    """Split ``href@checksum`` into its parts.

    Only a trailing hex run counts as a checksum, so URL userinfo such as
    ``https://user@host/x.yaml`` is left alone.
    """
    base, sep, tail = href.rpartition("@")
    if sep and base and _HEX.match(tail):
        return base, tail.lower()
    return href, None


def compute_digest(content: bytes, algorithm: str) -> str:
    return hashlib.new(algorithm, content).hexdigest()


def verify_checksum(link: str, content: bytes, checksum: str) -> None:
    """Raise unless ``content`` hashes to ``checksum``.

    The algorithm is selected by the checksum length.
    """
    algorithm = ALGORITHMS_BY_LENGTH.get(len(checksum))
    if algorithm is None:
        raise UnsupportedChecksumError(
            link, f"unsupported checksum length {len(checksum)}"
        )
    actual = compute_digest(content, algorithm)
    if actual != checksum.lower():
        raise ChecksumError(link, f"{algorithm} checksum mismatch")
