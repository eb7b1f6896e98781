"""Reading and writing OSCAL documents as JSON or YAML."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import yaml

from ..core.errors import MergeError
from .merge import MODEL_KINDS, merge_oscal_models

logger = logging.getLogger(__name__)

DEFAULT_FILENAME = "oscal.yaml"
SUPPORTED_EXTENSIONS = (".json", ".yaml", ".yml")


def parse_oscal(data: bytes | str) -> dict:
    """Parse an OSCAL document. JSON is accepted as a YAML subset."""
    if isinstance(data, bytes):
        data = data.decode("utf-8-sig")
    try:
        model = yaml.safe_load(data)
    except yaml.YAMLError as e:
        raise ValueError(f"invalid OSCAL document: {e}") from e
    if not isinstance(model, dict):
        raise ValueError("invalid OSCAL document: expected a mapping at the top level")
    if not any(kind in model for kind in MODEL_KINDS):
        raise ValueError("invalid OSCAL document: no known model found")
    return model


def serialize_oscal(model: dict, ext: str) -> bytes:
    ext = ext.lower()
    if ext == ".json":
        return (json.dumps(model, indent=2) + "\n").encode("utf-8")
    if ext in (".yaml", ".yml"):
        return yaml.safe_dump(model, sort_keys=False, allow_unicode=True).encode("utf-8")
    raise ValueError(f"unsupported OSCAL file extension {ext!r}")


def write_oscal_model(path: Path | str, model: dict) -> Path:
    """Write ``model``, merging with any existing document at ``path``.

    A path without an extension is treated as a directory and gets
    ``oscal.yaml``. Returns the path written.
    """
    path = Path(path)
    if not path.suffix:
        path = path / DEFAULT_FILENAME
    elif path.suffix.lower() not in SUPPORTED_EXTENSIONS:
        raise ValueError(f"unsupported OSCAL file extension {path.suffix!r}")

    if path.exists():
        try:
            existing = parse_oscal(path.read_bytes())
        except ValueError as e:
            raise MergeError(f"cannot merge into {path}: {e}") from e
        model = merge_oscal_models(existing, model)
        logger.debug("merged into existing %s", path)

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(serialize_oscal(model, path.suffix))
    return path
