"""Validation resolver: turns a link into constructed Validations.

Links take one of these forms, each optionally suffixed with ``@<checksum>``:

- ``#<uuid>``: a back-matter resource whose ``description`` holds the document
- ``file://<path>`` or a bare path, relative to the artifact directory
- ``http(s)://...``: fetched over HTTP

The content is checksum-verified, template-rendered, parsed (multi-document
YAML is allowed) and finally handed to the domain and provider factories.
"""

from __future__ import annotations

import copy
import logging
import re
from pathlib import Path
from typing import Any, Optional

import httpx
import yaml
from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version
from pydantic import ValidationError

from .. import __version__
from ..domains.base import get_domain
from ..models.result import Result
from ..models.validation import Validation, ValidationDocument
from ..providers.base import get_provider
from ..utils.sanitize import redact_url, sanitize_error
from .checksum import split_checksum, verify_checksum
from .config import get_template_variables
from .errors import ResolutionError, SpecValidationError
from .template import RenderMode, render_template

logger = logging.getLogger(__name__)

VERSION_INCOMPATIBLE = "Version Constraint Incompatible"
VERSION_ERROR = "Lula Version Error"

_V_PREFIX = re.compile(r"(?<![A-Za-z0-9])v(?=\d)")
_OPERATOR_GAP = re.compile(r"(~=|~>|>=|<=|!=|==|=|>|<|\^|~)\s+")
_HYPHEN_RANGE = re.compile(r"(\S+)\s+-\s+(\S+)")
_WILDCARDS = ("x", "X", "*")


def _bump(parts: list[int], index: int) -> str:
    upper = parts[:index] + [parts[index] + 1]
    return ".".join(str(p) for p in upper)


def _translate_clause(clause: str) -> list[str]:
    """Translate one semver-style clause into PEP 440 specifiers."""
    if clause.startswith(("~=", ">=", "<=", "!=", "==", ">", "<")):
        return [clause]

    for prefix in ("^", "~>", "~"):
        if clause.startswith(prefix):
            version = clause[len(prefix):]
            given = [int(p) for p in version.split(".")] if re.fullmatch(r"\d+(\.\d+){0,2}", version) else None
            if given is None:
                raise InvalidSpecifier(f"cannot use {prefix} with {version!r}")
            parts = given + [0] * (3 - len(given))
            if prefix == "^":
                if parts[0] != 0 or len(given) == 1:
                    upper = _bump(parts, 0)
                elif parts[1] != 0 or len(given) == 2:
                    upper = _bump(parts, 1)
                else:
                    upper = _bump(parts, 2)
            else:
                upper = _bump(parts, 0 if len(given) == 1 else 1)
            return [f">={version}", f"<{upper}"]

    version = clause.lstrip("=")
    pieces = version.split(".")
    if pieces and pieces[0] in _WILDCARDS:
        return []
    if any(p in _WILDCARDS for p in pieces):
        fixed = pieces[:next(i for i, p in enumerate(pieces) if p in _WILDCARDS)]
        return ["==" + ".".join(fixed) + ".*"]
    return ["==" + version]


def parse_constraint(constraint: str) -> list[SpecifierSet]:
    """Parse a version constraint into alternatives; any one must match.

    Accepts PEP 440 specifiers plus the semver range forms used in
    validation documents: a leading ``v``, ``^`` and ``~`` ranges, ``x``
    wildcards, ``a - b`` hyphen ranges, clauses separated by commas or
    spaces (AND) and ``||`` (OR). A bare version means equality.
    """
    alternatives = []
    for group in _V_PREFIX.sub("", constraint).split("||"):
        group = _OPERATOR_GAP.sub(r"\1", group.strip())
        group = _HYPHEN_RANGE.sub(r">=\1,<=\2", group)
        specifiers: list[str] = []
        for clause in re.split(r"[,\s]+", group):
            if clause:
                specifiers.extend(_translate_clause(clause))
        alternatives.append(SpecifierSet(",".join(specifiers)))
    return alternatives


def check_version(constraint: str, current: str = __version__) -> Optional[Result]:
    """Return a preset failing Result when ``current`` does not satisfy ``constraint``.

    Development builds skip the check. See ``parse_constraint`` for the
    accepted syntax.
    """
    if not constraint or not constraint.strip():
        return None
    if not current or current == "unset" or "dev" in current:
        logger.debug("skipping version check for development build %s", current or "unset")
        return None

    try:
        alternatives = parse_constraint(constraint)
    except InvalidSpecifier as e:
        return Result(failing=1, observations={VERSION_ERROR: f"invalid version constraint {constraint!r}: {e}"})

    try:
        running = Version(current.lstrip("v"))
    except InvalidVersion:
        logger.debug("running version %s is not comparable; skipping check", current)
        return None

    if not any(specifiers.contains(running, prereleases=True) for specifiers in alternatives):
        return Result(
            failing=1,
            observations={
                VERSION_INCOMPATIBLE: f"Lula version {current} does not satisfy constraint {constraint}"
            },
        )
    return None


class ValidationResolver:
    """Resolves and caches validations for one run.

    ``back_matter`` maps resource uuid to the raw back-matter resource.
    ``cluster`` and ``transport`` are forwarded to the domain factory.
    """

    def __init__(
        self,
        back_matter: Optional[dict[str, dict]] = None,
        base_path: Path | str = ".",
        config: Optional[dict] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        cluster: Any = None,
        version: str = __version__,
    ):
        self.back_matter = back_matter or {}
        self.base_path = Path(base_path)
        self.config = config or {}
        self.transport = transport
        self.cluster = cluster
        self.version = version
        self._cache: dict[str, list[Validation]] = {}

    def identity(self, link: str, context_path: Optional[Path] = None) -> str:
        """Canonical identity of a link: uuid ref, absolute path or URL, plus checksum."""
        href, checksum = split_checksum(link.strip())
        if href.startswith("#"):
            canonical = href
        elif _is_remote(href):
            canonical = href
        else:
            canonical = str(self._local_path(href, context_path))
        return f"{canonical}@{checksum}" if checksum else canonical

    async def resolve(self, link: str, context_path: Optional[Path] = None) -> Validation:
        validations = await self.resolve_all(link, context_path)
        if len(validations) != 1:
            raise ResolutionError(link, f"expected one validation, found {len(validations)}")
        return validations[0]

    async def resolve_all(self, link: str, context_path: Optional[Path] = None) -> list[Validation]:
        identity = self.identity(link, context_path)
        if identity in self._cache:
            return self._cache[identity]

        content, base_dir = await self.fetch(link, context_path)
        documents = self.parse(link, content)

        validations: list[Validation] = []
        for i, document in enumerate(documents):
            doc_identity = identity if len(documents) == 1 else f"{identity}[{i}]"
            validations.append(self.build(doc_identity, document, base_dir))

        self._cache[identity] = validations
        return validations

    async def fetch(self, link: str, context_path: Optional[Path] = None) -> tuple[str, Path]:
        """Fetch and checksum-verify a link. Returns the text and the directory it is relative to."""
        href, checksum = split_checksum(link.strip())
        base_dir = context_path or self.base_path

        if href.startswith("#"):
            raw = self._fetch_back_matter(link, href[1:])
        elif _is_remote(href):
            raw = await self._fetch_remote(link, href)
        elif "://" in href and not href.startswith("file://"):
            raise ResolutionError(link, f"unsupported link scheme {href.split('://', 1)[0]!r}")
        else:
            path = self._local_path(href, context_path)
            try:
                raw = path.read_bytes()
            except OSError as e:
                raise ResolutionError(link, sanitize_error(f"cannot read {path}: {e.strerror or e}")) from e
            base_dir = path.parent

        if checksum:
            verify_checksum(link, raw, checksum)

        try:
            return raw.decode("utf-8-sig"), base_dir
        except UnicodeDecodeError as e:
            raise ResolutionError(link, f"content is not valid UTF-8: {e}") from e

    def parse(self, link: str, content: str) -> list[ValidationDocument]:
        """Render templates and parse one or more validation documents."""
        variables, sensitive = get_template_variables(self.config)
        rendered = render_template(
            content,
            constants=self.config.get("constants") or {},
            variables=variables,
            sensitive=sensitive,
            mode=RenderMode.ALL,
        )

        try:
            raw_documents = [d for d in yaml.safe_load_all(rendered) if d is not None]
        except yaml.YAMLError as e:
            raise SpecValidationError(f"{link}: invalid validation document: {e}") from e
        if not raw_documents:
            raise SpecValidationError(f"{link}: no validation document found")

        documents: list[ValidationDocument] = []
        for i, raw in enumerate(raw_documents):
            if not isinstance(raw, dict):
                raise SpecValidationError(f"{link}: document {i} is not a mapping")
            try:
                documents.append(ValidationDocument.model_validate(raw))
            except ValidationError as e:
                raise SpecValidationError(f"{link}: invalid validation document: {e}") from e
        return documents

    def build(self, identity: str, document: ValidationDocument, base_dir: Path) -> Validation:
        """Construct the domain/provider pair, honouring the version gate."""
        preset = check_version(document.lula_version, self.version)
        if preset is not None:
            logger.info("validation %s skipped: %s", document.metadata.name or identity,
                        next(iter(preset.observations.values())))
            return Validation(identity=identity, document=document, domain=None, provider=None, preset=preset)

        config = copy.deepcopy(self.config)
        config.setdefault("kubernetes", {})["_base_path"] = str(base_dir)
        try:
            domain = get_domain(document.domain, config, cluster=self.cluster, transport=self.transport)
            provider = get_provider(document.provider, config)
        except ValueError as e:
            raise SpecValidationError(f"{identity}: {e}") from e

        return Validation(identity=identity, document=document, domain=domain, provider=provider)

    def _fetch_back_matter(self, link: str, uuid: str) -> bytes:
        resource = self.back_matter.get(uuid)
        if resource is None:
            raise ResolutionError(link, "back-matter resource not found")
        description = resource.get("description")
        if not description:
            raise ResolutionError(link, "back-matter resource has no description")
        return description.encode("utf-8")

    async def _fetch_remote(self, link: str, url: str) -> bytes:
        timeout = (self.config.get("remote") or {}).get("timeout_seconds", 30)
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
                response = await client.get(url, follow_redirects=True)
        except httpx.HTTPError as e:
            raise ResolutionError(link, sanitize_error(f"request to {redact_url(url)} failed: {e}")) from e
        if not response.is_success:
            raise ResolutionError(link, f"{redact_url(url)} returned status {response.status_code}")
        return response.content

    def _local_path(self, href: str, context_path: Optional[Path]) -> Path:
        if href.startswith("file://"):
            href = href[len("file://"):]
        elif href.startswith("file:"):
            href = href[len("file:"):]
        path = Path(href).expanduser()
        if not path.is_absolute():
            path = (context_path or self.base_path) / path
        return path.resolve()


def _is_remote(href: str) -> bool:
    return href.startswith(("http://", "https://"))
