"""Error taxonomy for resolution, collection, evaluation and persistence."""

from __future__ import annotations


class LulaError(Exception):
    """Base class for all Lula errors."""


class ResolutionError(LulaError):
    """A validation reference could not be turned into a validation document."""

    def __init__(self, link: str, reason: str):
        self.link = link
        self.reason = reason
        super().__init__(f"unable to resolve {link}: {reason}")


class ChecksumError(ResolutionError):
    """The fetched content does not match the checksum in the reference."""


class UnsupportedChecksumError(ResolutionError):
    """The checksum length does not map to a supported digest algorithm."""


class SpecValidationError(LulaError):
    """A domain or provider specification is malformed."""


class UnknownDomainError(SpecValidationError):
    pass


class UnknownProviderError(SpecValidationError):
    pass


class TemplateError(SpecValidationError):
    """A template placeholder could not be rendered."""


class CollectionError(LulaError):
    """Resource collection failed."""


class WaitTimeoutError(CollectionError):
    """A wait-for-readiness condition was not met before the deadline."""


class EvaluationError(LulaError):
    """The policy engine failed to evaluate."""


class ExecutionNotConfirmedError(LulaError):
    """An executable domain was asked to run without confirmation."""


class MergeError(LulaError):
    """An existing OSCAL artifact could not be merged with new content."""


class TransformError(LulaError):
    """A validation test change could not be applied to the resources."""


class ComparisonError(LulaError):
    """Assessment results could not be compared against a threshold."""
