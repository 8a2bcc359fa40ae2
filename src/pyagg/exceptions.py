"""Custom exception hierarchy for pyagg."""

from __future__ import annotations


class AggError(Exception):
    """Base exception for all pyagg errors."""


class AggConfigError(AggError):
    """Invalid or conflicting configuration."""


class DocumentError(AggError):
    """An XML document could not be decoded."""


class KeyDerivationError(AggError):
    """An atom lacks a field required to build its key.

    Raised when an atom is merged into a store whose identifier schema
    names a field the atom does not carry, and when a melding aggregator
    cannot project an atom onto its collation ids.
    """

    def __init__(self, message: str, *, field: str = "", source_id: str = "") -> None:
        self.field = field
        self.source_id = source_id
        super().__init__(message)


class TypeMismatchError(AggError):
    """A behavior spec was resolved for a capability it does not describe."""

    def __init__(self, message: str, *, expected: str = "", actual: str = "") -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(message)


class ResolutionError(AggError):
    """A behavior spec could not be turned into a runtime instance.

    Covers unknown native names, invalid native configuration, and
    scripts that fail to evaluate or do not yield a usable product.
    Callers decide whether to disable the affected query or surface
    the failure.
    """


class AggregationError(AggError):
    """An aggregator failed while recomputing a derived view."""

    def __init__(self, message: str, *, query_id: str = "") -> None:
        self.query_id = query_id
        super().__init__(message)
