"""Decoded update deltas.

The wire codec turns a delta envelope into one of these records; the
merge store consumes only the decoded form.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field, field_validator, model_validator

from pyagg.models._base import AggBaseModel
from pyagg.models.atom import DataAtom


class OperationKind(StrEnum):
    ADDED = "added"
    CHANGED = "changed"
    REMOVED = "removed"


class AtomOperation(AggBaseModel):
    """One add/change/remove of a single atom."""

    kind: OperationKind
    atom: DataAtom

    @classmethod
    def added(cls, atom: DataAtom) -> AtomOperation:
        return cls(kind=OperationKind.ADDED, atom=atom)

    @classmethod
    def changed(cls, atom: DataAtom) -> AtomOperation:
        return cls(kind=OperationKind.CHANGED, atom=atom)

    @classmethod
    def removed(cls, atom: DataAtom) -> AtomOperation:
        return cls(kind=OperationKind.REMOVED, atom=atom)

    @property
    def is_upsert(self) -> bool:
        return self.kind in (OperationKind.ADDED, OperationKind.CHANGED)


class UpdateDelta(AggBaseModel):
    """A decoded report from one source: either operations or an exception."""

    source_id: str = Field(..., description="Id of the reporting source")
    operations: tuple[AtomOperation, ...] = ()
    exception: str | None = None

    @field_validator("source_id")
    @classmethod
    def _normalize_source_id(cls, value: str) -> str:
        source_id = value.strip()
        if not source_id:
            raise ValueError("source_id must be non-empty")
        return source_id

    @model_validator(mode="after")
    def _exception_excludes_operations(self) -> UpdateDelta:
        if self.exception is not None and self.operations:
            raise ValueError("an exception report cannot carry operations")
        return self

    @property
    def is_exception(self) -> bool:
        return self.exception is not None
