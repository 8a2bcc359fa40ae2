"""Building update deltas on the source side.

This module centralizes the pattern every reporting source follows:

- select objects with the query's predicate
- encode each selected object into atoms
- wrap the resulting operations (or the failure) in an
  :class:`~pyagg.models.delta.UpdateDelta`
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from pyagg.behavior.capabilities import Encoder, Predicate
from pyagg.behavior.resolver import BehaviorResolver
from pyagg.behavior.spec import BehaviorSpec
from pyagg.exceptions import ResolutionError
from pyagg.models.delta import AtomOperation, OperationKind, UpdateDelta

_logger = logging.getLogger(__name__)


def encode_operations(
    kind: OperationKind,
    objects: Iterable[Any],
    encoder: Encoder,
    predicate: Predicate | None = None,
) -> list[AtomOperation]:
    """Encode *objects* as operations of *kind*, skipping those *predicate* rejects."""
    operations: list[AtomOperation] = []
    for obj in objects:
        if predicate is not None and not predicate.execute(obj):
            continue
        operations.extend(AtomOperation(kind=kind, atom=atom) for atom in encoder.encode(obj))
    return operations


class SourceSession:
    """One source's side of a query.

    Added and changed objects are filtered through the predicate; removed
    objects are encoded unconditionally, since they were matched when
    they were first reported.
    """

    def __init__(self, source_id: str, predicate: Predicate, encoder: Encoder) -> None:
        self.source_id = source_id
        self.predicate = predicate
        self.encoder = encoder

    @classmethod
    def from_specs(
        cls,
        source_id: str,
        predicate: BehaviorSpec,
        encoder: BehaviorSpec,
        resolver: BehaviorResolver,
    ) -> SourceSession:
        resolved_predicate = resolver.resolve_predicate(predicate)
        resolved_encoder = resolver.resolve_encoder(encoder)
        if resolved_predicate is None or resolved_encoder is None:
            raise ResolutionError(f"source {source_id!r}: predicate or encoder spec has no available back-end")
        return cls(source_id, resolved_predicate, resolved_encoder)

    def build_delta(
        self,
        *,
        added: Iterable[Any] = (),
        changed: Iterable[Any] = (),
        removed: Iterable[Any] = (),
    ) -> UpdateDelta:
        """Encode the given changes, reporting any failure as an exception delta."""
        try:
            operations = [
                *encode_operations(OperationKind.ADDED, added, self.encoder, self.predicate),
                *encode_operations(OperationKind.CHANGED, changed, self.encoder, self.predicate),
                *encode_operations(OperationKind.REMOVED, removed, self.encoder),
            ]
        except Exception as exc:
            _logger.debug("Source %s failed to encode an update", self.source_id, exc_info=True)
            return UpdateDelta(source_id=self.source_id, exception=f"{type(exc).__name__}: {exc}")
        return UpdateDelta(source_id=self.source_id, operations=tuple(operations))
