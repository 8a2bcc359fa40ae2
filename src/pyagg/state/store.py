"""Keyed merge store.

This is the only component allowed to mutate per-source atom tables.
Every public read works from a copy taken under a single acquisition
of the store lock, so slow consumers (serialization, aggregators,
alerts) never hold the lock and never observe a half-applied batch.

A store is either *keyed*, merging updates by compound key, or holds a
derived view: the ordered output of an aggregator, installed wholesale
and never merged into.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from collections.abc import Iterable, Iterator, Mapping

from pyagg._constants import AGGREGATE_SOURCE_ID, SOURCE_IDENTIFIER
from pyagg.config import AggConfig, BatchFailurePolicy
from pyagg.exceptions import AggConfigError, KeyDerivationError
from pyagg.models.atom import CompoundKey, DataAtom
from pyagg.models.delta import AtomOperation
from pyagg.state.document import parse_document, parse_result_set, result_set_element, to_text

_logger = logging.getLogger(__name__)

SourceTable = dict[CompoundKey, DataAtom]

_EXCEPTION_SEPARATOR = "-----------------------------"


@dataclasses.dataclass(frozen=True)
class StoreState:
    """Point-in-time copy of a store's contents."""

    schema: tuple[str, ...] | None
    tables: Mapping[str, SourceTable]
    exceptions: Mapping[str, str]
    responded: frozenset[str]
    keyed: bool = True


class AtomSnapshot:
    """Restartable, lazy view over the atoms of a :class:`StoreState`.

    Each call to ``iter()`` walks the same frozen copy again.
    """

    def __init__(self, state: StoreState, *, include_source_tag: bool = False) -> None:
        self._state = state
        self._include_source_tag = include_source_tag

    @property
    def schema(self) -> tuple[str, ...]:
        return self._state.schema or ()

    def __iter__(self) -> Iterator[DataAtom]:
        for source_id, table in self._state.tables.items():
            for atom in table.values():
                if self._include_source_tag:
                    atom = atom.with_identifier(SOURCE_IDENTIFIER, source_id)
                yield atom

    def __len__(self) -> int:
        return sum(len(table) for table in self._state.tables.values())


class MergeStore:
    """Per-query table of per-source keyed atoms.

    The identifier schema is fixed by the first atom ever upserted and
    never changes afterwards.  ``added`` and ``changed`` operations are
    both upserts; ``removed`` deletes by key and is a no-op for absent
    keys.
    """

    def __init__(self, *, config: AggConfig | None = None) -> None:
        self._config = config or AggConfig()
        self._lock = threading.Lock()
        self._schema: tuple[str, ...] | None = None
        self._tables: dict[str, SourceTable] = {}
        self._exceptions: dict[str, str] = {}
        self._responded: set[str] = set()
        self._keyed = True

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_derived(
        cls,
        atoms: Iterable[DataAtom],
        source: StoreState,
        *,
        config: AggConfig | None = None,
    ) -> MergeStore:
        """Build a derived view holding every atom of *atoms* in order.

        The atoms are listed under the reserved ``aggregate`` source id
        and are not merged by key, so equal identifiers never collapse.
        Exceptions and responding sources are taken from *source*.
        """
        listing = {(str(position),): atom for position, atom in enumerate(atoms)}
        store = cls(config=config)
        store._keyed = False
        store._schema = next(iter(listing.values())).identifier_names() if listing else None
        store._tables = {AGGREGATE_SOURCE_ID: listing}
        store._exceptions = dict(source.exceptions)
        store._responded = set(source.responded)
        return store

    @classmethod
    def from_document(cls, text: str, *, config: AggConfig | None = None) -> MergeStore:
        """Rebuild a store from the output of :meth:`serialize`."""
        exceptions, atoms = parse_result_set(parse_document(text))
        store = cls(config=config)
        for source_id, source_atoms in atoms.items():
            store.apply_batch(source_id, [AtomOperation.added(atom) for atom in source_atoms])
        for source_id, message in exceptions.items():
            store.record_exception(source_id, message)
        return store

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def apply_batch(self, source_id: str, ops: Iterable[AtomOperation]) -> int:
        """Apply *ops* from *source_id* in order and return how many took effect.

        Raises :class:`KeyDerivationError` under the ``abort`` policy when an
        atom lacks a schema field; operations before it remain applied.
        """
        applied = 0
        with self._lock:
            if not self._keyed:
                raise AggConfigError("a derived view cannot merge updates")
            self._responded.add(source_id)
            for index, op in enumerate(ops):
                try:
                    self._apply_one(source_id, op)
                except KeyDerivationError as exc:
                    if self._config.batch_failure_policy is BatchFailurePolicy.ABORT:
                        raise KeyDerivationError(
                            f"source {source_id!r} operation {index}: {exc}",
                            field=exc.field,
                            source_id=source_id,
                        ) from exc
                    _logger.warning("Skipping operation %d from source=%s: %s", index, source_id, exc)
                    continue
                applied += 1
            if self._config.clear_exception_on_update:
                self._exceptions.pop(source_id, None)
        return applied

    def _apply_one(self, source_id: str, op: AtomOperation) -> None:
        atom = op.atom
        if op.is_upsert:
            if self._schema is None:
                self._schema = atom.identifier_names()
                _logger.debug("Identifier schema fixed to %s by source=%s", self._schema, source_id)
            key, values = atom.split(self._schema)
            self._tables.setdefault(source_id, {})[key] = DataAtom.from_parts(self._schema, key, values)
            return

        if self._schema is None:
            return
        key = atom.key(self._schema)
        table = self._tables.get(source_id)
        if table is not None:
            table.pop(key, None)

    def record_exception(self, source_id: str, message: str) -> None:
        """Record a processing failure reported by *source_id*."""
        with self._lock:
            self._exceptions[source_id] = message
            self._responded.add(source_id)

    def clear_exception(self, source_id: str) -> bool:
        with self._lock:
            return self._exceptions.pop(source_id, None) is not None

    def replace_all(self, other: MergeStore) -> None:
        """Install *other*'s whole state, responding sources included, in place of ours."""
        if other is self:
            return
        state = other.state()
        tables = {source_id: dict(table) for source_id, table in state.tables.items()}
        with self._lock:
            self._schema = state.schema
            self._tables = tables
            self._exceptions = dict(state.exceptions)
            self._responded = set(state.responded)
            self._keyed = state.keyed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def state(self) -> StoreState:
        """Copy the whole store under one lock acquisition.

        Stored atoms are immutable, so copying each table's mapping is
        enough to isolate the copy from later batches.
        """
        with self._lock:
            return StoreState(
                schema=self._schema,
                tables={source_id: dict(table) for source_id, table in self._tables.items()},
                exceptions=dict(self._exceptions),
                responded=frozenset(self._responded),
                keyed=self._keyed,
            )

    def snapshot_atoms(self, include_source_tag: bool = False) -> AtomSnapshot:
        return AtomSnapshot(self.state(), include_source_tag=include_source_tag)

    def serialize(self) -> str:
        state = self.state()
        return to_text(result_set_element(state.tables, state.exceptions, keyed=state.keyed))

    @property
    def schema(self) -> tuple[str, ...] | None:
        with self._lock:
            return self._schema

    @property
    def is_keyed(self) -> bool:
        with self._lock:
            return self._keyed

    def responding_sources(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._responded)

    def source_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._tables)

    def table(self, source_id: str) -> dict[CompoundKey, dict[str, str]]:
        """Key → value fields of one source's atoms."""
        with self._lock:
            table = self._tables.get(source_id, {})
            return {key: dict(atom.values) for key, atom in table.items()}

    def atom_count(self) -> int:
        with self._lock:
            return sum(len(table) for table in self._tables.values())

    def exception_map(self) -> dict[str, str]:
        with self._lock:
            return dict(self._exceptions)

    def exception_thrown(self) -> bool:
        with self._lock:
            return bool(self._exceptions)

    def exception_summary(self) -> str:
        """All recorded exception messages, each followed by a separator line."""
        exceptions = self.exception_map()
        return "".join(f"{exceptions[source_id]}\n{_EXCEPTION_SEPARATOR}\n" for source_id in sorted(exceptions))
