"""Partition-and-fold aggregation."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from pyagg.aggregation.protocols import Melder
from pyagg.models.atom import CompoundKey, DataAtom


class MeldingAggregator:
    """Group atoms by their collation ids and meld each group into one atom.

    Within a group atoms are combined in encounter order as
    ``merged = melder.meld(merged, next)``, starting from the group's
    first atom.  Singleton groups pass through unmelded.  Groups are
    emitted in the order their first atom was seen.
    """

    def __init__(self, collation_ids: Sequence[str], melder: Melder) -> None:
        self._collation_ids = tuple(collation_ids)
        self._melder = melder

    @property
    def collation_ids(self) -> tuple[str, ...]:
        return self._collation_ids

    @property
    def melder(self) -> Melder:
        return self._melder

    def partition(self, atoms: Iterable[DataAtom]) -> dict[CompoundKey, list[DataAtom]]:
        # dict preserves first-seen order of groups
        groups: dict[CompoundKey, list[DataAtom]] = {}
        for atom in atoms:
            groups.setdefault(atom.key(self._collation_ids), []).append(atom)
        return groups

    def aggregate(self, atoms: Iterable[DataAtom]) -> list[DataAtom]:
        output: list[DataAtom] = []
        for members in self.partition(atoms).values():
            merged = members[0]
            for atom in members[1:]:
                merged = self._melder.meld(merged, atom)
            output.append(merged)
        return output

    def __repr__(self) -> str:
        return f"MeldingAggregator(collation_ids={list(self._collation_ids)!r}, melder={self._melder!r})"
