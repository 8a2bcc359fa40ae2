"""Aggregator and melder contracts."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Protocol, runtime_checkable

from pyagg.models.atom import DataAtom


@runtime_checkable
class Aggregator(Protocol):
    """Pure reducer from the full atom set to a derived atom list.

    The same multiset of inputs must yield a value-equal output list.
    """

    def aggregate(self, atoms: Iterable[DataAtom]) -> list[DataAtom]: ...


@runtime_checkable
class Melder(Protocol):
    """Binary reducer combining two atoms that share a collation key."""

    def meld(self, first: DataAtom, second: DataAtom) -> DataAtom: ...


class FunctionAggregator:
    """Adapt a plain callable to :class:`Aggregator`.

    The callable may return any iterable of atoms; it is materialized
    into a list.
    """

    def __init__(self, func: Callable[[Iterable[DataAtom]], Iterable[DataAtom]]) -> None:
        self._func = func

    def aggregate(self, atoms: Iterable[DataAtom]) -> list[DataAtom]:
        return list(self._func(atoms))

    def __repr__(self) -> str:
        return f"FunctionAggregator({self._func!r})"


class FunctionMelder:
    """Adapt a two-argument callable to :class:`Melder`."""

    def __init__(self, func: Callable[[DataAtom, DataAtom], DataAtom]) -> None:
        self._func = func

    def meld(self, first: DataAtom, second: DataAtom) -> DataAtom:
        return self._func(first, second)

    def __repr__(self) -> str:
        return f"FunctionMelder({self._func!r})"
