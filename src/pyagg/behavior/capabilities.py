"""Capability contracts that resolved behaviors satisfy.

Aggregators and melders live in :mod:`pyagg.aggregation.protocols`;
alerts in :mod:`pyagg.query.alerts`.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

from pyagg.models.atom import DataAtom


class Capability(StrEnum):
    """Everything a behavior handle can be adapted to."""

    PREDICATE = "predicate"
    ENCODER = "encoder"
    ALERT = "alert"
    AGGREGATOR = "aggregator"
    MELDER = "melder"


@runtime_checkable
class Predicate(Protocol):
    """Selects the source objects a query is interested in."""

    def execute(self, obj: Any) -> bool: ...


@runtime_checkable
class Encoder(Protocol):
    """Turns one matched source object into the atoms reported for it."""

    def encode(self, obj: Any) -> Iterable[DataAtom]: ...


class FunctionPredicate:
    def __init__(self, func: Callable[[Any], Any]) -> None:
        self._func = func

    def execute(self, obj: Any) -> bool:
        return bool(self._func(obj))

    def __repr__(self) -> str:
        return f"FunctionPredicate({self._func!r})"


class FunctionEncoder:
    """Adapt a callable returning one atom, or an iterable of atoms."""

    def __init__(self, func: Callable[[Any], DataAtom | Iterable[DataAtom] | None]) -> None:
        self._func = func

    def encode(self, obj: Any) -> list[DataAtom]:
        product = self._func(obj)
        if product is None:
            return []
        if isinstance(product, DataAtom):
            return [product]
        return list(product)

    def __repr__(self) -> str:
        return f"FunctionEncoder({self._func!r})"
