"""Adapting evaluated behavior products to capabilities."""

from __future__ import annotations

from typing import Any

from pyagg.aggregation.protocols import Aggregator, FunctionAggregator, FunctionMelder, Melder
from pyagg.behavior.capabilities import Capability, Encoder, FunctionEncoder, FunctionPredicate, Predicate
from pyagg.exceptions import ResolutionError
from pyagg.query.alerts import Alert, FunctionAlert

_CONTRACTS: dict[Capability, type] = {
    Capability.PREDICATE: Predicate,
    Capability.ENCODER: Encoder,
    Capability.ALERT: Alert,
    Capability.AGGREGATOR: Aggregator,
    Capability.MELDER: Melder,
}


class BehaviorHandle:
    """The raw product of a back-end: a ready instance or a callable.

    :meth:`adapt` returns the product itself when it already satisfies
    the requested capability, or wraps a callable so that it serves as
    the capability's sole method.
    """

    def __init__(self, product: Any, *, origin: str = "") -> None:
        self.product = product
        self.origin = origin

    def adapt(self, capability: Capability, *, alert_name: str | None = None) -> Any:
        product = self.product
        if isinstance(product, _CONTRACTS[capability]):
            return product
        if not callable(product) or isinstance(product, type):
            origin = self.origin or "behavior"
            raise ResolutionError(f"{origin} did not yield a {capability} or a callable: {product!r}")

        if capability is Capability.PREDICATE:
            return FunctionPredicate(product)
        if capability is Capability.ENCODER:
            return FunctionEncoder(product)
        if capability is Capability.ALERT:
            return FunctionAlert(product, name=alert_name)
        if capability is Capability.AGGREGATOR:
            return FunctionAggregator(product)
        return FunctionMelder(product)

    def __repr__(self) -> str:
        return f"BehaviorHandle(origin={self.origin!r}, product={self.product!r})"
