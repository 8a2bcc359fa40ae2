"""Behavior resolution.

Turns a :class:`BehaviorSpec` into a runtime predicate, encoder, alert or
aggregator by dispatching on its implementation kind:

* ``native`` — factory looked up in a :class:`NativeRegistry`;
* ``scripted`` — source text evaluated by the host registered for the
  spec's dialect.

Specs naming an implementation kind or dialect this resolver does not
know resolve to ``None`` so that newer documents can still be decoded
by older processes.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from typing import Any

from pyagg.aggregation.melding import MeldingAggregator
from pyagg.aggregation.protocols import Aggregator
from pyagg.behavior.capabilities import Capability, Encoder, Predicate
from pyagg.behavior.handle import BehaviorHandle
from pyagg.behavior.native import NativeRegistry
from pyagg.behavior.scripted import PythonScriptHost, ScriptHost
from pyagg.behavior.spec import AggregationStrategy, BehaviorKind, BehaviorSpec, ImplementationKind
from pyagg.config import AggConfig
from pyagg.exceptions import TypeMismatchError
from pyagg.query.alerts import Alert

_logger = logging.getLogger(__name__)


class BehaviorResolver:
    """Resolve behavior specs against native and scripted back-ends."""

    def __init__(
        self,
        *,
        native: NativeRegistry | None = None,
        hosts: Iterable[ScriptHost] | None = None,
        config: AggConfig | None = None,
    ) -> None:
        self._config = config or AggConfig()
        self._native = native if native is not None else NativeRegistry()
        self._hosts: dict[str, ScriptHost] = {}
        self._lock = threading.Lock()
        for host in hosts if hosts is not None else (PythonScriptHost(),):
            self.register_host(host)

    @property
    def native(self) -> NativeRegistry:
        return self._native

    def register_host(self, host: ScriptHost) -> None:
        """Add (or replace) the host for ``host.dialect``."""
        with self._lock:
            self._hosts[host.dialect.strip().lower()] = host

    def dialects(self) -> list[str]:
        with self._lock:
            return sorted(self._hosts)

    def _host(self, dialect: str) -> ScriptHost | None:
        with self._lock:
            return self._hosts.get(dialect)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, spec: BehaviorSpec, expected: BehaviorKind) -> Any | None:
        """Build the behavior *spec* describes, checked against *expected*.

        Raises :class:`TypeMismatchError` when *spec* describes another
        kind of behavior and :class:`ResolutionError` when the back-end
        fails.  Returns ``None`` for unknown implementation kinds/dialects.
        """
        if spec.behavior_kind != expected:
            raise TypeMismatchError(
                f"cannot make a {expected} from a {spec.behavior_kind} spec",
                expected=expected,
                actual=spec.behavior_kind,
            )

        handle = self._evaluate(spec)
        if handle is None:
            return None

        if expected is BehaviorKind.AGGREGATOR:
            return self._to_aggregator(spec, handle)

        instance = handle.adapt(Capability(expected), alert_name=spec.params.get("name"))
        if isinstance(instance, Alert) and instance.spec is None:
            instance.spec = spec
        return instance

    def _evaluate(self, spec: BehaviorSpec) -> BehaviorHandle | None:
        implementation = spec.implementation_kind
        if implementation == ImplementationKind.NATIVE:
            return self._native.create(spec.source_text, spec.params)

        if implementation == ImplementationKind.SCRIPTED:
            dialect = spec.dialect or self._config.default_dialect
            host = self._host(dialect)
            if host is None:
                _logger.debug("No script host for dialect=%s; %s spec left unresolved", dialect, spec.behavior_kind)
                return None
            return host.evaluate(spec.source_text)

        _logger.debug("Unknown implementation kind=%s; %s spec left unresolved", implementation, spec.behavior_kind)
        return None

    def _to_aggregator(self, spec: BehaviorSpec, handle: BehaviorHandle) -> Aggregator:
        if spec.aggregation is AggregationStrategy.MELDER:
            return MeldingAggregator(spec.collation_ids, handle.adapt(Capability.MELDER))
        aggregator: Aggregator = handle.adapt(Capability.AGGREGATOR)
        return aggregator

    def resolve_predicate(self, spec: BehaviorSpec) -> Predicate | None:
        return self.resolve(spec, BehaviorKind.PREDICATE)

    def resolve_encoder(self, spec: BehaviorSpec) -> Encoder | None:
        return self.resolve(spec, BehaviorKind.ENCODER)

    def resolve_alert(self, spec: BehaviorSpec) -> Alert | None:
        return self.resolve(spec, BehaviorKind.ALERT)

    def resolve_aggregator(self, spec: BehaviorSpec) -> Aggregator | None:
        return self.resolve(spec, BehaviorKind.AGGREGATOR)

    def resolve_object(self, spec: BehaviorSpec) -> Any | None:
        """Resolve *spec* as whatever kind of behavior it describes."""
        return self.resolve(spec, spec.behavior_kind)
