"""Per-query orchestration.

A :class:`QueryOrchestrator` owns one query's raw merge store, its
optional derived (aggregated) store and the aggregator producing it, and
the query's alerts.  Every raw mutation is followed, when an aggregator
is configured, by a full recompute of the derived store, and then by
exactly one change notification.
"""

from __future__ import annotations

import itertools
import logging
import threading
import xml.etree.ElementTree as ET
from collections.abc import Callable, Iterable

from pyagg._constants import ALERT_TAG, QUERY_RESULT_TAG, QUERY_TAG, RESULT_SET_TAG
from pyagg.aggregation.pipeline import recompute
from pyagg.aggregation.protocols import Aggregator
from pyagg.behavior.resolver import BehaviorResolver
from pyagg.config import AggConfig
from pyagg.exceptions import AggConfigError, DocumentError, KeyDerivationError, ResolutionError
from pyagg.models.delta import AtomOperation, UpdateDelta
from pyagg.query.alerts import Alert, AlertDescriptor, AlertRegistry
from pyagg.query.models import AggregationQuery
from pyagg.state.document import parse_document, parse_result_set, require_child, to_text
from pyagg.state.store import MergeStore

_logger = logging.getLogger(__name__)

_id_counter = itertools.count()

ChangeListener = Callable[["QueryOrchestrator"], None]


def next_query_id() -> str:
    return str(next(_id_counter))


class QueryOrchestrator:
    """Glue between a query, its stores, its aggregator and its alerts.

    Whether the orchestrator aggregates is decided once, at construction,
    from the query's aggregation spec.
    """

    def __init__(
        self,
        query: AggregationQuery,
        *,
        resolver: BehaviorResolver | None = None,
        config: AggConfig | None = None,
    ) -> None:
        self._config = config or AggConfig()
        self._query = query
        self._raw = MergeStore(config=self._config)
        self._alerts = AlertRegistry()
        self._listeners: list[ChangeListener] = []
        self._listeners_lock = threading.Lock()
        # Orders recompute-and-install so a slow, older recompute cannot
        # overwrite a newer derived view.
        self._aggregate_lock = threading.Lock()

        self._aggregator: Aggregator | None = None
        self._derived: MergeStore | None = None
        if query.aggregation is not None:
            resolver = resolver or BehaviorResolver(config=self._config)
            aggregator = resolver.resolve_aggregator(query.aggregation)
            if aggregator is None:
                raise ResolutionError(
                    f"query {query.query_id!r}: no back-end for aggregation spec "
                    f"{query.aggregation.implementation_kind}/{query.aggregation.dialect}"
                )
            self._aggregator = aggregator
            self._derived = MergeStore(config=self._config)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def query_id(self) -> str:
        return self._query.query_id

    @property
    def query(self) -> AggregationQuery:
        return self._query

    @property
    def aggregator(self) -> Aggregator | None:
        return self._aggregator

    @property
    def is_aggregating(self) -> bool:
        return self._aggregator is not None

    def __repr__(self) -> str:
        return f"QueryOrchestrator({self._query.display_name} ({self.query_id}))"

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def active_view(self) -> MergeStore:
        """The derived store when aggregating, otherwise the raw store."""
        if self._derived is not None:
            return self._derived
        return self._raw

    def raw_view(self) -> MergeStore:
        return self._raw

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def update_results(self, delta: UpdateDelta) -> None:
        """Apply one decoded delta from a source."""
        if delta.exception is not None:
            self.record_exception(delta.source_id, delta.exception)
        else:
            self.apply_batch(delta.source_id, delta.operations)

    def apply_batch(self, source_id: str, ops: Iterable[AtomOperation]) -> None:
        """Merge *ops* into the raw view, then recompute and notify.

        A batch aborted partway still changed the raw view, so the
        recompute and notification run before the error propagates.
        """
        try:
            applied = self._raw.apply_batch(source_id, ops)
        except KeyDerivationError:
            self._changed()
            raise
        _logger.debug("Query %s: applied %d operations from source=%s", self.query_id, applied, source_id)
        self._changed()

    def record_exception(self, source_id: str, message: str) -> None:
        _logger.debug("Query %s: source=%s reported an exception", self.query_id, source_id)
        self._raw.record_exception(source_id, message)
        self._changed()

    def replace_results(self, store: MergeStore) -> None:
        """Install a consolidated raw result set wholesale."""
        if not store.is_keyed:
            raise AggConfigError("raw results must come from a keyed store, not a derived view")
        self._raw.replace_all(store)
        self._changed()

    def aggregate(self) -> None:
        """Rebuild the derived store from the complete raw atom set."""
        if self._aggregator is None or self._derived is None:
            return
        with self._aggregate_lock:
            derived = recompute(
                self._raw,
                self._aggregator,
                include_source_tag=self._config.aggregate_with_source_tag,
                config=self._config,
            )
            self._derived.replace_all(derived)

    def _changed(self) -> None:
        self.aggregate()
        self.notify()

    # ------------------------------------------------------------------
    # Notification
    # ------------------------------------------------------------------

    def add_change_listener(self, listener: ChangeListener) -> None:
        with self._listeners_lock:
            self._listeners.append(listener)

    def remove_change_listener(self, listener: ChangeListener) -> None:
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def notify(self) -> None:
        """Dispatch one change notification to listeners, then alerts.

        No lock is held while callbacks run; a failing callback is logged
        and does not keep the others from running.
        """
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(self)
            except Exception:
                _logger.warning("Query %s: change listener failed", self.query_id, exc_info=True)

        for alert in self._alerts.snapshot():
            try:
                alert.handle_update()
            except Exception:
                _logger.warning("Query %s: alert %s failed", self.query_id, alert.name, exc_info=True)

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def add_alert(self, alert: Alert) -> None:
        alert.attach(self)
        try:
            self._alerts.add(alert)
        except Exception:
            alert.detach()
            raise

    def remove_alert(self, name: str) -> Alert | None:
        alert = self._alerts.remove(name)
        if alert is not None:
            alert.detach()
        return alert

    def alerts(self) -> list[Alert]:
        return self._alerts.snapshot()

    def alert_descriptors(self) -> list[AlertDescriptor]:
        return [alert.descriptor() for alert in self._alerts.snapshot()]

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def to_document(self) -> str:
        """The active view's result set document."""
        return self.active_view().serialize()

    def to_whole_document(self) -> str:
        """Query id, query spec, active view and alert descriptors."""
        root = ET.Element(QUERY_RESULT_TAG, id=self.query_id)
        root.append(self._query.to_element())
        root.append(parse_document(self.active_view().serialize()))
        for descriptor in self.alert_descriptors():
            root.append(descriptor.to_element())
        return to_text(root)

    @classmethod
    def from_whole_document(
        cls,
        text: str,
        *,
        resolver: BehaviorResolver | None = None,
        config: AggConfig | None = None,
    ) -> QueryOrchestrator:
        """Rebuild an orchestrator from :meth:`to_whole_document` output.

        The result set is restored as the raw view.  Alerts are resolved
        again from the behavior spec carried by their descriptor; descriptors
        without a spec are skipped.
        """
        root = parse_document(text)
        if root.tag != QUERY_RESULT_TAG:
            raise DocumentError(f"expected <{QUERY_RESULT_TAG}>, got <{root.tag}>")

        query = AggregationQuery.from_element(require_child(root, QUERY_TAG))
        resolver = resolver or BehaviorResolver(config=config)
        orchestrator = cls(query, resolver=resolver, config=config)

        exceptions, atoms = parse_result_set(require_child(root, RESULT_SET_TAG))
        for source_id, source_atoms in atoms.items():
            orchestrator._raw.apply_batch(source_id, [AtomOperation.added(atom) for atom in source_atoms])
        for source_id, message in exceptions.items():
            orchestrator._raw.record_exception(source_id, message)
        orchestrator.aggregate()

        for element in root.findall(ALERT_TAG):
            descriptor = AlertDescriptor.from_element(element)
            if descriptor.spec is None:
                _logger.debug("Alert %s has no spec; not restored", descriptor.name)
                continue
            alert = resolver.resolve_alert(descriptor.spec)
            if alert is None:
                _logger.debug("Alert %s could not be resolved; not restored", descriptor.name)
                continue
            alert.name = descriptor.name
            alert.alerted = descriptor.alerted
            orchestrator.add_alert(alert)
        return orchestrator
