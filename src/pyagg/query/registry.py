"""Registry of live queries.

Registering a query creates its orchestrator with empty stores;
unregistering discards the orchestrator and everything it owns.
"""

from __future__ import annotations

import logging
import threading

from pyagg.behavior.resolver import BehaviorResolver
from pyagg.behavior.spec import BehaviorSpec
from pyagg.config import AggConfig
from pyagg.exceptions import AggConfigError
from pyagg.models.delta import UpdateDelta
from pyagg.query.models import AggregationQuery
from pyagg.query.orchestrator import QueryOrchestrator, next_query_id

_logger = logging.getLogger(__name__)


class QueryRegistry:
    """Thread-safe map of query id → orchestrator."""

    def __init__(self, *, resolver: BehaviorResolver | None = None, config: AggConfig | None = None) -> None:
        self._config = config or AggConfig()
        self._resolver = resolver or BehaviorResolver(config=self._config)
        self._queries: dict[str, QueryOrchestrator] = {}
        self._lock = threading.Lock()

    @property
    def resolver(self) -> BehaviorResolver:
        return self._resolver

    def register(self, query: AggregationQuery) -> QueryOrchestrator:
        """Create and track the orchestrator for *query*.

        Raises :class:`AggConfigError` if the id is taken, and propagates
        :class:`ResolutionError` if the aggregation spec cannot be resolved.
        """
        with self._lock:
            if query.query_id in self._queries:
                raise AggConfigError(f"query {query.query_id!r} is already registered")
        orchestrator = QueryOrchestrator(query, resolver=self._resolver, config=self._config)
        with self._lock:
            if query.query_id in self._queries:
                raise AggConfigError(f"query {query.query_id!r} is already registered")
            self._queries[query.query_id] = orchestrator
        _logger.debug("Registered query id=%s name=%s", query.query_id, query.display_name)
        return orchestrator

    def create(
        self,
        predicate: BehaviorSpec,
        *,
        name: str = "",
        aggregation: BehaviorSpec | None = None,
        source_ids: tuple[str, ...] = (),
    ) -> QueryOrchestrator:
        """Register a new query under a generated id."""
        query = AggregationQuery(
            query_id=next_query_id(),
            name=name,
            predicate=predicate,
            aggregation=aggregation,
            source_ids=source_ids,
        )
        return self.register(query)

    def unregister(self, query_id: str) -> QueryOrchestrator | None:
        with self._lock:
            orchestrator = self._queries.pop(query_id, None)
        if orchestrator is not None:
            for alert in orchestrator.alerts():
                orchestrator.remove_alert(alert.name)
            _logger.debug("Unregistered query id=%s", query_id)
        return orchestrator

    def get(self, query_id: str) -> QueryOrchestrator | None:
        with self._lock:
            return self._queries.get(query_id)

    def __contains__(self, query_id: object) -> bool:
        with self._lock:
            return query_id in self._queries

    def __len__(self) -> int:
        with self._lock:
            return len(self._queries)

    def query_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._queries)

    def update_results(self, query_id: str, delta: UpdateDelta) -> None:
        """Route *delta* to its query; deltas for unknown queries are dropped."""
        orchestrator = self.get(query_id)
        if orchestrator is None:
            _logger.debug("Dropping delta from source=%s for unknown query id=%s", delta.source_id, query_id)
            return
        orchestrator.update_results(delta)
