"""Full recompute of a derived view."""

from __future__ import annotations

import logging

from pyagg.aggregation.protocols import Aggregator
from pyagg.config import AggConfig
from pyagg.exceptions import AggregationError, KeyDerivationError
from pyagg.state.store import AtomSnapshot, MergeStore

_logger = logging.getLogger(__name__)


def recompute(
    source: MergeStore,
    aggregator: Aggregator,
    *,
    include_source_tag: bool = False,
    config: AggConfig | None = None,
) -> MergeStore:
    """Run *aggregator* over a full snapshot of *source* and return a fresh store.

    Every derived atom is kept, in output order, under the reserved
    ``aggregate`` source id.  Exceptions and responding sources come
    from the same copy of *source* the aggregator read, so every view
    reports them.  Nothing is patched incrementally; the caller installs
    the result wholesale.
    """
    state = source.state()
    snapshot = AtomSnapshot(state, include_source_tag=include_source_tag)
    try:
        derived = list(aggregator.aggregate(snapshot))
    except KeyDerivationError:
        raise
    except Exception as exc:
        raise AggregationError(f"aggregator {aggregator!r} failed: {exc}") from exc

    result = MergeStore.from_derived(derived, state, config=config)
    _logger.debug("Recomputed derived view: %d input atoms -> %d derived atoms", len(snapshot), len(derived))
    return result
