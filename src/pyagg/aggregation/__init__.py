"""Aggregation layer.

Reducers that derive a secondary atom list from the full merged atom
set of a query, plus the recompute step that installs their output.
"""

from pyagg.aggregation.melding import MeldingAggregator
from pyagg.aggregation.pipeline import recompute
from pyagg.aggregation.protocols import Aggregator, FunctionAggregator, FunctionMelder, Melder

__all__ = [
    "Aggregator",
    "FunctionAggregator",
    "FunctionMelder",
    "Melder",
    "MeldingAggregator",
    "recompute",
]
