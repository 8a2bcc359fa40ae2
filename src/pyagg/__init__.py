"""pyagg - merge, aggregate and alert on atoms reported by many sources."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyagg")
except PackageNotFoundError:
    __version__ = "0+local"
from pyagg.aggregation import (
    Aggregator,
    FunctionAggregator,
    FunctionMelder,
    Melder,
    MeldingAggregator,
    recompute,
)
from pyagg.behavior.capabilities import Encoder, Predicate
from pyagg.behavior.native import NativeConfig, NativeRegistry
from pyagg.behavior.resolver import BehaviorResolver
from pyagg.behavior.scripted import PythonScriptHost, ScriptHost
from pyagg.behavior.spec import AggregationStrategy, BehaviorKind, BehaviorSpec, ImplementationKind
from pyagg.config import AggConfig, BatchFailurePolicy
from pyagg.exceptions import (
    AggConfigError,
    AggError,
    AggregationError,
    DocumentError,
    KeyDerivationError,
    ResolutionError,
    TypeMismatchError,
)
from pyagg.ingestion.delta import SourceSession
from pyagg.models import AtomOperation, CompoundKey, DataAtom, OperationKind, UpdateDelta
from pyagg.query.alerts import Alert, AlertDescriptor, AlertRegistry, FunctionAlert
from pyagg.query.models import AggregationQuery
from pyagg.query.orchestrator import QueryOrchestrator
from pyagg.query.registry import QueryRegistry
from pyagg.state.store import AtomSnapshot, MergeStore

__all__ = [
    "__version__",
    "AggConfig",
    "AggConfigError",
    "AggError",
    "AggregationError",
    "AggregationQuery",
    "AggregationStrategy",
    "Aggregator",
    "Alert",
    "AlertDescriptor",
    "AlertRegistry",
    "AtomOperation",
    "AtomSnapshot",
    "BatchFailurePolicy",
    "BehaviorKind",
    "BehaviorResolver",
    "BehaviorSpec",
    "CompoundKey",
    "DataAtom",
    "DocumentError",
    "Encoder",
    "FunctionAggregator",
    "FunctionAlert",
    "FunctionMelder",
    "ImplementationKind",
    "KeyDerivationError",
    "Melder",
    "MeldingAggregator",
    "MergeStore",
    "NativeConfig",
    "NativeRegistry",
    "OperationKind",
    "Predicate",
    "PythonScriptHost",
    "QueryOrchestrator",
    "QueryRegistry",
    "ResolutionError",
    "ScriptHost",
    "SourceSession",
    "TypeMismatchError",
    "UpdateDelta",
    "recompute",
]
