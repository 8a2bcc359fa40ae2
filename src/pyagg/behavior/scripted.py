"""Scripted back-ends.

One host per dialect.  A host evaluates source text in a fresh
interpreter context and returns what the script's entry point produced.
Adding a dialect means registering another host with the resolver;
existing hosts are untouched.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Protocol, runtime_checkable

from pyagg._constants import SCRIPT_ENTRY_POINT
from pyagg.aggregation.melding import MeldingAggregator
from pyagg.behavior.handle import BehaviorHandle
from pyagg.exceptions import ResolutionError
from pyagg.models.atom import DataAtom
from pyagg.query.alerts import Alert

_logger = logging.getLogger(__name__)

_script_counter = itertools.count()


@runtime_checkable
class ScriptHost(Protocol):
    """Capability every dialect host provides."""

    @property
    def dialect(self) -> str: ...

    def evaluate(self, source_text: str) -> BehaviorHandle: ...


class PythonScriptHost:
    """Evaluates Python source text.

    The text runs in a brand-new module namespace and must define a
    zero-argument ``instantiate()`` function.  Its return value is either
    a ready behavior instance or a callable that acts as the behavior's
    sole method.  ``DataAtom``, ``Alert`` and ``MeldingAggregator`` are
    pre-bound in the namespace for convenience.
    """

    dialect = "python"

    def _namespace(self, module_name: str) -> dict[str, Any]:
        return {
            "__name__": module_name,
            "DataAtom": DataAtom,
            "Alert": Alert,
            "MeldingAggregator": MeldingAggregator,
        }

    def evaluate(self, source_text: str) -> BehaviorHandle:
        module_name = f"pyagg_script_{next(_script_counter)}"
        namespace = self._namespace(module_name)
        try:
            code = compile(source_text, f"<{module_name}>", "exec")
            exec(code, namespace)  # noqa: S102
        except Exception as exc:
            raise ResolutionError(f"python script failed to evaluate: {exc}") from exc

        entry = namespace.get(SCRIPT_ENTRY_POINT)
        if not callable(entry):
            raise ResolutionError(f"python script does not define {SCRIPT_ENTRY_POINT}()")
        try:
            product = entry()
        except Exception as exc:
            raise ResolutionError(f"python script {SCRIPT_ENTRY_POINT}() raised: {exc}") from exc
        if product is None:
            raise ResolutionError(f"python script {SCRIPT_ENTRY_POINT}() returned None")

        _logger.debug("Evaluated python script module=%s product=%s", module_name, type(product).__name__)
        return BehaviorHandle(product, origin=f"python script {module_name}")
