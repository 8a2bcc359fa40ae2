"""Alerts and the per-query alert registry.

An alert observes exactly one query orchestrator.  After every change to
the query's active view the orchestrator calls :meth:`Alert.handle_update`
on each registered alert; the alert inspects the view and sets its
``alerted`` flag as it sees fit.
"""

from __future__ import annotations

import abc
import threading
import xml.etree.ElementTree as ET
from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING, Any

from pyagg._constants import ALERT_TAG
from pyagg.behavior.spec import BehaviorSpec
from pyagg.exceptions import AggConfigError, DocumentError
from pyagg.models._base import AggBaseModel

if TYPE_CHECKING:
    from pyagg.query.orchestrator import QueryOrchestrator


class Alert(abc.ABC):
    """Observer bound to a single query orchestrator."""

    def __init__(self, name: str | None = None) -> None:
        self.name = name or type(self).__name__
        self.alerted = False
        self.spec: BehaviorSpec | None = None
        self._orchestrator: QueryOrchestrator | None = None

    @property
    def query_adapter(self) -> QueryOrchestrator | None:
        return self._orchestrator

    @property
    def is_attached(self) -> bool:
        return self._orchestrator is not None

    def attach(self, orchestrator: QueryOrchestrator) -> None:
        if self._orchestrator is not None and self._orchestrator is not orchestrator:
            raise AggConfigError(f"alert {self.name!r} is already attached to query {self._orchestrator.query_id!r}")
        self._orchestrator = orchestrator

    def detach(self) -> None:
        self._orchestrator = None

    @abc.abstractmethod
    def handle_update(self) -> None:
        """React to a change of the attached query's active view."""

    def descriptor(self) -> AlertDescriptor:
        return AlertDescriptor(
            name=self.name,
            query_id=self._orchestrator.query_id if self._orchestrator is not None else None,
            alerted=self.alerted,
            spec=self.spec,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, alerted={self.alerted})"


class FunctionAlert(Alert):
    """Adapt a single-argument callable to :class:`Alert`.

    The callable receives the attached orchestrator; a non-``None``
    return value becomes the ``alerted`` flag.
    """

    def __init__(self, func: Callable[[QueryOrchestrator], Any], name: str | None = None) -> None:
        super().__init__(name or getattr(func, "__name__", None))
        self._func = func

    def handle_update(self) -> None:
        if self._orchestrator is None:
            return
        result = self._func(self._orchestrator)
        if result is not None:
            self.alerted = bool(result)


class AlertDescriptor(AggBaseModel):
    """Document-friendly projection of an alert."""

    name: str
    query_id: str | None = None
    alerted: bool = False
    spec: BehaviorSpec | None = None

    def to_element(self) -> ET.Element:
        element = ET.Element(ALERT_TAG, name=self.name, alerted=str(self.alerted).lower())
        if self.query_id is not None:
            element.set("queryId", self.query_id)
        if self.spec is not None:
            element.append(self.spec.to_element())
        return element

    @classmethod
    def from_element(cls, element: ET.Element) -> AlertDescriptor:
        name = element.get("name")
        if not name:
            raise DocumentError(f"<{ALERT_TAG}> has no name attribute")
        spec_element = next(iter(element), None)
        return cls(
            name=name,
            query_id=element.get("queryId"),
            alerted=element.get("alerted", "false") == "true",
            spec=BehaviorSpec.from_element(spec_element) if spec_element is not None else None,
        )


class AlertRegistry:
    """Insertion-ordered alerts of one orchestrator.

    Guarded by its own lock, independent from the merge store lock.
    Iteration walks a copy, so alerts may be added or removed while a
    notification is being dispatched.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._alerts: list[Alert] = []

    def add(self, alert: Alert) -> None:
        with self._lock:
            if any(existing.name == alert.name for existing in self._alerts):
                raise AggConfigError(f"an alert named {alert.name!r} is already registered")
            self._alerts.append(alert)

    def remove(self, name: str) -> Alert | None:
        """Remove the alert called *name*; a no-op when there is none."""
        with self._lock:
            for index, alert in enumerate(self._alerts):
                if alert.name == name:
                    return self._alerts.pop(index)
        return None

    def get(self, name: str) -> Alert | None:
        with self._lock:
            return next((alert for alert in self._alerts if alert.name == name), None)

    def snapshot(self) -> list[Alert]:
        with self._lock:
            return list(self._alerts)

    def names(self) -> list[str]:
        return [alert.name for alert in self.snapshot()]

    def __iter__(self) -> Iterator[Alert]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        with self._lock:
            return len(self._alerts)
