"""Declarative behavior specs and their XML document form.

A spec names what kind of behavior is wanted (predicate, encoder, alert
or aggregator) and how to obtain it: a natively registered factory
looked up by name, or source text evaluated by a scripted dialect host.

Document layout::

    <aggregator implementation="scripted" language="python" type="melder" aggIds="siteId">
      <script>def instantiate(): ...</script>
    </aggregator>

    <predicate implementation="native">
      <class>field_equals</class>
      <param name="field">status</param>
    </predicate>
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from enum import StrEnum
from typing import Any

from pydantic import Field, field_validator, model_validator

from pyagg._constants import COLLATION_ID_SEPARATORS
from pyagg.exceptions import DocumentError
from pyagg.models._base import AggBaseModel
from pyagg.state.document import element_text, parse_document, to_text

_COLLATION_SPLIT = re.compile(f"[{re.escape(COLLATION_ID_SEPARATORS)}]+")


class BehaviorKind(StrEnum):
    PREDICATE = "predicate"
    ENCODER = "encoder"
    ALERT = "alert"
    AGGREGATOR = "aggregator"


class ImplementationKind(StrEnum):
    NATIVE = "native"
    SCRIPTED = "scripted"


class AggregationStrategy(StrEnum):
    DIRECT = "direct"
    MELDER = "melder"


def parse_collation_ids(text: str | None) -> tuple[str, ...]:
    """Split a collation id list on spaces, commas, semicolons or line breaks."""
    if not text:
        return ()
    return tuple(token for token in _COLLATION_SPLIT.split(text) if token)


def encode_collation_ids(ids: tuple[str, ...]) -> str:
    return " ".join(ids)


class BehaviorSpec(AggBaseModel):
    """Declarative description of a pluggable behavior.

    ``implementation_kind`` and ``dialect`` are kept as open strings so a
    spec naming a back-end this process does not know still decodes; the
    resolver answers ``None`` for it.
    """

    behavior_kind: BehaviorKind
    implementation_kind: str = ImplementationKind.NATIVE
    dialect: str | None = None
    source_text: str = ""
    aggregation: AggregationStrategy | None = None
    collation_ids: tuple[str, ...] = ()
    params: dict[str, str] = Field(default_factory=dict)

    @field_validator("implementation_kind")
    @classmethod
    def _normalize_implementation(cls, value: str) -> str:
        return value.strip().lower() or ImplementationKind.NATIVE

    @field_validator("dialect")
    @classmethod
    def _normalize_dialect(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip().lower() or None

    @field_validator("collation_ids", mode="before")
    @classmethod
    def _split_collation_ids(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, str):
            return parse_collation_ids(value)
        return value

    @model_validator(mode="after")
    def _default_aggregation(self) -> BehaviorSpec:
        if self.behavior_kind is BehaviorKind.AGGREGATOR and self.aggregation is None:
            object.__setattr__(self, "aggregation", AggregationStrategy.DIRECT)
        return self

    @classmethod
    def native(
        cls,
        behavior_kind: BehaviorKind,
        name: str,
        params: dict[str, str] | None = None,
        **extra: Any,
    ) -> BehaviorSpec:
        return cls(
            behavior_kind=behavior_kind,
            implementation_kind=ImplementationKind.NATIVE,
            source_text=name,
            params=params or {},
            **extra,
        )

    @classmethod
    def scripted(
        cls,
        behavior_kind: BehaviorKind,
        source_text: str,
        dialect: str = "python",
        **extra: Any,
    ) -> BehaviorSpec:
        return cls(
            behavior_kind=behavior_kind,
            implementation_kind=ImplementationKind.SCRIPTED,
            dialect=dialect,
            source_text=source_text,
            **extra,
        )

    @property
    def is_native(self) -> bool:
        return self.implementation_kind == ImplementationKind.NATIVE

    # ------------------------------------------------------------------
    # Document form
    # ------------------------------------------------------------------

    def to_element(self) -> ET.Element:
        element = ET.Element(self.behavior_kind.value, implementation=str(self.implementation_kind))
        if self.dialect is not None:
            element.set("language", self.dialect)
        if self.aggregation is not None:
            element.set("type", self.aggregation.value)
        if self.collation_ids:
            element.set("aggIds", encode_collation_ids(self.collation_ids))

        body_tag = "class" if self.is_native else "script"
        ET.SubElement(element, body_tag).text = self.source_text
        for name, value in self.params.items():
            ET.SubElement(element, "param", name=name).text = value
        return element

    def to_document(self) -> str:
        return to_text(self.to_element())

    @classmethod
    def from_element(cls, element: ET.Element) -> BehaviorSpec:
        try:
            kind = BehaviorKind(element.tag)
        except ValueError as exc:
            raise DocumentError(f"unknown behavior kind <{element.tag}>") from exc

        implementation = element.get("implementation", ImplementationKind.NATIVE)
        body = element.find("class" if implementation == ImplementationKind.NATIVE else "script")
        source_text = element_text(body) if body is not None else ""
        if implementation == ImplementationKind.NATIVE:
            source_text = source_text.strip()

        params: dict[str, str] = {}
        for param in element.iter("param"):
            name = param.get("name")
            if name is None:
                raise DocumentError("<param> has no name attribute")
            params[name] = element_text(param)

        try:
            return cls(
                behavior_kind=kind,
                implementation_kind=implementation,
                dialect=element.get("language"),
                source_text=source_text,
                aggregation=element.get("type"),
                collation_ids=element.get("aggIds"),
                params=params,
            )
        except ValueError as exc:
            raise DocumentError(f"invalid <{element.tag}> behavior spec: {exc}") from exc

    @classmethod
    def from_document(cls, text: str) -> BehaviorSpec:
        return cls.from_element(parse_document(text))
