"""Query identity and its document form."""

from __future__ import annotations

import xml.etree.ElementTree as ET

from pydantic import field_validator, model_validator

from pyagg._constants import QUERY_TAG, SOURCE_TAG
from pyagg.behavior.spec import BehaviorKind, BehaviorSpec
from pyagg.exceptions import DocumentError
from pyagg.models._base import AggBaseModel
from pyagg.state.document import element_text, parse_document, to_text


class AggregationQuery(AggBaseModel):
    """Immutable description of a standing query.

    ``source_ids`` lists the sources the query is sent to; an empty tuple
    leaves the choice to the host.
    """

    query_id: str
    name: str = ""
    predicate: BehaviorSpec
    aggregation: BehaviorSpec | None = None
    source_ids: tuple[str, ...] = ()

    @field_validator("query_id")
    @classmethod
    def _normalize_query_id(cls, value: str) -> str:
        query_id = value.strip()
        if not query_id:
            raise ValueError("query_id must be non-empty")
        return query_id

    @model_validator(mode="after")
    def _check_spec_kinds(self) -> AggregationQuery:
        if self.predicate.behavior_kind is not BehaviorKind.PREDICATE:
            raise ValueError(f"predicate spec must describe a predicate, got {self.predicate.behavior_kind}")
        if self.aggregation is not None and self.aggregation.behavior_kind is not BehaviorKind.AGGREGATOR:
            raise ValueError(f"aggregation spec must describe an aggregator, got {self.aggregation.behavior_kind}")
        return self

    @property
    def display_name(self) -> str:
        return self.name or self.query_id

    @property
    def has_aggregation(self) -> bool:
        return self.aggregation is not None

    def to_element(self) -> ET.Element:
        element = ET.Element(QUERY_TAG, id=self.query_id, name=self.name)
        element.append(self.predicate.to_element())
        if self.aggregation is not None:
            element.append(self.aggregation.to_element())
        for source_id in self.source_ids:
            ET.SubElement(element, SOURCE_TAG).text = source_id
        return element

    def to_document(self) -> str:
        return to_text(self.to_element())

    @classmethod
    def from_element(cls, element: ET.Element) -> AggregationQuery:
        if element.tag != QUERY_TAG:
            raise DocumentError(f"expected <{QUERY_TAG}>, got <{element.tag}>")
        predicate = element.find(BehaviorKind.PREDICATE.value)
        if predicate is None:
            raise DocumentError(f"<{QUERY_TAG}> is missing its predicate")
        aggregation = element.find(BehaviorKind.AGGREGATOR.value)
        try:
            return cls(
                query_id=element.get("id", ""),
                name=element.get("name", ""),
                predicate=BehaviorSpec.from_element(predicate),
                aggregation=BehaviorSpec.from_element(aggregation) if aggregation is not None else None,
                source_ids=tuple(element_text(source) for source in element.findall(SOURCE_TAG)),
            )
        except ValueError as exc:
            raise DocumentError(f"invalid <{QUERY_TAG}> document: {exc}") from exc

    @classmethod
    def from_document(cls, text: str) -> AggregationQuery:
        return cls.from_element(parse_document(text))
