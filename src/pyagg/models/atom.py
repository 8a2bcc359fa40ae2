"""Data atoms and compound keys.

An atom is one flat record reported by a source.  Its fields are split
into identifiers and values; which identifier names key a store is
decided once, by the first atom ever merged into it.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping, Sequence
from typing import Any

from pydantic import Field, field_validator

from pyagg._constants import XML_INVALID_CHARS
from pyagg.exceptions import KeyDerivationError
from pyagg.models._base import AggBaseModel

CompoundKey = tuple[str, ...]
"""Ordered identifier values of an atom, in schema order."""

_INVALID_CHAR = re.compile(f"[{XML_INVALID_CHARS}]")


class DataAtom(AggBaseModel):
    """A single record: ordered identifier fields plus value fields."""

    identifiers: dict[str, str] = Field(default_factory=dict)
    values: dict[str, str] = Field(default_factory=dict)

    @field_validator("identifiers", "values")
    @classmethod
    def _reject_unrepresentable(cls, fields: dict[str, str]) -> dict[str, str]:
        # Atoms travel in XML documents, which cannot carry these characters.
        for name, value in fields.items():
            match = _INVALID_CHAR.search(name) or _INVALID_CHAR.search(value)
            if match is not None:
                raise ValueError(f"field {name!r} contains unrepresentable character {match.group()!r}")
        return fields

    @classmethod
    def from_parts(
        cls,
        schema: Sequence[str],
        key: CompoundKey,
        values: Mapping[str, str],
    ) -> DataAtom:
        """Rebuild an atom from a schema, its key and its value map."""
        return cls(identifiers=dict(zip(schema, key, strict=True)), values=dict(values))

    @property
    def fields(self) -> dict[str, str]:
        """All fields, identifiers first."""
        merged = dict(self.identifiers)
        for name, value in self.values.items():
            merged.setdefault(name, value)
        return merged

    def identifier_names(self) -> tuple[str, ...]:
        return tuple(self.identifiers)

    def get(self, name: str, default: Any = None) -> Any:
        if name in self.identifiers:
            return self.identifiers[name]
        return self.values.get(name, default)

    def __contains__(self, name: object) -> bool:
        return name in self.identifiers or name in self.values

    def iter_fields(self) -> Iterator[tuple[str, str]]:
        yield from self.fields.items()

    def with_identifier(self, name: str, value: str) -> DataAtom:
        """Return a copy carrying an extra (or replaced) identifier."""
        identifiers = dict(self.identifiers)
        identifiers[name] = value
        return DataAtom(identifiers=identifiers, values=dict(self.values))

    def with_values(self, **updates: Any) -> DataAtom:
        """Return a copy with some value fields replaced.

        Convenient for melders, e.g. ``a.with_values(load=str(total))``.
        """
        values = dict(self.values)
        values.update({name: str(value) for name, value in updates.items()})
        return DataAtom(identifiers=dict(self.identifiers), values=values)

    def key(self, schema: Sequence[str]) -> CompoundKey:
        """Derive the compound key of this atom for *schema*.

        Schema fields are looked up among identifiers first, then values.
        """
        parts: list[str] = []
        for name in schema:
            value = self.get(name)
            if value is None:
                raise KeyDerivationError(f"atom is missing identifier field {name!r}", field=name)
            parts.append(value)
        return tuple(parts)

    def split(self, schema: Sequence[str]) -> tuple[CompoundKey, dict[str, str]]:
        """Split into the schema key and the remaining value fields."""
        key = self.key(schema)
        declared = set(schema)
        payload = {name: value for name, value in self.iter_fields() if name not in declared}
        return key, payload
