"""Shared base model for pyagg records."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class AggBaseModel(BaseModel):
    """Base for immutable pyagg records.

    * frozen, so records can be handed to aggregators and alerts
      without defensive copies
    * unknown fields are rejected
    * numeric field values are coerced to strings, since every atom
      field travels as text
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )
