"""Ingestion layer.

Source-side helpers that turn matched source objects into the decoded
:class:`pyagg.models.delta.UpdateDelta` records a query consumes.
"""

__all__: list[str] = []
