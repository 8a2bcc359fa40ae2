"""Query layer.

A query couples a predicate spec (what sources report) with an optional
aggregation spec (how the merged atoms are summarized).  Each registered
query is served by one orchestrator owning its stores and alerts.
"""
