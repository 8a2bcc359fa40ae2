"""State/store layer.

This package is the single source of truth for how decoded source
updates are merged into a per-query keyed view, and how that view is
projected to its XML document.
"""
