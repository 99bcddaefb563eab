"""Request option merging for processor calls.

Two strategies exist and they resolve collisions in opposite directions:

* :func:`merge_caller_wins` is a shallow merge where caller options replace
  computed defaults key by key at the top level. Charges use it.
* :func:`merge_defaults_win` is a recursive merge where the built-in values
  replace caller values at every nesting level. Customer creation uses it.
"""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional


def merge_caller_wins(
    defaults: Mapping[str, Any], options: Optional[Mapping[str, Any]] = None
) -> Dict[str, Any]:
    """Shallow merge; a caller key replaces the default value wholesale."""

    merged = dict(defaults)
    merged.update(options or {})
    return merged


def merge_defaults_win(
    options: Optional[Mapping[str, Any]], defaults: Mapping[str, Any]
) -> Dict[str, Any]:
    """Recursive merge; defaults override caller options at every level."""

    merged: Dict[str, Any] = dict(options or {})
    for key, value in defaults.items():
        existing = merged.get(key)
        if isinstance(value, Mapping) and isinstance(existing, Mapping):
            merged[key] = merge_defaults_win(existing, value)
        elif isinstance(value, Mapping):
            merged[key] = merge_defaults_win(None, value)
        else:
            merged[key] = value
    return merged


__all__ = ["merge_caller_wins", "merge_defaults_win"]
