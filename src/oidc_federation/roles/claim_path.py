"""Nested lookup into access-token claims.

Claims arrive as decoded JSON (dicts and lists), but callers may also hand in
attribute-style objects such as ``SimpleNamespace`` or pydantic models. Both
are walked the same way.
"""

from collections.abc import Mapping
from typing import Any, Sequence

_MISSING = object()

# Values that are never descended into by name
_LEAF_TYPES = (str, bytes, int, float, bool, list, tuple)


def is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _child(node: Any, name: str) -> Any:
    if isinstance(node, Mapping):
        return node.get(name, _MISSING)
    if isinstance(node, _LEAF_TYPES):
        return _MISSING
    return getattr(node, name, _MISSING)


def resolve_claim_path(root: Any, path: Sequence[str]) -> list[Any]:
    """Descend ``root`` along ``path`` and return the value as a list.

    Returns an empty list as soon as a node is ``None``, a scalar or list, or
    lacks the next key/attribute. A list or tuple at the end of the path is returned as a
    list; any other value is wrapped in a one-element list. A final ``None``
    resolves to nothing.

    >>> resolve_claim_path({"realm_access": {"roles": ["admin"]}}, ["realm_access", "roles"])
    ['admin']
    >>> resolve_claim_path({"realm_access": None}, ["realm_access", "roles"])
    []
    """
    node = root
    for name in path:
        if node is None:
            return []
        node = _child(node, name)
        if node is _MISSING:
            return []

    if node is None:
        return []
    if is_sequence(node):
        return list(node)
    return [node]
