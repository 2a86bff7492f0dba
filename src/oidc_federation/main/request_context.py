"""Utilities for storing per-request logging context using contextvars."""

from __future__ import annotations

import hashlib
from contextvars import ContextVar
from typing import Any, Dict


_request_context: ContextVar[Dict[str, Any]] = ContextVar("request_context", default={})


def get_request_context() -> Dict[str, Any]:
    """Return a copy of the current request context."""
    context = _request_context.get()
    return dict(context) if context else {}


def set_request_context(**values: Any) -> Dict[str, Any]:
    """Merge provided values into the stored context.

    Passing ``None`` clears the value for that key.
    """

    current = get_request_context()
    for key, value in values.items():
        if value is None:
            current.pop(key, None)
        else:
            current[key] = value
    _request_context.set(current)
    return current


def clear_request_context() -> None:
    """Remove all stored context for the active task."""

    _request_context.set({})


def session_fingerprint(session_id: str | None) -> str | None:
    """Short, non-reversible tag for a browser session id, safe to log."""
    if not session_id:
        return None
    return hashlib.sha256(session_id.encode("utf-8")).hexdigest()[:12]
