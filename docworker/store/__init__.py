from __future__ import annotations

from ._store import SessionStore

__all__ = ["SessionStore"]
