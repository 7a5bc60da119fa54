# Session Storage Package
"""
Per-session persistence for the triage dialogue.
"""

from .session_store import (
    InMemorySessionStore,
    RedisSessionStore,
    SessionRecord,
    SessionStore,
    create_session_store,
)

__all__ = [
    "InMemorySessionStore",
    "RedisSessionStore",
    "SessionRecord",
    "SessionStore",
    "create_session_store"
]
