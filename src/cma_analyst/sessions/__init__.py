"""Session storage."""

from cma_analyst.sessions.store import InMemorySessionStore, SessionStore

__all__ = ["InMemorySessionStore", "SessionStore"]
