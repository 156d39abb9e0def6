"""Session storage with TTL eviction."""

import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Protocol

from cma_analyst.logging import get_logger
from cma_analyst.models import AnalysisSession

logger = get_logger(__name__)


class SessionStore(Protocol):
    """Key-value store for analysis sessions.

    Writes are last-writer-wins per session id; there is no cross-key locking.
    """

    async def get(self, session_id: str) -> AnalysisSession | None: ...

    async def put(self, session: AnalysisSession) -> None: ...

    async def delete(self, session_id: str) -> bool: ...

    async def evict_expired(self) -> int: ...


class InMemorySessionStore:
    """Process-local session store.

    Each entry expires ``ttl_seconds`` after its last write. When more than
    ``max_entries`` sessions are held, the least recently used are dropped.
    Stored sessions are copies, so callers can't mutate the store's state.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = 3600,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, AnalysisSession]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, session_id: str) -> AnalysisSession | None:
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        expires_at, session = entry
        if self._clock() >= expires_at:
            del self._entries[session_id]
            logger.debug("session_expired", session_id=session_id)
            return None
        self._entries.move_to_end(session_id)
        return session.model_copy(deep=True)

    async def put(self, session: AnalysisSession) -> None:
        self._entries[session.id] = (self._clock() + self._ttl, session.model_copy(deep=True))
        self._entries.move_to_end(session.id)
        while len(self._entries) > self._max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.info("session_evicted_lru", session_id=evicted)

    async def delete(self, session_id: str) -> bool:
        return self._entries.pop(session_id, None) is not None

    async def evict_expired(self) -> int:
        now = self._clock()
        expired = [sid for sid, (expires_at, _) in self._entries.items() if now >= expires_at]
        for sid in expired:
            del self._entries[sid]
        if expired:
            logger.info("sessions_expired", count=len(expired))
        return len(expired)
