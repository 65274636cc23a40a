"""Agent lookup by key with a short-lived in-process cache."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from synorg.orchestrator.models import AgentView
from synorg.orchestrator.repository import WorkRepository

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3_600.0


class AgentDirectory:
    """Resolves agent keys through the repository, caching hits for ``ttl_seconds``.

    Misses are never cached so newly registered agents become visible immediately.
    """

    def __init__(
        self,
        repository: WorkRepository,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.repository = repository
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, AgentView]] = {}

    def get(self, key: str) -> AgentView | None:
        normalized = key.strip()
        if not normalized:
            return None
        now = self._clock()
        with self._lock:
            cached = self._entries.get(normalized)
            if cached is not None and now - cached[0] < self.ttl_seconds:
                return cached[1]
        agent = self.repository.get_agent_by_key(normalized)
        if agent is None:
            logger.debug("Agent %s not found", normalized)
            return None
        with self._lock:
            self._entries[normalized] = (now, agent)
        return agent

    def invalidate(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key.strip(), None)
