"""Session registry: one engine per conversation, owned by the host."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterator

from roleplay_state.config import EngineConfig
from roleplay_state.engine import RoleplayEngine
from roleplay_state.errors import RoleplayError
from roleplay_state.store import SessionStore

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Maps session keys to engines.

    Use ``session(key)`` to run a turn: it holds that session's lock, so turns
    for one session serialize while different sessions proceed in parallel.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        store: SessionStore | None = None,
        engine_factory: Callable[[], RoleplayEngine] | None = None,
    ):
        self.config = config or EngineConfig()
        self.store = store
        self._factory = engine_factory or (lambda: RoleplayEngine(self.config))
        self._engines: dict[str, RoleplayEngine] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def __contains__(self, key: str) -> bool:
        return key in self._engines

    def __len__(self) -> int:
        return len(self._engines)

    def keys(self) -> list[str]:
        with self._guard:
            return list(self._engines)

    def _lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            return self._locks.setdefault(key, threading.RLock())

    def get(self, key: str) -> RoleplayEngine | None:
        with self._guard:
            return self._engines.get(key)

    def get_or_create(self, key: str) -> RoleplayEngine:
        with self._guard:
            engine = self._engines.get(key)
            if engine is None:
                engine = self._factory()
                self._engines[key] = engine
                logger.debug("Created engine for session %s", key)
            return engine

    def remove(self, key: str) -> bool:
        with self._lock_for(key):
            with self._guard:
                self._locks.pop(key, None)
                return self._engines.pop(key, None) is not None

    @contextmanager
    def session(self, key: str, create: bool = True) -> Iterator[RoleplayEngine]:
        """Hold the session lock and yield its engine.

        Raises KeyError if the session does not exist and ``create`` is False.
        """
        with self._lock_for(key):
            engine = self.get_or_create(key) if create else self.get(key)
            if engine is None:
                raise KeyError(f"Session not found: {key}")
            yield engine

    def _require_store(self) -> SessionStore:
        if self.store is None:
            raise RoleplayError("No session store configured")
        return self.store

    def save(self, key: str) -> None:
        store = self._require_store()
        with self.session(key, create=False) as engine:
            store.save(key, engine.export_state())

    def restore(self, key: str) -> RoleplayEngine | None:
        """Load a saved session into the registry, replacing any live engine."""
        state = self._require_store().load(key)
        if state is None:
            return None
        with self._lock_for(key):
            engine = self._factory()
            engine.import_state(state)
            with self._guard:
                self._engines[key] = engine
        logger.info("Restored session %s at turn %d", key, state.turn_count)
        return engine
