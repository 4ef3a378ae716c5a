"""Persistence for story mode.

Global records (settings, catalog) and per-chat metadata live in one SQLite
database. ArcState is stored per chat under a fixed metadata namespace.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiosqlite

from narrative.phases import effective_arc_length

from .models import ArcState

if TYPE_CHECKING:
    from .config import GlobalSettings

logger = logging.getLogger(__name__)

ARC_STATE_NAMESPACE = "story_mode"

ChangeListener = Callable[[str, str], Awaitable[None] | None]
Notifier = Callable[[str, str], None]

_SCHEMA = """
CREATE TABLE IF NOT EXISTS global_store (
    key TEXT PRIMARY KEY,
    value TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS chat_metadata (
    chat_id TEXT,
    namespace TEXT,
    value TEXT,
    updated_at TEXT,
    PRIMARY KEY (chat_id, namespace)
);
"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PersistenceError(Exception):
    """Raised when the key-value store cannot be read or written."""


class KeyValueStore:
    """JSON blobs keyed globally or per chat."""

    def __init__(self, db_path: str | Path):
        self._path = Path(db_path)
        self._db: aiosqlite.Connection | None = None
        self._listeners: list[ChangeListener] = []

    async def open(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self._path))
        await self._db.executescript(_SCHEMA)
        await self._db.commit()
        logger.debug("Store ready at %s", self._path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> KeyValueStore:
        await self.open()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    def add_listener(self, listener: ChangeListener) -> None:
        """Register a callback fired after each successful per-chat write."""
        self._listeners.append(listener)

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise PersistenceError(f"Store at {self._path} is not open")
        return self._db

    # ── Global records ──────────────────────────────────────────

    async def get(self, key: str, default: Any = None) -> Any:
        try:
            cursor = await self._conn().execute(
                "SELECT value FROM global_store WHERE key = ? LIMIT 1", (key,)
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Failed to read '{key}': {exc}") from exc
        if row is None or row[0] is None:
            return default
        return self._loads(row[0])

    async def set(self, key: str, value: Any) -> None:
        await self._write(
            "INSERT INTO global_store (key, value, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at",
            (key, self._dumps(key, value), _now_iso()),
        )

    async def delete(self, key: str) -> None:
        await self._write("DELETE FROM global_store WHERE key = ?", (key,))

    # ── Per-chat metadata ───────────────────────────────────────

    async def get_chat_metadata(self, chat_id: str, namespace: str, default: Any = None) -> Any:
        try:
            cursor = await self._conn().execute(
                "SELECT value FROM chat_metadata WHERE chat_id = ? AND namespace = ? LIMIT 1",
                (chat_id, namespace),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Failed to read {namespace} for chat {chat_id}: {exc}") from exc
        if row is None or row[0] is None:
            return default
        return self._loads(row[0])

    async def set_chat_metadata(self, chat_id: str, namespace: str, value: Any) -> None:
        await self._write(
            "INSERT INTO chat_metadata (chat_id, namespace, value, updated_at) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(chat_id, namespace) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at",
            (chat_id, namespace, self._dumps(namespace, value), _now_iso()),
        )
        await self._notify(chat_id, namespace)

    # ── Internals ───────────────────────────────────────────────

    @staticmethod
    def _loads(raw: str) -> Any:
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise PersistenceError(f"Stored value is not valid JSON: {exc}") from exc

    @staticmethod
    def _dumps(key: str, value: Any) -> str:
        try:
            return json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"Value for '{key}' is not JSON serializable: {exc}") from exc

    async def _write(self, query: str, params: tuple) -> None:
        db = self._conn()
        try:
            await db.execute(query, params)
            await db.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Write failed: {exc}") from exc

    async def _notify(self, chat_id: str, namespace: str) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(chat_id, namespace)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.warning("Metadata listener failed for chat %s: %s", chat_id, exc, exc_info=True)


class ArcStateStore:
    """Per-chat ArcState, created on first access from the global defaults.

    The in-memory copy is authoritative for the session: a failed write is
    reported but never rolled back.
    """

    def __init__(
        self,
        store: KeyValueStore,
        defaults: Callable[[], GlobalSettings],
        notify: Notifier | None = None,
    ):
        self._store = store
        self._defaults = defaults
        self._notify = notify
        self._cache: dict[str, ArcState] = {}

    async def get(self, chat_id: str) -> ArcState:
        state = self._cache.get(chat_id)
        if state is not None:
            return state

        try:
            raw = await self._store.get_chat_metadata(chat_id, ARC_STATE_NAMESPACE)
        except PersistenceError as exc:
            # Stored progress may still exist; hand out defaults without caching or writing them.
            logger.error("Failed to load arc state for chat %s: %s", chat_id, exc)
            return self._seed()

        if isinstance(raw, dict):
            state = ArcState.from_dict(raw)
            self._cache[chat_id] = state
            logger.debug("Loaded arc state for chat %s: %s", chat_id, state)
            return state

        state = self._seed()
        self._cache[chat_id] = state
        logger.info("Initialized chat %s with global settings: %s", chat_id, state)
        await self._persist(chat_id, state)
        return state

    async def set(self, chat_id: str, state: ArcState) -> bool:
        """Store *state* for *chat_id*. Returns False if the write failed."""
        self._cache[chat_id] = state
        return await self._persist(chat_id, state)

    def _seed(self) -> ArcState:
        settings = self._defaults()
        return ArcState(
            arc_length=effective_arc_length(settings.arc_length)[0],
            selected_story_type=settings.selected_story_type or "",
            selected_author_style=settings.selected_author_style or "",
        )

    async def _persist(self, chat_id: str, state: ArcState) -> bool:
        try:
            await self._store.set_chat_metadata(chat_id, ARC_STATE_NAMESPACE, state.to_dict())
        except PersistenceError as exc:
            logger.error("Failed to save arc state for chat %s: %s", chat_id, exc)
            if self._notify:
                self._notify("error", "Story Mode could not save arc progress for this chat.")
            return False
        logger.debug("Saved arc state for chat %s: %s", chat_id, state)
        return True
