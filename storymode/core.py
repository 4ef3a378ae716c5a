"""Story mode wiring: storage, settings, catalog, controller and host."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from chat import events
from chat.models import ChatMessage
from chat.session import ChatSession
from narrative import arc_badge, status_line

from .config import GlobalSettings, SettingsManager, load_config
from .controller import ArcProgressionController
from .generation import TextGenerator
from .library import LibraryStore
from .memory import ArcStateStore, KeyValueStore
from .models import ArcState

logger = logging.getLogger(__name__)

_ROOT = Path(__file__).resolve().parent.parent


def _resolve(path: str | Path, root: Path) -> Path:
    path = Path(path)
    return path if path.is_absolute() else root / path


def build_session(
    cfg: dict,
    chat_id: str = "default",
    on_render: Callable[[ChatMessage], None] | None = None,
    root: str | Path | None = None,
) -> ChatSession:
    """Chat host whose history files live under ``storage.chats_dir``."""
    storage = cfg.get("storage", {}) or {}
    chats_dir = storage.get("chats_dir", "data/chats")
    return ChatSession(
        chat_id=chat_id,
        chats_dir=_resolve(chats_dir, Path(root) if root else _ROOT) if chats_dir else None,
        on_render=on_render,
    )


class StoryMode:
    """The story mode extension attached to one chat host.

    Usage::

        async with StoryMode(config=cfg, host=session, generator=gen) as sm:
            await session.send("Once upon a time...")
    """

    def __init__(
        self,
        config: dict | None = None,
        host: ChatSession | None = None,
        generator: TextGenerator | None = None,
        root: str | Path | None = None,
    ):
        self._cfg = config or load_config()
        root_dir = Path(root) if root else _ROOT
        storage = self._cfg.get("storage", {}) or {}
        timing = self._cfg.get("timing", {}) or {}

        self.host = host or build_session(self._cfg, root=root_dir)
        self.generator = generator

        self.store = KeyValueStore(_resolve(storage.get("database", "data/story_mode.db"), root_dir))
        self.settings_manager = SettingsManager(
            self.store,
            defaults=self._cfg.get("story_mode", {}),
            debounce_seconds=timing.get("settings_save_debounce_seconds", 1.0),
        )
        seed_dir = storage.get("seed_dir", "data")
        self.library = LibraryStore(
            self.store,
            seed_dir=_resolve(seed_dir, root_dir) if seed_dir else None,
            notify=self.host.notify,
        )
        self.states = ArcStateStore(
            self.store,
            defaults=lambda: self.settings_manager.settings,
            notify=self.host.notify,
        )
        self.controller = ArcProgressionController(
            self.settings_manager,
            self.states,
            self.library,
            self.host,
            generator=generator,
            chat_load_grace=timing.get("chat_load_grace_seconds", 1.0),
            settle_delay=timing.get("post_arc_settle_seconds", 1.0),
        )

    @property
    def settings(self) -> GlobalSettings:
        return self.settings_manager.settings

    async def start(self) -> None:
        await self.store.open()
        await self.settings_manager.load()
        await self.library.load()
        self.store.add_listener(self._on_metadata_saved)
        self.controller.subscribe(self.host.events)
        await self.controller.refresh_injection()
        logger.info("Story mode loaded (enabled=%s)", self.settings.enabled)

    async def close(self) -> None:
        await self.controller.settled()
        await self.settings_manager.flush()
        await self.store.close()
        closer = getattr(self.generator, "close", None)
        if closer is not None:
            await closer()

    async def __aenter__(self) -> StoryMode:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def _on_metadata_saved(self, chat_id: str, namespace: str) -> None:
        await self.host.events.emit(events.CHAT_METADATA_UPDATED, chat_id, namespace)

    # ── Status ──────────────────────────────────────────────────

    async def state(self) -> ArcState:
        return await self.controller.current_state()

    async def status(self) -> str:
        return status_line(self.settings, await self.state(), self.library)

    async def badge(self) -> str:
        return arc_badge(await self.state())

    # ── Catalog actions that touch chat state ───────────────────

    async def delete_story_type(self, type_id: str) -> bool:
        if not await self.library.delete_story_type(type_id):
            return False
        state = await self.state()
        if state.selected_story_type == type_id:
            state.selected_story_type = ""
            await self.states.set(self.host.chat_id, state)
            await self.controller.refresh_injection()
        return True

    async def delete_author_style(self, style_id: str) -> bool:
        if not await self.library.delete_author_style(style_id):
            return False
        state = await self.state()
        if state.selected_author_style == style_id:
            state.selected_author_style = ""
            await self.states.set(self.host.chat_id, state)
            await self.controller.refresh_injection()
        return True
