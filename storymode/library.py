"""Story type and author style catalog.

The catalog is shared by every chat. Chats only hold ids, so a deleted or
unknown id simply means "nothing selected".
"""

from __future__ import annotations

import copy
import json
import logging
import time
from datetime import datetime, timezone
from difflib import SequenceMatcher
from pathlib import Path
from typing import Any, Callable, Generic, TypeVar

from narrative.phases import PHASES
from narrative.template import DEFAULT_PROGRESS_TEMPLATE

from .memory import KeyValueStore, Notifier, PersistenceError
from .models import AuthorStyle, StoryType

logger = logging.getLogger(__name__)

STORY_TYPES_KEY = "story_types"
AUTHOR_STYLES_KEY = "author_styles"

_FUZZY_THRESHOLD = 0.7

T = TypeVar("T", StoryType, AuthorStyle)


class LibraryImportError(ValueError):
    """Raised when an import payload is not a valid catalog export."""


def _story_type_text(item: StoryType) -> list[str]:
    return [item.name, *item.category, item.story_prompt]


def _author_style_text(item: AuthorStyle) -> list[str]:
    return [item.name, *item.category, item.author_prompt, *item.keywords]


def _fuzzy_tokens(item: StoryType | AuthorStyle) -> list[str]:
    tokens = item.name.lower().split() + [c.lower() for c in item.category]
    if isinstance(item, AuthorStyle):
        tokens += [k.lower() for k in item.keywords]
    return tokens


class _Shelf(Generic[T]):
    """One named collection persisted under a global key."""

    def __init__(
        self,
        label: str,
        key: str,
        model: Callable[[dict], T],
        search_text: Callable[[T], list[str]],
    ):
        self.label = label
        self.key = key
        self.original_key = f"original_{key}"
        self._model = model
        self._search_text = search_text
        self.items: list[T] = []
        self.originals: list[T] = []

    def parse(self, raw: Any) -> list[T]:
        if not isinstance(raw, list):
            return []
        return [self._model(entry) for entry in raw if isinstance(entry, dict)]

    def find(self, item_id: str) -> T | None:
        if not item_id:
            return None
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def find_original(self, item_id: str) -> T | None:
        for item in self.originals:
            if item.id == item_id:
                return item
        return None

    def upsert(self, item: T) -> bool:
        """Replace the entry with the same id, or append. True if replaced."""
        for idx, existing in enumerate(self.items):
            if existing.id == item.id:
                self.items[idx] = item
                return True
        self.items.append(item)
        return False

    def remove(self, item_id: str) -> bool:
        before = len(self.items)
        self.items = [item for item in self.items if item.id != item_id]
        return len(self.items) != before

    def search(self, query: str) -> list[T]:
        ordered = sorted(self.items, key=lambda item: item.name.casefold())
        q = (query or "").strip().lower()
        if not q:
            return ordered

        hits = [
            item
            for item in ordered
            if any(q in (text or "").lower() for text in self._search_text(item))
        ]
        if hits:
            return hits

        return [
            item
            for item in ordered
            if any(
                SequenceMatcher(None, q, token).ratio() >= _FUZZY_THRESHOLD
                for token in [item.name.lower(), *_fuzzy_tokens(item)]
            )
        ]

    def dumps(self) -> str:
        return json.dumps([item.to_dict() for item in self.items], indent=2, ensure_ascii=False)

    def loads(self, text: str) -> list[T]:
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise LibraryImportError(f"Invalid JSON: {exc}") from exc
        if not isinstance(data, list):
            raise LibraryImportError(f"Invalid format: expected an array of {self.label}s")

        parsed = []
        for entry in data:
            if not isinstance(entry, dict) or not entry.get("id") or not entry.get("name"):
                raise LibraryImportError(f"Invalid {self.label}: missing id or name")
            parsed.append(self._model(entry))
        return parsed


class LibraryStore:
    """CRUD, import/export and search over the shared catalog."""

    def __init__(
        self,
        store: KeyValueStore,
        seed_dir: str | Path | None = None,
        notify: Notifier | None = None,
    ):
        self._store = store
        self._seed_dir = Path(seed_dir) if seed_dir else None
        self._notify = notify
        self._story = _Shelf("story type", STORY_TYPES_KEY, StoryType.from_dict, _story_type_text)
        self._style = _Shelf("author style", AUTHOR_STYLES_KEY, AuthorStyle.from_dict, _author_style_text)

    @property
    def story_types(self) -> list[StoryType]:
        return list(self._story.items)

    @property
    def author_styles(self) -> list[AuthorStyle]:
        return list(self._style.items)

    # ── Loading ─────────────────────────────────────────────────

    async def load(self) -> None:
        await self._load_shelf(self._story, "story_types.json")
        await self._load_shelf(self._style, "author_styles.json")

    async def _load_shelf(self, shelf: _Shelf, seed_file: str) -> None:
        try:
            stored = shelf.parse(await self._store.get(shelf.key, []))
        except PersistenceError as exc:
            logger.error("Failed to load %ss: %s", shelf.label, exc)
            stored = []

        if stored:
            shelf.items = stored
            logger.info("Loaded %d %ss from storage", len(stored), shelf.label)
        else:
            shelf.items = self._read_seed(shelf, seed_file)
            if shelf.items:
                await self._save(shelf)
                logger.info("Loaded %d %ss from seed file", len(shelf.items), shelf.label)

        try:
            originals = shelf.parse(await self._store.get(shelf.original_key, []))
        except PersistenceError as exc:
            logger.error("Failed to load original %ss: %s", shelf.label, exc)
            originals = []

        if originals:
            shelf.originals = originals
        elif shelf.items:
            shelf.originals = copy.deepcopy(shelf.items)
            try:
                await self._store.set(shelf.original_key, [i.to_dict() for i in shelf.originals])
            except PersistenceError as exc:
                logger.error("Failed to save original %ss: %s", shelf.label, exc)

    def _read_seed(self, shelf: _Shelf, seed_file: str) -> list:
        if self._seed_dir is None:
            return []
        path = self._seed_dir / seed_file
        if not path.exists():
            logger.warning("Seed file not found: %s", path)
            return []
        try:
            return shelf.parse(json.loads(path.read_text(encoding="utf-8")))
        except ValueError as exc:
            logger.error("Seed file %s is not valid JSON: %s", path, exc)
            return []

    async def _save(self, shelf: _Shelf) -> bool:
        try:
            await self._store.set(shelf.key, [item.to_dict() for item in shelf.items])
        except PersistenceError as exc:
            logger.error("Failed to save %ss: %s", shelf.label, exc)
            if self._notify:
                self._notify("error", f"Failed to save {shelf.label}s")
            return False
        logger.debug("Saved %d %ss", len(shelf.items), shelf.label)
        return True

    # ── Story types ─────────────────────────────────────────────

    def story_type(self, type_id: str) -> StoryType | None:
        return self._story.find(type_id)

    @staticmethod
    def new_story_type() -> StoryType:
        return StoryType(
            id=f"custom_{int(time.time() * 1000)}",
            name="New Story Type",
            category=["Custom"],
            progress_template=DEFAULT_PROGRESS_TEMPLATE,
            phase_prompts={p: "" for p in PHASES},
        )

    async def add_story_type(self, story_type: StoryType) -> StoryType:
        if self._story.find(story_type.id):
            raise ValueError(f"Story type '{story_type.id}' already exists")
        self._story.items.append(story_type)
        await self._save(self._story)
        logger.info("Story type added: %s", story_type.id)
        return story_type

    async def update_story_type(self, story_type: StoryType) -> bool:
        if not self._story.find(story_type.id):
            return False
        self._story.upsert(story_type)
        await self._save(self._story)
        logger.info("Story type updated: %s", story_type.id)
        return True

    async def delete_story_type(self, type_id: str) -> bool:
        if not self._story.remove(type_id):
            return False
        await self._save(self._story)
        logger.info("Story type deleted: %s", type_id)
        return True

    async def import_story_types(self, text: str) -> int:
        return await self._import(self._story, text)

    def export_story_types(self) -> str:
        return self._story.dumps()

    def search_story_types(self, query: str = "") -> list[StoryType]:
        return self._story.search(query)

    def has_original_story_type(self, type_id: str) -> bool:
        return self._story.find_original(type_id) is not None

    async def revert_story_type(self, type_id: str) -> StoryType | None:
        return await self._revert(self._story, type_id)

    # ── Author styles ───────────────────────────────────────────

    def author_style(self, style_id: str) -> AuthorStyle | None:
        return self._style.find(style_id)

    @staticmethod
    def new_author_style() -> AuthorStyle:
        return AuthorStyle(
            id=f"custom_{int(time.time() * 1000)}",
            name="New Author Style",
            category=["Custom"],
        )

    async def add_author_style(self, style: AuthorStyle) -> AuthorStyle:
        if self._style.find(style.id):
            raise ValueError(f"Author style '{style.id}' already exists")
        self._style.items.append(style)
        await self._save(self._style)
        logger.info("Author style added: %s", style.id)
        return style

    async def update_author_style(self, style: AuthorStyle) -> bool:
        if not self._style.find(style.id):
            return False
        self._style.upsert(style)
        await self._save(self._style)
        logger.info("Author style updated: %s", style.id)
        return True

    async def delete_author_style(self, style_id: str) -> bool:
        if not self._style.remove(style_id):
            return False
        await self._save(self._style)
        logger.info("Author style deleted: %s", style_id)
        return True

    async def import_author_styles(self, text: str) -> int:
        return await self._import(self._style, text)

    def export_author_styles(self) -> str:
        return self._style.dumps()

    def search_author_styles(self, query: str = "") -> list[AuthorStyle]:
        return self._style.search(query)

    def has_original_author_style(self, style_id: str) -> bool:
        return self._style.find_original(style_id) is not None

    async def revert_author_style(self, style_id: str) -> AuthorStyle | None:
        return await self._revert(self._style, style_id)

    # ── Shared ──────────────────────────────────────────────────

    async def _import(self, shelf: _Shelf, text: str) -> int:
        imported = shelf.loads(text)
        for item in imported:
            shelf.upsert(item)
        await self._save(shelf)
        logger.info("Imported %d %ss", len(imported), shelf.label)
        return len(imported)

    async def _revert(self, shelf: _Shelf, item_id: str):
        original = shelf.find_original(item_id)
        if original is None:
            return None
        restored = copy.deepcopy(original)
        shelf.upsert(restored)
        await self._save(shelf)
        logger.info("Reverted %s %s to original", shelf.label, item_id)
        return restored


def export_filename(kind: str, now: datetime | None = None) -> str:
    """File name for an export, e.g. ``story-types-2026-01-15T10-00-00.json``."""
    now_dt = now or datetime.now(timezone.utc)
    stamp = now_dt.strftime("%Y-%m-%dT%H-%M-%S")
    return f"{kind}-{stamp}.json"
