"""Configuration loading from settings.yaml and .env, plus global story-mode settings."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from narrative.phases import DEFAULT_ARC_LENGTH

from .memory import KeyValueStore, PersistenceError

logger = logging.getLogger(__name__)

POSITIONS = ("in_prompt", "in_chat", "before_prompt", "none")
ROLES = ("system", "user", "assistant")

SETTINGS_KEY = "settings"

_CHOICES = {"position": POSITIONS, "role": ROLES}
_NON_NEGATIVE = {"depth", "summary_message_count", "summary_words", "summary_max_tokens"}


def load_config(
    config_dir: str | Path | None = None,
) -> dict:
    """Load settings.yaml and .env, return merged config dict."""
    if config_dir is None:
        config_dir = Path(__file__).resolve().parent.parent / "config"
    config_dir = Path(config_dir)

    # Load .env (silently skip if missing)
    load_dotenv(config_dir / ".env")

    settings_path = config_dir / "settings.yaml"
    if not settings_path.exists():
        raise FileNotFoundError(f"Config not found: {settings_path}")

    with open(settings_path, encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}

    cfg["_secrets"] = {
        "anthropic_api_key": os.getenv("ANTHROPIC_API_KEY", ""),
        "completions_api_key": os.getenv("COMPLETIONS_API_KEY", ""),
    }

    return cfg


@dataclass
class GlobalSettings:
    """Process-wide toggles and the defaults new chats are seeded from."""

    enabled: bool = False
    story_arc_enabled: bool = False
    selected_story_type: str = ""
    selected_author_style: str = ""
    arc_length: int = DEFAULT_ARC_LENGTH
    author_style_enabled: bool = False
    nsfw_enabled: bool = False
    epilogue_enabled: bool = False
    summary_enabled: bool = False
    summary_message_count: int = 0  # 0 = entire chat
    summary_words: int = 500
    summary_max_tokens: int = 0  # 0 = backend default
    debug_mode: bool = False
    position: str = "in_chat"
    depth: int = 4
    role: str = "system"

    @classmethod
    def from_layers(cls, *layers: Mapping[str, Any] | None) -> GlobalSettings:
        """Merge layers over the defaults; later layers win, bad values are dropped."""
        settings = cls()
        for layer in layers:
            if not layer:
                continue
            for name, value in layer.items():
                try:
                    settings.apply(name, value)
                except (KeyError, ValueError) as exc:
                    logger.warning("Ignoring setting %s=%r: %s", name, value, exc)
        return settings

    def apply(self, name: str, value: Any) -> None:
        """Set one field after checking its type and allowed values."""
        types = {f.name: type(f.default) for f in fields(self)}
        if name not in types:
            raise KeyError(f"unknown setting '{name}'")
        expected = types[name]

        if expected is bool:
            if not isinstance(value, bool):
                raise ValueError(f"expected true/false, got {value!r}")
        elif expected is int:
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"expected an integer, got {value!r}")
            if name in _NON_NEGATIVE and value < 0:
                raise ValueError("must not be negative")
            if name == "arc_length" and value < 1:
                raise ValueError("must be at least 1")
        else:
            value = "" if value is None else str(value)
            if name in _CHOICES and value not in _CHOICES[name]:
                raise ValueError(f"expected one of {', '.join(_CHOICES[name])}")

        setattr(self, name, value)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SettingsManager:
    """Owns the live GlobalSettings and persists them with a debounce."""

    def __init__(
        self,
        store: KeyValueStore,
        defaults: Mapping[str, Any] | None = None,
        debounce_seconds: float = 1.0,
    ):
        self._store = store
        self._defaults = dict(defaults or {})
        self._debounce = max(0.0, float(debounce_seconds))
        self._pending: asyncio.Task | None = None
        self._dirty = False
        self.settings = GlobalSettings.from_layers(self._defaults)

    async def load(self) -> GlobalSettings:
        stored = await self._store.get(SETTINGS_KEY, {})
        if not isinstance(stored, Mapping):
            logger.warning("Stored settings are not a mapping, ignoring them")
            stored = {}
        self.settings = GlobalSettings.from_layers(self._defaults, stored)
        logger.debug("Settings loaded: %s", self.settings)
        return self.settings

    def update(self, **changes: Any) -> GlobalSettings:
        """Apply changes atomically and schedule a debounced save."""
        candidate = GlobalSettings(**self.settings.to_dict())
        for name, value in changes.items():
            candidate.apply(name, value)
        for name in changes:
            setattr(self.settings, name, getattr(candidate, name))
        self._dirty = True
        self._schedule_save()
        return self.settings

    def _schedule_save(self) -> None:
        if self._pending and not self._pending.done():
            self._pending.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._pending = None
            return
        self._pending = loop.create_task(self._save_later())

    async def _save_later(self) -> None:
        await asyncio.sleep(self._debounce)
        await self._save()

    async def _save(self) -> None:
        try:
            await self._store.set(SETTINGS_KEY, self.settings.to_dict())
        except PersistenceError as exc:
            logger.error("Failed to save settings: %s", exc)
            return
        # A cancelled save stays dirty so flush() writes it again.
        self._dirty = False
        logger.debug("Settings saved")

    async def flush(self) -> None:
        """Write any pending change now."""
        if self._pending and not self._pending.done():
            self._pending.cancel()
        self._pending = None
        if self._dirty:
            await self._save()
