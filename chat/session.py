"""In-process chat host.

Holds the open conversation, renders appended messages, keeps prompt
injections, and emits the lifecycle signals a chat front end would emit.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from . import events
from .events import EventSource
from .models import ChatMessage

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are the narrator of an interactive story. Continue the story from the "
    "user's latest message. Stay in the scene; keep replies to a few paragraphs."
)


@dataclass
class Injection:
    text: str
    position: str
    depth: int
    role: str


class ChatSession:
    """One user's chat window: the current chat plus everything it emits."""

    def __init__(
        self,
        chat_id: str = "default",
        chats_dir: str | Path | None = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        user_name: str = "User",
        character_name: str = "Narrator",
        on_render: Callable[[ChatMessage], None] | None = None,
    ):
        self.events = EventSource()
        self.system_prompt = system_prompt
        self.user_name = user_name
        self.character_name = character_name
        self.notices: list[tuple[str, str]] = []
        self._chats_dir = Path(chats_dir) if chats_dir else None
        self._on_render = on_render
        self._injections: dict[str, Injection] = {}
        self._chat_id = chat_id
        self._messages: list[ChatMessage] = self._load_history(chat_id)

    @property
    def chat_id(self) -> str:
        return self._chat_id

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    # ── Sinks used by story mode ────────────────────────────────

    def set_injection(self, key: str, text: str, position: str, depth: int = 0, role: str = "system") -> None:
        """Set or clear (empty text / position "none") the injection under *key*."""
        if not text or position == "none":
            self._injections.pop(key, None)
            return
        self._injections[key] = Injection(text=text, position=position, depth=depth, role=role)

    def injection(self, key: str) -> Injection | None:
        return self._injections.get(key)

    def append_message(self, message: ChatMessage) -> None:
        self._messages.append(message)
        self._save_history()
        if self._on_render:
            self._on_render(message)

    def notify(self, level: str, message: str) -> None:
        self.notices.append((level, message))
        log = logger.error if level == "error" else logger.info
        log("[notice] %s", message)

    # ── Host actions ────────────────────────────────────────────

    async def switch_chat(self, chat_id: str) -> None:
        self._chat_id = chat_id
        self._messages = self._load_history(chat_id)
        await self.events.emit(events.CHAT_CHANGED, chat_id)

    async def send(self, text: str) -> ChatMessage:
        message = ChatMessage(text=text, is_user=True, name=self.user_name)
        self.append_message(message)
        await self.events.emit(events.MESSAGE_RECEIVED, message)
        return message

    async def generate_reply(self, generator: Any) -> ChatMessage | None:
        """Ask *generator* for the next character message and post it."""
        await self.events.emit(events.GENERATION_STARTED)
        system_prompt, prompt = self.build_prompt()
        text = (await generator.generate(prompt, system_prompt=system_prompt)).strip()
        if not text:
            logger.warning("Generator returned an empty reply")
            return None
        message = ChatMessage(text=text, name=self.character_name)
        self.append_message(message)
        await self.events.emit(events.MESSAGE_RECEIVED, message)
        return message

    async def swipe(self, generator: Any) -> ChatMessage | None:
        """Replace the last character message with a fresh generation.

        Story mode messages (epilogue, summary, end notice) are never swiped away.
        """
        target = len(self._messages)
        while target and self._messages[target - 1].is_synthetic:
            target -= 1
        if target and not self._messages[target - 1].is_user:
            del self._messages[target - 1]
            self._save_history()
        await self.events.emit(events.MESSAGE_SWIPED, len(self._messages))
        return await self.generate_reply(generator)

    def build_prompt(self) -> tuple[str, str]:
        """Return (system_prompt, transcript) with injections placed."""
        system = self.system_prompt
        lines = [
            f"{m.name or m.role}: {m.text}"
            for m in self._messages
            if not m.is_system and m.text
        ]
        for inj in self._injections.values():
            if inj.position == "in_prompt":
                system = f"{system}\n\n{inj.text}"
            elif inj.position == "before_prompt":
                system = f"{inj.text}\n\n{system}"
            elif inj.position == "in_chat":
                lines.insert(max(0, len(lines) - inj.depth), f"[{inj.role}] {inj.text}")
        return system.strip(), "\n\n".join(lines)

    # ── History files ───────────────────────────────────────────

    def _history_path(self, chat_id: str) -> Path | None:
        if self._chats_dir is None:
            return None
        safe = "".join(c if c.isalnum() or c in "-_" else "_" for c in chat_id) or "default"
        return self._chats_dir / f"{safe}.jsonl"

    def _load_history(self, chat_id: str) -> list[ChatMessage]:
        path = self._history_path(chat_id)
        if path is None or not path.exists():
            return []
        messages = []
        for line in path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                messages.append(ChatMessage.from_dict(json.loads(line)))
            except ValueError:
                logger.warning("Skipping unreadable line in %s", path)
        logger.debug("Loaded %d messages for chat %s", len(messages), chat_id)
        return messages

    def _save_history(self) -> None:
        path = self._history_path(self._chat_id)
        if path is None:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            "".join(json.dumps(m.to_dict(), ensure_ascii=False) + "\n" for m in self._messages),
            encoding="utf-8",
        )
