"""Arc progression controller - decides whether a chat signal was a story step.

The host's signals do not tell a fresh reply apart from a swipe, a
regeneration, or a chat being replayed on load. Two transient flags carry
that interpretation between signals:

- ``is_regenerating``: the next received message replaces an existing one
  (or is the chat's opening message) and must not count. Cleared by the
  first message it suppresses.
- ``is_loading_chat``: a chat was just opened; messages received during the
  grace period are history replay.

Both live on the controller, not in any chat's stored state.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from chat import events
from chat.events import EventSource
from chat.models import SYNTHETIC_FLAG, ChatMessage
from narrative import compose

from .config import GlobalSettings, SettingsManager
from .generation import TextGenerator
from .library import LibraryStore
from .memory import ArcStateStore
from .models import ArcState
from .prompts import (
    END_NOTICE_TEXT,
    EPILOGUE_SYSTEM_PROMPT,
    EPILOGUE_USER_PROMPT,
    STORY_MODE_NAME,
    epilogue_context,
    summary_source,
    summary_system_prompt,
)

logger = logging.getLogger(__name__)

INJECTION_KEY = "story_mode"

IDLE = "idle"
AWAITING_NEXT_STEP = "awaiting-next-step"
PENDING_EPILOGUE = "arc-complete-pending-epilogue"
PENDING_SUMMARY = "arc-complete-pending-summary"
COMPLETE = "arc-complete-done"


class Host(Protocol):
    """What the controller needs from the chat front end."""

    @property
    def chat_id(self) -> str: ...

    @property
    def messages(self) -> list[ChatMessage]: ...

    def set_injection(self, key: str, text: str, position: str, depth: int = 0, role: str = "system") -> None: ...

    def append_message(self, message: ChatMessage) -> None: ...

    def notify(self, level: str, message: str) -> None: ...


class ArcProgressionController:
    """Signal handlers plus the user actions that change arc state."""

    def __init__(
        self,
        settings: SettingsManager,
        states: ArcStateStore,
        catalog: LibraryStore,
        host: Host,
        generator: TextGenerator | None = None,
        chat_load_grace: float = 1.0,
        settle_delay: float = 1.0,
    ):
        self._settings = settings
        self._states = states
        self._catalog = catalog
        self._host = host
        self._generator = generator
        self._grace = max(0.0, chat_load_grace)
        self._settle_delay = max(0.0, settle_delay)

        self.is_regenerating = False
        self.is_loading_chat = False
        self._loading_task: asyncio.Task | None = None
        self._completing: set[str] = set()

    @property
    def settings(self) -> GlobalSettings:
        return self._settings.settings

    def subscribe(self, source: EventSource) -> None:
        source.on(events.GENERATION_STARTED, self.on_generation_started)
        source.on(events.MESSAGE_SWIPED, self.on_message_swiped)
        source.on(events.MESSAGE_REGENERATED, self.on_message_swiped)
        source.on(events.MESSAGE_RECEIVED, self.on_message_received)
        source.on(events.CHAT_CHANGED, self.on_chat_changed)

    # ── Signal handlers ─────────────────────────────────────────

    async def on_generation_started(self, *_: Any) -> None:
        self.is_loading_chat = False

        if not self._host.messages:
            # Opening message of a fresh chat is set-up, not a step.
            self.is_regenerating = True
            logger.debug("Initial message set up - no increment")
            return

        logger.debug("Generation started (normal)")
        await self.refresh_injection()

    async def on_message_swiped(self, *_: Any) -> None:
        self.is_regenerating = True
        logger.debug("Swipe/regenerate detected")
        await self.refresh_injection()

    async def on_message_received(self, message: ChatMessage | None = None, *_: Any) -> None:
        if message is not None and message.is_user:
            logger.debug("Skipping increment (user message)")
            return

        if message is not None and message.is_synthetic:
            logger.debug("Skipping increment (story mode message)")
            return

        if self.is_loading_chat:
            logger.debug("Skipping increment (chat is loading)")
            return

        if self.is_regenerating:
            self.is_regenerating = False
            logger.debug("Skipping increment (regeneration detected)")
            return

        settings = self.settings
        if not settings.enabled or not settings.story_arc_enabled:
            logger.debug("Skipping increment (story mode not enabled)")
            return

        chat_id = self._host.chat_id
        state = await self._states.get(chat_id)

        if state.current_step < state.arc_length:
            old_step = state.current_step
            state.current_step += 1
            state.arc_started = True
            await self._states.set(chat_id, state)
            logger.info(
                "Step incremented: %d -> %d (Arc: %d/%d)",
                old_step,
                state.current_step,
                state.current_step,
                state.arc_length,
            )
            await self.refresh_injection()
        elif state.current_step == state.arc_length:
            logger.info("Arc completed for chat %s", chat_id)
            await self._run_completion(chat_id, state)
        else:
            logger.debug(
                "Arc already past its end (%d/%d), nothing to do",
                state.current_step,
                state.arc_length,
            )

    async def on_chat_changed(self, *_: Any) -> None:
        self.is_regenerating = False
        self.is_loading_chat = True

        if self._loading_task and not self._loading_task.done():
            self._loading_task.cancel()
        self._loading_task = asyncio.get_running_loop().create_task(self._finish_loading())

        await self.refresh_injection()
        logger.debug("Chat changed to %s, state reloaded", self._host.chat_id)

    async def _finish_loading(self) -> None:
        await asyncio.sleep(self._grace)
        self.is_loading_chat = False
        logger.debug("Chat loading complete")

    async def settled(self) -> None:
        """Wait for a pending chat-load grace period to end."""
        task = self._loading_task
        if task and not task.done():
            try:
                await task
            except asyncio.CancelledError:
                pass

    # ── Injection ───────────────────────────────────────────────

    async def refresh_injection(self) -> str:
        """Recompute the injection for the open chat and hand it to the host."""
        settings = self.settings
        if not settings.enabled:
            self._host.set_injection(INJECTION_KEY, "", "none", 0)
            logger.debug("Prompt cleared (disabled)")
            return ""

        state = await self._states.get(self._host.chat_id)
        text = compose(settings, state, self._catalog)
        if not text:
            self._host.set_injection(INJECTION_KEY, "", "none", 0)
            logger.debug("Prompt cleared (no content)")
            return ""

        self._host.set_injection(INJECTION_KEY, text, settings.position, settings.depth, settings.role)
        logger.debug("Prompt injected: %s", text)
        return text

    async def preview(self) -> str:
        state = await self._states.get(self._host.chat_id)
        return compose(self.settings, state, self._catalog, preview=True)

    # ── Completion sequence ─────────────────────────────────────

    async def _run_completion(self, chat_id: str, state: ArcState) -> None:
        if chat_id in self._completing:
            logger.debug("Completion already running for chat %s", chat_id)
            return
        self._completing.add(chat_id)
        try:
            await self._complete_arc(chat_id, state)
        finally:
            self._completing.discard(chat_id)

    async def _complete_arc(self, chat_id: str, state: ArcState) -> None:
        settings = self.settings

        if settings.epilogue_enabled and not state.epilogue_shown:
            self._host.notify("info", "Arc completed - generating epilogue. Please wait.")
            epilogue = await self._generate_epilogue()
            if epilogue and self._push_story_message(chat_id, epilogue):
                state.epilogue_shown = True
                await self._states.set(chat_id, state)
                logger.info("Epilogue generated and pushed")
                await self._settle()

        if settings.summary_enabled and not state.summary_shown:
            self._host.notify("info", "Generating a summary of the story arc. Please wait.")
            summary = await self._generate_summary(settings)
            if summary and self._push_story_message(chat_id, summary):
                state.summary_shown = True
                await self._states.set(chat_id, state)
                logger.info("Summary generated and pushed")
                await self._settle()

        post_arc_done = (not settings.epilogue_enabled or state.epilogue_shown) and (
            not settings.summary_enabled or state.summary_shown
        )
        if post_arc_done and not state.notice_shown:
            if self._push_story_message(chat_id, END_NOTICE_TEXT):
                state.notice_shown = True
                await self._states.set(chat_id, state)

    async def _generate_epilogue(self) -> str:
        context = epilogue_context(self._host.messages)
        if not context.strip():
            logger.warning("No messages to create epilogue from")
            return ""
        return await self._generate(
            "epilogue",
            prompt=EPILOGUE_USER_PROMPT.format(context=context),
            system_prompt=EPILOGUE_SYSTEM_PROMPT,
        )

    async def _generate_summary(self, settings: GlobalSettings) -> str:
        story_text = summary_source(self._host.messages, settings.summary_message_count)
        if not story_text.strip():
            logger.warning("No text to summarize")
            return ""
        return await self._generate(
            "summary",
            prompt=story_text,
            system_prompt=summary_system_prompt(settings.summary_words),
            response_length=settings.summary_max_tokens,
        )

    async def _generate(self, what: str, prompt: str, system_prompt: str, response_length: int = 0) -> str:
        if self._generator is None:
            logger.warning("No text generator configured, skipping %s", what)
            return ""
        try:
            text = await self._generator.generate(
                prompt,
                system_prompt=system_prompt,
                response_length=response_length,
            )
        except Exception as exc:
            logger.error("Failed to generate %s: %s", what, exc, exc_info=True)
            return ""
        text = (text or "").strip()
        if not text:
            logger.warning("Generator returned an empty %s", what)
        return text

    def _push_story_message(self, chat_id: str, text: str) -> bool:
        if self._host.chat_id != chat_id:
            logger.warning("Chat changed before story message could be added to %s", chat_id)
            return False
        message = ChatMessage(text=text, name=STORY_MODE_NAME, extra={SYNTHETIC_FLAG: True})
        self._host.append_message(message)
        logger.debug("Story message pushed: %s", text[:80])
        return True

    async def _settle(self) -> None:
        if self._settle_delay:
            await asyncio.sleep(self._settle_delay)

    # ── User actions ────────────────────────────────────────────

    async def current_state(self) -> ArcState:
        return await self._states.get(self._host.chat_id)

    def arc_status(self, state: ArcState) -> str:
        if state.current_step < state.arc_length:
            return IDLE if state.current_step == 0 else AWAITING_NEXT_STEP
        settings = self.settings
        if settings.epilogue_enabled and not state.epilogue_shown:
            return PENDING_EPILOGUE
        if settings.summary_enabled and not state.summary_shown:
            return PENDING_SUMMARY
        return COMPLETE

    async def reset_arc(self) -> ArcState:
        chat_id = self._host.chat_id
        state = await self._states.get(chat_id)
        state.reset()
        await self._states.set(chat_id, state)
        logger.info("Story arc reset for chat %s", chat_id)
        await self.refresh_injection()
        return state

    async def select_story_type(self, type_id: str) -> ArcState:
        if type_id and self._catalog.story_type(type_id) is None:
            logger.warning("Selecting unknown story type %r", type_id)
        self._settings.update(selected_story_type=type_id)
        return await self._update_state(selected_story_type=type_id)

    async def select_author_style(self, style_id: str) -> ArcState:
        if style_id and self._catalog.author_style(style_id) is None:
            logger.warning("Selecting unknown author style %r", style_id)
        self._settings.update(selected_author_style=style_id)
        return await self._update_state(selected_author_style=style_id)

    async def set_arc_length(self, arc_length: int) -> ArcState:
        if arc_length <= 0:
            raise ValueError("Arc length must be positive")
        self._settings.update(arc_length=arc_length)
        return await self._update_state(arc_length=arc_length)

    async def update_settings(self, **changes: Any) -> GlobalSettings:
        settings = self._settings.update(**changes)
        await self.refresh_injection()
        return settings

    async def retry_post_arc(self) -> bool:
        """Re-run the completion sequence for a finished arc. False if unfinished."""
        chat_id = self._host.chat_id
        state = await self._states.get(chat_id)
        if state.current_step < state.arc_length:
            return False
        await self._run_completion(chat_id, state)
        return True

    async def _update_state(self, **fields: Any) -> ArcState:
        chat_id = self._host.chat_id
        state = await self._states.get(chat_id)
        for name, value in fields.items():
            setattr(state, name, value)
        await self._states.set(chat_id, state)
        await self.refresh_injection()
        return state
