"""Named chat lifecycle signals and a small async dispatcher."""

from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

GENERATION_STARTED = "generation_started"
MESSAGE_SWIPED = "message_swiped"
MESSAGE_REGENERATED = "message_regenerated"
MESSAGE_RECEIVED = "message_received"
CHAT_CHANGED = "chat_changed"
CHAT_METADATA_UPDATED = "chat_metadata_updated"

Handler = Callable[..., Awaitable[None] | None]


class EventSource:
    """Delivers each signal to its handlers one at a time, in subscription order.

    A failing handler is logged and skipped; it never stops dispatch.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def on(self, event: str, handler: Handler) -> None:
        self._handlers[event].append(handler)

    def handlers(self, event: str) -> list[Handler]:
        return list(self._handlers.get(event, []))

    async def emit(self, event: str, *args: Any) -> None:
        for handler in self.handlers(event):
            try:
                result = handler(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.error("Handler for %s failed: %s", event, exc, exc_info=True)
