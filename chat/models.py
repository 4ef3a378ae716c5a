"""Chat message model."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any


# Set in ``extra`` on messages posted by story mode rather than a participant.
SYNTHETIC_FLAG = "story_mode"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ChatMessage:
    text: str
    is_user: bool = False
    is_system: bool = False
    name: str = ""
    send_date: int = field(default_factory=_now_ms)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> ChatMessage:
        return cls(
            text=str(data.get("mes", data.get("text", "")) or ""),
            is_user=bool(data.get("is_user", False)),
            is_system=bool(data.get("is_system", False)),
            name=str(data.get("name", "") or ""),
            send_date=int(data.get("send_date", 0) or 0),
            extra=dict(data.get("extra") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "mes": self.text,
            "is_user": self.is_user,
            "is_system": self.is_system,
            "name": self.name,
            "send_date": self.send_date,
            "extra": dict(self.extra),
        }

    @property
    def is_synthetic(self) -> bool:
        return bool(self.extra.get(SYNTHETIC_FLAG))

    @property
    def role(self) -> str:
        if self.is_system:
            return "system"
        return "user" if self.is_user else "assistant"
