"""Data models for catalog entries and per-chat arc state."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from narrative.phases import DEFAULT_ARC_LENGTH, PHASES, effective_arc_length
from narrative.template import DEFAULT_PROGRESS_TEMPLATE


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_tags(value: Any) -> list[str]:
    """Normalize a category/keyword field that may arrive as a string or list."""
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple, set)):
        return [_as_text(v).strip() for v in value if _as_text(v).strip()]
    return [_as_text(value)]


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass
class StoryType:
    id: str
    name: str = ""
    category: list[str] = field(default_factory=list)
    story_prompt: str = ""
    progress_template: str = DEFAULT_PROGRESS_TEMPLATE
    phase_prompts: dict[str, str] = field(default_factory=lambda: {p: "" for p in PHASES})
    is_template: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> StoryType:
        raw_phases = data.get("phasePrompts", data.get("phase_prompts")) or {}
        phase_prompts = {p: "" for p in PHASES}
        if isinstance(raw_phases, dict):
            for key, text in raw_phases.items():
                phase_prompts[str(key)] = _as_text(text)
        template = data.get("progressTemplate", data.get("progress_template"))
        return cls(
            id=_as_text(data.get("id", "")),
            name=_as_text(data.get("name", "")),
            category=_as_tags(data.get("category")),
            story_prompt=_as_text(data.get("storyPrompt", data.get("story_prompt", ""))),
            progress_template=_as_text(template) if template is not None else DEFAULT_PROGRESS_TEMPLATE,
            phase_prompts=phase_prompts,
            is_template=bool(data.get("isTemplate", data.get("is_template", False))),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "category": list(self.category),
            "storyPrompt": self.story_prompt,
            "progressTemplate": self.progress_template,
            "phasePrompts": dict(self.phase_prompts),
        }
        if self.is_template:
            data["isTemplate"] = True
        return data


@dataclass
class AuthorStyle:
    id: str
    name: str = ""
    category: list[str] = field(default_factory=list)
    author_prompt: str = ""
    nsfw_prompt: str = ""
    keywords: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> AuthorStyle:
        return cls(
            id=_as_text(data.get("id", "")),
            name=_as_text(data.get("name", "")),
            category=_as_tags(data.get("category")),
            author_prompt=_as_text(data.get("authorPrompt", data.get("author_prompt", ""))),
            nsfw_prompt=_as_text(data.get("nsfwPrompt", data.get("nsfw_prompt", ""))),
            keywords=_as_tags(data.get("keywords")),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "category": list(self.category),
            "authorPrompt": self.author_prompt,
            "keywords": list(self.keywords),
        }
        if self.nsfw_prompt:
            data["nsfwPrompt"] = self.nsfw_prompt
        return data


@dataclass
class ArcState:
    """One conversation's position in its story arc.

    ``current_step`` may overshoot ``arc_length`` if the length is lowered
    mid-arc; that reads as a completed arc.
    """

    current_step: int = 0
    arc_length: int = DEFAULT_ARC_LENGTH
    arc_started: bool = False
    epilogue_shown: bool = False
    summary_shown: bool = False
    notice_shown: bool = False
    selected_story_type: str = ""
    selected_author_style: str = ""

    @property
    def is_complete(self) -> bool:
        return self.current_step >= self.arc_length

    def reset(self) -> None:
        self.current_step = 0
        self.arc_started = False
        self.epilogue_shown = False
        self.summary_shown = False
        self.notice_shown = False

    @classmethod
    def from_dict(cls, data: dict) -> ArcState:
        return cls(
            current_step=max(0, _as_int(data.get("current_step", 0), 0)),
            arc_length=effective_arc_length(_as_int(data.get("arc_length"), DEFAULT_ARC_LENGTH))[0],
            arc_started=bool(data.get("arc_started", False)),
            epilogue_shown=bool(data.get("epilogue_shown", False)),
            summary_shown=bool(data.get("summary_shown", False)),
            notice_shown=bool(data.get("notice_shown", False)),
            selected_story_type=_as_text(data.get("selected_story_type", "")),
            selected_author_style=_as_text(data.get("selected_author_style", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
