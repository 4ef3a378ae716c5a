"""Fixed instructions and messages for the end of a story arc."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chat.models import ChatMessage

STORY_MODE_NAME = "Story Mode"

EPILOGUE_HEADING = "**Epilogue**"
SUMMARY_HEADING = "**Story Arc Summary**"

EPILOGUE_CONTEXT_MESSAGES = 20

EPILOGUE_SYSTEM_PROMPT = f"""\
You are wrapping up a completed story arc. The story has reached its conclusion at the planned arc length. Write an epilogue that:
- Wraps up loose threads
- Brings the narrative to a satisfying close
- Provides closure for character arcs
- Sets the tone for what comes after

IMPORTANT: Start your response with the heading "{EPILOGUE_HEADING}" on its own line, followed by a blank line, then write the epilogue content."""

EPILOGUE_USER_PROMPT = (
    "Based on the recent story context below, write an epilogue that wraps up this story arc:\n\n{context}"
)

STORY_SUMMARY_PROMPT = f"""\
You are a summarization assistant for a fictional story. Provide a comprehensive summary of the story arc using at most {{words}} words.

Include:
- **Character Development**: How each major character has changed and grown
- **Key Events**: The most important moments in chronological order
- **Important Elements**: Significant objects, locations, and relationships
- **Major Themes**: The underlying themes and messages explored
- **Resolution Status**: What was resolved and what remains open

Format this as a clear, well-organized narrative summary. Use markdown formatting and section headings to organize the summary.

IMPORTANT: Start your response with the heading "{SUMMARY_HEADING}" on its own line, followed by a blank line, then write the summary content with your subsection headings."""

END_NOTICE_TEXT = (
    "**<center>You have reached the end of this story arc. "
    "Feel free to continue, or if you would like to start a new arc, "
    "click Reset Arc in the Story Mode settings.</center>**"
)


def _story_messages(messages: Iterable[ChatMessage]) -> list[ChatMessage]:
    return [m for m in messages if not m.is_system and m.text]


def epilogue_context(messages: Iterable[ChatMessage], limit: int = EPILOGUE_CONTEXT_MESSAGES) -> str:
    """Text of the last *limit* non-system messages."""
    recent = _story_messages(messages)[-limit:] if limit > 0 else []
    return "\n\n".join(m.text for m in recent)


def summary_source(messages: Iterable[ChatMessage], count: int = 0) -> str:
    """Text to summarize: the whole chat when *count* is 0, else the last *count* messages."""
    story = _story_messages(messages)
    if count > 0:
        story = story[-count:]
    return "\n\n".join(m.text for m in story)


def summary_system_prompt(words: int) -> str:
    return STORY_SUMMARY_PROMPT.replace("{words}", str(words))
