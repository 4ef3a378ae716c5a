"""Human-facing arc status labels."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .phases import compute_phase

if TYPE_CHECKING:
    from storymode.config import GlobalSettings
    from storymode.models import ArcState

    from .injection import Catalog


def status_line(settings: GlobalSettings, state: ArcState, catalog: Catalog) -> str:
    """Compact one-line status, e.g. "Story: Mystery | Author: Disabled | Arc 3/30"."""
    if not settings.enabled:
        return "Disabled"

    story_name = "None"
    if settings.story_arc_enabled and state.selected_story_type:
        story_type = catalog.story_type(state.selected_story_type)
        story_name = story_type.name if story_type else "None"

    author_name = "Disabled"
    if settings.author_style_enabled and state.selected_author_style:
        style = catalog.author_style(state.selected_author_style)
        author_name = style.name if style else "Disabled"

    return f"Story: {story_name} | Author: {author_name} | Arc {state.current_step}/{state.arc_length}"


def arc_badge(state: ArcState) -> str:
    if state.current_step == 0:
        return f"Step 0/{state.arc_length} | Not Started"
    if state.current_step >= state.arc_length:
        return f"Arc Complete ({state.arc_length}/{state.arc_length})"
    info = compute_phase(state.current_step, state.arc_length)
    return f"Step {state.current_step}/{state.arc_length} | {info.phase}"
