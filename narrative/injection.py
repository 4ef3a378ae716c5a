"""Builds the instructional text injected ahead of the next model response.

Guidance always targets the message about to be generated, so phase and
template values are computed for ``current_step + 1``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from .phases import PhaseInfo, compute_phase
from .template import progress_variables, render_template

if TYPE_CHECKING:
    from storymode.config import GlobalSettings
    from storymode.models import ArcState, AuthorStyle, StoryType

logger = logging.getLogger(__name__)


class Catalog(Protocol):
    def story_type(self, type_id: str) -> StoryType | None: ...

    def author_style(self, style_id: str) -> AuthorStyle | None: ...


def debug_directive(step: int, arc_length: int, phase: str) -> str:
    return (
        "[IMPORTANT: At the end of your response, include a debug note in this exact format: "
        f'"(OOC: Step {step}/{arc_length}, Phase: {phase})"]'
    )


def build_story_blueprint(story_type: StoryType) -> str:
    return story_type.story_prompt or ""


def build_phase_injection(
    story_type: StoryType,
    info: PhaseInfo,
    next_step: int,
    debug: bool = False,
) -> str:
    """Progress line plus the phase guidance for *next_step*."""
    progress = render_template(
        story_type.progress_template,
        progress_variables(next_step, info.arc_length, info),
    )
    guidance = story_type.phase_prompts.get(info.phase, "")
    output = f"{progress}\n\n{guidance}"
    if debug:
        output += "\n\n" + debug_directive(next_step, info.arc_length, info.phase)
    return output


def build_style_text(style: AuthorStyle, nsfw_enabled: bool) -> str:
    text = style.author_prompt
    if nsfw_enabled and style.nsfw_prompt:
        text += f"\n\n{style.nsfw_prompt}"
    return text


def compose(
    settings: GlobalSettings,
    state: ArcState,
    catalog: Catalog,
    preview: bool = False,
) -> str:
    """Full injection text for the current chat, or "" when nothing applies.

    *preview* ignores arc completion but never the global enabled switch.
    """
    if not settings.enabled:
        return ""

    parts: list[str] = []

    if settings.story_arc_enabled and state.selected_story_type:
        story_type = catalog.story_type(state.selected_story_type)
        if story_type is None:
            logger.warning("Selected story type %r not found", state.selected_story_type)
        elif state.current_step < state.arc_length or preview:
            next_step = state.current_step + 1
            info = compute_phase(next_step, state.arc_length)
            content = build_story_blueprint(story_type)
            content += "\n\n" + build_phase_injection(
                story_type, info, next_step, debug=settings.debug_mode
            )
            parts.append(f"<story>\n{content}\n</story>")

    if settings.author_style_enabled and state.selected_author_style:
        style = catalog.author_style(state.selected_author_style)
        if style is None:
            logger.warning("Selected author style %r not found", state.selected_author_style)
        else:
            parts.append(f"<style>\n{build_style_text(style, settings.nsfw_enabled)}\n</style>")

    return "\n\n".join(parts)
