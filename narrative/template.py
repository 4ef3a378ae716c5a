"""Placeholder substitution for progress templates."""

from __future__ import annotations

import re
from collections.abc import Mapping

from .phases import PhaseInfo, arc_percent

PLACEHOLDERS = (
    "currentStep",
    "arcLength",
    "arcPercent",
    "phase",
    "positionInPhase",
    "totalInPhase",
    "phasePercent",
    "phaseStart",
    "phaseEnd",
)

DEFAULT_PROGRESS_TEMPLATE = (
    "Arc Progress: Step {currentStep}/{arcLength} ({arcPercent}% complete). "
    "Phase: {phase} - Message {positionInPhase}/{totalInPhase} ({phasePercent}% through {phase})."
)

_TOKEN_RE = re.compile(r"\{(\w+)\}")
_RECOGNIZED = frozenset(PLACEHOLDERS)


def render_template(template: str, variables: Mapping[str, str | int]) -> str:
    """Replace every recognized ``{token}`` that has a value in *variables*.

    Unknown tokens, and known tokens without a value, are left verbatim.
    Substitution is a single pass, so values are never re-expanded.
    """
    if not template:
        return ""

    def _sub(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in _RECOGNIZED and name in variables:
            return str(variables[name])
        return match.group(0)

    return _TOKEN_RE.sub(_sub, template)


def progress_variables(step: int, arc_length: int, info: PhaseInfo) -> dict[str, str | int]:
    """Template variables describing *step* of an arc of *arc_length*."""
    return {
        "currentStep": step,
        "arcLength": arc_length,
        "arcPercent": arc_percent(step, arc_length),
        "phase": info.phase,
        "positionInPhase": info.position_in_phase,
        "totalInPhase": info.total_in_phase,
        "phasePercent": info.percent_in_phase,
        "phaseStart": info.phase_start,
        "phaseEnd": info.phase_end,
    }
