"""Narrative system: arc phases, progress templates and prompt injection."""

from .injection import compose
from .phases import DEFAULT_ARC_LENGTH, PHASES, PhaseInfo, compute_phase
from .status import arc_badge, status_line
from .template import PLACEHOLDERS, render_template

__all__ = [
    "DEFAULT_ARC_LENGTH",
    "PHASES",
    "PLACEHOLDERS",
    "PhaseInfo",
    "arc_badge",
    "compose",
    "compute_phase",
    "render_template",
    "status_line",
]
