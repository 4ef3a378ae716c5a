"""Phase math for three-act story arcs."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_ARC_LENGTH = 30

PHASES = ("setup", "confrontation", "resolution")

_SETUP_SHARE = 0.33
_CONFRONTATION_SHARE = 0.66


@dataclass(frozen=True)
class PhaseInfo:
    """Where a step sits inside its phase. Derived, never stored."""

    phase: str
    position_in_phase: int
    total_in_phase: int
    percent_in_phase: int
    phase_start: int
    phase_end: int
    arc_length: int = DEFAULT_ARC_LENGTH
    arc_length_corrected: bool = False


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def effective_arc_length(arc_length: int) -> tuple[int, bool]:
    """Return (arc_length, corrected) with non-positive lengths replaced by the default."""
    if not arc_length or arc_length <= 0:
        logger.warning("Invalid arc length %r, using default %d", arc_length, DEFAULT_ARC_LENGTH)
        return DEFAULT_ARC_LENGTH, True
    return int(arc_length), False


def phase_boundaries(arc_length: int) -> tuple[int, int]:
    """Return (setup_end, confrontation_end) as inclusive upper bounds."""
    return math.floor(arc_length * _SETUP_SHARE), math.floor(arc_length * _CONFRONTATION_SHARE)


def arc_percent(step: int, arc_length: int) -> int:
    arc_length, _ = effective_arc_length(arc_length)
    return round_half_up(step / arc_length * 100)


def compute_phase(current_step: int, arc_length: int) -> PhaseInfo:
    """Classify a step into setup / confrontation / resolution.

    Steps past the end of the arc still resolve to ``resolution``; what an
    overrun means is up to the caller.
    """
    arc_length, corrected = effective_arc_length(arc_length)
    setup_end, confrontation_end = phase_boundaries(arc_length)

    if current_step <= setup_end:
        phase, start, end = "setup", 1, setup_end
        position = current_step
    elif current_step <= confrontation_end:
        phase, start, end = "confrontation", setup_end + 1, confrontation_end
        position = current_step - setup_end
    else:
        phase, start, end = "resolution", confrontation_end + 1, arc_length
        position = current_step - confrontation_end

    total = end - start + 1
    # Very short arcs can leave the setup phase empty.
    percent = round_half_up(position / total * 100) if total > 0 else 0

    return PhaseInfo(
        phase=phase,
        position_in_phase=position,
        total_in_phase=total,
        percent_in_phase=percent,
        phase_start=start,
        phase_end=end,
        arc_length=arc_length,
        arc_length_corrected=corrected,
    )
