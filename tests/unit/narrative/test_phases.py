"""Tests for three-act phase math."""

from narrative import PHASES, compute_phase
from narrative.phases import arc_percent, phase_boundaries, round_half_up


def test_compute_phase_is_deterministic_and_always_named():
    for arc_length in range(1, 41):
        for step in range(0, arc_length + 4):
            first = compute_phase(step, arc_length)
            assert first == compute_phase(step, arc_length)
            assert first.phase in PHASES


def test_every_step_in_the_arc_has_a_position():
    for arc_length in range(1, 41):
        for step in range(1, arc_length + 1):
            info = compute_phase(step, arc_length)
            assert info.position_in_phase >= 1
            assert info.phase_start <= step <= info.phase_end


def test_overrun_resolves_to_resolution():
    info = compute_phase(35, 30)
    assert info.phase == "resolution"
    assert info.phase_end == 30


def test_first_step_of_short_arc_is_setup():
    info = compute_phase(1, 15)
    assert phase_boundaries(15) == (4, 9)
    assert info.phase == "setup"
    assert info.position_in_phase == 1
    assert info.total_in_phase == 4


def test_first_resolution_step():
    info = compute_phase(20, 30)
    assert phase_boundaries(30) == (9, 19)
    assert info.phase == "resolution"
    assert info.phase_start == 20
    assert info.phase_end == 30
    assert info.position_in_phase == 1
    assert info.total_in_phase == 11
    assert info.percent_in_phase == 9


def test_confrontation_bounds():
    first = compute_phase(10, 30)
    last = compute_phase(19, 30)
    assert (first.phase, first.position_in_phase, first.total_in_phase) == ("confrontation", 1, 10)
    assert (last.phase, last.percent_in_phase) == ("confrontation", 100)


def test_invalid_arc_length_falls_back_to_default():
    info = compute_phase(1, 0)
    assert info.arc_length == 30
    assert info.arc_length_corrected is True
    assert compute_phase(1, -4).arc_length == 30
    assert compute_phase(1, 12).arc_length_corrected is False


def test_tiny_arc_has_empty_setup():
    info = compute_phase(0, 2)
    assert info.phase == "setup"
    assert info.total_in_phase == 0
    assert info.percent_in_phase == 0
    assert compute_phase(1, 2).phase == "confrontation"


def test_rounding_is_half_up():
    assert round_half_up(0.5) == 1
    assert round_half_up(2.5) == 3
    assert round_half_up(2.49) == 2
    assert arc_percent(1, 8) == 13
    assert arc_percent(1, 3) == 33
