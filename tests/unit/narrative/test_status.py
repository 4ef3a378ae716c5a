"""Tests for status labels."""

from narrative import arc_badge, status_line
from storymode.config import GlobalSettings
from storymode.models import ArcState, AuthorStyle, StoryType


class _Catalog:
    def story_type(self, type_id):
        return StoryType(id="mystery", name="Mystery") if type_id == "mystery" else None

    def author_style(self, style_id):
        return AuthorStyle(id="noir", name="Pulp Noir") if style_id == "noir" else None


def test_status_line_when_disabled():
    assert status_line(GlobalSettings(enabled=False), ArcState(), _Catalog()) == "Disabled"


def test_status_line_names_selection():
    settings = GlobalSettings(enabled=True, story_arc_enabled=True, author_style_enabled=True)
    state = ArcState(current_step=3, selected_story_type="mystery", selected_author_style="noir")
    assert status_line(settings, state, _Catalog()) == "Story: Mystery | Author: Pulp Noir | Arc 3/30"


def test_status_line_with_missing_entries():
    settings = GlobalSettings(enabled=True, story_arc_enabled=True, author_style_enabled=False)
    state = ArcState(selected_story_type="gone", selected_author_style="noir")
    assert status_line(settings, state, _Catalog()) == "Story: None | Author: Disabled | Arc 0/30"


def test_arc_badge():
    assert arc_badge(ArcState(arc_length=12)) == "Step 0/12 | Not Started"
    assert arc_badge(ArcState(current_step=5)) == "Step 5/30 | setup"
    assert arc_badge(ArcState(current_step=15)) == "Step 15/30 | confrontation"
    assert arc_badge(ArcState(current_step=30)) == "Arc Complete (30/30)"
    assert arc_badge(ArcState(current_step=8, arc_length=6)) == "Arc Complete (6/6)"
