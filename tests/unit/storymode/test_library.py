"""Tests for the story type / author style catalog."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from pathlib import Path

import pytest

from storymode.library import LibraryImportError, LibraryStore, export_filename
from storymode.memory import KeyValueStore
from storymode.models import StoryType

_DATA_DIR = Path(__file__).resolve().parents[3] / "data"


def _seed(tmp_path: Path) -> Path:
    seed_dir = tmp_path / "seed"
    seed_dir.mkdir()
    (seed_dir / "story_types.json").write_text(
        json.dumps(
            [
                {"id": "mystery", "name": "Mystery", "category": ["Mystery"], "storyPrompt": "A crime."},
                {"id": "quest", "name": "Quest", "category": "Adventure, Classic", "storyPrompt": "A journey."},
            ]
        ),
        encoding="utf-8",
    )
    (seed_dir / "author_styles.json").write_text(
        json.dumps(
            [
                {"id": "noir", "name": "Pulp Noir", "authorPrompt": "Hardboiled.", "keywords": ["detective"]},
                {"id": "plain", "name": "Plain", "authorPrompt": "Simple words."},
            ]
        ),
        encoding="utf-8",
    )
    return seed_dir


def test_shipped_seed_files_parse(tmp_path: Path):
    async def _run() -> None:
        async with KeyValueStore(tmp_path / "sm.db") as store:
            library = LibraryStore(store, seed_dir=_DATA_DIR)
            await library.load()
            assert library.story_type("heros_journey") is not None
            assert library.author_style("pulp_noir").nsfw_prompt
            for story_type in library.story_types:
                assert set(story_type.phase_prompts) >= {"setup", "confrontation", "resolution"}

    asyncio.run(_run())


def test_load_seeds_once_then_reads_storage(tmp_path: Path):
    seed_dir = _seed(tmp_path)

    async def _run() -> None:
        async with KeyValueStore(tmp_path / "sm.db") as store:
            library = LibraryStore(store, seed_dir=seed_dir)
            await library.load()
            assert [t.id for t in library.story_types] == ["mystery", "quest"]
            assert library.story_type("quest").category == ["Adventure", "Classic"]

            edited = library.story_type("quest")
            edited.name = "The Quest"
            assert await library.update_story_type(edited) is True

            reloaded = LibraryStore(store, seed_dir=seed_dir)
            await reloaded.load()
            assert reloaded.story_type("quest").name == "The Quest"
            assert reloaded.has_original_story_type("quest")

    asyncio.run(_run())


def test_missing_seed_dir_gives_empty_catalog(tmp_path: Path):
    async def _run() -> None:
        async with KeyValueStore(tmp_path / "sm.db") as store:
            library = LibraryStore(store, seed_dir=tmp_path / "nowhere")
            await library.load()
            assert library.story_types == []
            assert library.story_type("") is None

    asyncio.run(_run())


def test_crud(tmp_path: Path):
    async def _run() -> None:
        async with KeyValueStore(tmp_path / "sm.db") as store:
            library = LibraryStore(store, seed_dir=_seed(tmp_path))
            await library.load()

            fresh = library.new_story_type()
            assert fresh.id.startswith("custom_")
            assert set(fresh.phase_prompts) == {"setup", "confrontation", "resolution"}
            await library.add_story_type(fresh)
            assert library.story_type(fresh.id) is not None

            with pytest.raises(ValueError):
                await library.add_story_type(StoryType(id="mystery", name="Again"))

            assert await library.update_story_type(StoryType(id="ghost")) is False
            assert await library.delete_story_type(fresh.id) is True
            assert await library.delete_story_type(fresh.id) is False

            style = library.new_author_style()
            await library.add_author_style(style)
            assert await library.delete_author_style(style.id) is True
            assert [s.id for s in library.author_styles] == ["noir", "plain"]

    asyncio.run(_run())


def test_import_merges_by_id(tmp_path: Path):
    payload = json.dumps(
        [
            {"id": "mystery", "name": "Cozy Mystery", "storyPrompt": "A village crime."},
            {"id": "heist", "name": "Heist", "storyPrompt": "A big score."},
        ]
    )

    async def _run() -> None:
        async with KeyValueStore(tmp_path / "sm.db") as store:
            library = LibraryStore(store, seed_dir=_seed(tmp_path))
            await library.load()
            assert await library.import_story_types(payload) == 2
            assert [t.id for t in library.story_types] == ["mystery", "quest", "heist"]
            assert library.story_type("mystery").name == "Cozy Mystery"

            exported = json.loads(library.export_story_types())
            assert [entry["id"] for entry in exported] == ["mystery", "quest", "heist"]
            assert exported[2]["storyPrompt"] == "A big score."

    asyncio.run(_run())


def test_import_rejects_bad_payloads(tmp_path: Path):
    async def _run() -> None:
        async with KeyValueStore(tmp_path / "sm.db") as store:
            library = LibraryStore(store, seed_dir=_seed(tmp_path))
            await library.load()
            for bad in ("not json", '{"id": "x"}', '[{"id": "x"}]', '[{"name": "No id"}]'):
                with pytest.raises(LibraryImportError):
                    await library.import_author_styles(bad)
            assert [s.id for s in library.author_styles] == ["noir", "plain"]

    asyncio.run(_run())


def test_search(tmp_path: Path):
    async def _run() -> None:
        async with KeyValueStore(tmp_path / "sm.db") as store:
            library = LibraryStore(store, seed_dir=_seed(tmp_path))
            await library.load()
            assert [t.id for t in library.search_story_types("")] == ["mystery", "quest"]
            assert [t.id for t in library.search_story_types("journey")] == ["quest"]
            assert [t.id for t in library.search_story_types("mistery")] == ["mystery"]
            assert [s.id for s in library.search_author_styles("DETECTIVE")] == ["noir"]
            assert library.search_author_styles("zzzz") == []

    asyncio.run(_run())


def test_revert_restores_shipped_version(tmp_path: Path):
    async def _run() -> None:
        async with KeyValueStore(tmp_path / "sm.db") as store:
            library = LibraryStore(store, seed_dir=_seed(tmp_path))
            await library.load()

            style = library.author_style("noir")
            style.author_prompt = "Cheerful."
            await library.update_author_style(style)

            restored = await library.revert_author_style("noir")
            assert restored.author_prompt == "Hardboiled."
            assert library.author_style("noir").author_prompt == "Hardboiled."
            assert await library.revert_author_style("ghost") is None

    asyncio.run(_run())


def test_export_filename():
    stamp = datetime(2026, 1, 15, 10, 0, 0)
    assert export_filename("story-types", stamp) == "story-types-2026-01-15T10-00-00.json"
