"""Tests for configuration loading and global settings."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from storymode.config import SETTINGS_KEY, GlobalSettings, SettingsManager, load_config
from storymode.memory import KeyValueStore


def test_load_config_reads_yaml_and_env(tmp_path: Path, monkeypatch):
    (tmp_path / "settings.yaml").write_text(
        "story_mode:\n  enabled: true\n  arc_length: 12\nllm:\n  provider: completions\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("COMPLETIONS_API_KEY", "sk-local")
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)

    cfg = load_config(tmp_path)
    assert cfg["story_mode"] == {"enabled": True, "arc_length": 12}
    assert cfg["llm"]["provider"] == "completions"
    assert cfg["_secrets"]["completions_api_key"] == "sk-local"
    assert cfg["_secrets"]["anthropic_api_key"] == ""


def test_load_config_missing_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path)


def test_shipped_config_loads():
    cfg = load_config()
    settings = GlobalSettings.from_layers(cfg["story_mode"])
    assert settings.enabled is True
    assert settings.selected_story_type == "heros_journey"
    assert cfg["storage"]["database"]


def test_from_layers_later_layers_win_and_bad_values_are_dropped():
    settings = GlobalSettings.from_layers(
        {"enabled": True, "depth": 2, "position": "in_prompt"},
        None,
        {"depth": 6, "arc_length": "abc", "position": "sideways", "no_such_setting": 1},
    )
    assert settings.enabled is True
    assert settings.depth == 6
    assert settings.arc_length == 30
    assert settings.position == "in_prompt"
    assert not hasattr(settings, "no_such_setting")


def test_apply_validates():
    settings = GlobalSettings()
    with pytest.raises(KeyError):
        settings.apply("volume", 11)
    with pytest.raises(ValueError):
        settings.apply("enabled", "yes")
    with pytest.raises(ValueError):
        settings.apply("depth", True)
    with pytest.raises(ValueError):
        settings.apply("depth", -1)
    with pytest.raises(ValueError):
        settings.apply("arc_length", 0)
    with pytest.raises(ValueError):
        settings.apply("arc_length", -5)
    with pytest.raises(ValueError):
        settings.apply("role", "narrator")

    settings.apply("role", "assistant")
    settings.apply("selected_story_type", None)
    assert settings.role == "assistant"
    assert settings.selected_story_type == ""


def test_update_is_all_or_nothing(tmp_path: Path):
    manager = SettingsManager(KeyValueStore(tmp_path / "sm.db"))
    with pytest.raises(ValueError):
        manager.update(depth=2, position="bogus")
    assert manager.settings.depth == 4
    assert manager.settings.position == "in_chat"


def test_updates_are_saved_after_debounce(tmp_path: Path):
    async def _run() -> None:
        async with KeyValueStore(tmp_path / "sm.db") as store:
            manager = SettingsManager(store, defaults={"enabled": True}, debounce_seconds=0.05)
            manager.update(depth=2)
            manager.update(nsfw_enabled=True)
            assert await store.get(SETTINGS_KEY) is None

            await asyncio.sleep(0.3)
            saved = await store.get(SETTINGS_KEY)
            assert saved["depth"] == 2
            assert saved["nsfw_enabled"] is True
            assert saved["enabled"] is True

    asyncio.run(_run())


def test_flush_writes_pending_changes(tmp_path: Path):
    async def _run() -> None:
        async with KeyValueStore(tmp_path / "sm.db") as store:
            manager = SettingsManager(store, debounce_seconds=60)
            manager.update(summary_words=300)
            await manager.flush()
            assert (await store.get(SETTINGS_KEY))["summary_words"] == 300

    asyncio.run(_run())


def test_load_layers_stored_over_defaults(tmp_path: Path):
    async def _run() -> None:
        async with KeyValueStore(tmp_path / "sm.db") as store:
            await store.set(SETTINGS_KEY, {"nsfw_enabled": True, "depth": "deep"})
            manager = SettingsManager(store, defaults={"enabled": True, "depth": 2})
            settings = await manager.load()
            assert settings.enabled is True
            assert settings.nsfw_enabled is True
            assert settings.depth == 2

    asyncio.run(_run())
