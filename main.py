"""Entry point for Story Mode.

Usage:
    python main.py status                    # Arc status for the default chat
    python main.py --chat quest preview      # Injection preview for chat "quest"
    python main.py set debug_mode true       # Change a global setting
    python main.py library search noir --styles
    python main.py --verbose play            # Interactive story chat
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import click
import yaml

from chat.models import ChatMessage
from storymode.config import load_config
from storymode.core import StoryMode, build_session
from storymode.generation import GenerationError, build_generator
from storymode.library import LibraryImportError, export_filename


def _setup_logging(verbose: bool = False, log_file: str | None = None) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    fmt = "%(asctime)s — %(name)s — %(levelname)s — %(message)s"

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(level=level, format=fmt, handlers=handlers)

    # Quiet down noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def _render(message: ChatMessage) -> None:
    name = message.name or message.role
    click.echo(f"\n{name}: {message.text}\n")


def _run(
    obj: dict[str, Any],
    action: Callable[[StoryMode], Awaitable[Any]],
    with_generator: bool = False,
) -> Any:
    async def _go() -> Any:
        cfg = obj["cfg"]
        session = build_session(cfg, chat_id=obj["chat"], on_render=_render)
        generator = build_generator(cfg) if with_generator else None
        async with StoryMode(config=cfg, host=session, generator=generator) as sm:
            return await action(sm)

    return asyncio.run(_go())


@click.group()
@click.option("--chat", default="default", show_default=True, help="Chat id to act on")
@click.option("--verbose", is_flag=True, help="Enable debug logging")
@click.option("--config-dir", type=click.Path(), default=None, help="Config directory")
@click.pass_context
def main(ctx: click.Context, chat: str, verbose: bool, config_dir: str | None) -> None:
    """Story Mode: three-act arc progression for chat stories."""
    cfg = load_config(config_dir)
    log_file = (cfg.get("storage", {}) or {}).get("log_file")
    _setup_logging(verbose=verbose, log_file=log_file)
    ctx.obj = {"cfg": cfg, "chat": chat}


@main.command()
@click.pass_obj
def status(obj: dict) -> None:
    """Show arc progress for the chat."""

    async def _status(sm: StoryMode) -> None:
        state = await sm.state()
        click.echo(await sm.status())
        click.echo(await sm.badge())
        click.echo(f"State: {sm.controller.arc_status(state)}")

    _run(obj, _status)


@main.command()
@click.pass_obj
def preview(obj: dict) -> None:
    """Print the injection for the next message, ignoring arc completion."""

    async def _preview(sm: StoryMode) -> None:
        text = await sm.controller.preview()
        click.echo(text or "(nothing to inject)")

    _run(obj, _preview)


@main.command()
@click.confirmation_option(prompt="Reset the story arc? This will set the step counter back to 0.")
@click.pass_obj
def reset(obj: dict) -> None:
    """Reset the chat's arc to step 0."""

    async def _reset(sm: StoryMode) -> None:
        await sm.controller.reset_arc()
        click.echo("Story arc reset")

    _run(obj, _reset)


@main.command("select-story")
@click.argument("type_id")
@click.pass_obj
def select_story(obj: dict, type_id: str) -> None:
    """Select a story type for the chat ("none" clears it)."""
    type_id = "" if type_id.lower() == "none" else type_id

    async def _select(sm: StoryMode) -> None:
        if type_id and sm.library.story_type(type_id) is None:
            raise click.ClickException(f"Unknown story type: {type_id}")
        await sm.controller.select_story_type(type_id)
        click.echo(await sm.status())

    _run(obj, _select)


@main.command("select-style")
@click.argument("style_id")
@click.pass_obj
def select_style(obj: dict, style_id: str) -> None:
    """Select an author style for the chat ("none" clears it)."""
    style_id = "" if style_id.lower() == "none" else style_id

    async def _select(sm: StoryMode) -> None:
        if style_id and sm.library.author_style(style_id) is None:
            raise click.ClickException(f"Unknown author style: {style_id}")
        await sm.controller.select_author_style(style_id)
        click.echo(await sm.status())

    _run(obj, _select)


@main.command("arc-length")
@click.argument("length", type=click.IntRange(min=1))
@click.pass_obj
def arc_length(obj: dict, length: int) -> None:
    """Set the arc length for the chat and for new chats."""

    async def _set(sm: StoryMode) -> None:
        await sm.controller.set_arc_length(length)
        click.echo(await sm.badge())

    _run(obj, _set)


@main.command("set")
@click.argument("name")
@click.argument("value")
@click.pass_obj
def set_option(obj: dict, name: str, value: str) -> None:
    """Change a global setting, e.g. ``set nsfw_enabled true``."""
    parsed = yaml.safe_load(value)

    async def _set(sm: StoryMode) -> None:
        try:
            await sm.controller.update_settings(**{name: parsed})
        except (KeyError, ValueError) as exc:
            raise click.ClickException(f"Cannot set {name}: {exc}") from exc
        click.echo(f"{name} = {getattr(sm.settings, name)!r}")

    _run(obj, _set)


@main.command()
@click.pass_obj
def retry(obj: dict) -> None:
    """Re-run the end-of-arc epilogue/summary for a finished arc."""

    async def _retry(sm: StoryMode) -> None:
        if not await sm.controller.retry_post_arc():
            raise click.ClickException("The arc is not finished yet.")
        state = await sm.state()
        click.echo(f"State: {sm.controller.arc_status(state)}")

    _run(obj, _retry, with_generator=True)


# ── Library ─────────────────────────────────────────────────────


@main.group()
def library() -> None:
    """Manage story types and author styles."""


_styles_option = click.option("--styles", is_flag=True, help="Act on author styles instead of story types")


def _echo_items(obj: dict, styles: bool, query: str) -> None:
    async def _find(sm: StoryMode) -> None:
        items = sm.library.search_author_styles(query) if styles else sm.library.search_story_types(query)
        if not items:
            click.echo("Nothing found.")
        for item in items:
            click.echo(f"{item.id:<24} {item.name}  [{', '.join(item.category)}]")

    _run(obj, _find)


@library.command("list")
@_styles_option
@click.pass_obj
def library_list(obj: dict, styles: bool) -> None:
    """List catalog entries by name."""
    _echo_items(obj, styles, "")


@library.command("search")
@_styles_option
@click.argument("query")
@click.pass_obj
def library_search(obj: dict, styles: bool, query: str) -> None:
    """Search names, categories and prompts (fuzzy if nothing matches exactly)."""
    _echo_items(obj, styles, query)


@library.command("import")
@_styles_option
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
def library_import(obj: dict, styles: bool, path: Path) -> None:
    """Merge entries from a JSON export (same id replaces)."""
    text = path.read_text(encoding="utf-8")

    async def _import(sm: StoryMode) -> None:
        try:
            if styles:
                count = await sm.library.import_author_styles(text)
            else:
                count = await sm.library.import_story_types(text)
        except LibraryImportError as exc:
            raise click.ClickException(f"Import failed: {exc}") from exc
        click.echo(f"Imported {count} {'author styles' if styles else 'story types'}")

    _run(obj, _import)


@library.command("export")
@_styles_option
@click.option("--out", type=click.Path(dir_okay=False, path_type=Path), default=None, help="Output file")
@click.pass_obj
def library_export(obj: dict, styles: bool, out: Path | None) -> None:
    """Write the catalog to a JSON file."""

    async def _export(sm: StoryMode) -> str:
        return sm.library.export_author_styles() if styles else sm.library.export_story_types()

    text = _run(obj, _export)
    target = out or Path(export_filename("author-styles" if styles else "story-types"))
    target.write_text(text, encoding="utf-8")
    click.echo(f"Exported to {target}")


@library.command("revert")
@_styles_option
@click.argument("item_id")
@click.pass_obj
def library_revert(obj: dict, styles: bool, item_id: str) -> None:
    """Restore an entry to its shipped version."""

    async def _revert(sm: StoryMode) -> None:
        if styles:
            restored = await sm.library.revert_author_style(item_id)
        else:
            restored = await sm.library.revert_story_type(item_id)
        if restored is None:
            raise click.ClickException(f"No original version of {item_id}")
        await sm.controller.refresh_injection()
        click.echo(f"Reverted {restored.name}")

    _run(obj, _revert)


@library.command("delete")
@_styles_option
@click.argument("item_id")
@click.confirmation_option(prompt="Delete this entry?")
@click.pass_obj
def library_delete(obj: dict, styles: bool, item_id: str) -> None:
    """Delete an entry (clears it from the chat if selected)."""

    async def _delete(sm: StoryMode) -> None:
        deleted = await (sm.delete_author_style(item_id) if styles else sm.delete_story_type(item_id))
        if not deleted:
            raise click.ClickException(f"Not found: {item_id}")
        click.echo(f"Deleted {item_id}")

    _run(obj, _delete)


# ── Interactive play ────────────────────────────────────────────

_PLAY_HELP = "Commands: /swipe, /status, /preview, /reset, /retry, /chat <id>, /quit"


async def _narrate(turn: Awaitable[Any]) -> None:
    try:
        await turn
    except GenerationError as e:
        logging.getLogger(__name__).error("Generation error: %s", e, exc_info=True)
        click.echo("(The narrator is silent. Try again or /swipe.)")


async def _play(sm: StoryMode) -> None:
    session = sm.host
    await session.switch_chat(session.chat_id)
    await sm.controller.settled()

    click.echo(f"{await sm.status()}\n{_PLAY_HELP}\n")
    if not session.messages:
        await _narrate(session.generate_reply(sm.generator))

    while True:
        line = await asyncio.to_thread(click.prompt, "You", default="", show_default=False)
        line = line.strip()
        if not line:
            continue
        if line in ("/quit", "/exit"):
            break
        if line == "/swipe":
            await _narrate(session.swipe(sm.generator))
        elif line == "/status":
            click.echo(f"{await sm.status()} | {await sm.badge()}")
        elif line == "/preview":
            click.echo(await sm.controller.preview() or "(nothing to inject)")
        elif line == "/reset":
            await sm.controller.reset_arc()
            click.echo("Story arc reset")
        elif line == "/retry":
            if not await sm.controller.retry_post_arc():
                click.echo("The arc is not finished yet.")
        elif line.startswith("/chat "):
            await session.switch_chat(line.split(maxsplit=1)[1])
            await sm.controller.settled()
            click.echo(await sm.status())
        elif line.startswith("/"):
            click.echo(_PLAY_HELP)
        else:
            await session.send(line)
            await _narrate(session.generate_reply(sm.generator))


@main.command()
@click.pass_obj
def play(obj: dict) -> None:
    """Chat interactively with arc progression switched on."""
    try:
        _run(obj, _play, with_generator=True)
    except KeyboardInterrupt:
        click.echo("\nThe story pauses here.")


if __name__ == "__main__":
    main()
