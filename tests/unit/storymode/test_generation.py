"""Tests for text-generation backends."""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

import anthropic
import httpx
import pytest

from chat.client import CompletionsClient
from storymode.generation import (
    AnthropicGenerator,
    CompletionsGenerator,
    GenerationError,
    build_generator,
)


def _generator(handler, **kwargs) -> CompletionsGenerator:
    client = CompletionsClient("http://backend.local/v1", transport=httpx.MockTransport(handler))
    return CompletionsGenerator(client, **kwargs)


def test_completions_generator_sends_system_and_user_messages():
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"choices": [{"message": {"content": "  An epilogue.  "}}]})

    generator = _generator(handler, temperature=0.7, max_tokens=300)

    async def _run() -> str:
        try:
            return await generator.generate("story so far", system_prompt="Wrap it up.", response_length=120)
        finally:
            await generator.close()

    assert asyncio.run(_run()) == "An epilogue."
    assert bodies[0]["messages"] == [
        {"role": "system", "content": "Wrap it up."},
        {"role": "user", "content": "story so far"},
    ]
    assert bodies[0]["max_tokens"] == 120
    assert bodies[0]["temperature"] == 0.7


def test_completions_generator_falls_back_to_configured_length():
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    generator = _generator(handler, max_tokens=300)
    asyncio.run(generator.generate("hi"))
    assert bodies[0]["messages"] == [{"role": "user", "content": "hi"}]
    assert bodies[0]["max_tokens"] == 300
    assert "temperature" not in bodies[0]


def test_completions_failure_becomes_generation_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": "busy"})

    generator = _generator(handler)
    with pytest.raises(GenerationError, match="busy"):
        asyncio.run(generator.generate("hi"))


def test_build_generator_picks_backend():
    anthropic_gen = build_generator({"llm": {"provider": "anthropic"}, "_secrets": {"anthropic_api_key": "sk-ant-test"}})
    assert isinstance(anthropic_gen, AnthropicGenerator)

    local = build_generator({"llm": {"provider": "Completions", "base_url": "http://127.0.0.1:5001/v1"}})
    assert isinstance(local, CompletionsGenerator)
    asyncio.run(local.close())

    with pytest.raises(ValueError):
        build_generator({"llm": {"provider": "carrier-pigeon"}})


class _Messages:
    def __init__(self, outcome):
        self.outcome = outcome
        self.kwargs: list[dict] = []

    async def create(self, **kwargs):
        self.kwargs.append(kwargs)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def _claude(outcome, **kwargs) -> tuple[AnthropicGenerator, _Messages]:
    generator = AnthropicGenerator(api_key="sk-ant-test", model="claude-test", **kwargs)
    messages = _Messages(outcome)
    generator._client = SimpleNamespace(messages=messages)
    return generator, messages


def test_anthropic_generator_passes_system_and_length():
    reply = SimpleNamespace(content=[SimpleNamespace(text=" The end"), SimpleNamespace(text=" came.  ")])
    generator, messages = _claude(reply, temperature=0.5, max_tokens=400)

    assert asyncio.run(generator.generate("story so far", system_prompt="Wrap it up.", response_length=150)) == "The end came."
    assert messages.kwargs[0] == {
        "model": "claude-test",
        "max_tokens": 150,
        "temperature": 0.5,
        "messages": [{"role": "user", "content": "story so far"}],
        "system": "Wrap it up.",
    }

    asyncio.run(generator.generate("more"))
    assert messages.kwargs[1]["max_tokens"] == 400
    assert "system" not in messages.kwargs[1]


def test_anthropic_failure_becomes_generation_error():
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    generator, _ = _claude(anthropic.APIConnectionError(request=request))
    with pytest.raises(GenerationError, match="Anthropic request failed"):
        asyncio.run(generator.generate("hi"))
