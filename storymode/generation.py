"""Text-generation backends used for epilogues, summaries and chat replies."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import anthropic

from chat.client import CompletionsClient, CompletionsError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_MAX_TOKENS = 800


class GenerationError(Exception):
    """Raised when a backend fails to produce text."""


class TextGenerator(Protocol):
    async def generate(
        self,
        prompt: str,
        system_prompt: str = "",
        response_length: int = 0,
    ) -> str: ...


class AnthropicGenerator:
    """Generate text with Claude."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.9,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ):
        self._client = anthropic.AsyncAnthropic(api_key=api_key)
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def generate(
        self,
        prompt: str,
        system_prompt: str = "",
        response_length: int = 0,
    ) -> str:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": response_length or self._max_tokens,
            "temperature": self._temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            kwargs["system"] = system_prompt
        try:
            msg = await self._client.messages.create(**kwargs)
        except anthropic.APIError as exc:
            raise GenerationError(f"Anthropic request failed: {exc}") from exc

        text = "".join(getattr(block, "text", "") for block in msg.content).strip()
        logger.debug("Generated (%d chars): %s", len(text), text[:80])
        return text


class CompletionsGenerator:
    """Generate text through an OpenAI-compatible backend."""

    def __init__(self, client: CompletionsClient, temperature: float | None = None, max_tokens: int = 0):
        self._client = client
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def generate(
        self,
        prompt: str,
        system_prompt: str = "",
        response_length: int = 0,
    ) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        try:
            text = await self._client.chat(
                messages,
                max_tokens=response_length or self._max_tokens or None,
                temperature=self._temperature,
            )
        except CompletionsError as exc:
            raise GenerationError(f"Completions request failed: {exc}") from exc
        return text.strip()

    async def close(self) -> None:
        await self._client.close()


def build_generator(cfg: dict) -> AnthropicGenerator | CompletionsGenerator:
    """Pick the backend named by ``llm.provider``."""
    llm = cfg.get("llm", {}) or {}
    secrets = cfg.get("_secrets", {}) or {}
    provider = str(llm.get("provider", "anthropic")).lower()

    if provider == "anthropic":
        return AnthropicGenerator(
            api_key=secrets.get("anthropic_api_key", ""),
            model=llm.get("model", DEFAULT_MODEL),
            temperature=llm.get("temperature", 0.9),
            max_tokens=llm.get("max_tokens", DEFAULT_MAX_TOKENS),
        )
    if provider == "completions":
        client = CompletionsClient(
            base_url=llm.get("base_url", "http://127.0.0.1:5001/v1"),
            api_key=secrets.get("completions_api_key", ""),
            model=llm.get("model", ""),
        )
        return CompletionsGenerator(
            client,
            temperature=llm.get("temperature"),
            max_tokens=llm.get("max_tokens", 0),
        )
    raise ValueError(f"Unknown llm provider: {provider}")
