"""Async client for OpenAI-compatible chat-completions backends.

Local backends (KoboldCpp, llama.cpp server, text-generation-webui) and
hosted routers all speak this dialect.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class CompletionsError(Exception):
    """Raised when the backend returns an error or an unusable body."""

    def __init__(self, message: str, status_code: int = 0, hint: str = ""):
        self.status_code = status_code
        self.hint = hint
        super().__init__(message)


class RateLimitError(CompletionsError):
    """Raised when we hit a rate limit (429)."""

    def __init__(self, message: str, retry_after: float = 0):
        self.retry_after = retry_after
        super().__init__(message, status_code=429)


class CompletionsClient:
    """Async wrapper for ``POST /chat/completions``.

    Usage::

        async with CompletionsClient("http://127.0.0.1:5001/v1") as client:
            text = await client.chat([{"role": "user", "content": "Hi"}])
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        model: str = "",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._model = model
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> CompletionsClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    # ── Request helpers ─────────────────────────────────────────

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        def _json_or_empty(resp: httpx.Response) -> dict[str, Any]:
            if not resp.content:
                return {}
            try:
                data = resp.json()
            except ValueError:
                return {}
            return data if isinstance(data, dict) else {}

        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise CompletionsError(f"Request to {path} failed: {exc}") from exc
        body = _json_or_empty(resp)

        if resp.status_code == 429:
            retry = resp.headers.get("retry-after", "0")
            try:
                retry_after = float(retry)
            except ValueError:
                retry_after = 0.0
            raise RateLimitError("Rate limited by completions backend", retry_after=retry_after)

        if resp.status_code >= 400:
            error = body.get("error", {})
            message = error.get("message") if isinstance(error, dict) else error
            raise CompletionsError(
                message or f"HTTP {resp.status_code}",
                status_code=resp.status_code,
            )

        return body

    # ── Completions ─────────────────────────────────────────────

    async def chat(
        self,
        messages: list[dict[str, str]],
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        """Send a chat-completion request and return the first choice's text."""
        payload: dict[str, Any] = {"messages": messages}
        if self._model:
            payload["model"] = self._model
        if max_tokens:
            payload["max_tokens"] = max_tokens
        if temperature is not None:
            payload["temperature"] = temperature

        body = await self._request("POST", "/chat/completions", json=payload)
        choices = body.get("choices") or []
        if not choices:
            raise CompletionsError("Response has no choices")
        message = choices[0].get("message") or {}
        text = message.get("content") or choices[0].get("text") or ""
        logger.debug("Completion (%d chars): %s", len(text), text[:80])
        return text
