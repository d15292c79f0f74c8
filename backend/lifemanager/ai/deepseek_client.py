"""Minimal client for an OpenAI-compatible chat completions API with retries."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class ModelClientError(Exception):
    """Base exception for model client errors."""


class ModelRequestError(ModelClientError):
    """Raised when the model API request fails."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code


class ModelResponseError(ModelClientError):
    """Raised when a response carries no usable completion text."""


class DeepSeekClient:
    """Thin client for `POST /chat/completions` returning the first choice's text."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str = "https://api.deepseek.com",
        timeout_seconds: int = 30,
        max_retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self._transport = transport

    async def chat_completion(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
    ) -> str:
        body = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": False,
        }
        url = f"{self.base_url}/chat/completions"
        headers = {"Authorization": f"Bearer {self.api_key}"}

        last_error: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout_seconds,
                    transport=self._transport,
                ) as client:
                    response = await client.post(url, headers=headers, json=body)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                last_error = exc
                if attempt < self.max_retries:
                    await asyncio.sleep(0.5 * (2**attempt))
                    continue
                logger.warning("Model request failed after %d attempt(s): %s", attempt + 1, type(exc).__name__)
                raise ModelRequestError(503, "Model request failed") from exc

            if response.status_code in RETRYABLE_STATUS_CODES and attempt < self.max_retries:
                await asyncio.sleep(0.5 * (2**attempt))
                continue

            if response.status_code >= 400:
                logger.warning("Model request returned HTTP %d", response.status_code)
                raise ModelRequestError(response.status_code, response.text)

            try:
                payload = response.json()
            except ValueError as exc:
                raise ModelResponseError("Invalid JSON from model API") from exc

            return self._parse_response(payload)

        raise ModelRequestError(503, f"Model request failed: {last_error or 'unknown error'}")

    def _parse_response(self, payload: Any) -> str:
        if not isinstance(payload, dict):
            raise ModelResponseError("Model response is not an object")

        choices = payload.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            raise ModelResponseError("Model response missing choices")

        message = choices[0].get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise ModelResponseError("Empty AI response")

        return content
