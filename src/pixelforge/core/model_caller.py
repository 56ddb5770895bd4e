"""Chat-completion client with model fallback and bounded retries.

:class:`ModelCaller` sends one system prompt + user message pair to a hosted
chat-completion endpoint and returns the first JSON object it can pull out
of the reply.  Inference is treated as unreliable, so a single
:meth:`ModelCaller.call` walks a fallback queue of models:

1. The model list is ``[model_override, *model_queue]`` when an override is
   given, otherwise just ``model_queue``.
2. Each model gets one request with a hard wall-clock timeout.
3. HTTP 429, any other non-2xx status, a transport error, or a reply with
   no parseable JSON object moves on to the next model.
4. A timeout abandons the whole call immediately.  A slow upstream is
   unlikely to get faster for the next model inside the same deadline.
5. Once every model has failed, the caller sleeps for the configured
   backoff and starts again from the top, up to ``model_max_attempts``
   passes.

Failures are never raised.  :meth:`ModelCaller.call` returns ``None`` and the
generation pipeline decides how to degrade.

Usage
-----
::

    async with httpx.AsyncClient() as client:
        caller = ModelCaller(client, config)
        result = await caller.call(prompts.DESCRIBE, "Describe: dragon", max_tokens=512)
        if result is not None:
            print(result.model, result.parsed["parts"])
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from pixelforge.core.config import PixelforgeConfig

logger = logging.getLogger(__name__)

# Truncation limits for upstream bodies echoed into the log.
_RATE_LIMIT_BODY_CHARS = 120
_ERROR_BODY_CHARS = 300
_RAW_PREVIEW_CHARS = 200


@dataclass(frozen=True)
class ModelResult:
    """Successful model call.

    Attributes:
        parsed: The JSON object extracted from the completion text.
        model: Identifier of the model that produced it.
    """

    parsed: dict[str, Any]
    model: str


def extract_json_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` span in ``text``.

    Braces inside JSON string literals are ignored, so a reply such as
    ``Here you go: {"a": "}"} hope this helps {`` yields ``{"a": "}"}``.

    Args:
        text: Free-form completion text.

    Returns:
        The substring from the first ``{`` to its matching ``}``, or ``None``
        if there is no opening brace or it is never closed.
    """
    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def parse_completion(text: str) -> dict[str, Any] | None:
    """Extract and decode the first JSON object in a completion.

    Returns:
        The decoded object, or ``None`` when no object is present, it is
        not valid JSON, or it decodes to something other than a mapping.
    """
    span = extract_json_object(text)
    if span is None:
        return None
    try:
        parsed = json.loads(span)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


class ModelCaller:
    """Issues chat-completion requests against a fallback queue of models.

    Attributes:
        _client (httpx.AsyncClient):
            Shared HTTP client; the caller does not own or close it.
        _config (PixelforgeConfig):
            Endpoint, token, queue, timeout and retry settings.
    """

    def __init__(self, client: httpx.AsyncClient, config: PixelforgeConfig) -> None:
        self._client = client
        self._config = config

    @property
    def endpoint(self) -> str:
        return f"{self._config.llm_api_base.rstrip('/')}/chat/completions"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._config.llm_api_token}",
            "Content-Type": "application/json",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def model_list(self, model_override: str | None = None) -> list[str]:
        """Return the ordered models to try for one pass."""
        queue = list(self._config.model_queue)
        if model_override:
            return [model_override, *queue]
        return queue

    async def call(
        self,
        system_prompt: str,
        user_message: str,
        model_override: str | None = None,
        max_tokens: int = 4096,
    ) -> ModelResult | None:
        """Run one prompt through the fallback queue.

        Args:
            system_prompt: Stage instructions.
            user_message: Stage input.
            model_override: Preferred model tried before the queue.
            max_tokens: Completion token budget.

        Returns:
            The first parsed JSON object and the model that produced it, or
            ``None`` if every model in every pass failed or a request timed
            out.
        """
        models = self.model_list(model_override)
        attempts = self._config.model_max_attempts

        for attempt in range(attempts):
            if attempt > 0:
                logger.info(f"Retrying after backoff (attempt {attempt + 1}/{attempts})")
                await asyncio.sleep(self._config.model_retry_backoff_seconds)

            for model in models:
                body = {
                    "messages": [
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_message},
                    ],
                    "model": model,
                    "temperature": self._config.llm_temperature,
                    "max_tokens": max_tokens,
                }
                try:
                    response = await asyncio.wait_for(
                        self._client.post(self.endpoint, json=body, headers=self._headers()),
                        timeout=self._config.model_timeout_seconds,
                    )
                except (asyncio.TimeoutError, httpx.TimeoutException):
                    logger.warning(
                        f"Model {model}: request timed out after "
                        f"{self._config.model_timeout_seconds}s; abandoning call"
                    )
                    return None
                except httpx.HTTPError as e:
                    logger.warning(f"Model {model} error: {e}")
                    continue

                if response.status_code == 429:
                    logger.warning(
                        f"Model {model} rate limited (429), trying next model. "
                        f"{response.text[:_RATE_LIMIT_BODY_CHARS]}"
                    )
                    continue

                if not response.is_success:
                    logger.warning(
                        f"Model {model} returned {response.status_code}: "
                        f"{response.text[:_ERROR_BODY_CHARS]}"
                    )
                    continue

                raw = _completion_text(response)
                logger.info(f"Model {model}: got {len(raw)} chars of content")

                parsed = parse_completion(raw)
                if parsed is None:
                    logger.warning(
                        f"Model {model}: no JSON object in response. "
                        f"Raw start: {raw[:_RAW_PREVIEW_CHARS]}"
                    )
                    continue

                return ModelResult(parsed=parsed, model=model)

        return None


def _completion_text(response: httpx.Response) -> str:
    """Pull ``choices[0].message.content`` out of a completion response."""
    try:
        data = response.json()
        content = data["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError):
        return ""
    return content if isinstance(content, str) else ""
