"""Async JSON-mode chat client for the OpenAI API."""

from __future__ import annotations

import json
from typing import Any, Protocol

from openai import APIError as OpenAIAPIError
from openai import AsyncOpenAI
from openai import OpenAIError as OpenAIBaseError

from app.services.investors.errors import GenerativeSourceError


class JSONChatClient(Protocol):
    """Minimal contract for JSON-object chat completions."""

    async def generate(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        model: str,
        temperature: float,
    ) -> str:
        ...


class OpenAIJSONClient(JSONChatClient):
    """Thin wrapper around ``AsyncOpenAI`` chat completions in JSON-object mode."""

    def __init__(self, api_key: str, *, timeout: float = 60.0) -> None:
        if not api_key:
            raise ValueError("OPENAI_API_KEY is required to query the investor model.")
        self._client = AsyncOpenAI(api_key=api_key, timeout=timeout)

    async def generate(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        model: str,
        temperature: float,
    ) -> str:
        try:
            completion = await self._client.chat.completions.create(
                model=model,
                temperature=temperature,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
            )
        except OpenAIAPIError as exc:
            code = "429_RATE_LIMIT" if getattr(exc, "status_code", 500) == 429 else "502_OPENAI_UPSTREAM"
            message = getattr(exc, "message", str(exc))
            raise GenerativeSourceError(f"OpenAI request failed: {message}", code=code) from exc
        except OpenAIBaseError as exc:
            raise GenerativeSourceError(f"OpenAI request failed: {exc}", code="502_OPENAI_UPSTREAM") from exc

        choices = getattr(completion, "choices", None) or []
        if not choices:
            raise GenerativeSourceError("OpenAI response had no choices.", code="502_OPENAI_UPSTREAM")
        content = getattr(choices[0].message, "content", None)
        if not isinstance(content, str) or not content.strip():
            raise GenerativeSourceError("OpenAI response did not include text output.", code="502_OPENAI_UPSTREAM")
        return content.strip()

    async def close(self) -> None:
        await self._client.close()


def parse_json_object(raw_text: str) -> dict[str, Any]:
    """Best-effort JSON decoding that tolerates code fences or prose."""
    candidate = raw_text.strip()
    if candidate.startswith("```"):
        candidate = "\n".join(line for line in candidate.splitlines() if not line.strip().startswith("```")).strip()
    if candidate.startswith("{") and candidate.endswith("}"):
        payload = json.loads(candidate)
    else:
        start = candidate.find("{")
        end = candidate.rfind("}")
        if start == -1 or end == -1 or end <= start:
            raise ValueError("Response did not contain JSON object.")
        payload = json.loads(candidate[start : end + 1])
    if not isinstance(payload, dict):
        raise ValueError("Response JSON was not an object.")
    return payload
