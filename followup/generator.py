from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from .config import settings
from .errors import GenerationError

logger = logging.getLogger(__name__)


class Generator(Protocol):
    async def generate(self, system_instructions: str, prompt: str, context_model: str) -> str: ...


def _extract_text(payload: Any) -> str:
    # Workers AI wraps output as {"result": {"response": ...}}; OpenAI-style
    # endpoints return {"choices": [{"message": {"content": ...}}]}.
    if not isinstance(payload, dict):
        return ""
    result = payload.get("result")
    if isinstance(result, dict) and isinstance(result.get("response"), str):
        return result["response"].strip()
    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message")
        if isinstance(message, dict) and isinstance(message.get("content"), str):
            return message["content"].strip()
    return ""


class WorkersAIGenerator:
    """Async client for the Workers AI text-generation REST endpoint."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        account_id: str | None = None,
        api_token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = (base_url or settings.ai_base_url).rstrip("/")
        self._account_id = account_id if account_id is not None else settings.ai_account_id
        token = api_token if api_token is not None else settings.ai_api_token
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        # No request timeout: a hung call is not retried by the workflow.
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url, headers=headers, timeout=None
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def generate(self, system_instructions: str, prompt: str, context_model: str) -> str:
        path = f"/accounts/{self._account_id}/ai/run/{context_model}"
        body = {
            "messages": [
                {"role": "system", "content": system_instructions},
                {"role": "user", "content": prompt},
            ]
        }
        try:
            resp = await self._client.post(path, json=body)
            resp.raise_for_status()
        except httpx.RequestError as e:
            raise GenerationError(f"Generator request failed (POST {path}): {e}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise GenerationError(f"Generator error {status} (POST {path}): {e.response.text}") from e

        try:
            payload = resp.json()
        except ValueError as e:
            raise GenerationError(f"Generator returned non-JSON body: {resp.text[:200]}") from e

        text = _extract_text(payload)
        if not text:
            logger.warning("Generator returned empty output for model %s", context_model)
        return text
