from __future__ import annotations

import time

import httpx

from app.clients.http import http_session, response_excerpt, retry_after_seconds
from app.domain.dto import AIGatewayRequest, AIGatewayResult
from app.domain.errors import PipelineError
from app.domain.prompt_spec import parse_json_object
from app.settings import AIGatewaySettings


class OpenAICompatibleGateway:
    """Chat-completions client for an OpenAI-compatible AI gateway."""

    def __init__(self, *, settings: AIGatewaySettings, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._client = client

    async def complete(self, request: AIGatewayRequest) -> AIGatewayResult:
        body = {
            "model": self._settings.model or request.model,
            "temperature": request.temperature,
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.user_prompt},
            ],
            "response_format": {"type": "json_object"},
        }
        headers = {"Authorization": f"Bearer {self._settings.token}"}
        endpoint = f"{self._settings.url.rstrip('/')}/chat/completions"

        started = time.perf_counter()
        try:
            async with http_session(self._client, timeout_seconds=self._settings.timeout_seconds) as client:
                response = await client.post(endpoint, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise PipelineError("AI_FAIL", f"AI gateway request failed: {exc}") from exc
        latency_ms = int((time.perf_counter() - started) * 1000)

        if response.status_code == 429:
            raise PipelineError(
                "RATE_LIMIT",
                "AI gateway rate limit reached",
                retry_after_seconds=retry_after_seconds(response),
            )
        if not response.is_success:
            raise PipelineError(
                "AI_FAIL",
                f"AI gateway returned HTTP {response.status_code}: {response_excerpt(response)}",
            )

        payload = response.json()
        raw_text = _message_content(payload)
        usage = payload.get("usage") if isinstance(payload, dict) else None
        usage = usage if isinstance(usage, dict) else {}
        return AIGatewayResult(
            raw_text=raw_text,
            raw_json=parse_json_object(raw_text),
            tokens_input=int(usage.get("prompt_tokens") or 0),
            tokens_output=int(usage.get("completion_tokens") or 0),
            latency_ms=latency_ms,
        )


def _message_content(payload: object) -> str:
    if not isinstance(payload, dict):
        raise PipelineError("AI_FAIL", "AI gateway response is not a JSON object")
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        raise PipelineError("AI_FAIL", "AI gateway response has no choices")
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str) or not content.strip():
        raise PipelineError("AI_FAIL", "AI gateway returned an empty completion")
    return content
