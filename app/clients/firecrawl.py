from __future__ import annotations

import httpx

from app.clients.http import http_session, response_excerpt, retry_after_seconds
from app.domain.errors import PipelineError
from app.settings import FirecrawlSettings


class FirecrawlScreenshotClient:
    """Full-page screenshots through the Firecrawl scrape API."""

    def __init__(self, *, settings: FirecrawlSettings, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self._settings.api_key)

    async def capture(self, *, url: str) -> str:
        endpoint = f"{self._settings.base_url.rstrip('/')}/v2/scrape"
        body = {"url": url, "formats": [{"type": "screenshot", "fullPage": True}]}
        headers = {"Authorization": f"Bearer {self._settings.api_key}"}
        try:
            async with http_session(self._client, timeout_seconds=self._settings.timeout_seconds) as client:
                response = await client.post(endpoint, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise PipelineError("INTERNAL_ERROR", f"screenshot request for {url} failed: {exc}") from exc

        if response.status_code == 429:
            raise PipelineError(
                "RATE_LIMIT",
                "screenshot service rate limit reached",
                retry_after_seconds=retry_after_seconds(response),
            )
        if not response.is_success:
            raise PipelineError(
                "INTERNAL_ERROR",
                f"screenshot service returned HTTP {response.status_code}: {response_excerpt(response)}",
            )

        screenshot_url = _screenshot_url(response.json())
        if screenshot_url is None:
            raise PipelineError("INTERNAL_ERROR", "no valid screenshot URL returned by screenshot service")
        return screenshot_url

    async def download(self, *, image_url: str) -> bytes:
        try:
            async with http_session(self._client, timeout_seconds=self._settings.image_timeout_seconds) as client:
                response = await client.get(image_url)
        except httpx.HTTPError as exc:
            raise PipelineError("INTERNAL_ERROR", f"screenshot download failed: {exc}") from exc
        if not response.is_success:
            raise PipelineError("INTERNAL_ERROR", f"screenshot download returned HTTP {response.status_code}")
        return response.content


def _screenshot_url(payload: object) -> str | None:
    candidates: list[object] = []
    if isinstance(payload, str):
        candidates.append(payload)
    elif isinstance(payload, dict):
        candidates.append(payload.get("screenshot"))
        data = payload.get("data")
        if isinstance(data, dict):
            candidates.append(data.get("screenshot"))
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.startswith("http"):
            return candidate
    return None
