from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

import httpx

USER_AGENT = "submission-enrichment-pipeline/0.1"


@asynccontextmanager
async def http_session(client: httpx.AsyncClient | None, *, timeout_seconds: float) -> AsyncIterator[httpx.AsyncClient]:
    """Yield the injected client, or a short-lived one closed on exit."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_seconds),
        headers={"User-Agent": USER_AGENT},
        follow_redirects=True,
    ) as session:
        yield session


def retry_after_seconds(response: httpx.Response) -> float | None:
    """Parse Retry-After as delta-seconds or HTTP-date."""
    raw = response.headers.get("retry-after")
    if raw is None:
        return None
    raw = raw.strip()
    try:
        return max(0.0, float(raw))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - datetime.now(tz=UTC)).total_seconds())


def response_excerpt(response: httpx.Response, *, limit: int = 300) -> str:
    try:
        text = response.text
    except UnicodeDecodeError:
        return f"<{len(response.content)} bytes>"
    return text[:limit]
