from __future__ import annotations

import logging

import httpx

from app.clients.http import http_session, response_excerpt, retry_after_seconds
from app.domain.dto import IndexAnswer, IndexDocument
from app.domain.errors import PipelineError
from app.settings import ContentIndexSettings

logger = logging.getLogger("pipeline")

ROUTING_ERROR_MARKERS = ("Could not route", "No route for that URI")
SYNC_PROBE_RESULTS = 10
SUMMARY_QUERY_RESULTS = 50


class AISearchContentIndex:
    """Retrieval-augmented index over the object store (AI Search style API).

    The API cannot filter by path, so callers filter documents by prefix.
    """

    def __init__(self, *, settings: ContentIndexSettings, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._client = client

    async def is_synced(self, *, prefix: str) -> bool:
        try:
            response = await self._post({"query": f"files in {prefix}", "max_num_results": SYNC_PROBE_RESULTS})
        except httpx.HTTPError as exc:
            logger.info("index probe failed", extra={"prefix": prefix, "error": str(exc)})
            return False

        if not response.is_success:
            _raise_if_misconfigured(response)
            return False

        documents = _documents(response.json())
        return any(item.path.startswith(prefix) for item in documents)

    async def query(self, *, prefix: str, question: str) -> IndexAnswer:
        body: dict[str, object] = {
            "query": question,
            "max_num_results": SUMMARY_QUERY_RESULTS,
            "rewrite_query": False,
        }
        if self._settings.model:
            body["model"] = self._settings.model
        try:
            response = await self._post(body)
        except httpx.HTTPError as exc:
            raise PipelineError("INDEX_UNAVAILABLE", f"content index query failed: {exc}") from exc

        if response.status_code == 429:
            raise PipelineError(
                "RATE_LIMIT",
                "content index rate limit reached",
                retry_after_seconds=retry_after_seconds(response),
            )
        if not response.is_success:
            _raise_if_misconfigured(response)
            raise PipelineError(
                "INDEX_UNAVAILABLE",
                f"content index returned HTTP {response.status_code} for {prefix}: {response_excerpt(response)}",
            )

        payload = response.json()
        return IndexAnswer(response=_answer_text(payload), documents=_documents(payload))

    async def _post(self, body: dict[str, object]) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._settings.token}"}
        async with http_session(self._client, timeout_seconds=self._settings.timeout_seconds) as client:
            return await client.post(self._settings.url, json=body, headers=headers)


def _raise_if_misconfigured(response: httpx.Response) -> None:
    if response.status_code != 400:
        return
    text = response_excerpt(response, limit=1000)
    if any(marker in text for marker in ROUTING_ERROR_MARKERS):
        raise PipelineError("INDEX_UNAVAILABLE", f"content index instance cannot be routed: {text}")


def _result_section(payload: object) -> dict[str, object]:
    if not isinstance(payload, dict):
        return {}
    nested = payload.get("result")
    if isinstance(nested, dict):
        return {**nested, **{key: value for key, value in payload.items() if key != "result"}}
    return payload


def _answer_text(payload: object) -> str | None:
    value = _result_section(payload).get("response")
    if isinstance(value, str) and value.strip():
        return value
    return None


def _documents(payload: object) -> tuple[IndexDocument, ...]:
    raw_items = _result_section(payload).get("data")
    if not isinstance(raw_items, list):
        return ()
    documents: list[IndexDocument] = []
    for item in raw_items:
        if not isinstance(item, dict):
            continue
        attributes = item.get("attributes")
        path = attributes.get("path") if isinstance(attributes, dict) else None
        path = path or item.get("path") or item.get("filename") or ""
        documents.append(IndexDocument(path=str(path)))
    return tuple(documents)
