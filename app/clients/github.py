from __future__ import annotations

import base64
import binascii
import logging

import httpx

from app.clients.http import http_session, response_excerpt
from app.domain.dto import ReadmeDocument, RepositoryArchive
from app.domain.errors import PipelineError
from app.domain.repo_url import RepoRef
from app.settings import GitHubSettings

logger = logging.getLogger("pipeline")


class GitHubSourceHost:
    """Source host backed by the GitHub REST API and codeload archives."""

    def __init__(self, *, settings: GitHubSettings, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._client = client

    async def get_default_branch(self, repo: RepoRef) -> str | None:
        url = f"{self._settings.api_base_url}/repos/{repo.owner}/{repo.name}"
        response = await self._get(url, accept="application/vnd.github+json")
        if response.status_code == 404:
            # Metadata may be hidden while the archive is still reachable.
            return None
        _raise_for_status(response, repo=repo, what="repository metadata")
        branch = response.json().get("default_branch")
        return branch if isinstance(branch, str) and branch else None

    async def download_archive(self, repo: RepoRef, *, ref: str) -> RepositoryArchive | None:
        url = f"{self._settings.codeload_base_url}/{repo.owner}/{repo.name}/zip/refs/heads/{ref}"
        response = await self._get(url, accept="application/zip")
        if response.status_code == 404:
            return None
        _raise_for_status(response, repo=repo, what=f"archive for ref {ref}")
        return RepositoryArchive(ref=ref, payload=response.content)

    async def fetch_readme(self, repo: RepoRef) -> ReadmeDocument | None:
        url = f"{self._settings.api_base_url}/repos/{repo.owner}/{repo.name}/readme"
        response = await self._get(url, accept="application/vnd.github+json")
        if response.status_code == 404:
            return None
        _raise_for_status(response, repo=repo, what="README")

        payload = response.json()
        content = payload.get("content")
        if not isinstance(content, str):
            return None
        try:
            text = base64.b64decode(content).decode("utf-8", errors="replace")
        except (binascii.Error, ValueError) as exc:
            raise PipelineError("REPO_FETCH_FAILED", f"README of {repo.slug} is not valid base64") from exc
        if not text.strip():
            return None
        filename = payload.get("name") if isinstance(payload.get("name"), str) else "README.md"
        return ReadmeDocument(filename=filename, text=text)

    async def _get(self, url: str, *, accept: str) -> httpx.Response:
        headers = {"Accept": accept, "X-GitHub-Api-Version": "2022-11-28"}
        if self._settings.token:
            headers["Authorization"] = f"Bearer {self._settings.token}"
        try:
            async with http_session(self._client, timeout_seconds=self._settings.timeout_seconds) as client:
                return await client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            raise PipelineError("REPO_FETCH_FAILED", f"request to {url} failed: {exc}") from exc


def _raise_for_status(response: httpx.Response, *, repo: RepoRef, what: str) -> None:
    if response.is_success:
        return
    status = response.status_code
    if status in (401, 403):
        raise PipelineError(
            "REPO_ACCESS_DENIED",
            f"access denied to {what} of {repo.slug} (HTTP {status}); the repository may be private",
        )
    if status == 404:
        raise PipelineError("REPO_NOT_FOUND", f"{what} of {repo.slug} not found")
    logger.warning(
        "source host request failed",
        extra={"repo": repo.slug, "status_code": status, "error": response_excerpt(response)},
    )
    raise PipelineError("REPO_FETCH_FAILED", f"failed to fetch {what} of {repo.slug} (HTTP {status})")
