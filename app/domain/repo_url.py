from __future__ import annotations

from dataclasses import dataclass
import re

from app.domain.errors import PipelineError

SUPPORTED_HOSTS: tuple[str, ...] = ("github.com",)

# Accepts https://host/owner/repo, host/owner/repo and git@host:owner/repo(.git).
REPO_URL_RE = re.compile(
    r"^(?:(?:https?|git|ssh)://)?(?:[^@/]+@)?(?P<host>[A-Za-z0-9.-]+\.[A-Za-z]{2,})[:/]+"
    r"(?P<owner>[A-Za-z0-9_.-]+)/(?P<name>[^/#?\s]+)",
)


@dataclass(frozen=True)
class RepoRef:
    host: str
    owner: str
    name: str

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.name}"


def parse_repo_url(repo_url: str) -> RepoRef:
    """Parse a repository URL into a host/owner/name triple.

    Raises PipelineError(INVALID_REPO_URL) when the URL does not name a
    repository on a supported host.
    """
    candidate = (repo_url or "").strip()
    match = REPO_URL_RE.match(candidate)
    if match is None:
        raise PipelineError("INVALID_REPO_URL", f"cannot parse repository URL: {candidate!r}")

    host = match.group("host").lower()
    if host.startswith("www."):
        host = host[4:]
    if host not in SUPPORTED_HOSTS:
        raise PipelineError("INVALID_REPO_URL", f"unsupported repository host: {host}")

    name = match.group("name")
    if name.endswith(".git"):
        name = name[: -len(".git")]
    if not name or name in (".", ".."):
        raise PipelineError("INVALID_REPO_URL", f"repository name is missing: {candidate!r}")

    return RepoRef(host=host, owner=match.group("owner"), name=name)
