from __future__ import annotations

from dataclasses import dataclass
import os

# Environment-backed runtime configuration. Every external collaborator is
# optional: when its settings are absent the runtime wires an in-memory stub.


@dataclass(frozen=True)
class StorageSettings:
    bucket: str
    endpoint_url: str | None = None
    region: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    force_path_style: bool = True
    presign_ttl_seconds: int = 7 * 24 * 60 * 60


@dataclass(frozen=True)
class GitHubSettings:
    token: str | None = None
    api_base_url: str = "https://api.github.com"
    codeload_base_url: str = "https://codeload.github.com"
    timeout_seconds: int = 60


@dataclass(frozen=True)
class FirecrawlSettings:
    api_key: str
    base_url: str = "https://api.firecrawl.dev"
    timeout_seconds: int = 90
    image_timeout_seconds: int = 30


@dataclass(frozen=True)
class ContentIndexSettings:
    url: str
    token: str
    model: str | None = None
    timeout_seconds: int = 120


@dataclass(frozen=True)
class AIGatewaySettings:
    url: str
    token: str
    model: str | None = None
    timeout_seconds: int = 120


@dataclass(frozen=True)
class ReviewSettings:
    poll_timeout_seconds: int = 120
    poll_interval_seconds: int = 2
    lock_lease_seconds: int = 300


@dataclass(frozen=True)
class AppSettings:
    database_url: str | None
    storage: StorageSettings | None
    github: GitHubSettings
    firecrawl: FirecrawlSettings | None
    content_index: ContentIndexSettings | None
    ai_gateway: AIGatewaySettings | None
    review: ReviewSettings


def app_settings_from_env() -> AppSettings:
    return AppSettings(
        database_url=env_str("DATABASE_URL"),
        storage=storage_settings_from_env(),
        github=GitHubSettings(
            token=env_str("GITHUB_TOKEN"),
            timeout_seconds=env_int("GITHUB_TIMEOUT_SECONDS", 60),
        ),
        firecrawl=_firecrawl_settings_from_env(),
        content_index=_content_index_settings_from_env(),
        ai_gateway=_ai_gateway_settings_from_env(),
        review=review_settings_from_env(),
    )


def storage_settings_from_env() -> StorageSettings | None:
    bucket = env_str("S3_BUCKET")
    if bucket is None:
        return None
    return StorageSettings(
        bucket=bucket,
        endpoint_url=env_str("S3_ENDPOINT_URL"),
        region=env_str("S3_REGION"),
        access_key_id=env_str("S3_ACCESS_KEY_ID"),
        secret_access_key=env_str("S3_SECRET_ACCESS_KEY"),
        force_path_style=env_bool("S3_FORCE_PATH_STYLE", True),
        presign_ttl_seconds=env_int("S3_PRESIGN_TTL_SECONDS", 7 * 24 * 60 * 60),
    )


def review_settings_from_env() -> ReviewSettings:
    return ReviewSettings(
        poll_timeout_seconds=env_int("REVIEW_POLL_TIMEOUT_SECONDS", 120),
        poll_interval_seconds=env_int("REVIEW_POLL_INTERVAL_SECONDS", 2),
        lock_lease_seconds=env_int("REVIEW_LOCK_LEASE_SECONDS", 300),
    )


def _firecrawl_settings_from_env() -> FirecrawlSettings | None:
    api_key = env_str("FIRECRAWL_API_KEY")
    if api_key is None:
        return None
    return FirecrawlSettings(api_key=api_key, base_url=env_str("FIRECRAWL_BASE_URL") or "https://api.firecrawl.dev")


def _content_index_settings_from_env() -> ContentIndexSettings | None:
    url = env_str("AI_SEARCH_URL")
    token = env_str("AI_SEARCH_TOKEN")
    if url is None or token is None:
        return None
    return ContentIndexSettings(url=url, token=token, model=env_str("AI_SEARCH_MODEL"))


def _ai_gateway_settings_from_env() -> AIGatewaySettings | None:
    url = env_str("AI_GATEWAY_URL")
    token = env_str("AI_GATEWAY_TOKEN")
    if url is None or token is None:
        return None
    return AIGatewaySettings(url=url, token=token, model=env_str("AI_GATEWAY_MODEL"))


def env_str(name: str) -> str | None:
    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default

    try:
        parsed = int(value)
    except ValueError:
        return default

    return parsed if parsed > 0 else default


def env_bool(name: str, default: bool) -> bool:
    value = env_str(name)
    if value is None:
        return default
    return value.lower() not in {"0", "false", "no", "off"}
