from __future__ import annotations

from dataclasses import dataclass, field

from app.domain.dto import KeyPage
from app.lib.storage import DEFAULT_LIST_PAGE_SIZE


@dataclass
class InMemoryObjectStore:
    """Dictionary-backed store with S3 listing semantics (sorted keys, token paging)."""

    objects: dict[str, bytes] = field(default_factory=dict)
    content_types: dict[str, str] = field(default_factory=dict)
    page_size: int = DEFAULT_LIST_PAGE_SIZE
    list_calls: int = 0
    failing_keys: set[str] = field(default_factory=set)

    def put_bytes(self, *, key: str, payload: bytes, content_type: str = "application/octet-stream") -> str:
        self.objects[key] = payload
        self.content_types[key] = content_type
        return key

    def get_bytes(self, *, key: str) -> bytes:
        payload = self.objects.get(key)
        if payload is None:
            raise KeyError(f"storage key not found: {key}")
        return payload

    def delete_key(self, *, key: str) -> None:
        if key in self.failing_keys:
            raise RuntimeError(f"delete rejected for key: {key}")
        self.objects.pop(key, None)
        self.content_types.pop(key, None)

    def list_keys(self, *, prefix: str, continuation_token: str | None = None) -> KeyPage:
        self.list_calls += 1
        keys = sorted(key for key in self.objects if key.startswith(prefix))
        if continuation_token is not None:
            # Token is the last key of the previous page, as in ListObjectsV2 StartAfter.
            keys = [key for key in keys if key > continuation_token]
        page = keys[: self.page_size]
        next_token = page[-1] if len(keys) > self.page_size else None
        return KeyPage(keys=tuple(page), next_token=next_token)

    def presigned_url(self, *, key: str, expires_in_seconds: int) -> str:
        del expires_in_seconds
        return f"memory://{key}"
