from __future__ import annotations

from app.domain.contracts import ObjectStore
from app.lib.storage.memory import InMemoryObjectStore
from app.settings import StorageSettings


def build_object_store(*, settings: StorageSettings | None) -> ObjectStore:
    if settings is None:
        return InMemoryObjectStore()

    from app.lib.storage.s3 import S3ObjectStore

    return S3ObjectStore(settings=settings)
