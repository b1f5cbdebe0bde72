from __future__ import annotations

import asyncio
import logging

from app.domain.contracts import ObjectStore
from app.domain.dto import PrefixCleanupResult
from app.lib.storage import DEFAULT_MAX_CLEANUP_PAGES

logger = logging.getLogger("pipeline")


async def delete_prefix(
    store: ObjectStore,
    *,
    prefix: str,
    max_pages: int = DEFAULT_MAX_CLEANUP_PAGES,
) -> PrefixCleanupResult:
    """Delete every object under prefix, one listing page at a time.

    Keys of a page are deleted in parallel. A failed key is logged and
    skipped. The loop stops when the listing returns no continuation token,
    or after max_pages pages.
    """
    if not prefix.endswith("/"):
        raise ValueError(f"cleanup prefix must end with '/': {prefix!r}")

    pages = 0
    deleted = 0
    failed = 0
    token: str | None = None
    while True:
        page = await asyncio.to_thread(store.list_keys, prefix=prefix, continuation_token=token)
        pages += 1
        if page.keys:
            outcomes = await asyncio.gather(
                *(asyncio.to_thread(store.delete_key, key=key) for key in page.keys),
                return_exceptions=True,
            )
            for key, outcome in zip(page.keys, outcomes):
                if isinstance(outcome, Exception):
                    failed += 1
                    logger.warning(
                        "object delete failed",
                        extra={"prefix": prefix, "object_key": key, "error": str(outcome)},
                    )
                else:
                    deleted += 1

        token = page.next_token
        if token is None:
            return PrefixCleanupResult(prefix=prefix, pages=pages, deleted=deleted, failed=failed)
        if pages >= max_pages:
            logger.warning(
                "prefix cleanup stopped at page limit",
                extra={"prefix": prefix, "pages": pages, "deleted": deleted, "failed": failed},
            )
            return PrefixCleanupResult(prefix=prefix, pages=pages, deleted=deleted, failed=failed, truncated=True)
