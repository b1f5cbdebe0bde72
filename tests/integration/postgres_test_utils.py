from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import importlib
import os
from pathlib import Path
from typing import Any

import pytest

from app.repositories.postgres import AsyncpgPoolManager, PostgresSubmissionRepository

try:
    asyncpg_module = importlib.import_module("asyncpg")
except ModuleNotFoundError:  # pragma: no cover
    asyncpg_module = None  # type: ignore[assignment]


PROJECT_ROOT = Path(__file__).resolve().parents[2]
MIGRATIONS_DIR = PROJECT_ROOT / "db" / "migrations"


def postgres_dsn() -> str | None:
    return os.getenv("TEST_DATABASE_URL") or os.getenv("DATABASE_URL")


def require_postgres() -> str:
    """Return a reachable DSN or skip; these tests never run against an implicit default."""
    if asyncpg_module is None:
        pytest.skip("asyncpg dependency is not available")

    dsn = postgres_dsn()
    if dsn is None:
        pytest.skip("DATABASE_URL is not set")

    async def _probe() -> None:
        conn = await _asyncpg().connect(dsn=dsn)
        await conn.close()

    try:
        asyncio.run(_probe())
    except Exception as exc:  # pragma: no cover
        pytest.skip(f"postgres is not reachable at {dsn}: {exc}")

    return dsn


async def apply_migration(*, dsn: str, direction: str) -> None:
    conn = await _asyncpg().connect(dsn=dsn)
    try:
        for path in sorted(MIGRATIONS_DIR.glob(f"*.{direction}.sql"), reverse=direction == "down"):
            await conn.execute(path.read_text(encoding="utf-8"))
    finally:
        await conn.close()


async def execute(dsn: str, query: str, *args: object) -> None:
    conn = await _asyncpg().connect(dsn=dsn)
    try:
        await conn.execute(query, *args)
    finally:
        await conn.close()


@asynccontextmanager
async def fresh_repository(*, dsn: str) -> AsyncIterator[PostgresSubmissionRepository]:
    await apply_migration(dsn=dsn, direction="down")
    await apply_migration(dsn=dsn, direction="up")
    manager = AsyncpgPoolManager(dsn=dsn)
    await manager.startup()
    try:
        yield PostgresSubmissionRepository(pool_manager=manager)
    finally:
        await manager.shutdown()


def _asyncpg() -> Any:
    if asyncpg_module is None:  # pragma: no cover
        raise RuntimeError("asyncpg is unavailable")
    return asyncpg_module
