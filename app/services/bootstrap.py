from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from app.api.handlers.deps import ApiDeps
from app.clients.stub import StubAIGateway, StubContentIndex, StubScreenshotClient
from app.domain.contracts import (
    AIGateway,
    ContentIndex,
    ObjectStore,
    ScreenshotClient,
    SourceHost,
    SubmissionRepository,
)
from app.domain.prompt_spec import load_prompt_spec
from app.domain.use_cases.orchestrator import PipelineOrchestrator
from app.lib.storage import build_object_store
from app.repositories.postgres import AsyncpgPoolManager, PostgresSubmissionRepository
from app.repositories.stub import InMemorySubmissionRepository
from app.roles import RuntimeRole
from app.settings import AppSettings, app_settings_from_env
from app.workers.handlers.deps import WorkerDeps
from app.workers.handlers.factory import build_process_handler
from app.workers.loop import WorkerLoop
from app.workers.roles import ROLE_TO_STAGE


@dataclass
class RuntimeContainer:
    settings: AppSettings
    repository: SubmissionRepository
    store: ObjectStore
    source_host: SourceHost
    screenshots: ScreenshotClient
    content_index: ContentIndex
    ai_gateway: AIGateway
    orchestrator: PipelineOrchestrator
    api_deps: ApiDeps
    worker_loop: WorkerLoop | None
    on_startup: Callable[[], Awaitable[None]] | None
    on_shutdown: Callable[[], Awaitable[None]] | None

    @property
    def configured_services(self) -> tuple[str, ...]:
        settings = self.settings
        services = {
            "postgres": settings.database_url is not None,
            "object-store": settings.storage is not None,
            "screenshots": settings.firecrawl is not None,
            "content-index": settings.content_index is not None,
            "ai-gateway": settings.ai_gateway is not None,
        }
        return tuple(name for name, configured in services.items() if configured)

    @property
    def mode(self) -> str:
        # "skeleton" means every optional collaborator is an in-memory stub.
        return "live" if self.configured_services else "skeleton"


def build_runtime_container(role: RuntimeRole, settings: AppSettings | None = None) -> RuntimeContainer:
    """Wire the runtime; each unconfigured external service falls back to an in-memory stub."""
    settings = settings or app_settings_from_env()
    on_startup: Callable[[], Awaitable[None]] | None = None
    on_shutdown: Callable[[], Awaitable[None]] | None = None
    repository: SubmissionRepository
    if settings.database_url:
        pool_manager = AsyncpgPoolManager(dsn=settings.database_url)
        repository = PostgresSubmissionRepository(pool_manager=pool_manager)
        on_startup = pool_manager.startup
        on_shutdown = pool_manager.shutdown
    else:
        repository = InMemorySubmissionRepository()

    store = build_object_store(settings=settings.storage)
    source_host, screenshots, content_index, ai_gateway = _build_clients(settings)
    orchestrator = PipelineOrchestrator(
        repository=repository,
        store=store,
        source_host=source_host,
        screenshots=screenshots,
        content_index=content_index,
        ai_gateway=ai_gateway,
        prompt_spec=load_prompt_spec(),
        presign_ttl_seconds=settings.storage.presign_ttl_seconds if settings.storage else 7 * 24 * 60 * 60,
    )
    api_deps = ApiDeps(
        repository=repository,
        orchestrator=orchestrator,
        review_settings=settings.review,
    )

    worker_loop: WorkerLoop | None = None
    if role.name in ROLE_TO_STAGE:
        worker_deps = WorkerDeps(repository=repository, orchestrator=orchestrator)
        worker_loop = WorkerLoop(
            role=role.name,
            stage=ROLE_TO_STAGE[role.name],
            repository=repository,
            process=build_process_handler(role.name, worker_deps),
        )

    return RuntimeContainer(
        settings=settings,
        repository=repository,
        store=store,
        source_host=source_host,
        screenshots=screenshots,
        content_index=content_index,
        ai_gateway=ai_gateway,
        orchestrator=orchestrator,
        api_deps=api_deps,
        worker_loop=worker_loop,
        on_startup=on_startup,
        on_shutdown=on_shutdown,
    )


def _build_clients(settings: AppSettings) -> tuple[SourceHost, ScreenshotClient, ContentIndex, AIGateway]:
    from app.clients.github import GitHubSourceHost

    source_host = GitHubSourceHost(settings=settings.github)

    screenshots: ScreenshotClient
    if settings.firecrawl is not None:
        from app.clients.firecrawl import FirecrawlScreenshotClient

        screenshots = FirecrawlScreenshotClient(settings=settings.firecrawl)
    else:
        screenshots = StubScreenshotClient(is_enabled=False)

    content_index: ContentIndex
    if settings.content_index is not None:
        from app.clients.ai_search import AISearchContentIndex

        content_index = AISearchContentIndex(settings=settings.content_index)
    else:
        content_index = StubContentIndex()

    ai_gateway: AIGateway
    if settings.ai_gateway is not None:
        from app.clients.ai_gateway import OpenAICompatibleGateway

        ai_gateway = OpenAICompatibleGateway(settings=settings.ai_gateway)
    else:
        ai_gateway = StubAIGateway()

    return source_host, screenshots, content_index, ai_gateway
