from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI
from fastapi.routing import APIRouter
from loguru import logger
from sse_starlette.sse import AppStatus

from yardmaster.orchestrator.db.engine import create_engine, create_session_factory
from yardmaster.orchestrator.execution.coordinator import WorkspaceOrchestrator
from yardmaster.orchestrator.execution.engine import create_engine as create_provisioning_engine
from yardmaster.orchestrator.log import setup_logging
from yardmaster.orchestrator.managers.workspaces import WorkspaceRecorder, recover_orphaned_workspaces
from yardmaster.orchestrator.publisher import RedisEventPublisher
from yardmaster.orchestrator.registry import WorkspaceRegistry
from yardmaster.orchestrator.settings import get_settings

# ---------------------------------------------------------------------------
# Shared singletons initialised during lifespan
# ---------------------------------------------------------------------------
registry = WorkspaceRegistry()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    # -- Startup ---------------------------------------------------------------
    settings = get_settings()
    setup_logging(settings.log_level, json=settings.log_json)

    logger.info("Yardmaster starting (host={}, port={})", settings.host, settings.port)
    logger.info(
        "Handshake timeouts: connect={}s, startup={}s",
        settings.handshake_timeout,
        settings.startup_timeout,
    )

    # -- Initialise state fields (always present, possibly None) ----------------
    _app.state.db_engine = None
    _app.state.db_session_factory = None
    _app.state.redis = None
    _app.state.orchestrator = None

    # -- Database --------------------------------------------------------------
    if settings.database_url:
        engine = create_engine(settings.database_url)
        _app.state.db_engine = engine
        _app.state.db_session_factory = create_session_factory(engine)
        logger.info("PostgreSQL: connected")

        # Startup recovery: fail workspaces a previous process left mid-flight.
        async with _app.state.db_session_factory() as db:
            recovered = await recover_orphaned_workspaces(db)
            if recovered > 0:
                logger.info("Startup recovery: {} orphaned workspaces marked as failed", recovered)

        registry.add_listener(WorkspaceRecorder(_app.state.db_session_factory))
    else:
        logger.warning("YARD_DATABASE_URL not set -- templates and history disabled")

    # -- Redis -----------------------------------------------------------------
    if settings.redis_url:
        _app.state.redis = aioredis.from_url(
            settings.redis_url,
            decode_responses=False,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
        )
        registry.add_listener(
            RedisEventPublisher(_app.state.redis, settings.events_stream, maxlen=settings.events_stream_maxlen)
        )
        logger.info("Redis: publishing phase changes to {}", settings.events_stream)
    else:
        logger.warning("YARD_REDIS_URL not set -- event publishing disabled")

    # -- SSE -------------------------------------------------------------------
    # Event streams end on their own when a workspace is destroyed; shutdown
    # signals them explicitly below.
    AppStatus.disable_automatic_graceful_drain()

    # -- Orchestrator ----------------------------------------------------------
    provisioning_engine = create_provisioning_engine(settings)
    _app.state.orchestrator = WorkspaceOrchestrator(
        registry=registry,
        engine=provisioning_engine,
        settings=settings,
    )
    logger.info("Orchestrator: initialised (engine={})", settings.engine)

    yield

    # -- Shutdown --------------------------------------------------------------
    logger.info("Yardmaster shutting down (workspaces={})", registry.count)

    # 1. Stop accepting new workspaces and cancel pending handshake waits.
    cancelled = await _app.state.orchestrator.shutdown()
    if cancelled:
        logger.info("Startup recovery on next boot will fail {} in-flight workspaces", cancelled)

    # 2. Signal SSE streams to close.
    AppStatus.should_exit = True

    await provisioning_engine.aclose()

    if _app.state.redis is not None:
        await _app.state.redis.aclose()
        logger.info("Redis: closed")

    if _app.state.db_engine is not None:
        await _app.state.db_engine.dispose()
        logger.info("PostgreSQL: disposed")


app = FastAPI(title="Yardmaster Workspace Orchestrator", lifespan=lifespan)

# ---------------------------------------------------------------------------
# API router -- all backend endpoints live under /api
# ---------------------------------------------------------------------------
api = APIRouter(prefix="/api")


@api.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


from yardmaster.orchestrator.routers.agents import router as agents_router  # noqa: E402
from yardmaster.orchestrator.routers.templates import router as templates_router  # noqa: E402
from yardmaster.orchestrator.routers.workspaces import router as workspaces_router  # noqa: E402

api.include_router(templates_router)
api.include_router(workspaces_router)
api.include_router(agents_router)

app.include_router(api)
