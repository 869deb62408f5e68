"""FastAPI application factory for PharmaTrace."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pharmatrace.common.config import get_settings
from pharmatrace.common.logging import setup_logging
from pharmatrace.common.schemas import HealthResponse

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        from pharmatrace.deps import get_db, get_sync_worker
        db = get_db()
        await db.init()
        await db.create_all()
        worker = None
        if settings.sync_on_startup:
            worker = get_sync_worker()
            # Recovery errors abort startup.
            try:
                await worker.recover()
            except Exception:
                await worker.reader.close()
                await db.close()
                raise
            worker.start(recover=False)
            logger.info("Sync worker started with the API")
        yield
        # Shutdown
        if worker is not None:
            await worker.stop()
            await worker.reader.close()
        await db.close()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(version=settings.api_version)

    # Mount routers
    from pharmatrace.sync.router import router as sync_router
    from pharmatrace.events.router import router as events_router
    from pharmatrace.batches.router import router as batches_router
    from pharmatrace.trace.router import router as trace_router
    from pharmatrace.recall.router import router as recall_router
    from pharmatrace.notifications.router import router as alerts_router

    prefix = settings.api_prefix
    app.include_router(sync_router, prefix=prefix, tags=["sync"])
    app.include_router(events_router, prefix=prefix, tags=["events"])
    app.include_router(batches_router, prefix=prefix, tags=["batches"])
    app.include_router(trace_router, prefix=prefix, tags=["trace"])
    app.include_router(recall_router, prefix=prefix, tags=["recalls"])
    app.include_router(alerts_router, prefix=prefix, tags=["alerts"])

    return app
