"""FastAPI application for the welfare research backend."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from welfare_backend.config import CORS_ORIGINS
from welfare_backend.conversations_api import router as conversations_router
from welfare_backend.db_session import async_engine as default_engine
from welfare_backend.middleware import configure_request_guards
from welfare_backend.models import Base
from welfare_backend.services.errors import register_exception_handlers
from welfare_backend.welfare_analyses_api import router as welfare_analyses_router

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_app(engine=None, create_schema: bool = True) -> FastAPI:
    """
    Build the application.

    Args:
        engine: Async engine whose schema is created on startup; defaults to
            the engine from ``db_session``
        create_schema: Whether to run ``create_all`` in the lifespan hook
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        target = engine if engine is not None else default_engine

        if create_schema:
            logger.info("Ensuring database schema...")
            try:
                async with target.begin() as conn:
                    await conn.run_sync(Base.metadata.create_all)
            except Exception:
                logger.exception("Failed to prepare database schema during startup")
                raise
            logger.info("Database schema ready.")
        yield
        logger.info("Disposing database engine...")
        await target.dispose()

    app = FastAPI(title="Welfare Research Backend", lifespan=lifespan)

    register_exception_handlers(app)
    configure_request_guards(app)

    # CORS must stay outermost (registered last)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,  # Vite frontend dev servers
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(conversations_router)
    app.include_router(welfare_analyses_router)

    @app.get("/health", tags=["health"])
    async def health_check():
        return {
            "status": "healthy",
            "service": "welfare_backend",
            "timestamp": datetime.now().isoformat(),
        }

    return app


welfare_app = create_app()
