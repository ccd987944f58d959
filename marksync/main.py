"""marksync API: FastAPI application entry point.

Run locally:
    uvicorn marksync.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from marksync.config import get_settings
from marksync.context import AppContext, build_context
from marksync.routers import auth, bookmarks, health, messages, providers, sync

logger = logging.getLogger("marksync")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    context: AppContext = app.state.context
    logger.info(
        "Starting marksync v%s [%s]",
        context.settings.app_version,
        context.settings.environment,
    )
    await context.start()
    yield
    await context.close()
    logger.info("marksync shut down")


# ---------- App factory ----------

def create_app(context: AppContext | None = None) -> FastAPI:
    """Build the app. Pass ``context`` to run against prebuilt components."""
    settings = context.settings if context else get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="marksync API",
        description="Keeps bookmark folders in sync with open work items from GitHub and Jira.",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.context = context or build_context(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Outside v1 prefix ----------
    app.include_router(health.router)
    app.include_router(auth.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(sync.router, prefix=v1_prefix)
    app.include_router(messages.router, prefix=v1_prefix)
    app.include_router(providers.router, prefix=v1_prefix)
    app.include_router(bookmarks.router, prefix=v1_prefix)

    return app


app = create_app()
