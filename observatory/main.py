"""Agent Observatory FastAPI application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from observatory import config
from observatory.routers.metrics import collector_cache, metrics_router
from observatory.observability import initialize as initialize_observability, shutdown as shutdown_observability

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("observatory")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("Agent Observatory starting up (state dir: %s)", config.STATE_DIR)
    initialize_observability(app)

    yield

    logger.info("Agent Observatory shutting down")
    collector_cache.clear()
    shutdown_observability(app)


app = FastAPI(
    title="Agent Observatory API",
    description="Operational metrics collected from agent runtime transcripts",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(metrics_router)
