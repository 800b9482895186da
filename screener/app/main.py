"""
Main FastAPI application for the screener backend.
Serves payment callbacks and symbol lookups; ingestion runs as separate jobs.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from screener.app.api.payment import router as payment_router
from screener.app.api.symbols import router as symbols_router
from screener.app.common.config import get_config
from screener.app.common.logging import setup_logging

setup_logging(get_config().log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = get_config()
    logger.info(f"Starting screener backend (billing redirects to {config.app_url})")
    yield
    logger.info("Screener backend stopped")


app = FastAPI(
    title="Screener Backend",
    description="Market symbol lookups and payment callbacks",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(payment_router)
app.include_router(symbols_router)


@app.get("/")
async def root():
    return {
        "service": "screener-backend",
        "status": "running",
    }


@app.get("/health")
def health():
    return {"status": "ok"}
