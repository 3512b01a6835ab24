"""FastAPI application entrypoint with lifecycle management."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from compliance_engine.api.v1 import router as v1_router
from compliance_engine.config.settings import get_config
from compliance_engine.core.catalog import get_catalog
from compliance_engine.services.repository import AuditRepository

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

CHECKPOINT_INTERVAL_SECONDS = 600


async def checkpoint_database_task(repository: AuditRepository) -> None:
    """Background task to periodically checkpoint the audit database WAL."""
    while True:
        try:
            await asyncio.sleep(CHECKPOINT_INTERVAL_SECONDS)
            await asyncio.to_thread(repository.checkpoint)
        except asyncio.CancelledError:
            break
        except sqlite3.Error as e:
            logger.error(f"Error checkpointing audit database: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Opens the audit database, loads the question catalog and runs the
    checkpoint task until shutdown.
    """
    logger.info("Starting up Compliance Engine API...")
    config = get_config()

    repository = AuditRepository.get_instance(config.audit_db_path)
    catalog = get_catalog()
    checkpoint_task = asyncio.create_task(checkpoint_database_task(repository))

    logger.info("Compliance Engine API started successfully")
    logger.info(
        f"Audit database: {config.audit_db_path}, "
        f"catalog: {len(catalog)} questions in {len(catalog.referentials)} referentials"
    )

    try:
        yield
    finally:
        logger.info("Shutting down Compliance Engine API...")
        checkpoint_task.cancel()
        try:
            await checkpoint_task
        except asyncio.CancelledError:
            pass
        logger.info("Compliance Engine API shutdown complete")


app = FastAPI(
    title="Compliance Engine API",
    description="Regulatory audit responses, applicability resolution, scoring and compliance analytics",
    version="0.1.0",
    lifespan=lifespan,
)

# Include API v1 routes
app.include_router(v1_router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "name": "Compliance Engine API",
        "version": "0.1.0",
        "docs": "/docs",
    }
