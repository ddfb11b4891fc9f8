"""
FastAPI Production Application

Main entry point for the ChecklistPro storefront API.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
import structlog

from checklistpro.config import get_settings
from checklistpro.config.logging import configure_logging
from checklistpro.database.connection import init_database, close_database
from checklistpro.serving.cache import init_redis, close_redis
from checklistpro.serving.api.main import create_api_app

settings = get_settings()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    configure_logging()

    logger.info("Starting ChecklistPro API", environment=settings.app_env)

    # The database is required; startup fails without it
    await init_database()

    try:
        await init_redis()
    except Exception as e:
        logger.warning("Redis unavailable, caching disabled", error=str(e))

    settings.storage.files_path.mkdir(parents=True, exist_ok=True)

    yield

    logger.info("Shutting down...")
    await close_redis()
    await close_database()


app = create_api_app(lifespan=lifespan)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
