"""Main application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from junktrunk.api.routes import products
from junktrunk.config import settings
from junktrunk.db.models import Base
from junktrunk.db.session import engine
from junktrunk.logging_config import setup_logging
from junktrunk.lookup.pipeline import resolution_pipeline

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting JunkTrunk backend...")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    for stage in resolution_pipeline.stages:
        state = "configured" if stage.source.is_configured else "not configured, will be skipped"
        logger.info(f"Source {stage.source.name} ({stage.name}): {state}")

    yield

    logger.info("Shutting down...")
    await resolution_pipeline.close()
    await engine.dispose()
    logger.info("Shutdown complete")


app = FastAPI(
    title="JunkTrunk API",
    description="Barcode lookup, price discovery and scan history",
    version="0.1.0",
    lifespan=lifespan,
)

instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_respect_env_var=True,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/metrics", "/health"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
)
instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

app.include_router(products.router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    uvicorn.run(
        "junktrunk.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
