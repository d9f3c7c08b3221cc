"""FastAPI dependencies."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from junktrunk.db.session import get_db
from junktrunk.lookup.pipeline import ResolutionPipeline, resolution_pipeline
from junktrunk.store.product_store import ProductStore


async def get_database() -> AsyncSession:
    """Dependency for database session."""
    async for session in get_db():
        yield session
        break  # Only yield once, as FastAPI handles the session lifecycle


def get_pipeline() -> ResolutionPipeline:
    """Dependency for the shared resolution pipeline."""
    return resolution_pipeline


async def get_product_store(
    db: AsyncSession = Depends(get_database),
    pipeline: ResolutionPipeline = Depends(get_pipeline),
) -> ProductStore:
    """Dependency for a request-scoped product store."""
    return ProductStore(db, pipeline)
