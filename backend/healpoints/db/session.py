from sqlalchemy.ext.asyncio import AsyncSession
from typing import AsyncGenerator
from fastapi import Request
from contextlib import asynccontextmanager
import logging

logger = logging.getLogger(__name__)

# Session dependency for FastAPI routes
async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Create and yield a database session using the shared engine
    This will be used as a FastAPI dependency
    """
    async_session = request.app.state.session_factory

    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()

# Context manager for background tasks that need database access
@asynccontextmanager
async def background_db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Provides a DB session for background tasks using the factory built in the lifespan.
    """
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            logger.exception("Error occurred within background_db_session context")
            await session.rollback()
            raise
