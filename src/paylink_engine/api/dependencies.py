"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from paylink_engine.engine import PaylinkEngine


def get_engine(request: Request) -> PaylinkEngine:
    """Engine attached to the application at startup."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Engine not started",
        )
    return engine


async def get_db_session(
    engine: Annotated[PaylinkEngine, Depends(get_engine)],
) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with engine.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_user_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> str:
    """Extract the owning user from the X-User-ID header."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-User-ID header is required",
        )
    return x_user_id


# Type aliases for cleaner dependency injection
Engine = Annotated[PaylinkEngine, Depends(get_engine)]
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
UserId = Annotated[str, Depends(get_user_id)]
