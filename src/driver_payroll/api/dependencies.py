"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from driver_payroll.calculators.mileage import MileageResolver
from driver_payroll.database import init_db


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the configured database."""
    _, factory = init_db()
    return factory


async def get_db_session(
    factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_mileage_resolver(request: Request) -> MileageResolver:
    return request.app.state.mileage_resolver


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
Resolver = Annotated[MileageResolver, Depends(get_mileage_resolver)]
