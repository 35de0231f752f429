"""
Base service class for the Rallia rating engine.

Provides async database session management, retry logic for idempotent
reads and caller-supplied timeouts for all service layer operations.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable, Any, Optional
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from rallia.config import Config

logger = logging.getLogger(__name__)

# Store failures worth retrying; constraint violations are not
TRANSIENT_ERRORS = (OperationalError, DBAPIError, ConnectionError, asyncio.TimeoutError)

def is_transient(error: Exception) -> bool:
    if isinstance(error, IntegrityError):
        return False
    return isinstance(error, TRANSIENT_ERRORS)

class BaseService:
    """Base class for all services with async database session management."""

    def __init__(self, session_factory):
        """
        Initialize base service with session factory.

        Args:
            session_factory: Async session factory from Database class
        """
        self.session_factory = session_factory

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Provide a transactional scope for async database operations."""
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def execute_with_retry(self, func: Callable[[], Awaitable[Any]], max_retries: Optional[int] = None) -> Any:
        """Execute an idempotent function with automatic retry on transient database errors."""
        max_retries = max_retries or Config.DB_RETRY_ATTEMPTS
        name = getattr(func, '__name__', repr(func))
        for attempt in range(max_retries):
            try:
                return await func()
            except Exception as e:
                if not is_transient(e) or attempt == max_retries - 1:
                    raise
                logger.warning(f"Retry attempt {attempt + 1} for {name}: {e}")
                await asyncio.sleep(0.1 * (2 ** attempt))  # Exponential backoff

    async def with_timeout(self, awaitable: Awaitable[Any], timeout: Optional[float]) -> Any:
        """Await with an optional caller-supplied timeout in seconds."""
        if timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=timeout)
