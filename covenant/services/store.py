"""Unit-of-work runner with transient-failure classification and tenacity retries.

Each operation runs on a fresh session from the injected factory. Store
timeouts and connection failures surface as TransientStoreError; operations
that are safe to repeat are retried with exponential backoff and jitter.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from covenant.services.config import EngineSettings
from covenant.services.errors import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """True for failures where repeating the same unit of work may succeed."""
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, PoolTimeoutError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, (OperationalError, InterfaceError))


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    max_attempts is the TOTAL number of tries, not the number of retries.
    So max_attempts=3 means: try, retry, retry (3 total).
    """

    max_attempts: int = 3
    base_delay: float = 0.2  # seconds
    max_delay: float = 5.0  # seconds

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def no_retry(cls) -> "RetryConfig":
        """Factory for no-retry configuration (single attempt)."""
        return cls(max_attempts=1)

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> "RetryConfig":
        return cls(
            max_attempts=settings.store_retry_attempts,
            base_delay=settings.store_retry_base_delay,
        )


class StoreRunner:
    """Runs engine operations as independent units of work.

    Example:
        runner = StoreRunner(session_factory, RetryConfig(max_attempts=3))
        scores = await runner.run(
            lambda session: ScoringService(session).recalc(property_id),
            retry=True,
            name="recalc_score",
        )
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        retry_config: RetryConfig | None = None,
    ):
        self.session_factory = session_factory
        self.retry_config = retry_config or RetryConfig()

    async def run(
        self,
        operation: Callable[[AsyncSession], Awaitable[T]],
        *,
        retry: bool = False,
        name: str = "operation",
    ) -> T:
        """Execute operation on a fresh session.

        Args:
            operation: Coroutine function receiving the session
            retry: Repeat on TransientStoreError (only for idempotent operations)
            name: Operation name for log messages

        Raises:
            TransientStoreError: Store timeout/connection failure (after retries)
            RejectedOperation: Propagated unchanged from the operation
        """
        if not retry or self.retry_config.max_attempts == 1:
            return await self._attempt(operation, name)

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retry_config.max_attempts),
            wait=wait_exponential_jitter(
                initial=self.retry_config.base_delay,
                max=self.retry_config.max_delay,
                jitter=self.retry_config.base_delay,
            ),
            retry=retry_if_exception_type(TransientStoreError),
            before_sleep=_log_retry(name),
            reraise=True,
        ):
            with attempt:
                return await self._attempt(operation, name)
        raise AssertionError("unreachable")  # pragma: no cover

    async def _attempt(self, operation: Callable[[AsyncSession], Awaitable[T]], name: str) -> T:
        async with self.session_factory() as session:
            try:
                return await operation(session)
            except (asyncio.TimeoutError, SQLAlchemyError) as e:
                await session.rollback()
                if is_transient(e):
                    raise TransientStoreError(f"{name} failed: transient store error: {e}", e) from e
                raise


def _log_retry(name: str) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        logger.warning("Retrying %s (attempt %d) after: %s", name, state.attempt_number, error)

    return before_sleep


__all__ = ["RetryConfig", "StoreRunner", "is_transient"]
