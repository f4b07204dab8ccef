"""
Retry Policy
One backoff policy applied uniformly to every pipeline step.
Retries transient errors only; fatal and ambiguous errors surface immediately.
"""
import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import FundingError
from infrastructure.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Exponential backoff: delay after attempt n is base * 2^(n-1)"""

    def __init__(
        self,
        max_attempts: int,
        base_backoff_seconds: float,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if base_backoff_seconds < 0:
            raise ValueError("base_backoff_seconds must not be negative")
        self.max_attempts = max_attempts
        self.base_backoff_seconds = base_backoff_seconds
        self._sleep = sleep or asyncio.sleep

    def delay_for(self, attempt: int) -> float:
        """Backoff delay for a 1-indexed attempt"""
        if attempt < 1:
            raise ValueError("attempt is 1-indexed")
        return self.base_backoff_seconds * (2 ** (attempt - 1))

    async def run(self, operation: Callable[[int], Awaitable[T]], step: str) -> T:
        """
        Run operation(attempt) until it succeeds or attempts are exhausted

        Args:
            operation: Async callable receiving the 1-indexed attempt number
            step: Step name for logs

        Returns:
            The operation's result

        Raises:
            FundingError: The first non-transient error, or the last transient one
        """
        attempt = 1
        while True:
            try:
                return await operation(attempt)
            except FundingError as e:
                if not e.retryable:
                    logger.warning(f"⛔ {step}: {type(e).__name__} is not retryable: {e}")
                    raise
                if attempt >= self.max_attempts:
                    logger.error(f"❌ {step} failed after {attempt}/{self.max_attempts} attempts: {type(e).__name__}: {e}")
                    raise
                delay = self.delay_for(attempt)
                logger.warning(f"⚠️ {step} attempt {attempt}/{self.max_attempts} failed ({type(e).__name__}: {e}), retrying in {delay:.1f}s")
                await self._sleep(delay)
                attempt += 1
