"""
Failure policies for generative-text requests.

A failed request never produces a user-visible reply. The policy only decides
whether to try again first and what gets logged.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from ..config import RelayConfig
from ..exceptions import GenerationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DropPolicy:
    """Log the failure once and give up."""

    async def run(self, request: Callable[[], Awaitable[T]], context: str = "") -> Optional[T]:
        try:
            return await request()
        except GenerationError as e:
            logger.warning(f"DropPolicy: Dropping message {context}: {e}")
            return None


class RetryPolicy:
    """Retry with exponential backoff, then log and give up."""

    def __init__(self, max_retries: int = 3, base_delay: float = 1.0, max_delay: float = 30.0):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * (2 ** attempt))

    async def run(self, request: Callable[[], Awaitable[T]], context: str = "") -> Optional[T]:
        for attempt in range(self.max_retries + 1):
            try:
                return await request()
            except GenerationError as e:
                if attempt == self.max_retries:
                    logger.warning(
                        f"RetryPolicy: Dropping message {context} after {attempt + 1} attempt(s): {e}"
                    )
                    return None
                delay = self.delay_for(attempt)
                logger.info(
                    f"RetryPolicy: Attempt {attempt + 1} failed for {context}: {e}. "
                    f"Retrying in {delay}s..."
                )
                await asyncio.sleep(delay)
        return None


def create_failure_policy(config: RelayConfig):
    """Build the policy named by RELAY_FAILURE_POLICY."""
    if config.failure_policy == "retry":
        return RetryPolicy(config.max_retries, config.retry_base_delay, config.retry_max_delay)
    return DropPolicy()
