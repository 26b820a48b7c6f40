from __future__ import annotations
import logging
from typing import Awaitable, Callable, TypeVar

from ..domain.errors import FatalScrapeFailure, TransientRpcFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_retry(
    op: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    operation: str,
    chain_key: str,
    block_range: tuple[int, int] | None = None,
) -> T:
    """
    Await `op()` up to `max_attempts` times in total, retrying immediately on
    TransientRpcFailure. Once attempts run out, raise FatalScrapeFailure
    chained to the last failure. Other exceptions are not retried.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
    attempt = 0
    while True:
        attempt += 1
        try:
            return await op()
        except TransientRpcFailure as e:
            left = max_attempts - attempt
            logger.warning("[%s] %s failed (%s), %d attempt(s) left", chain_key, operation, e, left)
            if left <= 0:
                raise FatalScrapeFailure(
                    f"retries exhausted after {max_attempts} attempt(s): {e}",
                    chain_key=chain_key, operation=operation, block_range=block_range,
                ) from e
