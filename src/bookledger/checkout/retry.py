"""Caller-side retry for serialization failures.

The ledger reports a lost serialization race as a retryable
``TransactionError`` and leaves the decision to retry to its callers.
"""

import logging
import time
from typing import Callable, TypeVar

from ..errors import TransactionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_on_conflict(
    operation: Callable[[], T],
    max_attempts: int = 3,
    initial_backoff: float = 0.1,
) -> T:
    """Execute operation, retrying serialization failures with exponential backoff.

    Args:
        operation: Callable running one complete ledger operation
        max_attempts: Total attempts including the first
        initial_backoff: Delay before the first retry in seconds

    Returns:
        Result of operation

    Raises:
        TransactionError: The last attempt failed, or the failure is not retryable
    """
    backoff = initial_backoff

    for attempt in range(1, max_attempts + 1):
        try:
            return operation()
        except TransactionError as e:
            if not e.retryable or attempt == max_attempts:
                raise
            logger.warning(
                "Serialization failure (attempt %d/%d), retrying in %.2fs",
                attempt,
                max_attempts,
                backoff,
            )
            time.sleep(backoff)
            backoff *= 2

    raise ValueError("max_attempts must be at least 1")
