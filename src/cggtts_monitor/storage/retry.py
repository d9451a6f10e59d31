"""
Bounded retry for idempotent writes that hit transient contention.

Usage:
    policy = BackoffPolicy(attempts=3, base_delay=0.1)
    ok = retry_on_contention(lambda: store.upsert_availability(rec), policy,
                             description="availability GZLMB1/60878")
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict

from .base import StoreContentionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff with uniform jitter."""
    attempts: int = 3              # Total attempts, including the first
    base_delay: float = 0.1        # Delay before the 2nd attempt (s)
    max_delay: float = 2.0         # Cap on the exponential part (s)
    jitter: float = 0.1            # Uniform [0, jitter) added to every delay (s)

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        backoff = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        return backoff + random.uniform(0, self.jitter)

    @classmethod
    def from_config(cls, retry_config: Dict[str, Any]) -> "BackoffPolicy":
        return cls(
            attempts=int(retry_config.get('attempts', 3)),
            base_delay=float(retry_config.get('base_delay_seconds', 0.1)),
            max_delay=float(retry_config.get('max_delay_seconds', 2.0)),
            jitter=float(retry_config.get('jitter_seconds', 0.1)),
        )


def retry_on_contention(
    write: Callable[[], Any],
    policy: BackoffPolicy,
    description: str = "write",
    sleep: Callable[[float], None] = time.sleep
) -> bool:
    """
    Run an idempotent write, retrying on StoreContentionError.

    Any other exception propagates unchanged.

    Args:
        write: Zero-argument closure performing the write
        policy: Retry budget and backoff
        description: Label for log messages
        sleep: Sleep function (injectable for tests)

    Returns:
        True if the write succeeded, False if the retry budget ran out
    """
    attempts = max(1, policy.attempts)
    for attempt in range(1, attempts + 1):
        try:
            write()
            return True
        except StoreContentionError as e:
            if attempt == attempts:
                logger.warning(
                    f"Giving up on {description} after {attempts} attempts: {e}"
                )
                return False
            delay = policy.delay_for(attempt)
            logger.debug(
                f"Contention on {description} (attempt {attempt}/{attempts}), "
                f"retrying in {delay:.3f}s: {e}"
            )
            sleep(delay)
    return False
