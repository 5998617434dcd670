"""
Retry Strategy Helper
Exponential backoff, bounded retries and bounded polling for provider calls
"""
import time
import random
import logging
from typing import Callable, Optional, Tuple, Type, TypeVar

from ..errors import ProvisioningError, ProvisioningTimeout


logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExponentialBackoff:
    """Implements exponential backoff with jitter"""

    def __init__(self, base_delay: float = 1.0, max_delay: float = 30.0,
                 backoff_multiplier: float = 2.0, jitter: bool = True):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_multiplier = backoff_multiplier
        self.jitter = jitter

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for a given attempt number (0-based)"""
        delay = min(self.base_delay * (self.backoff_multiplier ** attempt), self.max_delay)

        if self.jitter:
            delay *= (0.5 + random.random() * 0.5)

        return delay


def call_with_retries(
    func: Callable[[], T],
    description: str,
    max_attempts: int = 3,
    backoff: Optional[ExponentialBackoff] = None,
    retryable_exceptions: Tuple[Type[BaseException], ...] = (ProvisioningError,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call func, retrying retryable failures with exponential backoff

    Non-retryable exceptions propagate immediately. After max_attempts the
    last retryable exception is re-raised.
    """
    backoff = backoff or ExponentialBackoff()
    max_attempts = max(1, max_attempts)

    for attempt in range(max_attempts):
        try:
            result = func()
            if attempt > 0:
                logger.info(f"{description} succeeded after {attempt} retries")
            return result
        except retryable_exceptions as e:
            if attempt == max_attempts - 1:
                logger.error(f"All {max_attempts} attempts failed for {description}")
                raise

            delay = backoff.calculate_delay(attempt)
            logger.warning(
                f"Attempt {attempt + 1} failed for {description}: {e}. "
                f"Retrying in {delay:.2f} seconds..."
            )
            sleep(delay)

    raise AssertionError("unreachable")


def poll_until(
    check: Callable[[], Optional[T]],
    description: str,
    timeout: float,
    backoff: Optional[ExponentialBackoff] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """Poll check until it returns a value other than None

    check may raise to abort the wait. Raises ProvisioningTimeout once the
    deadline passes without a result.
    """
    backoff = backoff or ExponentialBackoff(base_delay=2.0, max_delay=30.0)
    deadline = clock() + timeout
    attempt = 0

    while True:
        result = check()
        if result is not None:
            return result

        remaining = deadline - clock()
        if remaining <= 0:
            raise ProvisioningTimeout(f"Timed out after {timeout:.0f}s waiting for {description}")

        delay = min(backoff.calculate_delay(attempt), remaining)
        logger.info(f"Waiting for {description}; next check in {delay:.1f}s")
        sleep(delay)
        attempt += 1
