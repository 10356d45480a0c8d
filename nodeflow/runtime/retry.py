"""
Retry coordinator for node steps.

Runs a step up to ``max_attempts`` times, sleeping ``backoff_ms[i]``
before attempt ``i + 1``. Every attempt appends to a timeline that ends
up in the run record. When every attempt fails, the last error is wrapped
in ``ExecutionFailed`` carrying the number of attempts consumed.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from nodeflow.errors import STRUCTURAL_ERRORS, ExecutionFailed

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryOutcome(Generic[T]):
    """Result of a successful coordinated step."""

    value: T
    attempts: int
    timeline: list[str] = field(default_factory=list)


class RetryCoordinator:
    """Bounded retry with a fixed backoff schedule."""

    def __init__(
        self,
        max_attempts: int = 3,
        backoff_ms: tuple[int, ...] = (0, 1000, 2000),
        retry_structural_errors: bool = False,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff_ms = backoff_ms
        self.retry_structural_errors = retry_structural_errors

    def _delay_ms(self, attempt_index: int) -> int:
        if not self.backoff_ms:
            return 0
        return self.backoff_ms[min(attempt_index, len(self.backoff_ms) - 1)]

    def _is_retryable(self, error: Exception) -> bool:
        return self.retry_structural_errors or not isinstance(error, STRUCTURAL_ERRORS)

    async def run(self, step: Callable[[], Awaitable[T]]) -> RetryOutcome[T]:
        """
        Run ``step`` until it succeeds or attempts run out.

        Raises:
            ExecutionFailed: wrapping the last error, with ``attempts`` set
        """
        timeline: list[str] = []
        errors: list[dict[str, Any]] = []
        attempt = 0

        while True:
            delay = self._delay_ms(attempt)
            attempt += 1
            if delay > 0:
                timeline.append(f"Retry backoff {delay}ms before attempt {attempt}")
                logger.info(
                    f"   Using backoff: Sleeping {delay}ms before attempt {attempt}...",
                    extra={"attempt": attempt},
                )
                await asyncio.sleep(delay / 1000)

            try:
                value = await step()
            except Exception as e:
                timeline.append(f"Attempt {attempt} failed: {e}")
                errors.append({"attempt": attempt, "type": type(e).__name__, "message": str(e)})
                retryable = self._is_retryable(e)
                if retryable and attempt < self.max_attempts:
                    logger.warning(
                        f"   ↻ Retrying ({attempt}/{self.max_attempts}) after error: {e}",
                        extra={"attempt": attempt},
                    )
                    continue
                if not retryable:
                    logger.warning(
                        f"Attempt {attempt} failed with {type(e).__name__}, not retrying: {e}",
                        extra={"attempt": attempt},
                    )
                logger.error(f"Step failed after {attempt} attempt(s): {e}")
                raise ExecutionFailed(
                    e, attempts=attempt, errors=errors, timeline=timeline
                ) from e

            timeline.append(f"Attempt {attempt} succeeded")
            return RetryOutcome(value=value, attempts=attempt, timeline=timeline)
