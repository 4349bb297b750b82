"""Bounded exponential backoff around response writes."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from availability.domain.models import Decision, Response
from availability.errors import ErrorKind, ResponseWriteError, classify_error
from availability.repos.sql import ResponseStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 0.1  # seconds


class RetryingWriter:
    """Retry ``ResponseStore.upsert`` on transient failures.

    The delay after failed attempt *n* is ``base_delay * 2 ** (n - 1)``
    (100ms, 200ms, 400ms, ...). No delay follows the final attempt. Each
    attempt is a full idempotent upsert, so repeating one is always safe.
    """

    def __init__(
        self,
        store: ResponseStore,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._store = store
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (2 ** (attempt - 1))

    def write(
        self,
        group_id: str,
        event_id: str,
        date_id: str | None,
        member_id: str,
        decision: Decision,
    ) -> Response:
        """Upsert the decision, raising ``ResponseWriteError`` when it cannot be stored."""
        kind = ErrorKind.UNKNOWN
        last_error: Exception | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = self._store.upsert(group_id, event_id, date_id, member_id, decision)
            except Exception as exc:
                last_error = exc
                kind = classify_error(exc)
                logger.warning(
                    "Response write attempt %d/%d failed (%s) event=%s member=%s: %s",
                    attempt, self.max_attempts, kind, event_id, member_id, exc,
                )
                if not kind.retryable:
                    raise ResponseWriteError(
                        kind, attempts=attempt, retries_exhausted=False, detail=str(exc)
                    ) from exc
                if attempt < self.max_attempts:
                    delay = self.delay_for(attempt)
                    logger.info("Retrying response write in %dms", delay * 1000)
                    self._sleep(delay)
                continue

            if attempt > 1:
                logger.info("Response write succeeded on attempt %d", attempt)
            return response

        raise ResponseWriteError(
            kind,
            attempts=self.max_attempts,
            retries_exhausted=True,
            detail=str(last_error),
        ) from last_error
