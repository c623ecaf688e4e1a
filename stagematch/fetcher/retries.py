"""
Retrying, time-bounded fetch built on tenacity.

Each attempt runs on a worker thread and is abandoned once the per-attempt
timeout passes. Transient failures are retried with exponential backoff
plus jitter; permanent failures end the loop immediately.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Callable, List, Optional

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from config.settings import settings
from ..errors import PermanentSourceError, SearchError, SourceUnavailable, TransientSourceError
from ..models import CompanyRecord, Query
from .base import Fetcher

logger = logging.getLogger("search.fetcher")


class RetryingFetch:
    """
    Wraps a Fetcher with the retry budget and result truncation.

    With the defaults, attempts start at roughly t=0, t=0.5s and t=1.5s.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        max_attempts: int = settings.fetch_max_attempts,
        attempt_timeout: Optional[float] = settings.fetch_timeout_seconds,
        backoff_base: float = settings.fetch_backoff_base_seconds,
        backoff_factor: float = settings.fetch_backoff_factor,
        jitter: float = settings.fetch_jitter_seconds,
        max_results: int = settings.max_results,
        sleep: Callable[[float], None] = time.sleep,
        max_workers: int = 16,
    ):
        self.fetcher = fetcher
        self.max_attempts = max_attempts
        self.attempt_timeout = attempt_timeout
        self.backoff_base = backoff_base
        self.backoff_factor = backoff_factor
        self.jitter = jitter
        self.max_results = max_results
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="source-fetch",
        )

    def _wait_strategy(self):
        wait = wait_exponential(multiplier=self.backoff_base, exp_base=self.backoff_factor)
        if self.jitter > 0:
            wait = wait + wait_random(0, self.jitter)
        return wait

    def _attempt(self, query: Query) -> List[CompanyRecord]:
        """One bounded call to the fetcher."""
        if self.attempt_timeout is None:
            return self._call_fetcher(query)

        future = self._executor.submit(self._call_fetcher, query)
        try:
            return future.result(timeout=self.attempt_timeout)
        except FutureTimeout:
            future.cancel()
            raise TransientSourceError(
                f"{self.fetcher.provider_name} did not answer within {self.attempt_timeout}s"
            )

    def _call_fetcher(self, query: Query) -> List[CompanyRecord]:
        try:
            return list(self.fetcher.fetch(query))
        except SearchError:
            raise
        except (TimeoutError, ConnectionError) as e:
            raise TransientSourceError(f"{self.fetcher.provider_name} connection failed: {e}") from e
        except Exception as e:
            logger.exception(f"Unexpected fetcher failure for {query.cache_key}")
            raise PermanentSourceError(f"Unexpected fetcher failure: {e}") from e

    def __call__(self, query: Query) -> List[CompanyRecord]:
        """
        Fetch with retries and return at most max_results records.

        Raises:
            SourceUnavailable: Every attempt failed transiently
            PermanentSourceError: The source answered with something unusable
        """
        retryer = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait_strategy(),
            retry=retry_if_exception_type(TransientSourceError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            records = retryer(self._attempt, query)
        except TransientSourceError as e:
            attempts = retryer.statistics.get("attempt_number", self.max_attempts)
            logger.error(f"Source unavailable for {query.cache_key} after {attempts} attempts: {e}")
            raise SourceUnavailable(str(e), attempts=attempts) from e

        # Stable truncation in source order
        return records[: self.max_results]

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
