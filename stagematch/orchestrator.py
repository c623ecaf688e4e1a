"""
Main search orchestrator.

This module coordinates the full search flow:
1. Validate criteria
2. Rate limiting check (identity, session, global headroom)
3. Normalize query
4. Cache lookup
5. On miss: charge global quota, join or start the single-flight fetch
6. Write-through on success
7. Stale fallback when the source is unavailable
8. Log degraded outcomes (if enabled)
"""

import logging
import time
from typing import Any, Mapping, Optional, Union

from config.settings import settings
from .cache import ResultCache, SingleFlightCoordinator
from .errors import PermanentSourceError, RateLimitError, SourceUnavailable, ValidationError
from .fetcher import Fetcher, HttpCompanyFetcher, RetryingFetch
from .logger import log_outcome
from .models import Query, ResultEntry
from .rate_limiter import SCOPE_GLOBAL, RateLimiter
from .responses import (
    CODE_SOURCE_UNAVAILABLE,
    SearchResult,
    error_response,
    ok_response,
)
from .schemas import SearchCriteria, parse_criteria

logger = logging.getLogger("search.orchestrator")

ANONYMOUS_CLIENT = "anonymous"


def _rate_limited(error: RateLimitError) -> SearchResult:
    if error.scope == SCOPE_GLOBAL:
        message = "The search service is busy. Please wait."
    else:
        message = f"Too many searches ({error.scope}). Please wait."
    return error_response(
        code=error.code,
        message=message,
        retry_after=error.retry_after_seconds,
        scope=error.scope,
    )


class Orchestrator:
    """
    Public entry point of the search core.

    Composes the rate limiter, result cache and single-flight coordinator
    around a retrying fetcher. Every call returns a SearchResult; failures
    are scoped to the request and never raised to the caller.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        cache: Optional[ResultCache] = None,
        rate_limiter: Optional[RateLimiter] = None,
        coordinator: Optional[SingleFlightCoordinator] = None,
        retrying_fetch: Optional[RetryingFetch] = None,
        wait_timeout: float = settings.request_timeout_seconds,
    ):
        self.fetcher = fetcher
        self.cache = cache if cache is not None else ResultCache()
        self.rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter()
        self.coordinator = (
            coordinator if coordinator is not None else SingleFlightCoordinator(timeout=wait_timeout)
        )
        self.retrying_fetch = retrying_fetch if retrying_fetch is not None else RetryingFetch(fetcher)
        self.wait_timeout = wait_timeout

    def search(
        self,
        criteria: Union[SearchCriteria, Mapping[str, Any]],
        client_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> SearchResult:
        """
        Execute a search and return a typed result.

        Args:
            criteria: Raw criteria mapping (education, location, radiusKm)
                or an already validated SearchCriteria
            client_id: Client identity for rate limiting (IP address)
            session_id: Session identity for the concurrency gate;
                defaults to the client identity

        Returns:
            SearchResult with fresh data, stale data, or an error code
        """
        start_time = time.monotonic()

        # Step 1: Validate before touching any shared state
        try:
            criteria = parse_criteria(criteria)
        except ValidationError as e:
            return error_response(code=e.code, message=str(e), errors=e.errors)

        client_id = client_id or ANONYMOUS_CLIENT
        session_id = session_id or client_id

        # Step 2: Rate limiting check
        try:
            self.rate_limiter.acquire(client_id, session_id)
        except RateLimitError as e:
            return _rate_limited(e)

        # Step 3: Normalize
        query = Query.normalize(criteria.education, criteria.location, criteria.radius_km)

        try:
            result = self._resolve(query, client_id)
        finally:
            self.rate_limiter.release(session_id)

        latency_ms = int((time.monotonic() - start_time) * 1000)
        log_outcome(
            query=query,
            status=result.status,
            source=result.source,
            error_code=result.code,
            result_count=len(result.results),
            latency_ms=latency_ms,
        )
        return result

    def _resolve(self, query: Query, client_id: str) -> SearchResult:
        # Step 4: Cache lookup
        entry = self.cache.get(query)
        if entry is not None:
            return ok_response(entry)

        # Step 5: Only requests that may reach the source count globally.
        # A denial here hands the identity charge back.
        try:
            self.rate_limiter.charge_global(client_id)
        except RateLimitError as e:
            return _rate_limited(e)

        try:
            entry = self.coordinator.execute(
                query,
                lambda: self._fetch_and_store(query),
                timeout=self.wait_timeout,
            )
            return ok_response(entry)
        except (SourceUnavailable, PermanentSourceError, TimeoutError) as e:
            return self._fallback(query, e)

    def _fetch_and_store(self, query: Query) -> ResultEntry:
        """Run by the single-flight initiator only."""
        # A call that finished between our cache miss and now already stored it
        entry = self.cache.get(query)
        if entry is not None:
            return entry

        records = self.retrying_fetch(query)
        # Step 6: Write-through
        return self.cache.store(query, records)

    def _fallback(self, query: Query, error: Exception) -> SearchResult:
        # Step 7: Stale fallback
        stale = self.cache.get_stale(query)
        if stale is not None:
            logger.warning(
                f"Serving stale results for {query.cache_key} "
                f"(fetched {stale.fetched_at_iso}): {error}"
            )
            return ok_response(stale)

        logger.error(f"No data for {query.cache_key}: {error}")
        return error_response(
            code=CODE_SOURCE_UNAVAILABLE,
            message="The company source is currently unavailable. Please try again later.",
        )

    def get_stats(self) -> dict:
        return {
            "cache": self.cache.get_stats(),
            "coalescer": self.coordinator.get_stats(),
            "rate_limiter": self.rate_limiter.get_stats(),
            "source": self.fetcher.provider_name,
        }


# Global orchestrator instance
_orchestrator: Optional[Orchestrator] = None


def get_orchestrator() -> Orchestrator:
    """Get or create the global orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = Orchestrator(fetcher=HttpCompanyFetcher())
    return _orchestrator


def set_orchestrator(orchestrator: Optional[Orchestrator]) -> None:
    """Replace the global orchestrator (tests, alternative sources)."""
    global _orchestrator
    _orchestrator = orchestrator


def search(
    criteria: Union[SearchCriteria, Mapping[str, Any]],
    client_id: Optional[str] = None,
    session_id: Optional[str] = None,
) -> SearchResult:
    """Execute a search with the global orchestrator."""
    return get_orchestrator().search(criteria, client_id=client_id, session_id=session_id)
