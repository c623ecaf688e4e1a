"""
Single-flight coordination to prevent duplicate calls to the company source.

When multiple concurrent searches ask for the same normalized query, only
one fetch is made and all requesters share its outcome.
"""
import threading
import time
import logging
from typing import Dict, Optional, Callable, Any
from dataclasses import dataclass, field

from ..models import Query

logger = logging.getLogger("search.coalescer")


@dataclass
class InFlightCall:
    """Tracks an in-progress fetch for one query."""
    query: Query
    event: threading.Event = field(default_factory=threading.Event)
    result: Optional[Any] = None
    error: Optional[BaseException] = None
    started_at: float = field(default_factory=time.time)
    waiter_count: int = 0


class SingleFlightCoordinator:
    """
    Ensures concurrent searches for the same query share one fetch.

    Pattern:
    - First caller for a query becomes the initiator and runs the fetch
    - Later callers for the same query wait on the call's Event
    - When the fetch completes, every waiter receives the same result
      (or the same exception) and the call record is removed
    - A waiter that gives up detaches without disturbing the initiator

    Usage:
        coordinator = SingleFlightCoordinator()
        records = coordinator.execute(query, lambda: retrying_fetch(query))
    """

    def __init__(self, timeout: float = 60.0):
        """
        Initialize the coordinator.

        Args:
            timeout: Max seconds a waiter blocks on an in-flight call
        """
        self._in_flight: Dict[Query, InFlightCall] = {}
        self._lock = threading.Lock()
        self._timeout = timeout
        self._stats = {"initiated": 0, "joined": 0, "abandoned": 0}

    def execute(
        self,
        query: Query,
        retrying_fetch: Callable[[], Any],
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Either join an existing in-flight call or initiate a new one.

        Args:
            query: Normalized query identifying the call
            retrying_fetch: Function to run if this caller initiates
            timeout: Override for how long a waiter blocks

        Returns:
            The fetched data (shared among all concurrent callers)

        Raises:
            TimeoutError: If waiting for the in-flight call times out
            Exception: Any error from retrying_fetch is propagated to
                the initiator and every waiter
        """
        with self._lock:
            call = self._in_flight.get(query)
            if call is not None:
                call.waiter_count += 1
                self._stats["joined"] += 1
                is_initiator = False
                logger.debug(
                    f"Joining in-flight fetch for {query.cache_key} "
                    f"(waiters: {call.waiter_count})"
                )
            else:
                call = InFlightCall(query=query)
                self._in_flight[query] = call
                self._stats["initiated"] += 1
                is_initiator = True
                logger.debug(f"Initiating fetch for {query.cache_key}")

        if is_initiator:
            try:
                call.result = retrying_fetch()
            except BaseException as e:
                # Waiters must never wake to an empty call, even on interrupt
                call.error = e
            finally:
                with self._lock:
                    if self._in_flight.get(query) is call:
                        del self._in_flight[query]
                call.event.set()

            if call.error is not None:
                raise call.error
            return call.result

        wait_for = self._timeout if timeout is None else timeout
        completed = call.event.wait(timeout=wait_for)

        if not completed:
            self._detach(call)
            logger.warning(f"Gave up waiting on in-flight fetch: {query.cache_key}")
            raise TimeoutError(f"Fetch for {query.cache_key} timed out after {wait_for}s")

        if call.error is not None:
            raise call.error
        return call.result

    def _detach(self, call: InFlightCall) -> None:
        with self._lock:
            call.waiter_count = max(0, call.waiter_count - 1)
            self._stats["abandoned"] += 1

    def waiters(self, query: Query) -> int:
        """Number of callers currently waiting on the call for query."""
        with self._lock:
            call = self._in_flight.get(query)
            return call.waiter_count if call else 0

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight calls."""
        with self._lock:
            return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        """Get coordinator statistics."""
        with self._lock:
            return {
                "active_requests": len(self._in_flight),
                "active_keys": [q.cache_key for q in self._in_flight],
                **self._stats,
            }
