"""Rate limiting for the search endpoint.

Three independent scopes are checked as one combined decision:

- identity: fixed window counter per client (IP address)
- session: concurrency gate, caps searches outstanding at the same time
- global: fixed window counter shared by all clients

A denied request leaves every counter untouched.
"""

import logging
import math
import threading
import time
import zlib
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from config.settings import settings
from .errors import RateLimitError

logger = logging.getLogger("search.rate_limiter")

SCOPE_IDENTITY = "identity"
SCOPE_SESSION = "session"
SCOPE_GLOBAL = "global"

_GLOBAL_KEY = "*"
LOCK_STRIPES = 64


@dataclass
class RateCounter:
    """Fixed window counter for one (scope, identity) pair."""
    identity: str
    window_start: float
    count: int
    limit: int

    def roll(self, now: float, window_seconds: float) -> None:
        """Start a new window if the current one has elapsed."""
        if now - self.window_start >= window_seconds:
            self.window_start = now
            self.count = 0

    def has_room(self) -> bool:
        return self.count < self.limit

    def retry_after(self, now: float, window_seconds: float) -> int:
        remaining = self.window_start + window_seconds - now
        return max(1, math.ceil(remaining))


@dataclass
class RateDecision:
    """Outcome of a rate limit check."""
    allowed: bool
    scope: Optional[str] = None
    retry_after_seconds: Optional[int] = None

    def raise_if_denied(self) -> None:
        if not self.allowed:
            raise RateLimitError(self.scope, self.retry_after_seconds)


class _StripedLocks:
    """
    A fixed pool of locks shared out by key hash.

    Unrelated identities rarely share a stripe, and the pool never grows
    with the number of clients seen.
    """

    def __init__(self, stripes: int = LOCK_STRIPES):
        self._locks = [threading.Lock() for _ in range(stripes)]

    def _index(self, key: str) -> int:
        return zlib.crc32(key.encode("utf-8")) % len(self._locks)

    def get(self, key: str) -> threading.Lock:
        return self._locks[self._index(key)]

    def for_keys(self, *keys: str) -> List[threading.Lock]:
        """Distinct locks for keys, in stripe order so callers never deadlock."""
        return [self._locks[i] for i in sorted({self._index(k) for k in keys})]


class RateLimiter:
    """
    Multi-scope rate limiter for search requests.

    Thread-safe. Identity and session state is guarded by striped locks
    taken in stripe order, then the global lock, so the combined decision
    is atomic without serializing unrelated clients behind one lock.
    Counters whose window has elapsed are dropped once per window.
    """

    def __init__(
        self,
        identity_limit: int = settings.identity_requests_per_window,
        session_limit: int = settings.session_max_concurrent,
        global_limit: int = settings.global_requests_per_window,
        window_seconds: float = settings.rate_limit_window_seconds,
        session_retry_after: int = settings.session_retry_after_seconds,
        clock: Callable[[], float] = time.time,
        lock_stripes: int = LOCK_STRIPES,
    ):
        self.identity_limit = identity_limit
        self.session_limit = session_limit
        self.global_limit = global_limit
        self.window_seconds = window_seconds
        self.session_retry_after = session_retry_after
        self._clock = clock

        self._identity_counters: Dict[str, RateCounter] = {}
        self._session_active: Dict[str, int] = {}
        self._global = RateCounter(_GLOBAL_KEY, clock(), 0, global_limit)
        self._global_lock = threading.Lock()
        self._locks = _StripedLocks(lock_stripes)

        self._last_cleanup = clock()
        self._cleanup_lock = threading.Lock()

    @staticmethod
    def _identity_key(client_id: str) -> str:
        return f"{SCOPE_IDENTITY}:{client_id}"

    @staticmethod
    def _session_key(session_id: str) -> str:
        return f"{SCOPE_SESSION}:{session_id}"

    def _identity_counter(self, client_id: str, now: float) -> RateCounter:
        counter = self._identity_counters.get(client_id)
        if counter is None:
            counter = RateCounter(client_id, now, 0, self.identity_limit)
            self._identity_counters[client_id] = counter
        counter.roll(now, self.window_seconds)
        return counter

    def try_acquire(self, client_id: str, session_id: str) -> RateDecision:
        """
        Check all scopes and, if every one allows it, admit the request.

        Admission counts one identity request and takes one session slot.
        The global scope is only checked for headroom here; it is charged
        by consume_global() when the request actually reaches the source.

        Returns:
            RateDecision; on denial it names the scope that tripped and how
            many seconds the caller should wait.
        """
        now = self._clock()
        self._maybe_cleanup(now)

        with ExitStack() as stack:
            for lock in self._locks.for_keys(self._identity_key(client_id), self._session_key(session_id)):
                stack.enter_context(lock)
            stack.enter_context(self._global_lock)

            identity = self._identity_counter(client_id, now)
            if not identity.has_room():
                return self._deny(SCOPE_IDENTITY, client_id, identity.retry_after(now, self.window_seconds))

            if self._session_active.get(session_id, 0) >= self.session_limit:
                return self._deny(SCOPE_SESSION, session_id, self.session_retry_after)

            self._global.roll(now, self.window_seconds)
            if not self._global.has_room():
                return self._deny(SCOPE_GLOBAL, _GLOBAL_KEY, self._global.retry_after(now, self.window_seconds))

            identity.count += 1
            self._session_active[session_id] = self._session_active.get(session_id, 0) + 1
            return RateDecision(allowed=True)

    def acquire(self, client_id: str, session_id: str) -> None:
        """
        Admit a request or raise.

        Raises:
            RateLimitError: Naming the scope that tripped
        """
        self.try_acquire(client_id, session_id).raise_if_denied()

    def _deny(self, scope: str, key: str, retry_after: int) -> RateDecision:
        logger.info(f"Rate limit hit: scope={scope} key={key} retry_after={retry_after}s")
        return RateDecision(allowed=False, scope=scope, retry_after_seconds=retry_after)

    def consume_global(self, client_id: Optional[str] = None) -> RateDecision:
        """
        Charge one request against the global window.

        If the window is full and client_id is given, the identity request
        counted by try_acquire() is handed back, so a request rejected here
        leaves no trace on the client's quota.
        """
        now = self._clock()
        with ExitStack() as stack:
            if client_id is not None:
                stack.enter_context(self._locks.get(self._identity_key(client_id)))
            stack.enter_context(self._global_lock)

            self._global.roll(now, self.window_seconds)
            if self._global.has_room():
                self._global.count += 1
                return RateDecision(allowed=True)

            if client_id is not None:
                counter = self._identity_counters.get(client_id)
                if counter is not None and counter.count > 0:
                    counter.count -= 1
            return self._deny(SCOPE_GLOBAL, _GLOBAL_KEY, self._global.retry_after(now, self.window_seconds))

    def charge_global(self, client_id: Optional[str] = None) -> None:
        """
        Charge the global window or raise.

        Raises:
            RateLimitError: With scope "global"
        """
        self.consume_global(client_id).raise_if_denied()

    def release(self, session_id: str) -> None:
        """Free the session slot taken by try_acquire()."""
        with self._locks.get(self._session_key(session_id)):
            active = self._session_active.get(session_id, 0) - 1
            if active > 0:
                self._session_active[session_id] = active
            else:
                self._session_active.pop(session_id, None)

    def remaining(self, client_id: str) -> int:
        """
        Get the number of remaining requests for a client.

        Args:
            client_id: Unique identifier for the client

        Returns:
            Number of requests remaining in the current window
        """
        now = self._clock()
        with self._locks.get(self._identity_key(client_id)):
            counter = self._identity_counters.get(client_id)
            if counter is None:
                return self.identity_limit
            counter.roll(now, self.window_seconds)
            return max(0, counter.limit - counter.count)

    def active_sessions(self, session_id: str) -> int:
        """Number of searches currently outstanding for a session."""
        return self._session_active.get(session_id, 0)

    def reset(self, client_id: str) -> None:
        """
        Reset the rate limit for a specific client.

        Useful for testing or admin override.
        """
        with self._locks.get(self._identity_key(client_id)):
            self._identity_counters.pop(client_id, None)

    def _maybe_cleanup(self, now: float) -> None:
        """Run cleanup() at most once per window, from whichever request gets there first."""
        if now - self._last_cleanup < self.window_seconds:
            return
        if not self._cleanup_lock.acquire(blocking=False):
            return
        try:
            self._last_cleanup = now
            self.cleanup()
        finally:
            self._cleanup_lock.release()

    def cleanup(self) -> int:
        """
        Remove identity counters whose window has elapsed.

        Returns the number of clients cleaned up.
        """
        now = self._clock()
        cleaned = 0
        for client_id in list(self._identity_counters):
            with self._locks.get(self._identity_key(client_id)):
                counter = self._identity_counters.get(client_id)
                if counter and now - counter.window_start >= self.window_seconds:
                    del self._identity_counters[client_id]
                    cleaned += 1
        if cleaned:
            logger.debug(f"Dropped {cleaned} idle rate limit counters")
        return cleaned

    def get_stats(self) -> Dict[str, int]:
        return {
            "tracked_clients": len(self._identity_counters),
            "active_sessions": len(self._session_active),
            "global_count": self._global.count,
            "global_limit": self._global.limit,
        }


# Global rate limiter instance
_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get the global rate limiter instance."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter
