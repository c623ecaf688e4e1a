"""
Shared fixtures: a manual clock, a scriptable company source and an
orchestrator factory wired to both.
"""
import threading
import time

import pytest

from stagematch.cache import ResultCache, SingleFlightCoordinator
from stagematch.fetcher import Fetcher, RetryingFetch
from stagematch.models import CompanyRecord, Contact
from stagematch.orchestrator import Orchestrator
from stagematch.rate_limiter import RateLimiter


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubFetcher(Fetcher):
    """
    Company source returning canned records.

    failures: exceptions raised, in order, by the first calls
    gate: optional Event every call blocks on before answering
    """

    def __init__(self, records=None, failures=None, gate=None):
        self.records = list(records or [])
        self.failures = list(failures or [])
        self.gate = gate
        self.calls = 0
        self._lock = threading.Lock()

    @property
    def provider_name(self) -> str:
        return "stub"

    def fetch(self, query):
        with self._lock:
            self.calls += 1
            failure = self.failures.pop(0) if self.failures else None
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if failure is not None:
            raise failure
        return list(self.records)


def make_company(i: int) -> CompanyRecord:
    return CompanyRecord(
        name=f"Hoveniersbedrijf {i}",
        address=f"Tuinstraat {i}",
        city="Amsterdam",
        contact=Contact(name=f"Contact {i}", phone=f"020-55500{i:02d}", email=f"info{i}@example.nl"),
    )


def wait_until(predicate, timeout: float = 5.0) -> bool:
    """Poll predicate until true or timeout."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def companies():
    """Seven records, more than a result may hold."""
    return [make_company(i) for i in range(1, 8)]


@pytest.fixture
def criteria():
    return {"education": "Medewerker Hovenier", "location": "Amsterdam", "radiusKm": 25}


@pytest.fixture
def make_orchestrator(clock):
    """Build an orchestrator around a fetcher, with a manual clock and no real sleeping."""
    built = []

    def factory(fetcher, sleeps=None, attempt_timeout=None, jitter=0.0, **limits):
        retrying = RetryingFetch(
            fetcher,
            attempt_timeout=attempt_timeout,
            jitter=jitter,
            sleep=(sleeps.append if sleeps is not None else (lambda seconds: None)),
        )
        orchestrator = Orchestrator(
            fetcher=fetcher,
            cache=ResultCache(ttl_seconds=300, clock=clock),
            rate_limiter=RateLimiter(
                identity_limit=limits.get("identity_limit", 10),
                session_limit=limits.get("session_limit", 5),
                global_limit=limits.get("global_limit", 100),
                window_seconds=60,
                clock=clock,
            ),
            coordinator=SingleFlightCoordinator(timeout=5),
            retrying_fetch=retrying,
            wait_timeout=5,
        )
        built.append(retrying)
        return orchestrator

    yield factory

    for retrying in built:
        retrying.shutdown()
