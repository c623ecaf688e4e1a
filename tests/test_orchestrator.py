"""
End-to-end tests of the search orchestrator with a stub company source.
"""
import threading

from stagematch.cache import ResultCache, SingleFlightCoordinator
from stagematch.errors import PermanentSourceError, TransientSourceError
from stagematch.fetcher import RetryingFetch
from stagematch.models import Query, to_iso
from stagematch.orchestrator import Orchestrator
from stagematch.rate_limiter import RateLimiter

from .conftest import StubFetcher, make_company, wait_until


def _down():
    return [TransientSourceError("down")] * 3


def test_example_scenario_truncates_then_serves_from_cache(make_orchestrator, criteria, companies):
    """Seven source records yield five in order; a repeat search hits the cache"""
    fetcher = StubFetcher(records=companies)
    orchestrator = make_orchestrator(fetcher)

    first = orchestrator.search(criteria, client_id="10.0.0.1")
    assert first.status == "ok"
    assert first.source == "fresh"
    assert first.results == companies[:5]

    second = orchestrator.search(criteria, client_id="10.0.0.1")
    assert second.source == "fresh"
    assert second.results == companies[:5]
    assert second.fetched_at == first.fetched_at
    assert fetcher.calls == 1


def test_normalized_variants_hit_the_same_cache_entry(make_orchestrator, companies):
    fetcher = StubFetcher(records=companies)
    orchestrator = make_orchestrator(fetcher)

    orchestrator.search({"education": "Medewerker Hovenier", "location": "Amsterdam", "radiusKm": 25})
    result = orchestrator.search({"education": "medewerker hovenier", "location": "  AMSTERDAM ", "radiusKm": 25})

    assert result.source == "fresh"
    assert fetcher.calls == 1


def test_cache_expires_after_ttl(make_orchestrator, criteria, companies, clock):
    fetcher = StubFetcher(records=companies)
    orchestrator = make_orchestrator(fetcher)

    orchestrator.search(criteria)
    clock.advance(301)
    orchestrator.search(criteria)

    assert fetcher.calls == 2


def test_stale_fallback_after_expiry_and_failure(make_orchestrator, criteria, companies, clock):
    """Expired entry + failing source gives stale data, not an error"""
    fetcher = StubFetcher(records=companies)
    orchestrator = make_orchestrator(fetcher)
    first = orchestrator.search(criteria)

    clock.advance(600)
    fetcher.failures = _down()
    result = orchestrator.search(criteria)

    assert result.status == "ok"
    assert result.source == "stale"
    assert result.is_stale
    assert result.results == first.results
    assert result.fetched_at == first.fetched_at
    assert fetcher.calls == 4


def test_source_unavailable_without_prior_entry(make_orchestrator, criteria):
    fetcher = StubFetcher(failures=_down())
    orchestrator = make_orchestrator(fetcher)

    result = orchestrator.search(criteria)

    assert result.status == "error"
    assert result.code == "SOURCE_UNAVAILABLE"
    assert result.results == []
    assert fetcher.calls == 3


def test_permanent_failure_falls_back_to_stale(make_orchestrator, criteria, companies, clock):
    fetcher = StubFetcher(records=companies)
    orchestrator = make_orchestrator(fetcher)
    orchestrator.search(criteria)

    clock.advance(600)
    fetcher.failures = [PermanentSourceError("layout changed")]
    result = orchestrator.search(criteria)

    assert result.source == "stale"
    assert fetcher.calls == 2


def test_transient_failures_then_success_is_fresh(make_orchestrator, criteria, companies):
    fetcher = StubFetcher(
        records=companies[:3],
        failures=[TransientSourceError("blip"), TransientSourceError("blip")],
    )
    sleeps = []
    orchestrator = make_orchestrator(fetcher, sleeps=sleeps)

    result = orchestrator.search(criteria)

    assert result.source == "fresh"
    assert result.results == companies[:3]
    assert fetcher.calls == 3
    assert len(sleeps) == 2


def test_empty_result_is_a_success(make_orchestrator, criteria):
    fetcher = StubFetcher(records=[])
    orchestrator = make_orchestrator(fetcher)

    result = orchestrator.search(criteria)

    assert result.status == "ok"
    assert result.source == "fresh"
    assert result.results == []
    assert result.to_dict()["results"] == []


def test_identity_rate_limit(make_orchestrator, criteria, companies):
    """The 11th search in a minute from one client is refused"""
    orchestrator = make_orchestrator(StubFetcher(records=companies))

    for _ in range(10):
        assert orchestrator.search(criteria, client_id="10.0.0.9").is_ok

    result = orchestrator.search(criteria, client_id="10.0.0.9")
    assert result.code == "RATE_LIMIT_EXCEEDED"
    assert result.scope == "identity"
    assert result.retry_after_seconds > 0
    assert result.to_dict()["retryAfterSeconds"] == result.retry_after_seconds


def test_cache_hits_do_not_consume_global_quota(make_orchestrator, criteria, companies):
    fetcher = StubFetcher(records=companies)
    orchestrator = make_orchestrator(fetcher, global_limit=2)

    assert orchestrator.search(criteria, client_id="a").source == "fresh"
    for client in ("b", "c", "d"):
        assert orchestrator.search(criteria, client_id=client).source == "fresh"
    assert orchestrator.rate_limiter.get_stats()["global_count"] == 1

    assert orchestrator.search(dict(criteria, location="Utrecht"), client_id="e").is_ok
    assert fetcher.calls == 2

    result = orchestrator.search(dict(criteria, location="Zwolle"), client_id="f")
    assert result.code == "RATE_LIMIT_EXCEEDED"
    assert result.scope == "global"
    assert fetcher.calls == 2


def test_session_slot_released_after_each_search(make_orchestrator, criteria, companies):
    orchestrator = make_orchestrator(StubFetcher(records=companies, failures=_down()))

    orchestrator.search(criteria, client_id="a", session_id="s")
    orchestrator.search(criteria, client_id="a", session_id="s")

    assert orchestrator.rate_limiter.active_sessions("s") == 0


def test_validation_rejected_before_rate_limiting(make_orchestrator, criteria):
    fetcher = StubFetcher()
    orchestrator = make_orchestrator(fetcher)
    bad_inputs = [
        dict(criteria, education="Loodgieter"),
        dict(criteria, location=" a "),
        dict(criteria, location="x" * 101),
        dict(criteria, radiusKm=4),
        dict(criteria, radiusKm=101),
        {"education": "Medewerker Hovenier"},
    ]

    for bad in bad_inputs:
        result = orchestrator.search(bad, client_id="v")
        assert result.code == "VALIDATION_ERROR", bad
        assert result.errors

    assert orchestrator.rate_limiter.remaining("v") == 10
    assert fetcher.calls == 0


def test_concurrent_identical_searches_fetch_once(make_orchestrator, criteria, companies):
    """Eight simultaneous identical searches share a single source call"""
    gate = threading.Event()
    fetcher = StubFetcher(records=companies, gate=gate)
    orchestrator = make_orchestrator(fetcher)
    results = [None] * 8

    def worker(i):
        results[i] = orchestrator.search(criteria, client_id=f"10.0.1.{i}")

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()

    assert wait_until(lambda: orchestrator.coordinator.active_requests == 1)
    query_key = Query.normalize("Medewerker Hovenier", "Amsterdam", 25)
    assert wait_until(lambda: orchestrator.coordinator.waiters(query_key) == 7)
    gate.set()
    for t in threads:
        t.join(timeout=5)

    assert fetcher.calls == 1
    assert all(r.source == "fresh" for r in results)
    assert all(r.results == companies[:5] for r in results)


def test_result_serialization(make_orchestrator, criteria):
    orchestrator = make_orchestrator(StubFetcher(records=[make_company(1)]))

    body = orchestrator.search(criteria).to_dict()

    assert set(body) == {"status", "source", "results", "fetchedAt"}
    assert body["fetchedAt"].endswith("Z")
    assert body["results"][0]["contact"]["email"] == "info1@example.nl"


def test_injected_empty_collaborators_are_kept(clock):
    """An empty cache is still the cache the caller asked for"""
    fetcher = StubFetcher()
    cache = ResultCache(ttl_seconds=30, max_entries=7, clock=clock)
    limiter = RateLimiter(clock=clock)
    coordinator = SingleFlightCoordinator(timeout=5)
    retrying = RetryingFetch(fetcher, attempt_timeout=None)

    orchestrator = Orchestrator(
        fetcher,
        cache=cache,
        rate_limiter=limiter,
        coordinator=coordinator,
        retrying_fetch=retrying,
    )
    try:
        assert len(cache) == 0
        assert orchestrator.cache is cache
        assert orchestrator.rate_limiter is limiter
        assert orchestrator.coordinator is coordinator
        assert orchestrator.retrying_fetch is retrying
    finally:
        retrying.shutdown()


def test_entries_carry_the_injected_clock(make_orchestrator, criteria, companies, clock):
    orchestrator = make_orchestrator(StubFetcher(records=companies))

    result = orchestrator.search(criteria)

    assert result.fetched_at == to_iso(clock.now)
    assert orchestrator.cache.get_stats()["entries"] == 1


def test_global_slot_lost_after_admission_keeps_identity_quota(make_orchestrator, criteria, companies):
    """Another miss takes the last global slot while this one is looking in the cache"""
    fetcher = StubFetcher(records=companies)
    orchestrator = make_orchestrator(fetcher, global_limit=1)
    cache_get = orchestrator.cache.get

    def racing_get(query):
        entry = cache_get(query)
        orchestrator.rate_limiter.consume_global()
        return entry

    orchestrator.cache.get = racing_get

    result = orchestrator.search(criteria, client_id="10.0.0.7")

    assert result.code == "RATE_LIMIT_EXCEEDED"
    assert result.scope == "global"
    assert result.retry_after_seconds > 0
    assert orchestrator.rate_limiter.remaining("10.0.0.7") == 10
    assert orchestrator.rate_limiter.active_sessions("10.0.0.7") == 0
    assert fetcher.calls == 0
