"""
Tests for the cached API service: read-through caching, mutation invalidation,
error propagation, stats and preloading.
"""
import threading
import time

import pytest

from portal_cache.api_client import ApiError
from portal_cache.cache import CACHE_KEYS, CachedApiService, RequestCoalescer, TierName
from portal_cache.cache.coalescer import MISS
from portal_cache.cache.ttl_policies import analytics_key

COMPANIES = "/api/super-admin/companies"
SETTINGS = "/api/super-admin/settings"
PLANS = "/api/super-admin/subscription-plans"


def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        time.sleep(0.005)


# =============================================================================
# Reads
# =============================================================================

def test_second_get_is_served_from_cache(cached_api, fake_client):
    fake_client.responses[COMPANIES] = [{"name": "Acme"}]

    first = cached_api.get(COMPANIES)
    second = cached_api.get(COMPANIES)

    assert first == second == [{"name": "Acme"}]
    assert fake_client.count("GET", COMPANIES) == 1
    assert cached_api.registry.medium.has("GET:" + COMPANIES)


def test_unmatched_url_always_calls_network(cached_api, fake_client):
    url = "/api/super-admin/billing/payments"
    cached_api.get(url)
    cached_api.get(url)
    assert fake_client.count("GET", url) == 2
    assert all(stats.total == 0 for stats in cached_api.get_cache_stats().values())


def test_disabled_url_is_not_cached(cached_api, fake_client):
    cached_api.get("/api/auth/login")
    cached_api.get("/api/auth/login")
    assert fake_client.count("GET", "/api/auth/login") == 2


def test_get_passes_config_to_client(cached_api, fake_client):
    cached_api.get(COMPANIES, {"params": {"limit": 10}})
    assert fake_client.calls[0] == ("GET", COMPANIES, {"params": {"limit": 10}})


def test_plans_expire_after_policy_ttl(cached_api, fake_client, clock):
    """Plans are cached for 15 minutes in the long tier, then refetched."""
    fake_client.responses[PLANS] = ["planA"]
    cached_api.registry.long.set("GET:" + PLANS, ["planA"], ttl=15 * 60)

    clock.advance(60)
    assert cached_api.get(PLANS) == ["planA"]
    assert fake_client.count("GET", PLANS) == 0

    fake_client.responses[PLANS] = ["planA", "planB"]
    clock.advance(15 * 60)
    assert cached_api.get(PLANS) == ["planA", "planB"]
    assert fake_client.count("GET", PLANS) == 1
    assert cached_api.registry.long.get("GET:" + PLANS) == ["planA", "planB"]


def test_failed_read_is_not_cached(cached_api, fake_client):
    fake_client.failures.add(COMPANIES)

    with pytest.raises(ApiError) as exc_info:
        cached_api.get(COMPANIES)

    assert exc_info.value.status_code == 500
    assert cached_api.registry.medium.stats().total == 0


def test_cached_none_is_a_hit(cached_api, fake_client):
    fake_client.responses[SETTINGS] = None
    assert cached_api.get(SETTINGS) is None
    assert cached_api.get(SETTINGS) is None
    assert fake_client.count("GET", SETTINGS) == 1


# =============================================================================
# Mutations and invalidation
# =============================================================================

def test_post_invalidates_companies_but_not_settings(cached_api, fake_client):
    cached_api.get(COMPANIES)
    cached_api.get(SETTINGS)

    result = cached_api.post(COMPANIES, {"name": "New Co"})

    assert result == {"created": True, "body": {"name": "New Co"}}
    assert not cached_api.registry.medium.has(CACHE_KEYS["COMPANIES_LIST"])
    assert cached_api.registry.long.has(CACHE_KEYS["SYSTEM_SETTINGS"])

    cached_api.get(COMPANIES)
    assert fake_client.count("GET", COMPANIES) == 2


def test_invalidation_leaves_detail_keys_cached(cached_api, fake_client):
    """Only the list key is dropped; a company detail entry survives."""
    detail = COMPANIES + "/42"
    cached_api.get(COMPANIES)
    cached_api.get(detail)

    cached_api.put(detail, {"name": "Renamed"})

    assert not cached_api.registry.medium.has(CACHE_KEYS["COMPANIES_LIST"])
    assert cached_api.registry.medium.has("GET:" + detail)


def test_list_key_with_query_string_is_not_invalidated(cached_api):
    cached_api.get(COMPANIES + "?limit=1000")
    cached_api.post(COMPANIES, {"name": "x"})
    assert cached_api.registry.medium.has("GET:" + COMPANIES + "?limit=1000")


@pytest.mark.parametrize("method", ["post", "put", "patch"])
def test_body_mutations_invalidate(cached_api, fake_client, method):
    cached_api.get("/api/super-admin/users")
    getattr(cached_api, method)("/api/super-admin/users/7", {"role": "admin"})
    assert not cached_api.registry.medium.has(CACHE_KEYS["USERS_LIST"])
    assert fake_client.count(method.upper()) == 1


def test_delete_invalidates(cached_api, fake_client):
    cached_api.get(SETTINGS)
    assert cached_api.delete(SETTINGS + "/smtp") == {"deleted": True}
    assert not cached_api.registry.long.has(CACHE_KEYS["SYSTEM_SETTINGS"])


def test_upload_invalidates(cached_api, fake_client):
    cached_api.get(COMPANIES)
    files = {"logo": ("logo.png", b"\x89PNG", "image/png")}

    assert cached_api.upload(COMPANIES + "/1/logo", files) == {"uploaded": True}
    assert fake_client.calls[-1][0] == "UPLOAD"
    assert not cached_api.registry.medium.has(CACHE_KEYS["COMPANIES_LIST"])


def test_dashboard_and_analytics_rules(cached_api):
    cached_api.get("/api/super-admin/dashboard/stats")
    cached_api.get("/api/super-admin/analytics?timeRange=30d")

    removed = cached_api.invalidate_related_caches("/api/super-admin/dashboard/analytics")

    assert set(removed) == {CACHE_KEYS["DASHBOARD_STATS"], analytics_key("30d")}
    assert cached_api.registry.short.stats().total == 0
    assert cached_api.registry.medium.stats().total == 0


def test_failed_mutation_skips_invalidation(cached_api, fake_client):
    cached_api.get(COMPANIES)
    fake_client.failures.add(COMPANIES)

    with pytest.raises(ApiError):
        cached_api.post(COMPANIES, {"name": "x"})

    assert cached_api.registry.medium.has(CACHE_KEYS["COMPANIES_LIST"])


def test_mutations_are_never_served_from_cache(cached_api, fake_client):
    cached_api.post(COMPANIES, {"name": "x"})
    cached_api.post(COMPANIES, {"name": "x"})
    assert fake_client.count("POST", COMPANIES) == 2


# =============================================================================
# Manual invalidation, clearing and stats
# =============================================================================

def test_invalidate_cache_pattern_is_a_logging_no_op(cached_api):
    """
    Pattern invalidation only logs; nothing is deleted. Kept as-is until
    real pattern deletion is wanted.
    """
    cached_api.get(COMPANIES)
    cached_api.get(SETTINGS)

    assert cached_api.invalidate_cache("companies") == 0
    assert cached_api.registry.medium.has(CACHE_KEYS["COMPANIES_LIST"])
    assert cached_api.registry.long.has(CACHE_KEYS["SYSTEM_SETTINGS"])


def test_clear_all_caches_empties_every_tier(cached_api):
    cached_api.get("/api/monitoring/health")
    cached_api.get(COMPANIES)
    cached_api.get(SETTINGS)
    cached_api.registry.static.set("countries", ["LK", "NZ"])

    assert all(stats.total == 1 for stats in cached_api.get_cache_stats().values())

    cached_api.clear_all_caches()
    stats = cached_api.get_cache_stats()
    assert {name: tier.total for name, tier in stats.items()} == {
        "short": 0, "medium": 0, "long": 0, "static": 0,
    }


def test_cache_summary_totals(cached_api, clock):
    cached_api.get("/api/monitoring/health")  # 30s
    cached_api.get(COMPANIES)                 # 120s
    clock.advance(60)

    summary = cached_api.get_cache_summary()
    assert summary["total"] == 2
    assert summary["valid"] == 1
    assert summary["valid_percent"] == 50
    assert summary["tiers"]["short"] == {
        "total": 1, "valid": 0, "expired": 1, "maxSize": 50, "validPercent": 0,
    }
    assert summary["tiers"]["medium"]["validPercent"] == 100
    assert summary["tiers"]["static"]["validPercent"] == 0
    assert summary["coalescer"] is None


# =============================================================================
# Preload
# =============================================================================

def test_preload_warms_long_tier(cached_api, fake_client):
    assert cached_api.preload_data() is True
    assert [call[1] for call in fake_client.calls] == [PLANS, SETTINGS]
    assert cached_api.registry.long.stats().total == 2


def test_preload_failure_is_swallowed(cached_api, fake_client):
    fake_client.failures.add(PLANS)
    assert cached_api.preload_data() is False
    assert cached_api.registry.long.stats().total == 0


def test_shutdown_destroys_tiers_and_closes_client(cached_api, fake_client):
    cached_api.get(COMPANIES)
    cached_api.shutdown()
    assert fake_client.closed
    assert cached_api.registry.medium.stats().total == 0


# =============================================================================
# Concurrent cold reads
# =============================================================================

def _blocking_client(fake_client, release):
    def respond(url):
        release.wait(timeout=2.0)
        return {"url": url, "n": fake_client.count("GET", url)}
    fake_client.responses[COMPANIES] = respond


def test_concurrent_cold_reads_are_not_deduplicated(cached_api, fake_client):
    """Without a coalescer both callers hit the network."""
    release = threading.Event()
    _blocking_client(fake_client, release)

    results = []
    threads = [
        threading.Thread(target=lambda: results.append(cached_api.get(COMPANIES)))
        for _ in range(2)
    ]
    for thread in threads:
        thread.start()
    wait_until(lambda: fake_client.count("GET", COMPANIES) == 2)
    release.set()
    for thread in threads:
        thread.join(timeout=2.0)

    assert len(results) == 2
    assert fake_client.count("GET", COMPANIES) == 2
    assert cached_api.registry.medium.stats().total == 1


def test_coalescer_shares_one_call(fake_client, registry):
    coalescer = RequestCoalescer(timeout=2.0)
    cached_api = CachedApiService(fake_client, registry, coalescer=coalescer)
    release = threading.Event()
    _blocking_client(fake_client, release)

    results = []

    def read():
        results.append(cached_api.get(COMPANIES))

    first = threading.Thread(target=read)
    first.start()
    wait_until(lambda: fake_client.count("GET", COMPANIES) == 1)

    second = threading.Thread(target=read)
    second.start()
    wait_until(lambda: coalescer.waiters("GET:" + COMPANIES) == 1)

    release.set()
    first.join(timeout=2.0)
    second.join(timeout=2.0)

    assert fake_client.count("GET", COMPANIES) == 1
    assert results[0] == results[1]
    assert registry[TierName.MEDIUM].has("GET:" + COMPANIES)
    assert coalescer.active_requests == 0


def test_coalescer_propagates_error_to_all_callers():
    coalescer = RequestCoalescer()

    def fail():
        raise ApiError("boom", "GET", "/x", 503)

    with pytest.raises(ApiError):
        coalescer.get_or_fetch("GET:/x", fail)
    assert coalescer.active_requests == 0


def test_coalescer_serves_late_reader_from_tier():
    coalescer = RequestCoalescer()
    tier = {}
    fetches = []

    def fetch():
        fetches.append("GET:/x")
        tier["GET:/x"] = {"fresh": True}
        return tier["GET:/x"]

    def lookup():
        return tier.get("GET:/x", MISS)

    assert coalescer.get_or_fetch("GET:/x", fetch, lookup) == {"fresh": True}
    assert coalescer.get_or_fetch("GET:/x", fetch, lookup) == {"fresh": True}
    assert len(fetches) == 1
    assert coalescer.get_stats()["fetches"] == 1
    assert coalescer.get_stats()["late_hits"] == 1


def test_reader_missing_just_before_fetch_completes_gets_cache_hit(
    fake_client, registry, monkeypatch
):
    """The first tier check misses, but the tier is warm by the time the reader
    reaches the coalescer: it must not start a second upstream call."""
    coalescer = RequestCoalescer()
    cached_api = CachedApiService(fake_client, registry, coalescer=coalescer)
    cached_api.get(COMPANIES)
    assert fake_client.count("GET", COMPANIES) == 1

    store = registry[TierName.MEDIUM]
    real_get = store.get
    stale_reads = [True]

    def get_with_one_stale_read(key, default=None):
        if stale_reads:
            stale_reads.pop()
            return default
        return real_get(key, default)

    monkeypatch.setattr(store, "get", get_with_one_stale_read)

    assert cached_api.get(COMPANIES) == {"url": COMPANIES}
    assert fake_client.count("GET", COMPANIES) == 1
    assert coalescer.get_stats()["late_hits"] == 1


def test_summary_includes_coalescer_counters(fake_client, registry):
    coalescer = RequestCoalescer()
    cached_api = CachedApiService(fake_client, registry, coalescer=coalescer)
    cached_api.get(COMPANIES)

    stats = cached_api.get_cache_summary()["coalescer"]
    assert stats["fetches"] == 1
    assert stats["active_requests"] == 0
