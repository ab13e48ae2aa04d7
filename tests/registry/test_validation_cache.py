"""ValidationCache: TTL caching, fallback policy, batching and counters."""

import threading

import pytest

from onboarding_kernel.domain.validation import RegistryStatus, ResultSource
from onboarding_kernel.exceptions import (
    BatchSizeExceededError,
    IdentifierFormatError,
    IdentifierNotRegisteredError,
    InvalidArgumentError,
    RateLimitedError,
    RegistryTimeoutError,
)
from onboarding_registry.cache import FALLBACK_WARNING, ValidationCache
from onboarding_registry.sweeper import CacheSweeper


class TestLookup:
    def test_miss_calls_registry_once(self, company_cache, company_client):
        result = company_cache.lookup("12345678")

        assert result.is_valid
        assert result.status is RegistryStatus.ACTIVE
        assert result.source is ResultSource.REGISTRY
        assert result.normalized_name == "Client 12345678 B.V."
        assert result.address.city == "Amsterdam"
        assert company_client.calls == ["12345678"]

    def test_hit_within_ttl_does_not_call_registry(self, company_cache, company_client, deterministic_clock):
        company_cache.lookup("12345678")
        deterministic_clock.advance(899)
        second = company_cache.lookup("1234-5678")

        assert second.source is ResultSource.CACHE
        assert company_client.call_count == 1
        stats = company_cache.stats()
        assert (stats.total, stats.hits, stats.misses, stats.registry_calls) == (2, 1, 1, 1)

    def test_entry_is_served_at_exactly_ttl(self, company_cache, company_client, deterministic_clock):
        company_cache.lookup("12345678")
        deterministic_clock.advance(900)
        assert company_cache.lookup("12345678").source is ResultSource.CACHE
        assert company_client.call_count == 1

    def test_expired_entry_is_refetched(self, company_cache, company_client, deterministic_clock):
        company_cache.lookup("12345678")
        deterministic_clock.advance(901)
        result = company_cache.lookup("12345678")

        assert result.source is ResultSource.REGISTRY
        assert company_client.call_count == 2

    def test_malformed_input_never_reaches_registry(self, company_cache, company_client):
        with pytest.raises(IdentifierFormatError):
            company_cache.lookup("12AB")

        assert company_client.call_count == 0
        stats = company_cache.stats()
        assert (stats.total, stats.registry_calls, stats.errors) == (0, 0, 0)

    def test_padding_shares_cache_entry(self, company_cache, company_client):
        company_cache.lookup("1234567")
        assert company_cache.lookup("01234567").source is ResultSource.CACHE
        assert company_client.calls == ["01234567"]


class TestFallback:
    @pytest.mark.parametrize(
        "error",
        [
            RegistryTimeoutError("company_registry", "12345678", "no answer within 5s"),
            RateLimitedError("company_registry", "12345678", "registry reported HTTP 429"),
        ],
    )
    def test_unavailable_registry_yields_fallback(self, company_cache, company_client, error):
        company_client.failure = error

        result = company_cache.lookup("12345678")

        assert result.source is ResultSource.FALLBACK
        assert result.status is RegistryStatus.UNKNOWN
        assert not result.is_valid
        assert result.error
        assert result.error.startswith(error.code)
        assert FALLBACK_WARNING in result.warnings
        assert company_cache.stats().errors == 1

    def test_fallback_is_not_cached(self, company_cache, company_client):
        company_client.failure = RegistryTimeoutError("company_registry", "12345678", "slow")
        company_cache.lookup("12345678")
        company_client.failure = None

        result = company_cache.lookup("12345678")

        assert result.source is ResultSource.REGISTRY
        assert result.is_valid
        assert company_client.call_count == 2
        assert company_cache.size == 1

    def test_not_registered_is_authoritative_and_cached(self, company_cache, company_client):
        company_client.errors["87654321"] = IdentifierNotRegisteredError(
            "company_registry", "87654321", "not found in registry"
        )

        first = company_cache.lookup("87654321")
        second = company_cache.lookup("87654321")

        assert first.source is ResultSource.REGISTRY
        assert not first.is_valid
        assert first.status is RegistryStatus.INACTIVE
        assert second.source is ResultSource.CACHE
        assert company_client.call_count == 1
        assert company_cache.stats().errors == 0

    def test_failure_is_logged(self, company_cache, company_client, captured_logs):
        company_client.failure = RegistryTimeoutError("company_registry", "12345678", "slow")
        company_cache.lookup("12345678")

        failures = [r for r in captured_logs() if r["message"] == "registry_call_failed"]
        assert failures and failures[0]["error_code"] == "REGISTRY_TIMEOUT"
        assert failures[0]["level"] == "WARNING"


class TestLookupMany:
    def test_each_identifier_resolves_independently(self, company_cache, company_client):
        company_cache.lookup("11111111")
        company_client.errors["22222222"] = RegistryTimeoutError("company_registry", "22222222", "slow")

        results = company_cache.lookup_many(["11111111", "22222222", "33333333"])

        assert list(results) == ["11111111", "22222222", "33333333"]
        assert results["11111111"].source is ResultSource.CACHE
        assert results["22222222"].source is ResultSource.FALLBACK
        assert results["33333333"].source is ResultSource.REGISTRY

    def test_keys_are_the_identifiers_as_given(self, company_cache, company_client):
        results = company_cache.lookup_many(["1234-5678", "12345678"])

        assert set(results) == {"1234-5678", "12345678"}
        assert company_client.call_count == 1

    def test_over_cap_is_rejected_before_any_call(self, tax_cache, tax_client):
        identifiers = [f"NL{n:09d}B01" for n in range(6)]

        with pytest.raises(BatchSizeExceededError) as exc_info:
            tax_cache.lookup_many(identifiers)

        assert exc_info.value.limit == 5
        assert exc_info.value.identifiers == (identifiers[5],)
        assert tax_client.call_count == 0

    def test_duplicates_do_not_count_towards_cap(self, tax_cache):
        results = tax_cache.lookup_many(["NL123456789B01"] * 6)
        assert len(results) == 1

    def test_one_malformed_identifier_rejects_the_request(self, company_cache, company_client):
        with pytest.raises(IdentifierFormatError):
            company_cache.lookup_many(["12345678", "not-a-number"])
        assert company_client.call_count == 0

    def test_empty_request(self, company_cache):
        assert company_cache.lookup_many([]) == {}

    def test_bare_string_is_rejected(self, company_cache, company_client):
        with pytest.raises(InvalidArgumentError):
            company_cache.lookup_many("12345678")
        assert company_client.call_count == 0
        assert company_cache.stats().total == 0


class TestConcurrentLookups:
    def test_concurrent_misses_for_one_identifier_coalesce(self, company_client, deterministic_clock):
        cache = ValidationCache(company_client, deterministic_clock, ttl_seconds=900, max_batch_size=10)
        gate = threading.Event()
        company_client.before_fetch = lambda _identifier: gate.wait(5)

        results = []
        threads = [
            threading.Thread(target=lambda: results.append(cache.lookup("12345678")))
            for _ in range(5)
        ]
        for t in threads:
            t.start()
        gate.set()
        for t in threads:
            t.join(10)

        assert len(results) == 5
        assert company_client.call_count == 1
        assert sum(r.source is ResultSource.CACHE for r in results) == 4


class TestBoundsAndSweeping:
    def test_oldest_entry_evicted_at_capacity(self, company_client, deterministic_clock):
        cache = ValidationCache(
            company_client, deterministic_clock, ttl_seconds=900, max_batch_size=10, max_entries=2,
        )
        for number in ("11111111", "22222222", "33333333"):
            cache.lookup(number)

        assert cache.size == 2
        cache.lookup("11111111")
        assert company_client.calls.count("11111111") == 2

    def test_sweep_removes_expired_entries(self, company_cache, tax_cache, deterministic_clock):
        company_cache.lookup("12345678")
        tax_cache.lookup("NL123456789B01")
        deterministic_clock.advance(1000)

        evicted = CacheSweeper([company_cache, tax_cache]).tick()

        assert evicted == 1
        assert company_cache.size == 0
        assert tax_cache.size == 1

    def test_sweeper_thread_starts_and_stops(self, company_cache):
        sweeper = CacheSweeper([company_cache], interval_seconds=0.01)
        sweeper.start()
        assert sweeper.is_running
        sweeper.stop(timeout=5)
        assert not sweeper.is_running

    def test_clear(self, company_cache, company_client):
        company_cache.lookup("12345678")
        assert company_cache.clear() == 1
        company_cache.lookup("12345678")
        assert company_client.call_count == 2

    def test_stats_report_size_and_last_request(self, company_cache, deterministic_clock):
        company_cache.lookup("12345678")
        stats = company_cache.stats()
        assert stats.size == 1
        assert stats.last_request_at == deterministic_clock.now()
        assert stats.hit_rate == 0.0
        assert stats.to_dict()["registry"] == "company_registry"
