"""
Tests for the price source: CoinGecko client, Redis quote cache and the
time-bounded fetch helper.
"""

import json

import httpx
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import FailingPriceSource, SlowPriceSource, StaticPriceSource
from cryptofolio.core.exceptions import UpstreamUnavailableError
from cryptofolio.core.metrics import metrics
from cryptofolio.core.redis import CacheKeys
from cryptofolio.services.pricing import (
    CachedPriceSource,
    CoinGeckoPriceSource,
    PriceSource,
    Quote,
    fetch_quotes,
)


class InMemoryRedis:
    """The slice of redis.asyncio.Redis the quote cache uses."""

    def __init__(self):
        self.store = {}
        self.expiry = {}

    async def mget(self, keys):
        return [self.store.get(k) for k in keys]

    async def set(self, key, value, ex=None):
        self.store[key] = value
        self.expiry[key] = ex
        return True


class BrokenRedis:
    async def mget(self, keys):
        raise RedisConnectionError("Connection refused")

    async def set(self, key, value, ex=None):
        raise RedisConnectionError("Connection refused")


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _coingecko(handler) -> CoinGeckoPriceSource:
    return CoinGeckoPriceSource(
        base_url="https://api.coingecko.test/api/v3",
        api_key="",
        vs_currency="usd",
        transport=httpx.MockTransport(handler),
    )


class TestCoinGeckoPriceSource:
    async def test_parses_simple_price_payload(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={
                "bitcoin": {"usd": 64000.5, "usd_24h_change": -1.5},
                "ethereum": {"usd": 3100},
            })

        source = _coingecko(handler)
        quotes = await source.get_quotes(["bitcoin", "ethereum"])
        await source.aclose()

        assert seen["path"].endswith("/simple/price")
        assert seen["params"] == {
            "ids": "bitcoin,ethereum",
            "vs_currencies": "usd",
            "include_24hr_change": "true",
        }
        assert quotes["bitcoin"] == Quote(price=64000.5, change_24h=-1.5)
        assert quotes["ethereum"] == Quote(price=3100.0, change_24h=0.0)

    async def test_unknown_and_malformed_coins_are_skipped(self) -> None:
        def handler(request):
            return httpx.Response(200, json={
                "bitcoin": {"usd": 64000},
                "badcoin": {"usd": "not-a-number"},
                "nullcoin": {"usd": None},
                "weirdcoin": [],
            })

        source = _coingecko(handler)
        quotes = await source.get_quotes(["bitcoin", "badcoin", "nullcoin", "weirdcoin", "ghostcoin"])
        await source.aclose()

        assert set(quotes) == {"bitcoin"}

    async def test_sends_api_key_header(self) -> None:
        seen = {}

        def handler(request):
            seen["key"] = request.headers.get("x-cg-demo-api-key")
            return httpx.Response(200, json={})

        source = CoinGeckoPriceSource(
            base_url="https://api.coingecko.test/api/v3",
            api_key="demo-key",
            transport=httpx.MockTransport(handler),
        )
        await source.get_quotes(["bitcoin"])
        await source.aclose()

        assert seen["key"] == "demo-key"

    @pytest.mark.parametrize("status", [429, 500, 503])
    async def test_http_error_raises_upstream_unavailable(self, status) -> None:
        source = _coingecko(lambda request: httpx.Response(status, json={"error": "nope"}))

        with pytest.raises(UpstreamUnavailableError):
            await source.get_quotes(["bitcoin"])
        await source.aclose()

    async def test_transport_error_raises_upstream_unavailable(self) -> None:
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        source = _coingecko(handler)

        with pytest.raises(UpstreamUnavailableError):
            await source.get_quotes(["bitcoin"])
        await source.aclose()

    async def test_non_json_body_raises_upstream_unavailable(self) -> None:
        source = _coingecko(lambda request: httpx.Response(200, text="<html>maintenance</html>"))

        with pytest.raises(UpstreamUnavailableError):
            await source.get_quotes(["bitcoin"])
        await source.aclose()

    async def test_empty_request_does_not_hit_network(self) -> None:
        def handler(request):
            raise AssertionError("no request expected")

        source = _coingecko(handler)
        assert await source.get_quotes([]) == {}
        await source.aclose()


class TestCachedPriceSource:
    async def test_fresh_entries_skip_upstream(self) -> None:
        upstream = StaticPriceSource({"bitcoin": Quote(price=100.0, change_24h=1.0)})
        clock = FakeClock()
        cache = CachedPriceSource(upstream, InMemoryRedis(), ttl_seconds=60, stale_seconds=3600,
                                  vs_currency="usd", clock=clock)

        first = await cache.get_quotes(["bitcoin"])
        clock.now += 30
        second = await cache.get_quotes(["bitcoin"])

        assert first == second == {"bitcoin": Quote(price=100.0, change_24h=1.0)}
        assert upstream.calls == [["bitcoin"]]

    async def test_only_missing_coins_are_fetched(self) -> None:
        upstream = StaticPriceSource({"bitcoin": Quote(price=100.0), "ethereum": Quote(price=10.0)})
        cache = CachedPriceSource(upstream, InMemoryRedis(), ttl_seconds=60, clock=FakeClock())

        await cache.get_quotes(["bitcoin"])
        result = await cache.get_quotes(["bitcoin", "ethereum"])

        assert upstream.calls == [["bitcoin"], ["ethereum"]]
        assert set(result) == {"bitcoin", "ethereum"}

    async def test_expired_entries_are_refetched(self) -> None:
        upstream = StaticPriceSource({"bitcoin": Quote(price=100.0)})
        clock = FakeClock()
        cache = CachedPriceSource(upstream, InMemoryRedis(), ttl_seconds=60, clock=clock)

        await cache.get_quotes(["bitcoin"])
        upstream.quotes["bitcoin"] = Quote(price=120.0)
        clock.now += 61

        assert (await cache.get_quotes(["bitcoin"]))["bitcoin"].price == 120.0
        assert len(upstream.calls) == 2

    async def test_entries_written_with_stale_window_expiry(self) -> None:
        redis = InMemoryRedis()
        cache = CachedPriceSource(StaticPriceSource({"bitcoin": Quote(price=1.0)}), redis,
                                  ttl_seconds=60, stale_seconds=3600, vs_currency="USD",
                                  clock=FakeClock(42.0))

        await cache.get_quotes(["bitcoin"])

        key = CacheKeys.quote("usd", "bitcoin")
        assert redis.expiry[key] == 3600
        assert json.loads(redis.store[key]) == {"price": 1.0, "change_24h": 0.0, "fetched_at": 42.0}

    async def test_stale_entries_served_when_upstream_fails(self) -> None:
        redis = InMemoryRedis()
        clock = FakeClock()
        warm = CachedPriceSource(StaticPriceSource({"bitcoin": Quote(price=100.0)}), redis,
                                 ttl_seconds=60, clock=clock)
        await warm.get_quotes(["bitcoin"])

        clock.now += 600
        cold = CachedPriceSource(FailingPriceSource(), redis, ttl_seconds=60, clock=clock)

        assert await cold.get_quotes(["bitcoin", "ethereum"]) == {"bitcoin": Quote(price=100.0)}

    async def test_stale_entries_served_when_upstream_hangs(self) -> None:
        redis = InMemoryRedis()
        clock = FakeClock()
        warm = CachedPriceSource(StaticPriceSource({"bitcoin": Quote(price=100.0)}), redis,
                                 ttl_seconds=60, clock=clock)
        await warm.get_quotes(["bitcoin"])

        clock.now += 600
        cold = CachedPriceSource(SlowPriceSource(), redis, ttl_seconds=60,
                                 upstream_timeout=0.05, clock=clock)

        assert await fetch_quotes(cold, ["bitcoin"], timeout=0.5) == {"bitcoin": Quote(price=100.0)}
        assert metrics.get_recent_events(category="pricing") == []

    async def test_hung_upstream_without_cached_data_raises(self) -> None:
        cache = CachedPriceSource(SlowPriceSource(), InMemoryRedis(), ttl_seconds=60,
                                  upstream_timeout=0.05, clock=FakeClock())

        with pytest.raises(UpstreamUnavailableError, match="timed out"):
            await cache.get_quotes(["bitcoin"])

        assert await fetch_quotes(cache, ["bitcoin"], timeout=0.5) == {}
        assert metrics.get_recent_events(category="pricing")[0].metadata["reason"] == "upstream"

    async def test_failure_without_any_cached_data_raises(self) -> None:
        cache = CachedPriceSource(FailingPriceSource(), InMemoryRedis(), ttl_seconds=60, clock=FakeClock())

        with pytest.raises(UpstreamUnavailableError):
            await cache.get_quotes(["bitcoin"])

    async def test_coin_skipped_by_upstream_falls_back_to_stale(self) -> None:
        redis = InMemoryRedis()
        clock = FakeClock()
        upstream = StaticPriceSource({"bitcoin": Quote(price=100.0)})
        cache = CachedPriceSource(upstream, redis, ttl_seconds=60, clock=clock)
        await cache.get_quotes(["bitcoin"])

        del upstream.quotes["bitcoin"]
        clock.now += 120

        assert (await cache.get_quotes(["bitcoin"]))["bitcoin"].price == 100.0

    async def test_unreadable_entry_is_treated_as_miss(self) -> None:
        redis = InMemoryRedis()
        redis.store[CacheKeys.quote("usd", "bitcoin")] = "{not json"
        upstream = StaticPriceSource({"bitcoin": Quote(price=5.0)})
        cache = CachedPriceSource(upstream, redis, ttl_seconds=60, vs_currency="usd", clock=FakeClock())

        assert (await cache.get_quotes(["bitcoin"]))["bitcoin"].price == 5.0
        assert upstream.calls == [["bitcoin"]]

    async def test_redis_outage_passes_through_to_upstream(self) -> None:
        upstream = StaticPriceSource({"bitcoin": Quote(price=7.0)})
        cache = CachedPriceSource(upstream, BrokenRedis(), ttl_seconds=60, clock=FakeClock())

        assert await cache.get_quotes(["bitcoin"]) == {"bitcoin": Quote(price=7.0)}


class TestFetchQuotes:
    async def test_duplicate_ids_collapse_into_one_call(self) -> None:
        source = StaticPriceSource({"bitcoin": Quote(price=1.0)})

        await fetch_quotes(source, ["bitcoin", "ethereum", "bitcoin"])

        assert source.calls == [["bitcoin", "ethereum"]]

    async def test_empty_ids_skip_the_source(self) -> None:
        source = StaticPriceSource()

        assert await fetch_quotes(source, []) == {}
        assert source.calls == []

    async def test_timeout_yields_empty_map(self) -> None:
        assert await fetch_quotes(SlowPriceSource(), ["bitcoin"], timeout=0.05) == {}

        event = metrics.get_recent_events(category="pricing")[0]
        assert event.event_type == "price_source_degraded"
        assert event.metadata["reason"] == "timeout"

    async def test_upstream_failure_yields_empty_map(self) -> None:
        assert await fetch_quotes(FailingPriceSource(), ["bitcoin"]) == {}

        assert metrics.get_recent_events(category="pricing")[0].metadata["reason"] == "upstream"

    async def test_unexpected_error_yields_empty_map(self) -> None:
        class ExplodingPriceSource(PriceSource):
            async def get_quotes(self, coin_ids):
                raise RuntimeError("boom")

        assert await fetch_quotes(ExplodingPriceSource(), ["bitcoin"]) == {}
        assert metrics.get_summary()["price_source_degraded"] == 1
