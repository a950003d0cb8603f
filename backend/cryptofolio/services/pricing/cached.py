"""
Redis-backed quote cache.

Cache-or-fetch with a fresh window and a longer stale window: quotes
younger than `ttl_seconds` are served without touching the upstream;
older ones are refetched, and served anyway if the upstream fails.
"""
import asyncio
import json
import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

from redis.exceptions import RedisError

from cryptofolio.core.config import settings
from cryptofolio.core.exceptions import UpstreamUnavailableError
from cryptofolio.core.redis import CacheKeys
from cryptofolio.services.pricing.base import PriceSource, Quote

logger = logging.getLogger(__name__)


class CachedPriceSource(PriceSource):
    """Wraps another PriceSource with a per-coin Redis cache."""

    def __init__(
        self,
        upstream: PriceSource,
        redis_client,
        ttl_seconds: Optional[int] = None,
        stale_seconds: Optional[int] = None,
        vs_currency: Optional[str] = None,
        upstream_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.upstream = upstream
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds or settings.PRICE_CACHE_TTL_SECONDS
        self.stale_seconds = max(stale_seconds or settings.PRICE_CACHE_STALE_SECONDS, self.ttl_seconds)
        self.vs_currency = (vs_currency or settings.VS_CURRENCY).lower()
        self.upstream_timeout = upstream_timeout or settings.PRICE_UPSTREAM_TIMEOUT_SECONDS
        self.clock = clock

    async def get_quotes(self, coin_ids: List[str]) -> Dict[str, Quote]:
        if not coin_ids:
            return {}

        now = self.clock()
        cached = await self._read(coin_ids)
        result = {
            coin_id: quote
            for coin_id, (quote, fetched_at) in cached.items()
            if now - fetched_at < self.ttl_seconds
        }
        to_fetch = [coin_id for coin_id in coin_ids if coin_id not in result]
        if not to_fetch:
            return result

        try:
            fetched = await self._fetch_upstream(to_fetch)
        except UpstreamUnavailableError:
            stale = {coin_id: cached[coin_id][0] for coin_id in to_fetch if coin_id in cached}
            if not result and not stale:
                raise
            logger.warning(
                f"Price source unavailable, serving {len(stale)} stale quotes "
                f"({len(to_fetch) - len(stale)} coins without any quote)"
            )
            result.update(stale)
            return result

        await self._write(fetched, now)
        result.update(fetched)

        # Upstream answered but skipped some coins: fall back to whatever we held
        for coin_id in to_fetch:
            if coin_id not in result and coin_id in cached:
                result[coin_id] = cached[coin_id][0]
        return result

    async def _fetch_upstream(self, coin_ids: List[str]) -> Dict[str, Quote]:
        # Must stay below the fetch_quotes bound for stale entries to be served
        try:
            return await asyncio.wait_for(self.upstream.get_quotes(coin_ids), timeout=self.upstream_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Price source timed out after {self.upstream_timeout}s for {len(coin_ids)} coins")
            raise UpstreamUnavailableError("Price source timed out") from None

    async def _read(self, coin_ids: List[str]) -> Dict[str, Tuple[Quote, float]]:
        keys = [CacheKeys.quote(self.vs_currency, coin_id) for coin_id in coin_ids]
        try:
            raw_values = await self.redis.mget(keys)
        except RedisError as e:
            logger.warning(f"Quote cache read failed: {e}")
            return {}

        entries: Dict[str, Tuple[Quote, float]] = {}
        for coin_id, raw in zip(coin_ids, raw_values):
            if not raw:
                continue
            try:
                payload = json.loads(raw)
                entries[coin_id] = (
                    Quote(price=float(payload["price"]), change_24h=float(payload.get("change_24h", 0.0))),
                    float(payload["fetched_at"]),
                )
            except (ValueError, KeyError, TypeError):
                logger.debug(f"Discarding unreadable cache entry for {coin_id}")
        return entries

    async def _write(self, quotes: Dict[str, Quote], fetched_at: float) -> None:
        try:
            for coin_id, quote in quotes.items():
                await self.redis.set(
                    CacheKeys.quote(self.vs_currency, coin_id),
                    json.dumps({
                        "price": quote.price,
                        "change_24h": quote.change_24h,
                        "fetched_at": fetched_at,
                    }),
                    ex=self.stale_seconds,
                )
        except RedisError as e:
            logger.warning(f"Quote cache write failed: {e}")

    async def aclose(self) -> None:
        await self.upstream.aclose()
