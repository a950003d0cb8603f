import asyncio
import logging
from typing import Dict, Iterable, Optional

from cryptofolio.core.config import settings
from cryptofolio.core.exceptions import UpstreamUnavailableError
from cryptofolio.core.metrics import metrics
from cryptofolio.core.redis import get_async_redis
from cryptofolio.services.pricing.base import PriceSource, Quote
from cryptofolio.services.pricing.cached import CachedPriceSource
from cryptofolio.services.pricing.coingecko_provider import CoinGeckoPriceSource

logger = logging.getLogger(__name__)

_price_source: Optional[PriceSource] = None


async def get_price_source() -> PriceSource:
    """Shared price source: CoinGecko, behind the Redis cache when enabled."""
    global _price_source
    if _price_source is None:
        source: PriceSource = CoinGeckoPriceSource()
        if settings.PRICE_CACHE_ENABLED:
            source = CachedPriceSource(source, await get_async_redis())
        _price_source = source
    return _price_source


async def close_price_source() -> None:
    global _price_source
    if _price_source is not None:
        await _price_source.aclose()
        _price_source = None


async def fetch_quotes(
    price_source: PriceSource,
    coin_ids: Iterable[str],
    timeout: Optional[float] = None,
) -> Dict[str, Quote]:
    """
    Time-bounded, failure-tolerant quote lookup.

    Duplicate ids are collapsed into one batched call. Timeouts and
    upstream failures yield an empty map; callers apply their own
    fallback price.
    """
    unique_ids = list(dict.fromkeys(coin_ids))
    if not unique_ids:
        return {}

    timeout = timeout or settings.PRICE_REQUEST_TIMEOUT_SECONDS
    try:
        return await asyncio.wait_for(price_source.get_quotes(unique_ids), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Price source timed out after {timeout}s for {len(unique_ids)} coins")
        await metrics.price_source_degraded(len(unique_ids), "timeout")
    except UpstreamUnavailableError as e:
        logger.warning(f"Price source unavailable: {e.message}")
        await metrics.price_source_degraded(len(unique_ids), "upstream")
    except Exception:
        logger.exception("Unexpected price source failure")
        await metrics.price_source_degraded(len(unique_ids), "error")
    return {}


__all__ = [
    "PriceSource",
    "Quote",
    "CoinGeckoPriceSource",
    "CachedPriceSource",
    "get_price_source",
    "close_price_source",
    "fetch_quotes",
]
