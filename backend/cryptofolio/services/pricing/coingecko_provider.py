import logging
import math
from typing import Any, Dict, List, Optional

import httpx

from cryptofolio.core.config import settings
from cryptofolio.core.exceptions import UpstreamUnavailableError
from cryptofolio.services.pricing.base import PriceSource, Quote

logger = logging.getLogger(__name__)


class CoinGeckoPriceSource(PriceSource):
    """CoinGecko /simple/price provider."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        vs_currency: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.vs_currency = (vs_currency or settings.VS_CURRENCY).lower()
        headers = {"Accept": "application/json"}
        api_key = settings.COINGECKO_API_KEY if api_key is None else api_key
        if api_key:
            headers["x-cg-demo-api-key"] = api_key
        self.client = httpx.AsyncClient(
            base_url=base_url or settings.COINGECKO_BASE_URL,
            headers=headers,
            timeout=timeout or settings.PRICE_UPSTREAM_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def get_quotes(self, coin_ids: List[str]) -> Dict[str, Quote]:
        if not coin_ids:
            return {}

        params = {
            "ids": ",".join(coin_ids),
            "vs_currencies": self.vs_currency,
            "include_24hr_change": "true",
        }
        try:
            response = await self.client.get("/simple/price", params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(f"CoinGecko returned {e.response.status_code} for {len(coin_ids)} coins")
            raise UpstreamUnavailableError(f"Price source returned {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"CoinGecko request failed: {e}")
            raise UpstreamUnavailableError("Price source request failed") from e

        if not isinstance(data, dict):
            raise UpstreamUnavailableError("Price source returned an unexpected payload")

        return self._parse_quotes(data, coin_ids)

    def _parse_quotes(self, data: Dict[str, Any], coin_ids: List[str]) -> Dict[str, Quote]:
        # Response shape: {"bitcoin": {"usd": 64000.1, "usd_24h_change": -1.2}, ...}
        change_key = f"{self.vs_currency}_24h_change"
        quotes: Dict[str, Quote] = {}
        for coin_id in coin_ids:
            entry = data.get(coin_id)
            if not isinstance(entry, dict):
                continue
            price = _to_float(entry.get(self.vs_currency))
            if price is None:
                logger.debug(f"No {self.vs_currency} price for {coin_id}")
                continue
            change = _to_float(entry.get(change_key)) or 0.0
            quotes[coin_id] = Quote(price=price, change_24h=change)
        return quotes

    async def aclose(self) -> None:
        await self.client.aclose()


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None
