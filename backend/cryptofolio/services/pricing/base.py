from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List


@dataclass(frozen=True)
class Quote:
    """Current unit price and 24h percent change for a coin."""
    price: float
    change_24h: float = 0.0


class PriceSource(ABC):
    """Abstract base class for price quote providers."""

    @abstractmethod
    async def get_quotes(self, coin_ids: List[str]) -> Dict[str, Quote]:
        """
        Fetch quotes for coin ids in one batched call.

        Coins without a quote are omitted from the result rather than
        raising. Raises UpstreamUnavailableError when the provider itself
        cannot be reached.
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release any held connections."""
        return None
