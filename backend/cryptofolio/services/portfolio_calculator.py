"""
Portfolio Valuation Engine.

Combines stored holding lots with live quotes to produce invested cost,
current value, unrealized P&L and per-coin allocation.

    invested        = quantity * buy_price
    value           = quantity * current_price
    profit_loss     = value - invested
    profit_loss_pct = profit_loss / invested * 100   (0 when invested is 0)
    allocation_pct  = coin_value / portfolio_value * 100   (0 when value is 0)

A coin without a quote is valued at price 0; only a failure to read the
lots themselves is an error.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from cryptofolio.core.metrics import metrics
from cryptofolio.models.holding import Holding
from cryptofolio.services.allocation import AllocationEntry, aggregate_allocation
from cryptofolio.services.pricing import PriceSource, Quote, fetch_quotes
from cryptofolio.services.stores.base import HoldingStore

logger = logging.getLogger(__name__)


@dataclass
class HoldingMetrics:
    """Valuation of a single lot."""
    id: int
    coin_id: str
    symbol: str
    name: str
    quantity: float
    buy_price: float
    buy_date: Optional[datetime]
    current_price: float = 0.0
    price_change_24h: float = 0.0
    invested_amount: float = 0.0
    current_value: float = 0.0
    profit_loss: float = 0.0
    profit_loss_percentage: float = 0.0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "coin_id": self.coin_id,
            "symbol": self.symbol,
            "name": self.name,
            "quantity": self.quantity,
            "buy_price": self.buy_price,
            "buy_date": self.buy_date.isoformat() if self.buy_date else None,
            "current_price": self.current_price,
            "price_change_24h": self.price_change_24h,
            "invested_amount": self.invested_amount,
            "current_value": self.current_value,
            "profit_loss": self.profit_loss,
            "profit_loss_percentage": self.profit_loss_percentage,
        }


@dataclass
class PortfolioSummary:
    """Totals without the per-lot breakdown."""
    total_invested: float = 0.0
    current_value: float = 0.0
    profit_loss: float = 0.0
    profit_loss_percentage: float = 0.0

    def to_dict(self) -> dict:
        return {
            "total_invested": self.total_invested,
            "current_value": self.current_value,
            "profit_loss": self.profit_loss,
            "profit_loss_percentage": self.profit_loss_percentage,
        }


@dataclass
class PortfolioMetrics(PortfolioSummary):
    """Full valuation snapshot of one portfolio."""
    holdings: List[HoldingMetrics] = field(default_factory=list)
    allocation: List[AllocationEntry] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["holdings"] = [h.to_dict() for h in self.holdings]
        data["allocation"] = [a.to_dict() for a in self.allocation]
        return data


def _percentage(part: float, whole: float) -> float:
    return (part / whole) * 100 if whole > 0 else 0.0


def _finite(value: float) -> float:
    return value if math.isfinite(value) else 0.0


def value_holdings(holdings: Sequence[Holding], quotes: Dict[str, Quote]) -> PortfolioMetrics:
    """Pure valuation of lots against a quote map."""
    if not holdings:
        return PortfolioMetrics()

    total_invested = 0.0
    current_value = 0.0
    lot_metrics: List[HoldingMetrics] = []

    for holding in holdings:
        quantity = float(holding.quantity)
        buy_price = float(holding.buy_price)
        quote = quotes.get(holding.coin_id)
        current_price = _finite(quote.price) if quote else 0.0
        change_24h = _finite(quote.change_24h) if quote else 0.0

        invested = quantity * buy_price
        value = quantity * current_price
        lot_pl = value - invested

        total_invested += invested
        current_value += value

        lot_metrics.append(HoldingMetrics(
            id=holding.id,
            coin_id=holding.coin_id,
            symbol=holding.symbol,
            name=holding.name,
            quantity=quantity,
            buy_price=buy_price,
            buy_date=holding.buy_date,
            current_price=current_price,
            price_change_24h=change_24h,
            invested_amount=invested,
            current_value=value,
            profit_loss=lot_pl,
            profit_loss_percentage=_percentage(lot_pl, invested),
        ))

    allocation = aggregate_allocation(
        AllocationEntry(coin_id=m.coin_id, value=m.current_value, symbol=m.symbol, name=m.name)
        for m in lot_metrics
    )

    profit_loss = current_value - total_invested
    return PortfolioMetrics(
        total_invested=total_invested,
        current_value=current_value,
        profit_loss=profit_loss,
        profit_loss_percentage=_percentage(profit_loss, total_invested),
        holdings=lot_metrics,
        allocation=allocation,
    )


def summarize(snapshots: Iterable[PortfolioSummary]) -> PortfolioSummary:
    """Combine several portfolio valuations into one set of totals."""
    total_invested = 0.0
    current_value = 0.0
    for snapshot in snapshots:
        total_invested += snapshot.total_invested
        current_value += snapshot.current_value

    profit_loss = current_value - total_invested
    return PortfolioSummary(
        total_invested=total_invested,
        current_value=current_value,
        profit_loss=profit_loss,
        profit_loss_percentage=_percentage(profit_loss, total_invested),
    )


class PortfolioCalculator:
    """
    Values portfolios from a HoldingStore and a PriceSource.

    Read-only: the only side effect is the quote request.
    """

    def __init__(self, holdings: HoldingStore, price_source: PriceSource):
        self.holdings = holdings
        self.price_source = price_source

    async def compute_metrics(self, portfolio_id: int) -> PortfolioMetrics:
        """Full metrics snapshot for one portfolio."""
        results = await self.compute_many([portfolio_id])
        return results[portfolio_id]

    async def compute_many(self, portfolio_ids: Iterable[int]) -> Dict[int, PortfolioMetrics]:
        """
        Metrics for several portfolios with a single quote request.

        Store failures propagate; quote failures degrade to price 0.
        """
        lots_by_portfolio: Dict[int, List[Holding]] = {}
        for portfolio_id in portfolio_ids:
            lots_by_portfolio[portfolio_id] = await self.holdings.list_by_portfolio(portfolio_id)

        coin_ids = [lot.coin_id for lots in lots_by_portfolio.values() for lot in lots]
        quotes = await fetch_quotes(self.price_source, coin_ids) if coin_ids else {}

        results: Dict[int, PortfolioMetrics] = {}
        for portfolio_id, lots in lots_by_portfolio.items():
            missing = sorted({lot.coin_id for lot in lots if lot.coin_id not in quotes})
            for coin_id in missing:
                logger.warning(f"No quote for {coin_id}, valuing at 0 in portfolio {portfolio_id}")
                await metrics.quote_missing(coin_id, portfolio_id=portfolio_id)

            snapshot = value_holdings(lots, quotes)
            if lots:
                await metrics.valuation_computed(
                    portfolio_id, len(lots), snapshot.current_value, len(missing)
                )
            results[portfolio_id] = snapshot
        return results

    async def compute_user_summary(self, portfolio_ids: Iterable[int]) -> PortfolioSummary:
        """Totals across all of a user's portfolios."""
        results = await self.compute_many(portfolio_ids)
        return summarize(results.values())
