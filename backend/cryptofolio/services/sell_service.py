"""
Sell/Disposal Processor.

Reduces or removes a holding lot and records the realized outcome in the
transaction log, as one database transaction:

    cost_basis  = buy_price * quantity
    sale_value  = price * quantity
    realized_pl = sale_value - cost_basis

Price resolution order: explicit positive price, then the market quote,
then the lot's own buy price (so a sale always completes).

The market quote is fetched with no row lock or connection held; the lot
is then re-read FOR UPDATE and validated again before it is written.
Quantities are rounded to the scale the amount columns store.
"""
import logging
import math
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from cryptofolio.core.exceptions import ConflictError, InvalidInputError, NotFoundError
from cryptofolio.core.metrics import metrics
from cryptofolio.models.base import round_amount, utcnow
from cryptofolio.models.holding import Holding
from cryptofolio.models.transaction import Transaction
from cryptofolio.services.pricing import PriceSource, fetch_quotes
from cryptofolio.services.stores.base import HoldingStore, PortfolioStore, TransactionLog
from cryptofolio.services.stores.sql import (
    SqlHoldingStore,
    SqlPortfolioStore,
    SqlTransactionLog,
    translate_db_errors,
)

logger = logging.getLogger(__name__)

PRICE_EXPLICIT = "explicit"
PRICE_MARKET = "market"
PRICE_BUY_FALLBACK = "buy_price"


@dataclass
class SellResult:
    """Outcome of a sell call."""
    transaction: Transaction
    remaining_quantity: float
    realized_pl: float
    message: str
    price_source: str

    @property
    def fully_sold(self) -> bool:
        return self.remaining_quantity <= 0


def format_quantity(value: float) -> str:
    """Shortest round-tripping text for a quantity, without a trailing '.0'."""
    text = repr(float(value))
    return text[:-2] if text.endswith(".0") else text


def parse_quantity(value: Any) -> float:
    """Coerce a requested sell quantity; must be finite and > 0 at stored scale."""
    try:
        quantity = float(value)
    except (TypeError, ValueError):
        raise InvalidInputError("Please provide a valid quantity to sell") from None
    if not math.isfinite(quantity):
        raise InvalidInputError("Please provide a valid quantity to sell")
    quantity = round_amount(quantity)
    if quantity <= 0:
        raise InvalidInputError("Please provide a valid quantity to sell")
    return quantity


class SellService:
    """
    Executes sells as one unit of work on `session`.

    Stores default to the SQL implementations bound to the same session.
    """

    def __init__(
        self,
        session: AsyncSession,
        price_source: PriceSource,
        portfolios: Optional[PortfolioStore] = None,
        holdings: Optional[HoldingStore] = None,
        transactions: Optional[TransactionLog] = None,
    ):
        self.session = session
        self.price_source = price_source
        self.portfolios = portfolios or SqlPortfolioStore(session)
        self.holdings = holdings or SqlHoldingStore(session)
        self.transactions = transactions or SqlTransactionLog(session)

    async def sell(
        self,
        portfolio_id: int,
        holding_id: int,
        quantity: Any,
        price: Optional[float] = None,
        notes: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> SellResult:
        """
        Sell some or all of a lot.

        When `user_id` is given the portfolio must belong to that user.

        Raises NotFoundError / InvalidInputError before anything is written,
        ConflictError if the lot changed underneath us, PersistenceError on
        store failure. Any failure rolls the whole sell back.
        """
        try:
            result = await self._execute(portfolio_id, holding_id, quantity, price, notes, user_id)
            async with translate_db_errors("commit sell"):
                await self.session.commit()
        except (NotFoundError, InvalidInputError, ConflictError) as e:
            await self.session.rollback()
            await metrics.sell_rejected(portfolio_id, type(e).__name__)
            raise
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            f"Portfolio {portfolio_id}: {result.message} @ {result.transaction.price} "
            f"({result.price_source}), realized P&L {result.realized_pl:.2f}"
        )
        await metrics.sell_executed(
            portfolio_id,
            result.transaction.coin_id,
            float(result.transaction.quantity),
            float(result.transaction.price),
            result.realized_pl,
            result.price_source,
        )
        return result

    async def _execute(
        self,
        portfolio_id: int,
        holding_id: int,
        quantity: Any,
        price: Optional[float],
        notes: Optional[str],
        user_id: Optional[str],
    ) -> SellResult:
        sell_quantity = parse_quantity(quantity)

        portfolio = await self.portfolios.get(portfolio_id)
        if portfolio is None or (user_id is not None and portfolio.user_id != user_id):
            raise NotFoundError("Portfolio not found")
        portfolio_id = portfolio.id

        holding = await self._load_lot(portfolio_id, holding_id)
        _check_available(holding, sell_quantity)
        coin_id = holding.coin_id
        fallback_price = float(holding.buy_price)

        # Nothing is staged yet; end the read so no connection is held
        # across the external quote request
        await self.session.rollback()
        resolved_price, price_source = await self._resolve_price(coin_id, fallback_price, price)

        holding = await self._load_lot(portfolio_id, holding_id, for_update=True)
        lot_quantity = _check_available(holding, sell_quantity)
        buy_price = float(holding.buy_price)

        cost_basis = buy_price * sell_quantity
        sale_value = resolved_price * sell_quantity
        realized_pl = sale_value - cost_basis
        symbol = holding.symbol

        transaction = await self.transactions.append(Transaction(
            portfolio_id=portfolio_id,
            holding_id=holding.id,
            coin_id=holding.coin_id,
            symbol=symbol,
            name=holding.name,
            type="sell",
            quantity=sell_quantity,
            price=resolved_price,
            total_value=sale_value,
            realized_pl=realized_pl,
            avg_buy_price=buy_price,
            notes=notes or f"Sold {format_quantity(sell_quantity)} {symbol}",
            transaction_date=utcnow(),
        ))

        remaining = round_amount(lot_quantity - sell_quantity)
        if remaining <= 0:
            await self.holdings.delete(holding)
            remaining = 0.0
            message = f"Sold all {format_quantity(sell_quantity)} {symbol}"
        else:
            holding.quantity = remaining
            await self.holdings.save(holding)
            message = (
                f"Sold {format_quantity(sell_quantity)} {symbol}. "
                f"Remaining: {format_quantity(remaining)}"
            )

        return SellResult(
            transaction=transaction,
            remaining_quantity=remaining,
            realized_pl=realized_pl,
            message=message,
            price_source=price_source,
        )

    async def _load_lot(self, portfolio_id: int, holding_id: int, for_update: bool = False) -> Holding:
        holding = await self.holdings.get(holding_id, for_update=for_update)
        if holding is None or holding.portfolio_id != portfolio_id:
            raise NotFoundError("Holding not found")
        return holding

    async def _resolve_price(
        self, coin_id: str, fallback_price: float, price: Optional[float]
    ) -> tuple[float, str]:
        explicit = _positive_or_none(price)
        if explicit is not None:
            return explicit, PRICE_EXPLICIT
        if price is not None:
            logger.info(f"Ignoring non-positive sell price {price!r}, using market price")

        quotes = await fetch_quotes(self.price_source, [coin_id])
        quote = quotes.get(coin_id)
        market = _positive_or_none(quote.price) if quote else None
        if market is not None:
            return market, PRICE_MARKET

        logger.warning(f"No market price for {coin_id}, selling at buy price")
        return fallback_price, PRICE_BUY_FALLBACK


def _check_available(holding: Holding, sell_quantity: float) -> float:
    lot_quantity = round_amount(holding.quantity)
    if sell_quantity > lot_quantity:
        raise InvalidInputError(
            f"Cannot sell more than you own. Current quantity: {format_quantity(lot_quantity)}"
        )
    return lot_quantity


def _positive_or_none(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number
