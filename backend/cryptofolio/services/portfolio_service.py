"""
Portfolio and holding management.

CRUD over portfolios and their lots, plus the transaction history view.
Every method commits its own unit of work.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from cryptofolio.core.config import settings
from cryptofolio.core.exceptions import InvalidInputError, NotFoundError
from cryptofolio.models.base import round_amount, to_naive_utc, utcnow
from cryptofolio.models.holding import Holding
from cryptofolio.models.portfolio import Portfolio
from cryptofolio.models.transaction import Transaction
from cryptofolio.services.stores.sql import (
    SqlHoldingStore,
    SqlPortfolioStore,
    SqlTransactionLog,
    translate_db_errors,
)

logger = logging.getLogger(__name__)


@dataclass
class TransactionHistory:
    """Newest-first transactions with realized totals."""
    transactions: List[Transaction] = field(default_factory=list)
    total_transactions: int = 0
    sell_count: int = 0
    total_realized_pl: float = 0.0


def _require_number(value: Any, label: str, allow_zero: bool) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"{label} must be a number") from None
    if not math.isfinite(number):
        raise InvalidInputError(f"{label} must be a number")
    number = round_amount(number)
    if number < 0 or (number == 0 and not allow_zero):
        bound = "zero or more" if allow_zero else "greater than zero"
        raise InvalidInputError(f"{label} must be {bound}")
    return number


class PortfolioService:
    """Portfolio/holding CRUD bound to one session."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.portfolios = SqlPortfolioStore(session)
        self.holdings = SqlHoldingStore(session)
        self.transactions = SqlTransactionLog(session)

    async def _commit(self) -> None:
        async with translate_db_errors("commit"):
            await self.session.commit()

    # ---------- Portfolios ----------

    async def create_portfolio(
        self,
        user_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Portfolio:
        portfolio = await self.portfolios.save(Portfolio(
            user_id=user_id,
            name=(name or "").strip() or settings.DEFAULT_PORTFOLIO_NAME,
            description=description,
        ))
        await self._commit()
        logger.info(f"Created portfolio {portfolio.id} for user {user_id}")
        return portfolio

    async def list_portfolios(self, user_id: str) -> List[Portfolio]:
        return await self.portfolios.list_by_user(user_id)

    async def get_portfolio(self, portfolio_id: int, user_id: Optional[str] = None) -> Portfolio:
        """Resolve a portfolio, optionally checking it belongs to `user_id`."""
        portfolio = await self.portfolios.get(portfolio_id)
        if portfolio is None or (user_id is not None and portfolio.user_id != user_id):
            raise NotFoundError("Portfolio not found")
        return portfolio

    async def update_portfolio(
        self,
        portfolio_id: int,
        user_id: Optional[str] = None,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Portfolio:
        portfolio = await self.get_portfolio(portfolio_id, user_id)
        if name is not None:
            if not name.strip():
                raise InvalidInputError("Portfolio name cannot be empty")
            portfolio.name = name.strip()
        if description is not None:
            portfolio.description = description
        await self.portfolios.save(portfolio)
        await self._commit()
        return portfolio

    async def delete_portfolio(self, portfolio_id: int, user_id: Optional[str] = None) -> None:
        """Delete a portfolio; its holdings and transactions go with it."""
        portfolio = await self.get_portfolio(portfolio_id, user_id)
        await self.portfolios.delete(portfolio)
        await self._commit()
        logger.info(f"Deleted portfolio {portfolio_id}")

    # ---------- Holdings ----------

    async def add_holding(
        self,
        portfolio_id: int,
        coin_id: str,
        symbol: str,
        name: str,
        quantity: Any,
        buy_price: Any,
        buy_date: Optional[datetime] = None,
        notes: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Holding:
        """
        Record a purchase lot.

        Buys are not written to the transaction log; only sells are.
        """
        if not coin_id or not coin_id.strip():
            raise InvalidInputError("Coin ID is required")
        qty = _require_number(quantity, "Quantity", allow_zero=False)
        price = _require_number(buy_price, "Buy price", allow_zero=True)
        portfolio = await self.get_portfolio(portfolio_id, user_id)

        holding = await self.holdings.save(Holding(
            portfolio_id=portfolio.id,
            coin_id=coin_id.strip(),
            symbol=(symbol or coin_id).strip().upper(),
            name=(name or coin_id).strip(),
            quantity=qty,
            buy_price=price,
            buy_date=to_naive_utc(buy_date) or utcnow(),
            notes=notes,
        ))
        await self._commit()
        logger.info(f"Added {qty} {holding.symbol} @ {price} to portfolio {portfolio.id}")
        return holding

    async def get_holding(self, holding_id: int, user_id: Optional[str] = None) -> Holding:
        holding = await self.holdings.get(holding_id)
        if holding is None:
            raise NotFoundError("Holding not found")
        if user_id is not None:
            await self.get_portfolio(holding.portfolio_id, user_id)
        return holding

    async def update_holding(
        self,
        holding_id: int,
        user_id: Optional[str] = None,
        quantity: Any = None,
        buy_price: Any = None,
        buy_date: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> Holding:
        """Partial update; omitted fields keep their value."""
        qty = _require_number(quantity, "Quantity", allow_zero=False) if quantity is not None else None
        price = _require_number(buy_price, "Buy price", allow_zero=True) if buy_price is not None else None

        holding = await self.get_holding(holding_id, user_id)
        if qty is not None:
            holding.quantity = qty
        if price is not None:
            holding.buy_price = price
        if buy_date is not None:
            holding.buy_date = to_naive_utc(buy_date)
        if notes is not None:
            holding.notes = notes
        await self.holdings.save(holding)
        await self._commit()
        return holding

    async def delete_holding(self, holding_id: int, user_id: Optional[str] = None) -> None:
        holding = await self.get_holding(holding_id, user_id)
        await self.holdings.delete(holding)
        await self._commit()

    # ---------- Transactions ----------

    async def get_transaction_history(
        self,
        portfolio_id: int,
        user_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> TransactionHistory:
        portfolio = await self.get_portfolio(portfolio_id, user_id)
        transactions = await self.transactions.list_by_portfolio(
            portfolio.id, limit=limit or settings.TRANSACTION_HISTORY_LIMIT
        )
        sells = [t for t in transactions if t.type == "sell"]
        return TransactionHistory(
            transactions=transactions,
            total_transactions=len(transactions),
            sell_count=len(sells),
            total_realized_pl=sum(float(t.realized_pl or 0) for t in sells),
        )
