"""
SQLAlchemy-backed stores.

All stores share the caller's AsyncSession: writes are flushed
immediately (so ids and version checks resolve) but only become durable
when the caller commits its unit of work.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from sqlalchemy import desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from cryptofolio.core.exceptions import ConflictError, PersistenceError
from cryptofolio.models.holding import Holding
from cryptofolio.models.portfolio import Portfolio
from cryptofolio.models.transaction import Transaction
from cryptofolio.services.stores.base import HoldingStore, PortfolioStore, TransactionLog

logger = logging.getLogger(__name__)


@asynccontextmanager
async def translate_db_errors(operation: str) -> AsyncIterator[None]:
    """Map SQLAlchemy failures onto the domain error taxonomy."""
    try:
        yield
    except StaleDataError as e:
        logger.warning(f"{operation}: concurrent modification detected")
        raise ConflictError("Holding was modified by another request, retry with fresh data") from e
    except SQLAlchemyError as e:
        logger.error(f"{operation} failed: {e}")
        raise PersistenceError(f"Database error during {operation}") from e


class SqlPortfolioStore(PortfolioStore):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, portfolio_id: int) -> Optional[Portfolio]:
        async with translate_db_errors("load portfolio"):
            return await self.session.get(Portfolio, portfolio_id)

    async def list_by_user(self, user_id: str) -> List[Portfolio]:
        async with translate_db_errors("list portfolios"):
            result = await self.session.execute(
                select(Portfolio).where(Portfolio.user_id == user_id).order_by(Portfolio.id)
            )
            return list(result.scalars().all())

    async def save(self, portfolio: Portfolio) -> Portfolio:
        async with translate_db_errors("save portfolio"):
            self.session.add(portfolio)
            await self.session.flush()
            return portfolio

    async def delete(self, portfolio: Portfolio) -> None:
        async with translate_db_errors("delete portfolio"):
            await self.session.delete(portfolio)
            await self.session.flush()


class SqlHoldingStore(HoldingStore):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_by_portfolio(self, portfolio_id: int) -> List[Holding]:
        async with translate_db_errors("list holdings"):
            result = await self.session.execute(
                select(Holding).where(Holding.portfolio_id == portfolio_id).order_by(Holding.id)
            )
            return list(result.scalars().all())

    async def get(self, holding_id: int, for_update: bool = False) -> Optional[Holding]:
        async with translate_db_errors("load holding"):
            query = select(Holding).where(Holding.id == holding_id)
            if for_update:
                # Overwrite any copy already in the identity map with the locked row
                query = query.with_for_update().execution_options(populate_existing=True)
            result = await self.session.execute(query)
            return result.scalar_one_or_none()

    async def save(self, holding: Holding) -> Holding:
        async with translate_db_errors("save holding"):
            self.session.add(holding)
            await self.session.flush()
            return holding

    async def delete(self, holding: Holding) -> None:
        async with translate_db_errors("delete holding"):
            await self.session.delete(holding)
            await self.session.flush()


class SqlTransactionLog(TransactionLog):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, transaction: Transaction) -> Transaction:
        async with translate_db_errors("append transaction"):
            self.session.add(transaction)
            await self.session.flush()
            return transaction

    async def list_by_portfolio(self, portfolio_id: int, limit: Optional[int] = None) -> List[Transaction]:
        async with translate_db_errors("list transactions"):
            query = (
                select(Transaction)
                .where(Transaction.portfolio_id == portfolio_id)
                .order_by(desc(Transaction.transaction_date), desc(Transaction.id))
            )
            if limit:
                query = query.limit(limit)
            result = await self.session.execute(query)
            return list(result.scalars().all())
