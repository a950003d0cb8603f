"""
Shared fixtures: a throwaway SQLite database per test, fixed-map price
sources and a seeding helper.
"""

import asyncio
import os

# Must be set before cryptofolio.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("PRICE_CACHE_ENABLED", "false")

from datetime import datetime
from typing import Dict, List, Optional

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cryptofolio.core.database import create_engine_from_settings, init_db
from cryptofolio.core.exceptions import UpstreamUnavailableError
from cryptofolio.core.metrics import metrics
from cryptofolio.models import Holding, Portfolio, Transaction
from cryptofolio.services.pricing import PriceSource, Quote


class StaticPriceSource(PriceSource):
    """Returns quotes from a fixed map and records every request."""

    def __init__(self, quotes: Optional[Dict[str, Quote]] = None):
        self.quotes = quotes or {}
        self.calls: List[List[str]] = []

    async def get_quotes(self, coin_ids: List[str]) -> Dict[str, Quote]:
        self.calls.append(list(coin_ids))
        return {c: self.quotes[c] for c in coin_ids if c in self.quotes}


class FailingPriceSource(PriceSource):
    def __init__(self):
        self.calls = 0

    async def get_quotes(self, coin_ids: List[str]) -> Dict[str, Quote]:
        self.calls += 1
        raise UpstreamUnavailableError("Price source request failed")


class SlowPriceSource(PriceSource):
    async def get_quotes(self, coin_ids: List[str]) -> Dict[str, Quote]:
        await asyncio.sleep(5)
        return {c: Quote(price=1.0) for c in coin_ids}


class Seeder:
    """Inserts rows and hands back plain ids (safe to use after rollbacks)."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def portfolio(self, user_id: str = "alice", name: str = "Main") -> int:
        async with self.session_factory() as session:
            portfolio = Portfolio(user_id=user_id, name=name)
            session.add(portfolio)
            await session.commit()
            return portfolio.id

    async def holding(
        self,
        portfolio_id: int,
        coin_id: str = "bitcoin",
        quantity: float = 1.0,
        buy_price: float = 100.0,
        symbol: Optional[str] = None,
    ) -> int:
        async with self.session_factory() as session:
            holding = Holding(
                portfolio_id=portfolio_id,
                coin_id=coin_id,
                symbol=symbol or coin_id[:3].upper(),
                name=coin_id.title(),
                quantity=quantity,
                buy_price=buy_price,
                buy_date=datetime(2024, 1, 15),
            )
            session.add(holding)
            await session.commit()
            return holding.id

    async def get_holding(self, holding_id: int) -> Optional[Holding]:
        async with self.session_factory() as session:
            return await session.get(Holding, holding_id)

    async def transactions(self, portfolio_id: int) -> List[Transaction]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Transaction).where(Transaction.portfolio_id == portfolio_id).order_by(Transaction.id)
            )
            return list(result.scalars().all())


@pytest.fixture(autouse=True)
def clear_metrics():
    metrics.clear_buffer()
    yield
    metrics.clear_buffer()


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine_from_settings(f"sqlite+aiosqlite:///{tmp_path / 'cryptofolio.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


@pytest.fixture
def price_source() -> StaticPriceSource:
    return StaticPriceSource({
        "bitcoin": Quote(price=50000.0, change_24h=2.5),
        "ethereum": Quote(price=3000.0, change_24h=-1.25),
    })
