"""
Portfolio API Router.
"""
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel, Field

from cryptofolio.core.database import get_db
from cryptofolio.services.portfolio_calculator import PortfolioCalculator
from cryptofolio.services.portfolio_service import PortfolioService
from cryptofolio.services.pricing import PriceSource, get_price_source
from cryptofolio.services.sell_service import SellService
from cryptofolio.services.stores import SqlHoldingStore

router = APIRouter()

# ---------- Pydantic Schemas ----------

class PortfolioCreate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class PortfolioUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class PortfolioSchema(BaseModel):
    id: int
    user_id: str
    name: str
    description: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class HoldingCreate(BaseModel):
    coin_id: str
    symbol: str
    name: str
    quantity: float
    buy_price: float
    buy_date: Optional[datetime] = None
    notes: Optional[str] = None


class HoldingUpdate(BaseModel):
    quantity: Optional[float] = None
    buy_price: Optional[float] = None
    buy_date: Optional[datetime] = None
    notes: Optional[str] = None


class HoldingSchema(BaseModel):
    id: int
    portfolio_id: int
    coin_id: str
    symbol: str
    name: str
    quantity: float
    buy_price: float
    buy_date: datetime
    notes: Optional[str]
    invested_amount: float

    class Config:
        from_attributes = True


class HoldingMetricsSchema(BaseModel):
    id: int
    coin_id: str
    symbol: str
    name: str
    quantity: float
    buy_price: float
    buy_date: Optional[datetime]
    current_price: float
    price_change_24h: float
    invested_amount: float
    current_value: float
    profit_loss: float
    profit_loss_percentage: float

    class Config:
        from_attributes = True


class AllocationSchema(BaseModel):
    coin_id: str
    symbol: str
    name: str
    value: float
    percentage: float

    class Config:
        from_attributes = True


class SummarySchema(BaseModel):
    total_invested: float
    current_value: float
    profit_loss: float
    profit_loss_percentage: float

    class Config:
        from_attributes = True


class PortfolioMetricsSchema(SummarySchema):
    id: int
    name: str
    description: Optional[str]
    created_at: datetime
    holdings: list[HoldingMetricsSchema] = []
    allocation: list[AllocationSchema] = []


class TransactionSchema(BaseModel):
    id: int
    portfolio_id: int
    holding_id: Optional[int]
    coin_id: str
    symbol: str
    name: str
    type: str
    quantity: float
    price: float
    total_value: float
    realized_pl: float
    avg_buy_price: float
    notes: Optional[str]
    transaction_date: datetime

    class Config:
        from_attributes = True


class TransactionSummarySchema(BaseModel):
    total_transactions: int
    sell_count: int
    total_realized_pl: float


class TransactionHistorySchema(BaseModel):
    transactions: list[TransactionSchema]
    summary: TransactionSummarySchema


class SellRequest(BaseModel):
    quantity: float = Field(description="Units to sell, must not exceed the lot")
    sell_price: Optional[float] = Field(default=None, description="Execution price; market price when omitted")
    notes: Optional[str] = None


class SellResponse(BaseModel):
    transaction: TransactionSchema
    remaining_quantity: float
    realized_pl: float
    message: str
    price_source: str


class MessageResponse(BaseModel):
    message: str


def _with_metrics(portfolio, snapshot) -> PortfolioMetricsSchema:
    return PortfolioMetricsSchema(
        id=portfolio.id,
        name=portfolio.name,
        description=portfolio.description,
        created_at=portfolio.created_at,
        total_invested=snapshot.total_invested,
        current_value=snapshot.current_value,
        profit_loss=snapshot.profit_loss,
        profit_loss_percentage=snapshot.profit_loss_percentage,
        holdings=[HoldingMetricsSchema.model_validate(h) for h in snapshot.holdings],
        allocation=[AllocationSchema.model_validate(a) for a in snapshot.allocation],
    )


# ---------- Endpoints ----------

@router.get("", response_model=list[PortfolioMetricsSchema])
async def list_portfolios(
    user_id: str = "default",
    db: AsyncSession = Depends(get_db),
    price_source: PriceSource = Depends(get_price_source),
):
    """Get all portfolios for a user, each with its metrics."""
    portfolios = await PortfolioService(db).list_portfolios(user_id)
    calculator = PortfolioCalculator(SqlHoldingStore(db), price_source)
    snapshots = await calculator.compute_many([p.id for p in portfolios])
    return [_with_metrics(p, snapshots[p.id]) for p in portfolios]


@router.post("", response_model=PortfolioSchema, status_code=201)
async def create_portfolio(
    body: PortfolioCreate,
    user_id: str = "default",
    db: AsyncSession = Depends(get_db),
):
    """Create a new portfolio."""
    return await PortfolioService(db).create_portfolio(user_id, body.name, body.description)


@router.get("/summary/all", response_model=SummarySchema)
async def get_user_summary(
    user_id: str = "default",
    db: AsyncSession = Depends(get_db),
    price_source: PriceSource = Depends(get_price_source),
):
    """Totals across all of a user's portfolios."""
    portfolios = await PortfolioService(db).list_portfolios(user_id)
    calculator = PortfolioCalculator(SqlHoldingStore(db), price_source)
    summary = await calculator.compute_user_summary([p.id for p in portfolios])
    return SummarySchema.model_validate(summary)


@router.get("/{portfolio_id}", response_model=PortfolioMetricsSchema)
async def get_portfolio(
    portfolio_id: int,
    user_id: str = "default",
    db: AsyncSession = Depends(get_db),
    price_source: PriceSource = Depends(get_price_source),
):
    """Get a single portfolio with full metrics."""
    portfolio = await PortfolioService(db).get_portfolio(portfolio_id, user_id)
    calculator = PortfolioCalculator(SqlHoldingStore(db), price_source)
    snapshot = await calculator.compute_metrics(portfolio.id)
    return _with_metrics(portfolio, snapshot)


@router.put("/{portfolio_id}", response_model=PortfolioSchema)
async def update_portfolio(
    portfolio_id: int,
    body: PortfolioUpdate,
    user_id: str = "default",
    db: AsyncSession = Depends(get_db),
):
    return await PortfolioService(db).update_portfolio(
        portfolio_id, user_id, name=body.name, description=body.description
    )


@router.delete("/{portfolio_id}", response_model=MessageResponse)
async def delete_portfolio(
    portfolio_id: int,
    user_id: str = "default",
    db: AsyncSession = Depends(get_db),
):
    """Delete a portfolio and all of its holdings."""
    await PortfolioService(db).delete_portfolio(portfolio_id, user_id)
    return MessageResponse(message="Portfolio deleted")


@router.post("/{portfolio_id}/holdings", response_model=HoldingSchema, status_code=201)
async def add_holding(
    portfolio_id: int,
    body: HoldingCreate,
    user_id: str = "default",
    db: AsyncSession = Depends(get_db),
):
    """Add a purchase lot to a portfolio."""
    return await PortfolioService(db).add_holding(
        portfolio_id,
        coin_id=body.coin_id,
        symbol=body.symbol,
        name=body.name,
        quantity=body.quantity,
        buy_price=body.buy_price,
        buy_date=body.buy_date,
        notes=body.notes,
        user_id=user_id,
    )


@router.put("/holdings/{holding_id}", response_model=HoldingSchema)
async def update_holding(
    holding_id: int,
    body: HoldingUpdate,
    user_id: str = "default",
    db: AsyncSession = Depends(get_db),
):
    return await PortfolioService(db).update_holding(
        holding_id,
        user_id,
        quantity=body.quantity,
        buy_price=body.buy_price,
        buy_date=body.buy_date,
        notes=body.notes,
    )


@router.delete("/holdings/{holding_id}", response_model=MessageResponse)
async def delete_holding(
    holding_id: int,
    user_id: str = "default",
    db: AsyncSession = Depends(get_db),
):
    await PortfolioService(db).delete_holding(holding_id, user_id)
    return MessageResponse(message="Holding deleted")


@router.post("/{portfolio_id}/holdings/{holding_id}/sell", response_model=SellResponse)
async def sell_holding(
    portfolio_id: int,
    holding_id: int,
    body: SellRequest,
    user_id: str = "default",
    db: AsyncSession = Depends(get_db),
    price_source: PriceSource = Depends(get_price_source),
):
    """Sell some or all of a holding."""
    result = await SellService(db, price_source).sell(
        portfolio_id,
        holding_id,
        body.quantity,
        price=body.sell_price,
        notes=body.notes,
        user_id=user_id,
    )
    return SellResponse(
        transaction=TransactionSchema.model_validate(result.transaction),
        remaining_quantity=result.remaining_quantity,
        realized_pl=result.realized_pl,
        message=result.message,
        price_source=result.price_source,
    )


@router.get("/{portfolio_id}/transactions", response_model=TransactionHistorySchema)
async def get_transactions(
    portfolio_id: int,
    user_id: str = "default",
    limit: int = Query(default=100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Transaction history, newest first, with realized P&L totals."""
    history = await PortfolioService(db).get_transaction_history(portfolio_id, user_id, limit=limit)
    return TransactionHistorySchema(
        transactions=[TransactionSchema.model_validate(t) for t in history.transactions],
        summary=TransactionSummarySchema(
            total_transactions=history.total_transactions,
            sell_count=history.sell_count,
            total_realized_pl=history.total_realized_pl,
        ),
    )
