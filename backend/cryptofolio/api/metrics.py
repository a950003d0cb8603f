"""
Observability endpoints over the in-process metrics buffer.
"""
from typing import Any, Dict, List, Literal, Optional
from fastapi import APIRouter, Query
from pydantic import BaseModel

from cryptofolio.core.metrics import metrics

router = APIRouter()


class MetricsSummarySchema(BaseModel):
    period_hours: int
    total_events: int
    by_category: Dict[str, int]
    by_event: Dict[str, int]
    valuations: int
    quotes_missing: int
    price_source_degraded: int
    sells_executed: int
    sells_rejected: int
    realized_pl: float


class MetricEventSchema(BaseModel):
    timestamp: str
    category: str
    event_type: str
    coin_id: Optional[str]
    portfolio_id: Optional[int]
    value: float
    metadata: Dict[str, Any]


@router.get("/summary", response_model=MetricsSummarySchema)
async def get_metrics_summary(hours: int = Query(default=24, ge=1, le=168)):
    """Event counts and realized P&L over the last `hours`."""
    return MetricsSummarySchema(**metrics.get_summary(hours=hours))


@router.get("/recent", response_model=List[MetricEventSchema])
async def get_recent_metrics(
    category: Optional[Literal["valuation", "pricing", "sell"]] = None,
    limit: int = Query(default=100, ge=1, le=1000),
):
    """Newest events first."""
    return [
        MetricEventSchema(**event.to_dict())
        for event in metrics.get_recent_events(category=category, limit=limit)
    ]
