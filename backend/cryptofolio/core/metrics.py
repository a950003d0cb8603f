"""
Metrics emission system for observability.

Provides structured metrics for:
- Portfolio valuations (lot counts, quote gaps)
- Price source degradation (timeouts, upstream errors)
- Sell executions and rejections

Metrics are emitted to:
1. Python logging (immediate visibility)
2. Redis stream (when a client is attached)
3. In-memory buffer (API aggregation)
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List

from cryptofolio.core.redis import StreamNames

logger = logging.getLogger(__name__)


@dataclass
class MetricEvent:
    """Structured metric event."""
    timestamp: datetime
    category: str          # "valuation", "pricing", "sell"
    event_type: str        # "valuation_computed", "quote_missing", etc.
    coin_id: Optional[str]
    portfolio_id: Optional[int]
    value: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "category": self.category,
            "event_type": self.event_type,
            "coin_id": self.coin_id,
            "portfolio_id": self.portfolio_id,
            "value": self.value,
            "metadata": self.metadata
        }


class MetricsEmitter:
    """
    Emit structured metrics to multiple destinations.

    Redis publishing is best effort; failures are logged and dropped.
    """

    CATEGORY_VALUATION = "valuation"
    CATEGORY_PRICING = "pricing"
    CATEGORY_SELL = "sell"

    def __init__(self, redis_client=None, buffer_size: int = 1000):
        self.redis = redis_client
        self.buffer_size = buffer_size
        self._buffer: List[MetricEvent] = []
        self._enabled = True

    def set_redis(self, redis_client) -> None:
        """Set Redis client (for lazy initialization)."""
        self.redis = redis_client

    def disable(self) -> None:
        """Disable metrics emission (for testing)."""
        self._enabled = False

    async def emit(
        self,
        category: str,
        event_type: str,
        value: float,
        coin_id: Optional[str] = None,
        portfolio_id: Optional[int] = None,
        metadata: Optional[dict] = None
    ) -> Optional[MetricEvent]:
        """
        Emit a metric event.

        Args:
            category: Event category (valuation, pricing, sell)
            event_type: Specific event type within category
            value: Numeric value (1.0/0.0 for boolean, actual value for numeric)
            coin_id: Optional coin identifier
            portfolio_id: Optional portfolio identifier
            metadata: Additional context as key-value pairs

        Returns:
            The emitted MetricEvent, or None when disabled
        """
        if not self._enabled:
            return None

        event = MetricEvent(
            timestamp=datetime.now(timezone.utc),
            category=category,
            event_type=event_type,
            coin_id=coin_id,
            portfolio_id=portfolio_id,
            value=value,
            metadata=metadata or {}
        )

        meta_str = f" {metadata}" if metadata else ""
        logger.info(
            f"METRIC [{category}/{event_type}] "
            f"coin={coin_id} portfolio={portfolio_id} value={value}{meta_str}"
        )

        self._buffer.append(event)
        if len(self._buffer) > self.buffer_size:
            self._buffer = self._buffer[-self.buffer_size:]

        if self.redis:
            try:
                await self.redis.xadd(StreamNames.METRICS, {
                    "data": json.dumps(event.to_dict())
                })
            except Exception as e:
                logger.warning(f"Failed to publish metric to Redis: {e}")

        return event

    # =========================================================================
    # Convenience methods
    # =========================================================================

    async def valuation_computed(self, portfolio_id: int, lot_count: int,
                                 current_value: float, missing_quotes: int) -> Optional[MetricEvent]:
        return await self.emit(
            self.CATEGORY_VALUATION, "valuation_computed", current_value,
            portfolio_id=portfolio_id,
            metadata={"lots": lot_count, "missing_quotes": missing_quotes}
        )

    async def quote_missing(self, coin_id: str, portfolio_id: Optional[int] = None) -> Optional[MetricEvent]:
        return await self.emit(
            self.CATEGORY_PRICING, "quote_missing", 1.0,
            coin_id=coin_id, portfolio_id=portfolio_id
        )

    async def price_source_degraded(self, coin_count: int, reason: str) -> Optional[MetricEvent]:
        return await self.emit(
            self.CATEGORY_PRICING, "price_source_degraded", float(coin_count),
            metadata={"reason": reason}
        )

    async def sell_executed(self, portfolio_id: int, coin_id: str, quantity: float,
                            price: float, realized_pl: float, price_source: str) -> Optional[MetricEvent]:
        return await self.emit(
            self.CATEGORY_SELL, "sell_executed", realized_pl,
            coin_id=coin_id, portfolio_id=portfolio_id,
            metadata={
                "quantity": quantity,
                "price": price,
                "price_source": price_source,
            }
        )

    async def sell_rejected(self, portfolio_id: int, reason: str,
                            coin_id: Optional[str] = None) -> Optional[MetricEvent]:
        return await self.emit(
            self.CATEGORY_SELL, "sell_rejected", 1.0,
            coin_id=coin_id, portfolio_id=portfolio_id,
            metadata={"reason": reason}
        )

    # =========================================================================
    # Aggregation methods
    # =========================================================================

    def get_buffer(self) -> List[MetricEvent]:
        """Get buffered events (for API)."""
        return list(self._buffer)

    def get_recent_events(self, category: Optional[str] = None, limit: int = 100) -> List[MetricEvent]:
        """Most recent events first, optionally filtered by category."""
        events = [e for e in self._buffer if category is None or e.category == category]
        return list(reversed(events))[:limit]

    def get_summary(self, hours: int = 24) -> dict:
        """Aggregated counts of recent metrics."""
        cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
        recent = [e for e in self._buffer if e.timestamp >= cutoff]

        by_category: Dict[str, int] = {}
        by_event: Dict[str, int] = {}
        realized_pl = 0.0

        for event in recent:
            by_category[event.category] = by_category.get(event.category, 0) + 1
            key = f"{event.category}/{event.event_type}"
            by_event[key] = by_event.get(key, 0) + 1
            if key == "sell/sell_executed":
                realized_pl += event.value

        return {
            "period_hours": hours,
            "total_events": len(recent),
            "by_category": by_category,
            "by_event": by_event,
            "valuations": by_event.get("valuation/valuation_computed", 0),
            "quotes_missing": by_event.get("pricing/quote_missing", 0),
            "price_source_degraded": by_event.get("pricing/price_source_degraded", 0),
            "sells_executed": by_event.get("sell/sell_executed", 0),
            "sells_rejected": by_event.get("sell/sell_rejected", 0),
            "realized_pl": realized_pl,
        }

    def clear_buffer(self) -> int:
        """Clear buffer and return count of cleared events."""
        count = len(self._buffer)
        self._buffer = []
        return count


# Global singleton instance
metrics = MetricsEmitter()
