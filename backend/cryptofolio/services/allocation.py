"""
Allocation aggregation.

Groups per-lot values by coin and expresses each coin as a share of
the portfolio's current value.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List


@dataclass
class AllocationEntry:
    """Per-coin share of portfolio value."""
    coin_id: str
    value: float
    percentage: float = 0.0
    symbol: str = ""
    name: str = ""

    def to_dict(self) -> dict:
        return {
            "coin_id": self.coin_id,
            "symbol": self.symbol,
            "name": self.name,
            "value": self.value,
            "percentage": self.percentage,
        }


def aggregate_allocation(entries: Iterable[AllocationEntry]) -> List[AllocationEntry]:
    """
    Sum values of entries sharing a coin id and recompute percentages.

    Percentages are against the grand total of all entries (0 when the
    total is 0). Result is ordered by value, largest first; equal values
    keep first-seen order.
    """
    grouped: Dict[str, AllocationEntry] = {}
    total_value = 0.0

    for entry in entries:
        group = grouped.get(entry.coin_id)
        if group is None:
            group = AllocationEntry(
                coin_id=entry.coin_id,
                value=0.0,
                symbol=entry.symbol,
                name=entry.name,
            )
            grouped[entry.coin_id] = group
        group.value += entry.value
        total_value += entry.value

    for group in grouped.values():
        group.percentage = (group.value / total_value) * 100 if total_value > 0 else 0.0

    return sorted(grouped.values(), key=lambda g: g.value, reverse=True)
