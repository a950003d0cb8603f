from abc import ABC, abstractmethod
from typing import List, Optional

from cryptofolio.models.holding import Holding
from cryptofolio.models.portfolio import Portfolio
from cryptofolio.models.transaction import Transaction


class PortfolioStore(ABC):
    """Persistence for portfolios."""

    @abstractmethod
    async def get(self, portfolio_id: int) -> Optional[Portfolio]:
        raise NotImplementedError

    @abstractmethod
    async def list_by_user(self, user_id: str) -> List[Portfolio]:
        raise NotImplementedError

    @abstractmethod
    async def save(self, portfolio: Portfolio) -> Portfolio:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, portfolio: Portfolio) -> None:
        """Delete a portfolio together with its holdings and transactions."""
        raise NotImplementedError


class HoldingStore(ABC):
    """Persistence for holding lots."""

    @abstractmethod
    async def list_by_portfolio(self, portfolio_id: int) -> List[Holding]:
        raise NotImplementedError

    @abstractmethod
    async def get(self, holding_id: int, for_update: bool = False) -> Optional[Holding]:
        """
        Load a lot.

        `for_update` takes a row lock where the backend supports it and
        always returns the current row, never a cached copy.
        """
        raise NotImplementedError

    @abstractmethod
    async def save(self, holding: Holding) -> Holding:
        """
        Insert or update a lot.

        Updates are conditional on the version that was read; raises
        ConflictError when another writer got there first.
        """
        raise NotImplementedError

    @abstractmethod
    async def delete(self, holding: Holding) -> None:
        """Delete a lot, with the same version check as save."""
        raise NotImplementedError


class TransactionLog(ABC):
    """Append-only log of trades."""

    @abstractmethod
    async def append(self, transaction: Transaction) -> Transaction:
        raise NotImplementedError

    @abstractmethod
    async def list_by_portfolio(self, portfolio_id: int, limit: Optional[int] = None) -> List[Transaction]:
        """Newest first."""
        raise NotImplementedError
