from cryptofolio.services.stores.base import HoldingStore, PortfolioStore, TransactionLog
from cryptofolio.services.stores.sql import (
    SqlHoldingStore,
    SqlPortfolioStore,
    SqlTransactionLog,
    translate_db_errors,
)

__all__ = [
    "HoldingStore",
    "PortfolioStore",
    "TransactionLog",
    "SqlHoldingStore",
    "SqlPortfolioStore",
    "SqlTransactionLog",
    "translate_db_errors",
]
