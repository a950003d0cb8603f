# Base
from cryptofolio.models.base import TimestampMixin, IdMixin

# Portfolio
from cryptofolio.models.portfolio import Portfolio
from cryptofolio.models.holding import Holding

# Accounting
from cryptofolio.models.transaction import Transaction, TRANSACTION_TYPES

__all__ = [
    "TimestampMixin",
    "IdMixin",
    "Portfolio",
    "Holding",
    "Transaction",
    "TRANSACTION_TYPES",
]
