from sqlalchemy import CheckConstraint, Column, String, Text, Numeric, Integer, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from cryptofolio.core.database import Base
from cryptofolio.models.base import AMOUNT_SCALE, IdMixin, utcnow

TRANSACTION_TYPES = ("buy", "sell")


class Transaction(Base, IdMixin):
    """
    Append-only trade record.

    For sells, `realized_pl` and `avg_buy_price` snapshot the lot's buy
    price at the time of disposal. `holding_id` is not a foreign key: the
    lot it points at is deleted once fully sold.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_portfolio_date", "portfolio_id", "transaction_date"),
        Index("ix_transactions_portfolio_coin", "portfolio_id", "coin_id"),
        CheckConstraint(
            "type IN (" + ", ".join(f"'{t}'" for t in TRANSACTION_TYPES) + ")",
            name="ck_transactions_type",
        ),
    )

    portfolio_id = Column(
        Integer, ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False
    )
    holding_id = Column(Integer)
    coin_id = Column(String(100), nullable=False)
    symbol = Column(String(20), nullable=False)
    name = Column(String(100), nullable=False)
    type = Column(String(10), nullable=False)
    quantity = Column(Numeric(28, AMOUNT_SCALE, asdecimal=False), nullable=False)
    price = Column(Numeric(28, AMOUNT_SCALE, asdecimal=False), nullable=False)
    total_value = Column(Numeric(28, AMOUNT_SCALE, asdecimal=False), nullable=False)
    realized_pl = Column(Numeric(28, AMOUNT_SCALE, asdecimal=False), default=0, nullable=False)
    avg_buy_price = Column(Numeric(28, AMOUNT_SCALE, asdecimal=False), default=0, nullable=False)
    notes = Column(Text)
    transaction_date = Column(DateTime, default=utcnow, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    portfolio = relationship("Portfolio", back_populates="transactions")
