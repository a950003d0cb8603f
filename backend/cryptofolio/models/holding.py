from sqlalchemy import Column, String, Text, Numeric, Integer, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from cryptofolio.core.database import Base
from cryptofolio.models.base import AMOUNT_SCALE, IdMixin, TimestampMixin, utcnow

class Holding(Base, IdMixin, TimestampMixin):
    """
    A single purchase lot of a coin.

    Quantity stays > 0 while the row exists; a fully sold lot is deleted.
    `version` is bumped on every UPDATE/DELETE and checked in the WHERE
    clause, so two writers working from the same read cannot both succeed.
    """
    __tablename__ = "holdings"

    portfolio_id = Column(
        Integer, ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False, index=True
    )
    coin_id = Column(String(100), nullable=False)
    symbol = Column(String(20), nullable=False)
    name = Column(String(100), nullable=False)
    quantity = Column(Numeric(28, AMOUNT_SCALE, asdecimal=False), nullable=False)
    buy_price = Column(Numeric(28, AMOUNT_SCALE, asdecimal=False), nullable=False)
    buy_date = Column(DateTime, default=utcnow, nullable=False)
    notes = Column(Text)
    version = Column(Integer, nullable=False)

    portfolio = relationship("Portfolio", back_populates="holdings")

    __mapper_args__ = {"version_id_col": version}

    @property
    def invested_amount(self) -> float:
        return float(self.quantity) * float(self.buy_price)
