from sqlalchemy import Column, String, Text
from sqlalchemy.orm import relationship
from cryptofolio.core.database import Base
from cryptofolio.models.base import IdMixin, TimestampMixin

class Portfolio(Base, IdMixin, TimestampMixin):
    """
    A named collection of holdings owned by one user.
    Deleting a portfolio deletes its holdings and transactions.
    """
    __tablename__ = "portfolios"

    user_id = Column(String(64), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text)

    holdings = relationship(
        "Holding",
        back_populates="portfolio",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    transactions = relationship(
        "Transaction",
        back_populates="portfolio",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
