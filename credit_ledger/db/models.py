"""SQLAlchemy ORM models."""
from datetime import datetime, timezone

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from credit_ledger.infrastructure.database.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Wallet(Base):
    __tablename__ = "wallets"
    __table_args__ = (CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),)

    user_id = Column(String(64), primary_key=True)
    balance = Column(Integer, nullable=False, default=0)
    purchased_credits = Column(Integer, nullable=False, default=0)
    bonus_credits = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime(timezone=True))
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    transactions = relationship("CreditTransaction", back_populates="wallet")


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("wallets.user_id"), nullable=False, index=True)
    type = Column(String(20), nullable=False)  # purchase, usage, bonus, refund, expiration
    amount = Column(Integer, nullable=False)
    source = Column(String(20), nullable=False, default="wallet")  # wallet, subscription
    description = Column(String(255))
    reference_id = Column(String(255), index=True)
    meta = Column("metadata", JSON, nullable=False, default=dict)
    idempotency_key = Column(String(400), unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    wallet = relationship("Wallet", back_populates="transactions")
