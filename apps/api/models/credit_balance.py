"""
Materialized credit balance, a projection of the credit ledger.
"""

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class CreditBalance(Base):
    """Per-user balance row; only written together with a ledger entry."""

    __tablename__ = "credit_balances"

    user_id = Column(String, ForeignKey("users.id"), primary_key=True)
    balance = Column(Integer, nullable=False, default=0)
    last_sequence = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="credit_balance")

    __table_args__ = (
        CheckConstraint("last_sequence >= 0", name="ck_credit_balances_sequence_non_negative"),
    )

    def __repr__(self):
        return f"<CreditBalance(user_id={self.user_id}, balance={self.balance})>"
