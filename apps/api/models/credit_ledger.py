"""CreditLedger model: the append-only record of credit-affecting events."""

import enum
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class LedgerEntryKind(str, enum.Enum):
    """Credit ledger entry kinds."""
    PURCHASE = "purchase"  # Confirmed external charge, always positive
    USAGE = "usage"  # Credits spent on a tuning request, always negative
    ADJUSTMENT = "adjustment"  # Administrator correction, either sign, reason required


class CreditLedger(Base):
    """Immutable credit ledger entry."""

    __tablename__ = "credit_ledger"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    kind = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    reason = Column(String, nullable=True)
    external_reference = Column(String, nullable=True, unique=True)
    reference_type = Column(String, nullable=True)
    reference_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    user = relationship("User", back_populates="credit_entries")

    __table_args__ = (
        UniqueConstraint("user_id", "sequence", name="uq_credit_ledger_user_sequence"),
        Index("ix_credit_ledger_reference", "reference_type", "reference_id"),
        Index("ix_credit_ledger_kind_created", "kind", "created_at"),
    )

    def __repr__(self):
        return f"<CreditLedger(user_id={self.user_id}, seq={self.sequence}, kind={self.kind}, amount={self.amount})>"
