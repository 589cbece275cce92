"""TuningRequest model: one submitted ECU file and its processing lifecycle."""

import enum
import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class TuningRequestStatus(str, enum.Enum):
    """Tuning request lifecycle states."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TuningRequestStatus.COMPLETED, TuningRequestStatus.FAILED)


class TuningRequest(Base):
    """Uploaded ECU file plus the options that were paid for."""

    __tablename__ = "tuning_requests"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)

    # Vehicle
    manufacturer_id = Column(Integer, ForeignKey("manufacturers.id"), nullable=False)
    model_id = Column(Integer, ForeignKey("vehicle_models.id"), nullable=False)
    production_year = Column(Integer, nullable=False)

    # Files
    original_filename = Column(String, nullable=False)
    original_file_reference = Column(String, nullable=False)
    file_size_bytes = Column(Integer, nullable=True)
    processed_file_reference = Column(String, nullable=True)

    # Lifecycle
    status = Column(String, nullable=False, default=TuningRequestStatus.PENDING.value, index=True)
    priority = Column(Integer, nullable=False, default=0)
    credits_charged = Column(Integer, nullable=False)
    customer_message = Column(Text, nullable=True)
    admin_message = Column(Text, nullable=True)
    estimated_time = Column(String, nullable=True)
    idempotency_key = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    user = relationship("User", back_populates="tuning_requests")
    options = relationship(
        "TuningRequestOption",
        back_populates="tuning_request",
        order_by="TuningRequestOption.option_id",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("user_id", "idempotency_key", name="uq_tuning_requests_user_idempotency_key"),
        Index("ix_tuning_requests_status_priority", "status", "priority"),
        CheckConstraint("priority >= 0", name="ck_tuning_requests_priority_non_negative"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_tuning_requests_status",
        ),
    )

    @property
    def status_enum(self) -> TuningRequestStatus:
        return TuningRequestStatus(self.status)


class TuningRequestOption(Base):
    """Option selected at submission time, with the cost that was charged for it."""

    __tablename__ = "tuning_request_options"

    request_id = Column(String, ForeignKey("tuning_requests.id"), primary_key=True)
    option_id = Column(Integer, ForeignKey("tuning_options.id"), primary_key=True)
    credit_cost = Column(Integer, nullable=False)

    tuning_request = relationship("TuningRequest", back_populates="options")
    option = relationship("TuningOption", lazy="joined")
