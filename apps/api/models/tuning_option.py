"""TuningOption model for the priced option catalog."""

from sqlalchemy import CheckConstraint, Column, Integer, String, Text

from database import Base


class TuningOption(Base):
    """Catalog entry a tuning request can select (stage 1, DPF off, ...)."""

    __tablename__ = "tuning_options"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    credit_cost = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("credit_cost >= 0", name="ck_tuning_options_cost_non_negative"),
    )
