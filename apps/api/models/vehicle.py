"""Vehicle catalog models: manufacturers and their models."""

from sqlalchemy import Column, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base


class Manufacturer(Base):
    __tablename__ = "manufacturers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)

    models = relationship("VehicleModel", back_populates="manufacturer", order_by="VehicleModel.name")


class VehicleModel(Base):
    """A model line; it belongs to exactly one manufacturer."""

    __tablename__ = "vehicle_models"

    id = Column(Integer, primary_key=True, autoincrement=True)
    manufacturer_id = Column(Integer, ForeignKey("manufacturers.id"), nullable=False, index=True)
    name = Column(String, nullable=False)

    manufacturer = relationship("Manufacturer", back_populates="models")

    __table_args__ = (
        UniqueConstraint("manufacturer_id", "name", name="uq_vehicle_models_manufacturer_name"),
    )
