"""Vehicle catalog lookups and submission-time vehicle checks."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.vehicle import Manufacturer, VehicleModel
from services.errors import InvalidVehicle, NotFound
from services.tuning_requests import VehicleInfo

EARLIEST_PRODUCTION_YEAR = 1900


def latest_production_year() -> int:
    # next year's models are sold from autumn onwards
    return datetime.now(timezone.utc).year + 1


async def list_manufacturers(db: AsyncSession) -> List[Manufacturer]:
    result = await db.execute(select(Manufacturer).order_by(Manufacturer.name, Manufacturer.id))
    return list(result.scalars().all())


async def list_models(db: AsyncSession, manufacturer_id: int) -> List[VehicleModel]:
    """Models of one manufacturer by name; an unknown manufacturer is NotFound."""
    if await db.get(Manufacturer, manufacturer_id) is None:
        raise NotFound(f"Manufacturer {manufacturer_id} not found.")
    result = await db.execute(
        select(VehicleModel)
        .where(VehicleModel.manufacturer_id == manufacturer_id)
        .order_by(VehicleModel.name, VehicleModel.id)
    )
    return list(result.scalars().all())


async def validate_vehicle(db: AsyncSession, vehicle: VehicleInfo) -> None:
    """Raise InvalidVehicle unless the manufacturer, model and year describe a real catalog vehicle."""
    latest = latest_production_year()
    year = vehicle.production_year
    if isinstance(year, bool) or not isinstance(year, int) or not EARLIEST_PRODUCTION_YEAR <= year <= latest:
        raise InvalidVehicle(
            f"Production year must be between {EARLIEST_PRODUCTION_YEAR} and {latest}.",
            production_year=year,
        )

    if await db.get(Manufacturer, vehicle.manufacturer_id) is None:
        raise InvalidVehicle(
            f"Unknown manufacturer {vehicle.manufacturer_id}.",
            manufacturer_id=vehicle.manufacturer_id,
        )

    model = await db.get(VehicleModel, vehicle.model_id)
    if model is None or model.manufacturer_id != vehicle.manufacturer_id:
        raise InvalidVehicle(
            f"Model {vehicle.model_id} does not belong to manufacturer {vehicle.manufacturer_id}.",
            manufacturer_id=vehicle.manufacturer_id,
            model_id=vehicle.model_id,
        )
