from unittest.mock import patch

import pytest

from services.errors import InvalidVehicle, NotFound
from services.tuning_requests import VehicleInfo
from services.vehicles import latest_production_year, list_manufacturers, list_models, validate_vehicle


@pytest.mark.asyncio
async def test_manufacturers_and_models_are_listed_by_name(session_maker, vehicles):
    async with session_maker() as db:
        makers = await list_manufacturers(db)
        assert [maker.name for maker in makers] == ["BMW", "Volkswagen"]

        models = await list_models(db, vehicles["Volkswagen"])
        assert [model.name for model in models] == ["Golf", "Passat"]
        assert {model.manufacturer_id for model in models} == {vehicles["Volkswagen"]}

        with pytest.raises(NotFound):
            await list_models(db, 9999)


@pytest.mark.asyncio
async def test_catalog_vehicle_passes_validation(session_maker, vehicles):
    async with session_maker() as db:
        await validate_vehicle(
            db,
            VehicleInfo(manufacturer_id=vehicles["BMW"], model_id=vehicles["M3"], production_year=latest_production_year()),
        )


@pytest.mark.asyncio
async def test_model_of_another_manufacturer_is_rejected(session_maker, vehicles):
    async with session_maker() as db:
        with pytest.raises(InvalidVehicle) as exc_info:
            await validate_vehicle(
                db,
                VehicleInfo(manufacturer_id=vehicles["BMW"], model_id=vehicles["Golf"], production_year=2015),
            )
    assert exc_info.value.fields["model_id"] == vehicles["Golf"]
    assert exc_info.value.to_detail()["code"] == "invalid_vehicle"


@pytest.mark.asyncio
async def test_year_window_follows_the_calendar(session_maker, vehicles):
    vehicle = VehicleInfo(manufacturer_id=vehicles["BMW"], model_id=vehicles["M3"], production_year=2031)
    async with session_maker() as db:
        with patch("services.vehicles.latest_production_year", return_value=2030):
            with pytest.raises(InvalidVehicle):
                await validate_vehicle(db, vehicle)
        with patch("services.vehicles.latest_production_year", return_value=2031):
            await validate_vehicle(db, vehicle)
