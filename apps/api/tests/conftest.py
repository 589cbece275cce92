import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from main import app
from database import Base
from models.credit_ledger import LedgerEntryKind
from models.tuning_option import TuningOption
from models.vehicle import Manufacturer, VehicleModel
from routers import rate_limit
from services.credits import record_entry
from services.file_storage import LocalFileStorage
from services.users import ensure_user


CATALOG = [
    ("Stage 1", "Power and torque remap", 10),
    ("DPF Off", "Diesel particulate filter removal", 5),
    ("EGR Off", "Exhaust gas recirculation disable", 3),
    ("Diagnostics", "Fault code readout", 0),
]

VEHICLES = {
    "Volkswagen": ["Golf", "Passat"],
    "BMW": ["320d", "M3"],
}


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit.reset_local_counters()
    yield
    rate_limit.reset_local_counters()
    app.state.disable_rate_limits = previous


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "ecu_portal.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker
    await engine.dispose()


@pytest.fixture
def storage(tmp_path):
    return LocalFileStorage(str(tmp_path / "uploads"))


@pytest_asyncio.fixture
async def options(session_maker):
    """Seed the option catalog and return option ids by name."""
    async with session_maker() as db:
        rows = [TuningOption(name=name, description=description, credit_cost=cost) for name, description, cost in CATALOG]
        db.add_all(rows)
        await db.commit()
        return {row.name: row.id for row in rows}


@pytest_asyncio.fixture
async def vehicles(session_maker):
    """Seed manufacturers and models; return ids by manufacturer or model name."""
    async with session_maker() as db:
        makers = {name: Manufacturer(name=name) for name in VEHICLES}
        db.add_all(makers.values())
        await db.flush()
        models = [
            VehicleModel(name=model, manufacturer_id=makers[maker].id)
            for maker, names in VEHICLES.items()
            for model in names
        ]
        db.add_all(models)
        await db.commit()
        ids = {name: maker.id for name, maker in makers.items()}
        ids.update({model.name: model.id for model in models})
        return ids


@pytest.fixture
def fund(session_maker):
    """Return a coroutine that buys ``amount`` credits for a user."""
    counter = {"n": 0}

    async def _fund(user_id: str, amount: int):
        counter["n"] += 1
        async with session_maker() as db:
            await ensure_user(db, user_id)
            return await record_entry(
                user_id,
                db,
                amount=amount,
                kind=LedgerEntryKind.PURCHASE,
                external_reference=f"test-charge-{user_id}-{counter['n']}",
            )

    return _fund
