import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from models.credit_ledger import CreditLedger
from models.tuning_request import TuningRequest, TuningRequestOption
from models.user import User
from services.credits import get_balance, ledger_sum
from services.errors import (
    InsufficientCredits,
    InvalidSelection,
    InvalidUpload,
    InvalidVehicle,
    StorageFailure,
    UnknownOption,
)
from services.file_storage import UploadedFile
from services.identity import Actor
from services.submission import USAGE_REFERENCE_TYPE, submit_tuning_request
from services.tuning_requests import VehicleInfo


USER_ID = "submitting-user"


@pytest.fixture
def vehicle(vehicles):
    return VehicleInfo(manufacturer_id=vehicles["Volkswagen"], model_id=vehicles["Golf"], production_year=2017)


def _upload(name="stock.bin", size=256):
    return UploadedFile(filename=name, data=b"\x7f" * size, content_type="application/octet-stream")


def _stored_files(storage):
    if not storage.root.exists():
        return []
    return [path for path in storage.root.rglob("*") if path.is_file()]


async def _count(db, model, *criteria):
    result = await db.execute(select(func.count()).select_from(model).where(*criteria))
    return int(result.scalar() or 0)


@pytest.mark.asyncio
async def test_submission_debits_exactly_the_option_total(session_maker, storage, options, fund, vehicle):
    await fund(USER_ID, 30)
    selection = [options["Stage 1"], options["DPF Off"], options["Diagnostics"]]

    async with session_maker() as db:
        result = await submit_tuning_request(
            db,
            storage,
            Actor(USER_ID),
            _upload(),
            vehicle,
            selection,
            customer_message="Please keep speed limiter",
        )

    request = result.request
    assert request.status == "pending"
    assert request.credits_charged == 15
    assert request.original_filename == "stock.bin"
    assert request.file_size_bytes == 256
    assert request.customer_message == "Please keep speed limiter"
    assert result.remaining_balance == 15
    assert result.replayed is False
    assert {link.option_id: link.credit_cost for link in request.options} == {
        options["Stage 1"]: 10,
        options["DPF Off"]: 5,
        options["Diagnostics"]: 0,
    }
    assert storage.read(result.file_reference) == b"\x7f" * 256

    async with session_maker() as db:
        usage = (
            await db.execute(
                select(CreditLedger).where(
                    CreditLedger.reference_type == USAGE_REFERENCE_TYPE,
                    CreditLedger.reference_id == request.id,
                )
            )
        ).scalars().all()
        assert len(usage) == 1
        assert usage[0].amount == -request.credits_charged
        assert usage[0].kind == "usage"
        assert await get_balance(USER_ID, db) == 15
        assert await ledger_sum(USER_ID, db) == 15


@pytest.mark.asyncio
async def test_insufficient_credits_leaves_nothing_behind(session_maker, storage, options, fund, vehicle):
    await fund(USER_ID, 9)

    async with session_maker() as db:
        with pytest.raises(InsufficientCredits) as exc_info:
            await submit_tuning_request(db, storage, Actor(USER_ID), _upload(), vehicle, [options["Stage 1"]])

    assert exc_info.value.required == 10
    assert exc_info.value.available == 9
    assert exc_info.value.status_code == 402
    assert _stored_files(storage) == []

    async with session_maker() as db:
        assert await get_balance(USER_ID, db) == 9
        assert await _count(db, TuningRequest) == 0
        assert await _count(db, CreditLedger, CreditLedger.kind == "usage") == 0


@pytest.mark.asyncio
async def test_concurrent_submissions_never_overdraw(session_maker, storage, options, fund, vehicle):
    await fund(USER_ID, 10)

    async def _submit():
        async with session_maker() as db:
            try:
                return await submit_tuning_request(
                    db, storage, Actor(USER_ID), _upload(), vehicle, [options["Stage 1"]]
                )
            except InsufficientCredits as exc:
                return exc

    outcomes = await asyncio.gather(_submit(), _submit())

    failures = [outcome for outcome in outcomes if isinstance(outcome, InsufficientCredits)]
    successes = [outcome for outcome in outcomes if not isinstance(outcome, InsufficientCredits)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert failures[0].available == 0

    async with session_maker() as db:
        assert await get_balance(USER_ID, db) == 0
        assert await ledger_sum(USER_ID, db) == 0
        assert await _count(db, TuningRequest) == 1
    assert len(_stored_files(storage)) == 1


@pytest.mark.asyncio
async def test_failure_after_debit_rolls_everything_back(session_maker, storage, options, fund, vehicle):
    await fund(USER_ID, 20)
    failing_insert = AsyncMock(side_effect=OperationalError("INSERT INTO tuning_requests", {}, Exception("disk I/O error")))

    with patch("services.submission.create_request", failing_insert):
        async with session_maker() as db:
            with pytest.raises(StorageFailure):
                await submit_tuning_request(db, storage, Actor(USER_ID), _upload(), vehicle, [options["Stage 1"]])

    assert failing_insert.await_count == 1
    assert _stored_files(storage) == []
    async with session_maker() as db:
        assert await get_balance(USER_ID, db) == 20
        assert await _count(db, CreditLedger, CreditLedger.kind == "usage") == 0
        assert await _count(db, TuningRequest) == 0
        assert await _count(db, TuningRequestOption) == 0


@pytest.mark.asyncio
async def test_cancelled_submission_rolls_back(session_maker, storage, options, fund, vehicle):
    await fund(USER_ID, 20)

    with patch("services.submission.create_request", AsyncMock(side_effect=asyncio.CancelledError())):
        async with session_maker() as db:
            with pytest.raises(asyncio.CancelledError):
                await submit_tuning_request(db, storage, Actor(USER_ID), _upload(), vehicle, [options["Stage 1"]])

    assert _stored_files(storage) == []
    async with session_maker() as db:
        assert await get_balance(USER_ID, db) == 20


@pytest.mark.asyncio
async def test_repeated_idempotency_key_charges_once(session_maker, storage, options, fund, vehicle):
    await fund(USER_ID, 30)

    async with session_maker() as db:
        first = await submit_tuning_request(
            db, storage, Actor(USER_ID), _upload(), vehicle, [options["Stage 1"]], idempotency_key="retry-1"
        )
    async with session_maker() as db:
        second = await submit_tuning_request(
            db, storage, Actor(USER_ID), _upload(), vehicle, [options["Stage 1"]], idempotency_key="retry-1"
        )

    assert second.replayed is True
    assert second.request.id == first.request.id
    assert second.file_reference == first.file_reference
    assert second.remaining_balance == 20

    async with session_maker() as db:
        assert await get_balance(USER_ID, db) == 20
        assert await _count(db, TuningRequest) == 1
    assert len(_stored_files(storage)) == 1


@pytest.mark.asyncio
async def test_same_key_from_different_users_is_independent(session_maker, storage, options, fund, vehicle):
    await fund("user-one", 10)
    await fund("user-two", 10)

    async with session_maker() as db:
        one = await submit_tuning_request(
            db, storage, Actor("user-one"), _upload(), vehicle, [options["Stage 1"]], idempotency_key="k"
        )
    async with session_maker() as db:
        two = await submit_tuning_request(
            db, storage, Actor("user-two"), _upload(), vehicle, [options["Stage 1"]], idempotency_key="k"
        )

    assert one.request.id != two.request.id
    assert two.replayed is False


@pytest.mark.asyncio
async def test_invalid_selection_and_upload_are_rejected_before_any_write(session_maker, storage, options, fund, vehicle):
    await fund(USER_ID, 30)

    async with session_maker() as db:
        with pytest.raises(UnknownOption):
            await submit_tuning_request(db, storage, Actor(USER_ID), _upload(), vehicle, [options["Stage 1"], 999])
        with pytest.raises(InvalidUpload):
            await submit_tuning_request(db, storage, Actor(USER_ID), _upload("stock.hex"), vehicle, [options["Stage 1"]])
        with pytest.raises(InvalidUpload):
            await submit_tuning_request(db, storage, Actor(USER_ID), _upload(size=0), vehicle, [options["Stage 1"]])

    assert _stored_files(storage) == []
    async with session_maker() as db:
        assert await get_balance(USER_ID, db) == 30
        assert await _count(db, TuningRequest) == 0


@pytest.mark.asyncio
async def test_oversized_upload_is_rejected(session_maker, storage, options, fund, vehicle):
    await fund(USER_ID, 30)

    with patch("services.file_storage.settings.MAX_UPLOAD_BYTES", 100):
        async with session_maker() as db:
            with pytest.raises(InvalidUpload):
                await submit_tuning_request(db, storage, Actor(USER_ID), _upload(size=101), vehicle, [options["Stage 1"]])


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "maker, model, year",
    [
        ("Volkswagen", "M3", 2017),
        ("unknown", "Golf", 2017),
        ("Volkswagen", "unknown", 2017),
        ("Volkswagen", "Golf", 1899),
        ("Volkswagen", "Golf", 2999),
    ],
)
async def test_implausible_vehicle_is_rejected_before_any_write(
    session_maker, storage, options, fund, vehicles, maker, model, year
):
    await fund(USER_ID, 30)
    vehicle = VehicleInfo(
        manufacturer_id=vehicles.get(maker, 9999),
        model_id=vehicles.get(model, 9999),
        production_year=year,
    )

    async with session_maker() as db:
        with pytest.raises(InvalidVehicle) as exc_info:
            await submit_tuning_request(db, storage, Actor(USER_ID), _upload(), vehicle, [options["Stage 1"]])
    assert isinstance(exc_info.value, InvalidSelection)
    assert exc_info.value.status_code == 422

    assert _stored_files(storage) == []
    async with session_maker() as db:
        assert await get_balance(USER_ID, db) == 30
        assert await _count(db, TuningRequest) == 0


@pytest.mark.asyncio
async def test_unfunded_new_submitter_is_refused_and_not_persisted(session_maker, storage, options, vehicle):
    async with session_maker() as db:
        with pytest.raises(InsufficientCredits) as exc_info:
            await submit_tuning_request(db, storage, Actor("first-timer"), _upload(), vehicle, [options["Stage 1"]])
    assert exc_info.value.available == 0

    async with session_maker() as db:
        assert await _count(db, User, User.id == "first-timer") == 0
