"""Submission of a tuning request: store, price, debit and persist as one unit of work."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional
import logging
import uuid

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models.credit_ledger import LedgerEntryKind
from models.tuning_request import TuningRequest
from services.credits import append_entry, get_balance_or_zero
from services.errors import InsufficientBalance, InsufficientCredits, StorageFailure
from services.file_storage import LocalFileStorage, UploadedFile, validate_upload
from services.identity import Actor
from services.pricing import price_options
from services.tuning_requests import VehicleInfo, create_request, find_by_idempotency_key, get_request
from services.users import ensure_user
from services.vehicles import validate_vehicle

logger = logging.getLogger(__name__)

USAGE_REFERENCE_TYPE = "tuning_request"


@dataclass
class SubmissionResult:
    request: TuningRequest
    file_reference: str
    remaining_balance: int
    replayed: bool = False


async def _replay(db: AsyncSession, existing: TuningRequest) -> SubmissionResult:
    logger.info("Replaying submission %s for idempotency key %s", existing.id, existing.idempotency_key)
    return SubmissionResult(
        request=existing,
        file_reference=existing.original_file_reference,
        remaining_balance=await get_balance_or_zero(existing.user_id, db),
        replayed=True,
    )


async def submit_tuning_request(
    db: AsyncSession,
    storage: LocalFileStorage,
    actor: Actor,
    upload: UploadedFile,
    vehicle: VehicleInfo,
    option_ids: Iterable[int],
    customer_message: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> SubmissionResult:
    """Create a pending tuning request and debit its price atomically.

    Either the request row, its option associations and its usage ledger entry
    all commit together, or none of them exist afterwards. A repeated
    ``idempotency_key`` for the same user returns the earlier submission
    without charging again.
    """
    user_id = actor.user_id
    if idempotency_key:
        existing = await find_by_idempotency_key(db, user_id, idempotency_key)
        if existing is not None:
            return await _replay(db, existing)

    filename = validate_upload(upload)
    await validate_vehicle(db, vehicle)
    quote = await price_options(db, option_ids)
    file_reference = storage.save(user_id, upload.data)

    request_id = str(uuid.uuid4())
    try:
        await ensure_user(db, user_id, role=actor.role.value)
        try:
            usage = await append_entry(
                user_id,
                db,
                amount=-quote.total,
                kind=LedgerEntryKind.USAGE,
                reason=f"Tuning request {request_id}",
                reference_type=USAGE_REFERENCE_TYPE,
                reference_id=request_id,
            )
        except InsufficientBalance as exc:
            raise InsufficientCredits(required=exc.required, available=exc.available) from exc
        await create_request(
            db,
            request_id=request_id,
            user_id=user_id,
            vehicle=vehicle,
            original_filename=filename,
            original_file_reference=file_reference,
            file_size_bytes=upload.size,
            quote=quote,
            customer_message=customer_message,
            idempotency_key=idempotency_key,
        )
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        storage.delete(file_reference)
        if idempotency_key:
            existing = await find_by_idempotency_key(db, user_id, idempotency_key)
            if existing is not None:
                return await _replay(db, existing)
        logger.error("Submission for user %s failed on commit: %s", user_id, exc)
        raise StorageFailure("The tuning request could not be recorded.") from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        storage.delete(file_reference)
        logger.error("Submission for user %s failed on commit: %s", user_id, exc)
        raise StorageFailure("The tuning request could not be recorded.") from exc
    except BaseException:
        await db.rollback()
        storage.delete(file_reference)
        raise

    logger.info(
        "User %s submitted tuning request %s for %s credits (balance %s)",
        user_id,
        request_id,
        quote.total,
        usage.balance_after,
    )
    return SubmissionResult(
        request=await get_request(db, request_id),
        file_reference=file_reference,
        remaining_balance=usage.balance_after,
    )
