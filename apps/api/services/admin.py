"""Administrative operations on balances and tuning requests.

Every function checks the admin role first, before looking anything up, so a
rejected caller learns nothing about whether the target exists.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from models.credit_ledger import CreditLedger, LedgerEntryKind
from models.tuning_request import TuningRequest, TuningRequestStatus
from services import tuning_requests
from services.credits import list_all_entries, record_entry
from services.errors import InvalidTransition
from services.file_storage import LocalFileStorage, UploadedFile, validate_upload
from services.identity import Actor, ensure_admin
from services.users import require_user

logger = logging.getLogger(__name__)


async def adjust_credits(
    db: AsyncSession,
    actor: Actor,
    user_id: str,
    amount: int,
    reason: str,
) -> CreditLedger:
    """Append an adjustment entry; the reason is stored verbatim for audit."""
    ensure_admin(actor)
    await require_user(db, user_id)
    entry = await record_entry(
        user_id,
        db,
        amount=amount,
        kind=LedgerEntryKind.ADJUSTMENT,
        reason=reason,
        reference_type="admin",
        reference_id=actor.user_id,
    )
    logger.info("Admin %s adjusted user %s by %s: %s", actor.user_id, user_id, amount, reason)
    return entry


async def set_priority(db: AsyncSession, actor: Actor, request_id: str, priority: int) -> TuningRequest:
    ensure_admin(actor)
    return await tuning_requests.set_priority(db, request_id, priority)


async def set_estimated_time(
    db: AsyncSession,
    actor: Actor,
    request_id: str,
    estimated_time: str,
) -> TuningRequest:
    ensure_admin(actor)
    return await tuning_requests.set_estimated_time(db, request_id, estimated_time)


async def transition_status(
    db: AsyncSession,
    actor: Actor,
    request_id: str,
    new_status: TuningRequestStatus | str,
    message: Optional[str] = None,
    processed_file_reference: Optional[str] = None,
) -> TuningRequest:
    ensure_admin(actor)
    return await tuning_requests.transition_status(
        db,
        request_id,
        new_status,
        message=message,
        processed_file_reference=processed_file_reference,
    )


async def attach_processed_file(
    db: AsyncSession,
    storage: LocalFileStorage,
    actor: Actor,
    request_id: str,
    upload: UploadedFile,
    message: Optional[str] = None,
) -> TuningRequest:
    """Store the tuned file and complete the request with it."""
    ensure_admin(actor)
    validate_upload(upload)
    request = await tuning_requests.get_request(db, request_id)
    current = request.status_enum
    if TuningRequestStatus.COMPLETED not in tuning_requests.ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(current.value, TuningRequestStatus.COMPLETED.value)

    reference = storage.save(request.user_id, upload.data, prefix="processed_")
    try:
        return await tuning_requests.transition_status(
            db,
            request_id,
            TuningRequestStatus.COMPLETED,
            message=message,
            processed_file_reference=reference,
        )
    except Exception:
        storage.delete(reference)
        raise


async def list_by_priority(
    db: AsyncSession,
    actor: Actor,
    status: Optional[TuningRequestStatus | str] = None,
) -> List[TuningRequest]:
    ensure_admin(actor)
    return await tuning_requests.list_by_priority(db, status)


async def list_ledger(
    db: AsyncSession,
    actor: Actor,
    kind: Optional[LedgerEntryKind | str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[CreditLedger]:
    ensure_admin(actor)
    return await list_all_entries(db, kind=kind, start=start, end=end, limit=limit, offset=offset)
