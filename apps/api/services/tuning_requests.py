"""Tuning request storage, status state machine and queue ordering."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, FrozenSet, List, Optional, Tuple
import logging

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.tuning_request import TuningRequest, TuningRequestOption, TuningRequestStatus
from services.errors import InvalidEstimate, InvalidPriority, InvalidState, InvalidTransition, NotFound
from services.identity import Actor
from services.pricing import PriceQuote

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[TuningRequestStatus, FrozenSet[TuningRequestStatus]] = {
    TuningRequestStatus.PENDING: frozenset({TuningRequestStatus.PROCESSING, TuningRequestStatus.FAILED}),
    TuningRequestStatus.PROCESSING: frozenset({TuningRequestStatus.COMPLETED, TuningRequestStatus.FAILED}),
    TuningRequestStatus.COMPLETED: frozenset(),
    TuningRequestStatus.FAILED: frozenset(),
}
OPEN_STATUSES = (TuningRequestStatus.PENDING.value, TuningRequestStatus.PROCESSING.value)
STATUS_RANK = {
    TuningRequestStatus.PENDING.value: 0,
    TuningRequestStatus.PROCESSING.value: 1,
}


@dataclass
class VehicleInfo:
    manufacturer_id: int
    model_id: int
    production_year: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_status(value: TuningRequestStatus | str) -> TuningRequestStatus:
    try:
        return TuningRequestStatus(value)
    except ValueError as exc:
        raise InvalidState(f"Unknown tuning request status '{value}'.") from exc


def check_transition(
    current: TuningRequestStatus,
    target: TuningRequestStatus,
    message: Optional[str] = None,
    processed_file_reference: Optional[str] = None,
) -> None:
    """Raise InvalidTransition unless ``current -> target`` is allowed with the given payload."""
    if target not in ALLOWED_TRANSITIONS[current]:
        reason = "Tuning request is already finished." if current.is_terminal else None
        raise InvalidTransition(current.value, target.value, reason)
    if target == TuningRequestStatus.FAILED and not (message or "").strip():
        raise InvalidTransition(current.value, target.value, "A message for the customer is required.")
    if target == TuningRequestStatus.COMPLETED and not processed_file_reference:
        raise InvalidTransition(current.value, target.value, "A processed file is required.")


async def create_request(
    db: AsyncSession,
    *,
    request_id: str,
    user_id: str,
    vehicle: VehicleInfo,
    original_filename: str,
    original_file_reference: str,
    file_size_bytes: int,
    quote: PriceQuote,
    customer_message: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> TuningRequest:
    """Insert a pending request and its option associations (flush only)."""
    now = _utcnow()
    request = TuningRequest(
        id=request_id,
        user_id=user_id,
        manufacturer_id=vehicle.manufacturer_id,
        model_id=vehicle.model_id,
        production_year=vehicle.production_year,
        original_filename=original_filename,
        original_file_reference=original_file_reference,
        file_size_bytes=file_size_bytes,
        status=TuningRequestStatus.PENDING.value,
        priority=0,
        credits_charged=quote.total,
        customer_message=customer_message,
        idempotency_key=idempotency_key,
        created_at=now,
        updated_at=now,
    )
    db.add(request)
    await db.flush()
    db.add_all(
        [
            TuningRequestOption(request_id=request_id, option_id=option_id, credit_cost=cost)
            for option_id, cost in sorted(quote.costs.items())
        ]
    )
    await db.flush()
    return request


async def get_request(db: AsyncSession, request_id: str) -> TuningRequest:
    result = await db.execute(
        select(TuningRequest)
        .where(TuningRequest.id == request_id)
        .execution_options(populate_existing=True)
    )
    request = result.scalar_one_or_none()
    if request is None:
        raise NotFound("Tuning request not found.")
    return request


async def get_request_for_user(db: AsyncSession, actor: Actor, request_id: str) -> TuningRequest:
    """Fetch a request the actor may see; other users' requests look missing."""
    request = await get_request(db, request_id)
    if not actor.is_admin and request.user_id != actor.user_id:
        raise NotFound("Tuning request not found.")
    return request


async def find_by_idempotency_key(db: AsyncSession, user_id: str, key: str) -> Optional[TuningRequest]:
    result = await db.execute(
        select(TuningRequest)
        .where(TuningRequest.user_id == user_id, TuningRequest.idempotency_key == key)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_user_requests(
    db: AsyncSession,
    user_id: str,
    limit: int = 50,
    offset: int = 0,
) -> List[TuningRequest]:
    """A user's tuning history, newest first."""
    result = await db.execute(
        select(TuningRequest)
        .where(TuningRequest.user_id == user_id)
        .order_by(TuningRequest.created_at.desc(), TuningRequest.id)
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def transition_status(
    db: AsyncSession,
    request_id: str,
    new_status: TuningRequestStatus | str,
    message: Optional[str] = None,
    processed_file_reference: Optional[str] = None,
) -> TuningRequest:
    """Apply one state-machine step as a compare-and-set on the current status.

    A concurrent writer that changed the status first makes this call fail with
    InvalidTransition naming the status it committed.
    """
    target = _parse_status(new_status)
    request = await get_request(db, request_id)
    current = request.status_enum
    check_transition(current, target, message, processed_file_reference)

    values = {"status": target.value, "updated_at": _utcnow()}
    if message is not None:
        values["admin_message"] = message
    if processed_file_reference is not None:
        values["processed_file_reference"] = processed_file_reference

    try:
        result = await db.execute(
            update(TuningRequest)
            .where(TuningRequest.id == request_id, TuningRequest.status == current.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            latest = await get_request(db, request_id)
            logger.warning(
                "Lost status race on tuning request %s: expected %s, found %s",
                request_id,
                current.value,
                latest.status,
            )
            raise InvalidTransition(latest.status, target.value)
        await db.commit()
    except InvalidTransition:
        raise
    except Exception:
        await db.rollback()
        raise

    logger.info("Tuning request %s moved %s -> %s", request_id, current.value, target.value)
    return await get_request(db, request_id)


async def _update_open_request(db: AsyncSession, request_id: str, values: dict, what: str) -> TuningRequest:
    try:
        result = await db.execute(
            update(TuningRequest)
            .where(TuningRequest.id == request_id, TuningRequest.status.in_(OPEN_STATUSES))
            .values(updated_at=_utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            latest = await get_request(db, request_id)
            raise InvalidState(
                f"Cannot change {what} of a {latest.status} tuning request.",
                current_status=latest.status,
            )
        await db.commit()
    except (InvalidState, NotFound):
        raise
    except Exception:
        await db.rollback()
        raise
    return await get_request(db, request_id)


async def set_priority(db: AsyncSession, request_id: str, priority: int) -> TuningRequest:
    if isinstance(priority, bool) or not isinstance(priority, int) or priority < 0:
        raise InvalidPriority("Priority must be a non-negative integer.", priority=priority)
    request = await _update_open_request(db, request_id, {"priority": priority}, "the priority")
    logger.info("Tuning request %s priority set to %s", request_id, priority)
    return request


async def set_estimated_time(db: AsyncSession, request_id: str, estimated_time: str) -> TuningRequest:
    text = (estimated_time or "").strip()
    if not text:
        raise InvalidEstimate("Estimated time is required.")
    return await _update_open_request(db, request_id, {"estimated_time": text}, "the estimated time")


def queue_sort_key(request: TuningRequest) -> Tuple[int, int, datetime, str]:
    """Highest priority first, then pending before processing before the rest, then oldest first."""
    return (
        -int(request.priority or 0),
        STATUS_RANK.get(request.status, 2),
        request.created_at,
        request.id,
    )


async def iter_queue(
    db: AsyncSession,
    status: Optional[TuningRequestStatus | str] = None,
) -> AsyncIterator[TuningRequest]:
    """Yield requests in queue order from a fresh snapshot on every iteration."""
    stmt = select(TuningRequest).execution_options(populate_existing=True)
    if status is not None:
        stmt = stmt.where(TuningRequest.status == _parse_status(status).value)
    result = await db.execute(stmt)
    for request in sorted(result.scalars().all(), key=queue_sort_key):
        yield request


async def list_by_priority(
    db: AsyncSession,
    status: Optional[TuningRequestStatus | str] = None,
) -> List[TuningRequest]:
    return [request async for request in iter_queue(db, status)]


def serialize_request(request: TuningRequest) -> dict:
    return {
        "id": request.id,
        "user_id": request.user_id,
        "manufacturer_id": request.manufacturer_id,
        "model_id": request.model_id,
        "production_year": request.production_year,
        "original_filename": request.original_filename,
        "original_file_reference": request.original_file_reference,
        "file_size_bytes": request.file_size_bytes,
        "processed_file_reference": request.processed_file_reference,
        "status": request.status,
        "priority": request.priority,
        "credits_charged": request.credits_charged,
        "customer_message": request.customer_message,
        "admin_message": request.admin_message,
        "estimated_time": request.estimated_time,
        "created_at": request.created_at.isoformat() if request.created_at else None,
        "updated_at": request.updated_at.isoformat() if request.updated_at else None,
        "options": [
            {
                "id": link.option_id,
                "name": link.option.name if link.option else None,
                "credit_cost": link.credit_cost,
            }
            for link in request.options
        ],
    }
