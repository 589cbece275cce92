"""Credit ledger and balance accounting helpers.

The ledger (``credit_ledger``) is the source of truth. ``credit_balances`` holds
one row per user with the running balance and the last ledger sequence number;
it is only ever changed by :func:`append_entry`, in the same transaction as the
ledger insert that explains the change.

The balance row is the per-user serialization point. The balance check and the
write are one conditional ``UPDATE ... RETURNING`` statement, so two concurrent
debits for the same user cannot both pass a check that only one of them could
satisfy, and rows of other users are never locked.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional, Tuple
import logging
import uuid

from sqlalchemy import func, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_balance import CreditBalance
from models.credit_ledger import CreditLedger, LedgerEntryKind
from services.errors import DuplicateCharge, InsufficientBalance, InvalidAmount, NotFound

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def get_balance(user_id: str, db: AsyncSession) -> int:
    """Return the materialized balance, or raise NotFound when the user has no balance row."""
    result = await db.execute(select(CreditBalance.balance).where(CreditBalance.user_id == user_id))
    balance = result.scalar_one_or_none()
    if balance is None:
        raise NotFound(f"No credit balance recorded for user {user_id}.")
    return int(balance)


async def get_balance_or_zero(user_id: str, db: AsyncSession) -> int:
    try:
        return await get_balance(user_id, db)
    except NotFound:
        return 0


def validate_entry(amount: int, kind: LedgerEntryKind | str, reason: Optional[str]) -> LedgerEntryKind:
    """Check sign and reason rules for a ledger entry and return its kind."""
    try:
        entry_kind = LedgerEntryKind(kind)
    except ValueError as exc:
        raise InvalidAmount(f"Unknown ledger entry kind '{kind}'.") from exc

    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount("Credit amounts must be whole numbers.")
    if entry_kind == LedgerEntryKind.PURCHASE and amount <= 0:
        raise InvalidAmount("Purchase entries must be positive.")
    if entry_kind == LedgerEntryKind.USAGE and amount >= 0:
        raise InvalidAmount("Usage entries must be negative.")
    if entry_kind == LedgerEntryKind.ADJUSTMENT:
        if not (reason or "").strip():
            raise InvalidAmount("Adjustments require a reason.")
        if amount == 0:
            raise InvalidAmount("Adjustments must change the balance.")
    return entry_kind


async def _ensure_balance_row(user_id: str, db: AsyncSession) -> None:
    values = {"user_id": user_id, "balance": 0, "last_sequence": 0, "updated_at": _utcnow()}
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = pg_insert(CreditBalance).values(**values).on_conflict_do_nothing(index_elements=["user_id"])
    elif dialect == "sqlite":
        stmt = sqlite_insert(CreditBalance).values(**values).on_conflict_do_nothing(index_elements=["user_id"])
    else:
        existing = await db.execute(select(CreditBalance.user_id).where(CreditBalance.user_id == user_id))
        if existing.scalar_one_or_none() is None:
            db.add(CreditBalance(**values))
            await db.flush()
        return
    await db.execute(stmt)


async def _apply_delta(
    user_id: str,
    db: AsyncSession,
    amount: int,
    balance_checked: bool,
) -> Optional[Tuple[int, int]]:
    """Move the balance by ``amount`` and bump the sequence; None when the check fails."""
    stmt = (
        update(CreditBalance)
        .where(CreditBalance.user_id == user_id)
        .values(
            balance=CreditBalance.balance + amount,
            last_sequence=CreditBalance.last_sequence + 1,
            updated_at=_utcnow(),
        )
        .returning(CreditBalance.balance, CreditBalance.last_sequence)
        .execution_options(synchronize_session=False)
    )
    if balance_checked:
        stmt = stmt.where(CreditBalance.balance + amount >= 0)
    row = (await db.execute(stmt)).first()
    if row is None:
        return None
    return int(row[0]), int(row[1])


async def append_entry(
    user_id: str,
    db: AsyncSession,
    *,
    amount: int,
    kind: LedgerEntryKind | str,
    reason: Optional[str] = None,
    external_reference: Optional[str] = None,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    balance_checked: Optional[bool] = None,
) -> CreditLedger:
    """Append a ledger entry and update the balance inside the caller's transaction.

    Flushes but never commits, so the append can be one step of a larger unit
    of work; the caller commits or rolls back. Usage entries are always
    balance-checked; purchases and adjustments only when asked.
    """
    entry_kind = validate_entry(amount, kind, reason)
    checked = True if entry_kind == LedgerEntryKind.USAGE else bool(balance_checked)

    if external_reference:
        existing = await db.execute(
            select(CreditLedger.id).where(CreditLedger.external_reference == external_reference)
        )
        if existing.scalar_one_or_none():
            logger.warning("Rejected duplicate charge %s for user %s", external_reference, user_id)
            raise DuplicateCharge(external_reference)

    if not checked or amount > 0:
        await _ensure_balance_row(user_id, db)

    applied = await _apply_delta(user_id, db, amount, checked)
    if applied is None:
        available = await get_balance_or_zero(user_id, db)
        logger.warning(
            "Insufficient balance for user %s: required=%s available=%s", user_id, -amount, available
        )
        raise InsufficientBalance(required=-amount, available=available)
    balance_after, sequence = applied

    entry = CreditLedger(
        id=str(uuid.uuid4()),
        user_id=user_id,
        sequence=sequence,
        kind=entry_kind.value,
        amount=amount,
        balance_after=balance_after,
        reason=reason,
        external_reference=external_reference,
        reference_type=reference_type,
        reference_id=reference_id,
        created_at=_utcnow(),
    )
    db.add(entry)
    try:
        await db.flush()
    except IntegrityError as exc:
        if external_reference:
            raise DuplicateCharge(external_reference) from exc
        raise

    logger.info(
        "Ledger entry %s for user %s: kind=%s amount=%s balance_after=%s",
        sequence,
        user_id,
        entry_kind.value,
        amount,
        balance_after,
    )
    return entry


async def record_entry(user_id: str, db: AsyncSession, **kwargs) -> CreditLedger:
    """Append a ledger entry as its own committed unit of work."""
    try:
        entry = await append_entry(user_id, db, **kwargs)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return entry


async def list_entries(
    user_id: str,
    db: AsyncSession,
    limit: int = 50,
    offset: int = 0,
) -> List[CreditLedger]:
    """List a user's ledger entries, newest first."""
    result = await db.execute(
        select(CreditLedger)
        .where(CreditLedger.user_id == user_id)
        .order_by(CreditLedger.sequence.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def list_all_entries(
    db: AsyncSession,
    *,
    kind: Optional[LedgerEntryKind | str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[CreditLedger]:
    """List ledger entries across users with optional kind and date filters."""
    stmt = select(CreditLedger)
    if kind:
        try:
            entry_kind = LedgerEntryKind(kind)
        except ValueError as exc:
            raise InvalidAmount(f"Unknown ledger entry kind '{kind}'.") from exc
        stmt = stmt.where(CreditLedger.kind == entry_kind.value)
    if start:
        stmt = stmt.where(CreditLedger.created_at >= start)
    if end:
        stmt = stmt.where(CreditLedger.created_at <= end)
    result = await db.execute(
        stmt.order_by(CreditLedger.created_at.desc(), CreditLedger.id).limit(limit).offset(offset)
    )
    return list(result.scalars().all())


async def ledger_sum(user_id: str, db: AsyncSession) -> int:
    """Sum of all ledger amounts for a user; equals the materialized balance."""
    result = await db.execute(
        select(func.coalesce(func.sum(CreditLedger.amount), 0)).where(CreditLedger.user_id == user_id)
    )
    return int(result.scalar() or 0)


def serialize_entry(entry: CreditLedger) -> dict:
    return {
        "id": entry.id,
        "user_id": entry.user_id,
        "sequence": entry.sequence,
        "kind": entry.kind,
        "amount": entry.amount,
        "balance_after": entry.balance_after,
        "reason": entry.reason,
        "external_reference": entry.external_reference,
        "reference_type": entry.reference_type,
        "reference_id": entry.reference_id,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
