"""Tuning option pricing."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.tuning_option import TuningOption
from services.errors import EmptySelection, UnknownOption, ZeroCostSelection


@dataclass
class PriceQuote:
    total: int
    costs: Dict[int, int] = field(default_factory=dict)

    @property
    def option_ids(self) -> List[int]:
        return sorted(self.costs)


async def list_tuning_options(db: AsyncSession) -> List[TuningOption]:
    result = await db.execute(select(TuningOption).order_by(TuningOption.name, TuningOption.id))
    return list(result.scalars().all())


async def price_options(db: AsyncSession, option_ids: Iterable[int]) -> PriceQuote:
    """Resolve the credit cost of a set of tuning options.

    Duplicate IDs collapse. Read-only, so it is safe to call outside any
    transaction.
    """
    requested = {int(option_id) for option_id in option_ids}
    if not requested:
        raise EmptySelection()

    result = await db.execute(
        select(TuningOption.id, TuningOption.credit_cost).where(TuningOption.id.in_(requested))
    )
    costs = {int(row.id): int(row.credit_cost) for row in result.all()}

    missing = requested - set(costs)
    if missing:
        raise UnknownOption(missing)

    total = sum(costs.values())
    if total <= 0:
        # a request must carry a real usage debit
        raise ZeroCostSelection()
    return PriceQuote(total=total, costs=costs)
