"""Administrator endpoints for credits and the tuning queue."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.tuning_request import TuningRequestStatus
from routers.auth_scope import AuthContext, require_admin
from routers.uploads import read_upload
from services import admin
from services.credits import get_balance_or_zero, serialize_entry
from services.file_storage import LocalFileStorage, get_file_storage
from services.tuning_requests import serialize_request

router = APIRouter()
logger = logging.getLogger(__name__)


class CreditAdjustmentRequest(BaseModel):
    amount: int
    reason: str = Field(min_length=1, max_length=500)


class StatusUpdateRequest(BaseModel):
    status: TuningRequestStatus
    message: Optional[str] = Field(default=None, max_length=2000)


class PriorityUpdateRequest(BaseModel):
    priority: int


class EstimatedTimeRequest(BaseModel):
    estimated_time: str = Field(min_length=1, max_length=50)


def _day_start(value: Optional[date]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _day_end(value: Optional[date]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.combine(value, time.max, tzinfo=timezone.utc)


@router.get("/credits")
async def ledger_entries(
    kind: Optional[str] = Query(default=None),
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    auth: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    entries = await admin.list_ledger(
        db,
        auth.actor,
        kind=kind,
        start=_day_start(start_date),
        end=_day_end(end_date),
        limit=limit,
        offset=offset,
    )
    return [serialize_entry(entry) for entry in entries]


@router.post("/users/{user_id}/credits")
async def adjust_user_credits(
    user_id: str,
    request: CreditAdjustmentRequest,
    auth: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    entry = await admin.adjust_credits(db, auth.actor, user_id, request.amount, request.reason)
    return {
        "entry": serialize_entry(entry),
        "balance": await get_balance_or_zero(user_id, db),
    }


@router.get("/tuning-requests")
async def tuning_queue(
    status: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Open work first: highest priority, then pending before processing, then oldest."""
    requests = await admin.list_by_priority(db, auth.actor, status)
    return [serialize_request(request) for request in requests]


@router.put("/tuning-requests/{request_id}/status")
async def update_status(
    request_id: str,
    request: StatusUpdateRequest,
    auth: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    updated = await admin.transition_status(db, auth.actor, request_id, request.status, message=request.message)
    return serialize_request(updated)


@router.put("/tuning-requests/{request_id}/priority")
async def update_priority(
    request_id: str,
    request: PriorityUpdateRequest,
    auth: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    updated = await admin.set_priority(db, auth.actor, request_id, request.priority)
    return serialize_request(updated)


@router.put("/tuning-requests/{request_id}/time")
async def update_estimated_time(
    request_id: str,
    request: EstimatedTimeRequest,
    auth: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    updated = await admin.set_estimated_time(db, auth.actor, request_id, request.estimated_time)
    return serialize_request(updated)


@router.post("/tuning-requests/{request_id}/upload")
async def upload_processed_file(
    request_id: str,
    file: UploadFile = File(...),
    message: Optional[str] = Form(default=None, max_length=2000),
    auth: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    storage: LocalFileStorage = Depends(get_file_storage),
):
    upload = await read_upload(file)
    updated = await admin.attach_processed_file(db, storage, auth.actor, request_id, upload, message=message)
    return serialize_request(updated)
