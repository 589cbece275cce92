"""Customer-facing tuning request endpoints."""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Header, Query, UploadFile
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.rate_limit import rate_limit
from routers.uploads import read_upload
from services.errors import NotFound
from services.file_storage import LocalFileStorage, get_file_storage
from services.pricing import list_tuning_options
from services.submission import submit_tuning_request
from services.tuning_requests import (
    VehicleInfo,
    get_request_for_user,
    list_user_requests,
    serialize_request,
)
from services.vehicles import list_manufacturers, list_models

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/options")
async def tuning_options(db: AsyncSession = Depends(get_db)):
    options = await list_tuning_options(db)
    return [
        {
            "id": option.id,
            "name": option.name,
            "description": option.description,
            "credit_cost": option.credit_cost,
        }
        for option in options
    ]


@router.get("/manufacturers")
async def manufacturers(db: AsyncSession = Depends(get_db)):
    return [{"id": manufacturer.id, "name": manufacturer.name} for manufacturer in await list_manufacturers(db)]


@router.get("/models")
async def vehicle_models(
    manufacturer_id: int = Query(...),
    db: AsyncSession = Depends(get_db),
):
    models = await list_models(db, manufacturer_id)
    return [
        {"id": model.id, "name": model.name, "manufacturer_id": model.manufacturer_id}
        for model in models
    ]


@router.post("/requests", status_code=201)
async def create_tuning_request(
    file: UploadFile = File(...),
    manufacturer_id: int = Form(...),
    model_id: int = Form(...),
    production_year: int = Form(...),
    tuning_options: List[int] = Form(...),
    message: Optional[str] = Form(default=None, max_length=2000),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key", max_length=255),
    _rate_limit: None = Depends(rate_limit("tuning_submit", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    storage: LocalFileStorage = Depends(get_file_storage),
):
    """Upload an ECU file and pay for the selected tuning options."""
    upload = await read_upload(file)
    result = await submit_tuning_request(
        db,
        storage,
        auth.actor,
        upload,
        VehicleInfo(manufacturer_id=manufacturer_id, model_id=model_id, production_year=production_year),
        tuning_options,
        customer_message=(message or "").strip() or None,
        idempotency_key=(idempotency_key or "").strip() or None,
    )
    return {
        "request_id": result.request.id,
        "credits_charged": result.request.credits_charged,
        "remaining_balance": result.remaining_balance,
        "replayed": result.replayed,
        "request": serialize_request(result.request),
    }


@router.get("/requests")
async def my_tuning_requests(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    requests = await list_user_requests(db, auth.user_id, limit=limit, offset=offset)
    return [serialize_request(request) for request in requests]


@router.get("/requests/{request_id}")
async def tuning_request_detail(
    request_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    request = await get_request_for_user(db, auth.actor, request_id)
    return serialize_request(request)


@router.get("/requests/{request_id}/download")
async def download_processed_file(
    request_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    storage: LocalFileStorage = Depends(get_file_storage),
):
    request = await get_request_for_user(db, auth.actor, request_id)
    if not request.processed_file_reference:
        raise NotFound("Processed file is not available yet.")
    data = storage.read(request.processed_file_reference)
    filename = f"tuned_{request.original_filename}"
    return Response(
        content=data,
        media_type="application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
