"""Billing and credits router."""

from __future__ import annotations

import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_registered_auth
from routers.rate_limit import rate_limit
from services.credits import get_balance_or_zero, list_entries, serialize_entry
from services.payments import construct_webhook_event, handle_webhook_event

router = APIRouter()
logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "Stripe-Signature"


@router.get("/balance")
async def credit_balance(
    auth: AuthContext = Depends(get_registered_auth),
    db: AsyncSession = Depends(get_db),
):
    return {
        "user_id": auth.user_id,
        "balance": await get_balance_or_zero(auth.user_id, db),
    }


@router.get("/transactions")
async def credit_transactions(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    auth: AuthContext = Depends(get_registered_auth),
    db: AsyncSession = Depends(get_db),
):
    entries = await list_entries(auth.user_id, db, limit=limit, offset=offset)
    return {
        "user_id": auth.user_id,
        "balance": await get_balance_or_zero(auth.user_id, db),
        "transactions": [serialize_entry(entry) for entry in entries],
    }


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    signature: Optional[str] = Header(default=None, alias=SIGNATURE_HEADER),
    _rate_limit: None = Depends(rate_limit("billing_webhook", limit=120, window_seconds=60)),
    db: AsyncSession = Depends(get_db),
):
    """Credit a succeeded Stripe payment intent."""
    if not signature:
        raise HTTPException(status_code=400, detail="Missing Stripe-Signature header.")

    raw_body = await request.body()
    try:
        event = construct_webhook_event(raw_body, signature)
    except stripe.SignatureVerificationError as exc:
        logger.warning("Rejected Stripe webhook: %s", exc)
        raise HTTPException(status_code=400, detail="Invalid webhook signature.") from exc
    except ValueError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    return await handle_webhook_event(db, event)
