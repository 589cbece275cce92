"""Confirmed payment handling: one purchase ledger entry per external charge."""

from __future__ import annotations

from typing import Any, Dict, Tuple
import json
import logging

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from config import require_stripe_webhook_secret, settings
from models.credit_ledger import CreditLedger, LedgerEntryKind
from services.credits import record_entry
from services.errors import DuplicateCharge, InvalidAmount
from services.users import require_user

logger = logging.getLogger(__name__)

PURCHASE_REFERENCE_TYPE = "payment"
PAYMENT_SUCCEEDED = "payment_intent.succeeded"


async def confirm_purchase(
    db: AsyncSession,
    user_id: str,
    credits: int,
    external_reference: str,
    provider: str = "stripe",
) -> CreditLedger:
    """Credit a confirmed charge; a replayed ``external_reference`` raises DuplicateCharge."""
    reference = (external_reference or "").strip()
    if not reference:
        raise InvalidAmount("A confirmed charge needs an external transaction id.")

    await require_user(db, user_id)
    entry = await record_entry(
        user_id,
        db,
        amount=credits,
        kind=LedgerEntryKind.PURCHASE,
        reason=f"Credit purchase via {provider}",
        external_reference=reference,
        reference_type=PURCHASE_REFERENCE_TYPE,
        reference_id=provider,
    )
    logger.info("Credited %s credits to user %s for charge %s", credits, user_id, reference)
    return entry


def construct_webhook_event(raw_body: bytes, signature: str) -> Dict[str, Any]:
    """
    Verify a Stripe webhook delivery and return its decoded event.

    Raises ValueError when STRIPE_WEBHOOK_SECRET is unset and
    stripe.SignatureVerificationError when the header does not match the body
    or its timestamp is outside the tolerance window.
    """
    stripe.Webhook.construct_event(
        raw_body,
        signature,
        require_stripe_webhook_secret(),
        tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
    )
    return json.loads(raw_body)


def _purchase_from_intent(intent: Dict[str, Any]) -> Tuple[str, int, str]:
    metadata = intent.get("metadata") or {}
    user_id = str(metadata.get("user_id") or "").strip()
    if not user_id:
        raise InvalidAmount("Payment intent is missing user_id metadata.")
    try:
        credits = int(metadata.get("credit_amount"))
    except (TypeError, ValueError) as exc:
        raise InvalidAmount("Payment intent has no usable credit_amount metadata.") from exc
    return user_id, credits, str(intent.get("id") or "")


async def handle_webhook_event(db: AsyncSession, event: Dict[str, Any]) -> Dict[str, Any]:
    """Apply a verified event; only succeeded payment intents touch the ledger."""
    event_type = event.get("type")
    if event_type != PAYMENT_SUCCEEDED:
        logger.info("Unhandled webhook event type: %s", event_type)
        return {"handled": False, "event_type": event_type}

    intent = (event.get("data") or {}).get("object") or {}
    user_id, credits, intent_id = _purchase_from_intent(intent)
    try:
        entry = await confirm_purchase(db, user_id, credits, intent_id, provider="stripe")
    except DuplicateCharge:
        logger.info("Payment intent %s already credited", intent_id)
        return {"handled": False, "duplicate": True, "external_reference": intent_id}

    return {"handled": True, "event_type": event_type, **purchase_receipt(entry)}


def purchase_receipt(entry: CreditLedger) -> Dict[str, Any]:
    return {
        "ok": True,
        "user_id": entry.user_id,
        "credits_added": entry.amount,
        "balance_after": entry.balance_after,
        "external_reference": entry.external_reference,
    }
