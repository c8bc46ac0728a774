"""
Stripe webhook: card rail

Stripe retries any non-2xx answer, so business failures after the payment row
is written answer 500 and the retry resumes settlement from the stored row.
"""
import json
from typing import Optional

import stripe
from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from core.config import logger, CURRENCY_CODE
from core.database import get_db
from models.ownership import OwnershipPaymentMethod
from models.payments import PaymentProvider
from models.property import PricingTier
from models.user import User
from utils import stripe_client
from utils.identity import get_affiliate_link_id, get_or_create_user, normalize_email
from utils.payment_processor import ProcessPaymentInput, process_successful_payment
from utils.payment_records import find_payment, payment_is_settled, record_provider_payment, resume_settlement

router = APIRouter(tags=["webhooks"])

HANDLED_EVENTS = {"checkout.session.completed", "checkout.session.async_payment_succeeded"}


def _int(value) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _settlement_failed(session_id: str, result, action: str = "settlement"):
    # Sold out is an inventory state, not a fault; Stripe keeps retrying either way
    if result.sold_out:
        logger.warning(f"[stripe.webhook] {action} deferred for session {session_id}: {result.error}")
    else:
        logger.error(f"[stripe.webhook] {action} failed for session {session_id}: {result.error}")
    return JSONResponse({"error": result.error}, status_code=500)


def _already_processed_or_resume(db: Session, payment):
    if payment_is_settled(db, payment):
        logger.info(f"[stripe.webhook] session {payment.external_id} already processed")
        return {"received": True, "status": "already_processed"}
    result = resume_settlement(db, payment, OwnershipPaymentMethod.FIAT.value)
    if not result.success:
        return _settlement_failed(payment.external_id, result, "resume")
    return {"received": True, "status": "processed", "ownershipId": result.ownership_id}


def _handle_checkout_session(db: Session, session: dict):
    meta = session.get("metadata") or {}
    payment_type = (meta.get("type") or "OWNERSHIP").upper()
    if payment_type == "BOOKING":
        logger.info(f"[stripe.webhook] ignoring booking session {session.get('id')}")
        return {"received": True, "ignored": "BOOKING"}

    session_id = str(session.get("id") or "").strip()
    collection_id = _int(meta.get("collectionId"))
    tier_id = _int(meta.get("pricingTierId"))
    email = normalize_email(meta.get("email") or session.get("customer_email") or (session.get("customer_details") or {}).get("email"))
    if not session_id or not collection_id or not tier_id or not email:
        logger.warning(f"[stripe.webhook] missing metadata on session {session_id!r}: keys={sorted(meta.keys())}")
        return JSONResponse({"error": "Missing required metadata"}, status_code=400)

    existing = find_payment(db, session_id)
    if existing:
        return _already_processed_or_resume(db, existing)

    tier = db.query(PricingTier).filter(PricingTier.id == tier_id).first()
    if not tier or tier.collection_id != collection_id:
        logger.warning(f"[stripe.webhook] pricing tier {tier_id} not found for collection {collection_id}")
        return JSONResponse({"error": "Pricing tier not found"}, status_code=400)

    user_id = str(meta.get("userId") or "").strip() or None
    is_new_user = False
    if user_id and not db.query(User.id).filter(User.id == user_id).first():
        logger.warning(f"[stripe.webhook] metadata userId {user_id} unknown; resolving by email")
        user_id = None
    if not user_id:
        user_id, is_new_user = get_or_create_user(db, email)

    affiliate_link_id = get_affiliate_link_id(db, meta.get("affiliateCode"))
    amount = stripe_client.from_minor_units(session.get("amount_total"))
    currency = (session.get("currency") or CURRENCY_CODE).upper()

    payment, created = record_provider_payment(
        db,
        provider=PaymentProvider.STRIPE.value,
        external_id=session_id,
        user_id=user_id,
        amount=amount,
        currency=currency,
        collection_id=collection_id,
        pricing_tier_id=tier.id,
        percentage_to_buy=tier.percentage,
        affiliate_link_id=affiliate_link_id,
        extra_metadata=dict(meta),
    )
    if not created:
        return _already_processed_or_resume(db, payment)

    result = process_successful_payment(db, ProcessPaymentInput(
        payment_id=payment.id,
        user_id=user_id,
        collection_id=collection_id,
        pricing_tier_id=tier.id,
        percentage_to_buy=int(tier.percentage),
        amount_paid=amount,
        currency=currency,
        payment_method=OwnershipPaymentMethod.FIAT.value,
        affiliate_link_id=affiliate_link_id,
        is_new_user=is_new_user,
    ))
    if not result.success:
        return _settlement_failed(session_id, result)

    return {"received": True, "status": "processed", "ownershipId": result.ownership_id}


@router.post("/api/webhooks/stripe")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        logger.warning("[stripe.webhook] missing stripe-signature header")
        return JSONResponse({"error": "Missing stripe-signature header"}, status_code=400)

    try:
        stripe_client.construct_event(payload, sig_header)
    except stripe.SignatureVerificationError as ex:
        logger.warning(f"[stripe.webhook] invalid signature: {ex}")
        return JSONResponse({"error": "Invalid signature"}, status_code=401)
    except ValueError as ex:
        logger.warning(f"[stripe.webhook] invalid payload: {ex}")
        return JSONResponse({"error": "Invalid payload"}, status_code=400)

    try:
        event = json.loads(payload)
    except ValueError:
        return JSONResponse({"error": "Invalid payload"}, status_code=400)

    evt_type = event.get("type")
    logger.info(f"[stripe.webhook] received {evt_type} ({event.get('id')})")
    if evt_type not in HANDLED_EVENTS:
        return {"received": True}

    session = (event.get("data") or {}).get("object") or {}
    try:
        return await run_in_threadpool(_handle_checkout_session, db, session)
    except Exception as ex:
        logger.exception(f"[stripe.webhook] handler failed: {ex}")
        return JSONResponse({"error": "Webhook handler failed"}, status_code=500)
