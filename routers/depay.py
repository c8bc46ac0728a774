"""
DePay managed integration: crypto rail

Two endpoints called by DePay, both signature-verified in and signed out:
- configuration: returns the accepted tokens and amount for a tier
- callback: a payment confirmed on-chain; settles the purchase
"""
import json
from typing import Optional

from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from core.config import logger
from core.database import get_db
from models.ownership import OwnershipPaymentMethod
from models.payments import PaymentProvider
from models.property import PricingTier
from models.user import User
from utils import depay
from utils.identity import get_affiliate_link_id, get_or_create_user, normalize_email
from utils.payment_processor import ProcessPaymentInput, process_successful_payment, to_money
from utils.payment_records import find_payment, payment_is_settled, record_provider_payment, resume_settlement

router = APIRouter(prefix="/api/webhooks/depay", tags=["webhooks"])


def _int(value) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _signed(data: dict, status_code: int = 200) -> Response:
    body, headers = depay.signed_body(data)
    return Response(content=body, status_code=status_code, headers=headers)


def _signed_error(message: str, status_code: int) -> Response:
    try:
        return _signed({"error": message}, status_code)
    except Exception:
        # No private key available; DePay will treat the unsigned answer as a failure anyway
        return JSONResponse({"error": message}, status_code=status_code)


def _already_processed_or_resume(db: Session, payment) -> Response:
    if payment_is_settled(db, payment):
        logger.info(f"[depay.callback] transaction {payment.external_id} already processed")
        return _signed({"status": "already_processed"})
    result = resume_settlement(db, payment, OwnershipPaymentMethod.CRYPTO.value)
    if not result.success:
        logger.error(f"[depay.callback] resume failed for transaction {payment.external_id}: {result.error}")
        return _signed_error(result.error or "Settlement failed", 500)
    return _signed({})


def _handle_callback(db: Session, data: dict) -> Response:
    tx_hash = str(data.get("transaction") or "").strip()
    payload = data.get("payload") or {}
    if not isinstance(payload, dict):
        payload = {}

    if tx_hash:
        existing = find_payment(db, tx_hash)
        if existing:
            return _already_processed_or_resume(db, existing)

    if (payload.get("type") or "OWNERSHIP").upper() == "BOOKING":
        logger.info(f"[depay.callback] ignoring booking transaction {tx_hash}")
        return _signed({"status": "ignored"})

    collection_id = _int(payload.get("collectionId"))
    tier_id = _int(payload.get("pricingTierId"))
    email = normalize_email(payload.get("email"))
    if not tx_hash or not collection_id or not tier_id or not email:
        logger.warning(f"[depay.callback] missing data: tx={tx_hash!r} keys={sorted(payload.keys())}")
        return _signed_error("Missing data", 400)

    tier = db.query(PricingTier).filter(PricingTier.id == tier_id).first()
    if not tier or tier.collection_id != collection_id:
        logger.warning(f"[depay.callback] pricing tier {tier_id} not found for collection {collection_id}")
        return _signed_error("Pricing tier not found", 400)

    user_id = str(payload.get("userId") or "").strip() or None
    is_new_user = False
    if user_id and not db.query(User.id).filter(User.id == user_id).first():
        user_id = None
    if not user_id:
        user_id, is_new_user = get_or_create_user(db, email)

    affiliate_link_id = get_affiliate_link_id(db, payload.get("affiliateCode"))
    currency = depay.currency_for_token(data.get("blockchain") or "", data.get("token") or "")
    amount = to_money(tier.crypto_price)

    payment, created = record_provider_payment(
        db,
        provider=PaymentProvider.DEPAY.value,
        external_id=tx_hash,
        user_id=user_id,
        amount=amount,
        currency=currency,
        collection_id=collection_id,
        pricing_tier_id=tier.id,
        percentage_to_buy=tier.percentage,
        affiliate_link_id=affiliate_link_id,
        extra_metadata={
            "payload": payload,
            "blockchain": data.get("blockchain"),
            "token": data.get("token"),
            "sender": data.get("sender"),
            "amount": data.get("amount"),
        },
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
        payment_method=OwnershipPaymentMethod.CRYPTO.value,
        affiliate_link_id=affiliate_link_id,
        is_new_user=is_new_user,
    ))
    if not result.success:
        logger.error(f"[depay.callback] settlement failed for transaction {tx_hash}: {result.error}")
        return _signed_error(result.error or "Settlement failed", 500)

    logger.info(f"[depay.callback] transaction {tx_hash} settled as ownership={result.ownership_id}")
    return _signed({})


@router.post("/callback")
async def depay_callback(request: Request, db: Session = Depends(get_db)):
    body = await request.body()
    if not depay.verify_request(request.headers.get("x-signature"), body):
        return _signed_error("UNAUTHORIZED", 401)

    try:
        data = json.loads(body)
    except ValueError:
        return _signed_error("Invalid payload", 400)
    if not isinstance(data, dict):
        return _signed_error("Invalid payload", 400)

    try:
        return await run_in_threadpool(_handle_callback, db, data)
    except Exception as ex:
        logger.exception(f"[depay.callback] handler failed: {ex}")
        return _signed_error("Callback handler failed", 500)


@router.post("/configuration")
async def depay_configuration(request: Request, db: Session = Depends(get_db)):
    body = await request.body()
    if not depay.verify_request(request.headers.get("x-signature"), body):
        return _signed_error("UNAUTHORIZED", 401)

    try:
        data = json.loads(body)
    except ValueError:
        return _signed_error("Invalid payload", 400)
    if not isinstance(data, dict):
        return _signed_error("Invalid payload", 400)

    # DePay sends the widget payload either nested or at top level
    payload = data.get("payload") if isinstance(data.get("payload"), dict) else data
    collection_id = _int(payload.get("collectionId"))
    tier_id = _int(payload.get("pricingTierId"))

    tier = db.query(PricingTier).filter(PricingTier.id == tier_id).first() if tier_id else None
    if not tier:
        return _signed_error("Pricing tier not found", 404)
    if tier.collection_id != collection_id:
        return _signed_error("Pricing tier does not belong to this collection", 400)

    logger.info(f"[depay.configuration] tier={tier.id} amount={tier.crypto_price}")
    return _signed(depay.build_accept_config(tier.crypto_price))
