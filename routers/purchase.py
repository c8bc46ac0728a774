"""
Purchase Router
Starts a checkout on either rail and serves the confirmation pages
"""
from decimal import Decimal
from typing import Optional

import stripe
from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from core.config import logger
from core.auth import get_current_user
from core.database import get_db
from models.affiliates import AffiliateLink
from models.ownership import Ownership
from models.payments import Payment
from models.property import PricingTier, PropertyCollection, Unit
from models.user import User
from utils import depay, stripe_client
from utils.allocation import counts_toward_capacity, find_available_unit, get_collection_tier_availability
from utils.identity import get_affiliate_link, normalize_email
from utils.rate_limit import check_limit, checkout_throttle, client_ip

router = APIRouter(prefix="/api/purchase", tags=["purchase"])


class InitiatePurchase(BaseModel):
    collection_id: int
    pricing_tier_id: int
    payment_method: str  # FIAT | CRYPTO
    email: Optional[str] = None  # guest checkout
    affiliate_code: Optional[str] = None


def _ownership_view(db: Session, payment: Payment, not_found: str):
    row = (
        db.query(Ownership, Unit, PricingTier)
        .outerjoin(Unit, Unit.id == Ownership.unit_id)
        .outerjoin(PricingTier, PricingTier.id == Ownership.pricing_tier_id)
        .filter(Ownership.payment_id == payment.id)
        .first()
    )
    if not row:
        return JSONResponse({"error": not_found}, status_code=404)
    ownership, unit, tier = row
    data = ownership.to_dict()
    data["unit"] = unit.to_dict() if unit else None
    data["pricingTier"] = tier.to_dict() if tier else None
    if ownership.affiliate_link_id:
        link = db.query(AffiliateLink).filter(AffiliateLink.id == ownership.affiliate_link_id).first()
        affiliate = db.query(User).filter(User.id == link.affiliate_user_id).first() if link else None
        data["affiliateLink"] = {
            "id": link.id,
            "code": link.code,
            "affiliate": {"id": affiliate.id, "name": affiliate.name} if affiliate else None,
        } if link else None
    return data


@router.post("/initiate")
async def initiate_purchase(body: InitiatePurchase, request: Request, db: Session = Depends(get_db)):
    if not check_limit(checkout_throttle, f"checkout:{client_ip(request)}"):
        return JSONResponse({"error": "Too many checkout attempts. Please try again later."}, status_code=429)

    user = get_current_user(request, db)
    email = normalize_email(user.email if user else body.email)
    if not email or "@" not in email:
        return JSONResponse({"error": "Email is required to complete purchase"}, status_code=400)

    method = (body.payment_method or "").strip().upper()
    if method not in ("FIAT", "CRYPTO"):
        return JSONResponse({"error": "payment_method must be FIAT or CRYPTO"}, status_code=400)

    collection = (
        db.query(PropertyCollection)
        .filter(PropertyCollection.id == body.collection_id, PropertyCollection.is_active.is_(True))
        .first()
    )
    if not collection:
        return JSONResponse({"error": "Property collection not found or not available"}, status_code=404)
    tier = (
        db.query(PricingTier)
        .filter(
            PricingTier.id == body.pricing_tier_id,
            PricingTier.collection_id == collection.id,
            PricingTier.is_active.is_(True),
        )
        .first()
    )
    if not tier:
        return JSONResponse({"error": "Pricing tier not found or not active"}, status_code=404)

    # Advisory only; settlement re-checks under the collection lock
    if find_available_unit(db, collection.id, int(tier.percentage)) is None:
        return JSONResponse({"error": f"No units in {collection.name} can accommodate {tier.display_label}"}, status_code=409)

    affiliate_code = (body.affiliate_code or "").strip() or None
    if affiliate_code and not get_affiliate_link(db, affiliate_code):
        return JSONResponse({"error": "Invalid affiliate code"}, status_code=400)

    user_id = user.id if user else None
    if method == "CRYPTO":
        return {
            "paymentMethod": "CRYPTO",
            "depay": depay.build_widget_config(collection.id, tier.id, email, user_id, affiliate_code),
            "amount": f"{Decimal(str(tier.crypto_price)):.2f}",
            "currency": "USD",
        }

    try:
        session_id, url = await run_in_threadpool(
            stripe_client.create_checkout_session,
            collection.id,
            tier.id,
            f"{collection.name}: {tier.display_label} ownership",
            f"Fractional ownership of {tier.display_label} of one unit in {collection.name}",
            tier.fiat_price,
            email,
            user_id,
            affiliate_code,
        )
    except stripe.StripeError as ex:
        logger.error(f"[purchase.initiate] stripe error: {ex}")
        return JSONResponse({"error": "Payment provider unavailable"}, status_code=502)
    except RuntimeError as ex:
        logger.error(f"[purchase.initiate] {ex}")
        return JSONResponse({"error": "Card payments are not configured"}, status_code=503)

    return {"paymentMethod": "FIAT", "sessionId": session_id, "checkoutUrl": url}


@router.get("/ownership/by-session/{session_id}")
async def ownership_by_stripe_session(session_id: str, db: Session = Depends(get_db)):
    payment = db.query(Payment).filter(Payment.external_id == session_id).first()
    if not payment:
        return JSONResponse({"error": "Payment not found for this session"}, status_code=404)
    return _ownership_view(db, payment, "Ownership not found for this session")


@router.get("/ownership/by-tx/{tx_hash}")
async def ownership_by_tx_hash(tx_hash: str, db: Session = Depends(get_db)):
    payment = db.query(Payment).filter(Payment.external_id == tx_hash).first()
    if not payment:
        return JSONResponse({"error": "Payment not found for this transaction"}, status_code=404)
    return _ownership_view(db, payment, "Ownership not found for this transaction")


@router.get("/summary")
async def my_summary(request: Request, db: Session = Depends(get_db)):
    user = get_current_user(request, db)
    if not user:
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    total_invested, unit_count, total_bp, purchase_count = (
        db.query(
            func.coalesce(func.sum(Ownership.purchase_price), 0),
            func.count(func.distinct(Ownership.unit_id)),
            func.coalesce(func.sum(Ownership.percentage_owned), 0),
            func.count(Ownership.id),
        )
        .filter(Ownership.user_id == user.id, counts_toward_capacity())
        .one()
    )
    return {
        "totalInvested": f"{Decimal(str(total_invested or 0)):.2f}",
        "totalUnitsOwned": int(unit_count or 0),
        "totalPercentageOwned": f"{Decimal(int(total_bp or 0)) / Decimal(100):.2f}",
        "purchaseCount": int(purchase_count or 0),
    }


@router.get("/collections/{collection_id}/availability")
async def collection_availability(collection_id: int, db: Session = Depends(get_db)):
    collection = db.query(PropertyCollection).filter(PropertyCollection.id == collection_id).first()
    if not collection:
        return JSONResponse({"error": "Property collection not found"}, status_code=404)
    availability = get_collection_tier_availability(db, collection_id)
    tiers = (
        db.query(PricingTier)
        .filter(PricingTier.id.in_(list(availability.keys())))
        .order_by(PricingTier.percentage.asc())
        .all()
    ) if availability else []
    return {
        "collectionId": collection_id,
        "tiers": [dict(t.to_dict(), available=availability.get(t.id, False)) for t in tiers],
    }
