"""
Manual Payments Router
Bank transfer / e-wallet purchases reviewed by an admin
"""
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from core import config
from core.config import logger
from core.auth import get_current_user, require_admin, auth_error_status
from core.database import get_db
from models.payments import ManualPaymentMethod, Payment, PaymentProvider, PaymentStatus
from models.property import PricingTier, PropertyCollection
from models.user import User
from utils import notifications
from utils.allocation import find_available_unit
from utils.identity import get_affiliate_link
from utils.manual_review import (
    ManualReviewError, approve_manual_payment, generate_reference_code, is_reference_code, reject_manual_payment,
)
from utils.payment_processor import to_money
from utils.rate_limit import check_limit, proof_submission_throttle

router = APIRouter(prefix="/api/manual-payments", tags=["manual-payments"])


# ============ Pydantic Models ============

class InitiateRequest(BaseModel):
    collection_id: int
    pricing_tier_id: int
    manual_payment_method_id: str
    affiliate_code: Optional[str] = None


class SubmitProofRequest(BaseModel):
    reference_code: str
    collection_id: int
    pricing_tier_id: int
    manual_payment_method_id: str
    proof_image_url: str
    affiliate_code: Optional[str] = None


class ResubmitRequest(BaseModel):
    proof_image_url: str


class RejectRequest(BaseModel):
    reason: str


class MethodCreate(BaseModel):
    id: str
    name: str
    instructions: Optional[str] = None
    account_number: Optional[str] = None
    account_name: Optional[str] = None
    qr_code_url: Optional[str] = None
    is_active: Optional[bool] = True
    sort_order: Optional[int] = 0


class MethodUpdate(BaseModel):
    name: Optional[str] = None
    instructions: Optional[str] = None
    account_number: Optional[str] = None
    account_name: Optional[str] = None
    qr_code_url: Optional[str] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


# ============ Helper Functions ============

def _validate_purchase(db: Session, collection_id: int, tier_id: int, method_id: str):
    """Returns (collection, tier, method, error_response)"""
    collection = (
        db.query(PropertyCollection)
        .filter(PropertyCollection.id == collection_id, PropertyCollection.is_active.is_(True))
        .first()
    )
    if not collection:
        return None, None, None, JSONResponse({"error": "Property collection not found or not available"}, status_code=404)
    tier = (
        db.query(PricingTier)
        .filter(
            PricingTier.id == tier_id,
            PricingTier.collection_id == collection_id,
            PricingTier.is_active.is_(True),
        )
        .first()
    )
    if not tier:
        return None, None, None, JSONResponse({"error": "Pricing tier not found or not active"}, status_code=404)
    method = (
        db.query(ManualPaymentMethod)
        .filter(ManualPaymentMethod.id == method_id, ManualPaymentMethod.is_active.is_(True))
        .first()
    )
    if not method:
        return None, None, None, JSONResponse({"error": "Payment method not found or not active"}, status_code=404)
    return collection, tier, method, None


def _pending_count(db: Session, user_id: str) -> int:
    return (
        db.query(Payment)
        .filter(
            Payment.user_id == user_id,
            Payment.provider == PaymentProvider.MANUAL.value,
            Payment.status == PaymentStatus.PENDING.value,
        )
        .count()
    )


def _too_many_pending() -> JSONResponse:
    return JSONResponse(
        {"error": "You have too many pending submissions. Please wait for admin review."},
        status_code=429,
    )


# ============ Buyer Endpoints ============

@router.get("/methods")
async def list_methods(db: Session = Depends(get_db)):
    methods = (
        db.query(ManualPaymentMethod)
        .filter(ManualPaymentMethod.is_active.is_(True))
        .order_by(ManualPaymentMethod.sort_order.asc())
        .all()
    )
    return {"methods": [m.to_dict() for m in methods]}


@router.post("/initiate")
async def initiate(body: InitiateRequest, request: Request, db: Session = Depends(get_db)):
    user = get_current_user(request, db)
    if not user:
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    collection, tier, method, err = _validate_purchase(db, body.collection_id, body.pricing_tier_id, body.manual_payment_method_id)
    if err:
        return err

    affiliate_link_id = None
    if (body.affiliate_code or "").strip():
        link = get_affiliate_link(db, body.affiliate_code)
        if not link:
            return JSONResponse({"error": "Invalid affiliate code"}, status_code=400)
        affiliate_link_id = link.id

    if find_available_unit(db, collection.id, int(tier.percentage)) is None:
        return JSONResponse({"error": "This ownership tier is sold out"}, status_code=409)

    # No payment row yet; it is written when the proof is submitted
    return {
        "referenceCode": generate_reference_code(),
        "collectionId": collection.id,
        "collectionName": collection.name,
        "pricingTierId": tier.id,
        "percentage": tier.display_label,
        "percentageBasisPoints": tier.percentage,
        "amountDue": f"{to_money(tier.fiat_price):.2f}",
        "currency": config.CURRENCY_CODE,
        "paymentMethod": {
            "id": method.id,
            "name": method.name,
            "instructions": method.instructions,
            "accountNumber": method.account_number,
            "accountName": method.account_name,
            "qrCodeUrl": method.qr_code_url,
        },
        "affiliateLinkId": affiliate_link_id,
    }


@router.post("/submit-proof")
async def submit_proof(body: SubmitProofRequest, request: Request, db: Session = Depends(get_db)):
    user = get_current_user(request, db)
    if not user:
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    reference_code = (body.reference_code or "").strip().upper()
    if not is_reference_code(reference_code):
        return JSONResponse({"error": "Invalid reference code"}, status_code=400)
    if not (body.proof_image_url or "").strip():
        return JSONResponse({"error": "Proof of payment is required"}, status_code=400)
    if not check_limit(proof_submission_throttle, f"proof:{user.id}"):
        return JSONResponse({"error": "Too many submissions. Please try again later."}, status_code=429)

    if db.query(Payment.id).filter(Payment.external_id == reference_code).first():
        return JSONResponse({"error": "This reference code has already been used"}, status_code=400)
    if _pending_count(db, user.id) >= config.MANUAL_PAYMENT_MAX_PENDING:
        return _too_many_pending()

    collection, tier, method, err = _validate_purchase(db, body.collection_id, body.pricing_tier_id, body.manual_payment_method_id)
    if err:
        return err

    affiliate_link = get_affiliate_link(db, body.affiliate_code)
    amount = to_money(tier.fiat_price)
    payment = Payment(
        provider=PaymentProvider.MANUAL.value,
        external_id=reference_code,
        user_id=user.id,
        amount=amount,
        currency=config.CURRENCY_CODE,
        status=PaymentStatus.PENDING.value,
        collection_id=collection.id,
        pricing_tier_id=tier.id,
        percentage_to_buy=tier.percentage,
        affiliate_link_id=affiliate_link.id if affiliate_link else None,
        manual_payment_method_id=method.id,
        proof_image_url=body.proof_image_url.strip(),
        extra_metadata={"affiliateCode": (body.affiliate_code or "").strip() or None},
    )
    db.add(payment)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return JSONResponse({"error": "This reference code has already been used"}, status_code=400)
    db.refresh(payment)
    logger.info(f"[manual.submit] payment={payment.id} ({reference_code}) submitted by {user.id}")

    try:
        notifications.send_manual_payment_under_review(
            user.email, user.name, reference_code, amount, config.CURRENCY_CODE, method.name,
        )
    except Exception as ex:
        logger.warning(f"[manual.submit] under-review email failed: {ex}")

    return {
        "paymentId": payment.id,
        "referenceCode": reference_code,
        "status": payment.status,
        "message": "Your proof of payment has been submitted and is under review.",
    }


@router.get("/mine")
async def my_submissions(request: Request, db: Session = Depends(get_db)):
    user = get_current_user(request, db)
    if not user:
        return JSONResponse({"error": "Unauthorized"}, status_code=401)
    rows = (
        db.query(Payment)
        .filter(Payment.user_id == user.id, Payment.provider == PaymentProvider.MANUAL.value)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .all()
    )
    return {"payments": [p.to_dict() for p in rows]}


@router.post("/{payment_id}/resubmit")
async def resubmit(payment_id: int, body: ResubmitRequest, request: Request, db: Session = Depends(get_db)):
    user = get_current_user(request, db)
    if not user:
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    payment = (
        db.query(Payment)
        .filter(
            Payment.id == payment_id,
            Payment.user_id == user.id,
            Payment.provider == PaymentProvider.MANUAL.value,
        )
        .first()
    )
    if not payment:
        return JSONResponse({"error": "Payment not found"}, status_code=404)
    if payment.status != PaymentStatus.FAILED.value:
        return JSONResponse({"error": "Can only resubmit rejected payments"}, status_code=400)
    if not (body.proof_image_url or "").strip():
        return JSONResponse({"error": "Proof of payment is required"}, status_code=400)
    if _pending_count(db, user.id) >= config.MANUAL_PAYMENT_MAX_PENDING:
        return _too_many_pending()

    updated = (
        db.query(Payment)
        .filter(Payment.id == payment_id, Payment.status == PaymentStatus.FAILED.value)
        .update(
            {
                Payment.proof_image_url: body.proof_image_url.strip(),
                Payment.status: PaymentStatus.PENDING.value,
                Payment.reviewed_at: None,
                Payment.reviewed_by: None,
                Payment.rejection_reason: None,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    if not updated:
        return JSONResponse({"error": "Can only resubmit rejected payments"}, status_code=400)
    logger.info(f"[manual.resubmit] payment={payment_id} ({payment.external_id}) resubmitted by {user.id}")
    return {"success": True, "message": "Payment resubmitted for review"}


# ============ Admin Endpoints ============

@router.get("/pending")
async def pending_reviews(request: Request, db: Session = Depends(get_db)):
    admin, reason = require_admin(request, db)
    if not admin:
        return JSONResponse({"error": reason}, status_code=auth_error_status(reason))
    rows = (
        db.query(Payment, User.email, User.name)
        .outerjoin(User, User.id == Payment.user_id)
        .filter(Payment.provider == PaymentProvider.MANUAL.value, Payment.status == PaymentStatus.PENDING.value)
        .order_by(Payment.created_at.asc(), Payment.id.asc())
        .all()
    )
    items = []
    for payment, email, name in rows:
        d = payment.to_dict()
        d["user"] = {"email": email, "name": name}
        items.append(d)
    return {"payments": items}


@router.post("/{payment_id}/approve")
async def approve(payment_id: int, request: Request, db: Session = Depends(get_db)):
    admin, reason = require_admin(request, db)
    if not admin:
        return JSONResponse({"error": reason}, status_code=auth_error_status(reason))
    try:
        result = await run_in_threadpool(approve_manual_payment, db, payment_id, admin.id)
    except ManualReviewError as ex:
        return JSONResponse({"error": ex.message}, status_code=ex.status_code)
    except Exception as ex:
        logger.exception(f"[manual.approve] payment={payment_id} failed: {ex}")
        return JSONResponse({"error": "Failed to process payment"}, status_code=500)

    if not result.success:
        return JSONResponse({"error": result.error or "Failed to process payment"}, status_code=409 if result.sold_out else 500)
    return {
        "success": True,
        "ownershipId": result.ownership_id,
        "unitId": result.unit_id,
        "unitName": result.unit_name,
        "alreadyProcessed": result.already_processed,
        "message": f"Payment approved. Unit {result.unit_name} assigned.",
    }


@router.post("/{payment_id}/reject")
async def reject(payment_id: int, body: RejectRequest, request: Request, db: Session = Depends(get_db)):
    admin, reason = require_admin(request, db)
    if not admin:
        return JSONResponse({"error": reason}, status_code=auth_error_status(reason))
    if not (body.reason or "").strip():
        return JSONResponse({"error": "A rejection reason is required"}, status_code=400)
    try:
        payment = await run_in_threadpool(reject_manual_payment, db, payment_id, admin.id, body.reason.strip())
    except ManualReviewError as ex:
        return JSONResponse({"error": ex.message}, status_code=ex.status_code)
    return {"success": True, "payment": payment.to_dict(), "message": "Payment rejected"}


@router.get("/admin/methods")
async def all_methods(request: Request, db: Session = Depends(get_db)):
    admin, reason = require_admin(request, db)
    if not admin:
        return JSONResponse({"error": reason}, status_code=auth_error_status(reason))
    methods = db.query(ManualPaymentMethod).order_by(ManualPaymentMethod.sort_order.asc()).all()
    return {"methods": [m.to_dict() for m in methods]}


@router.post("/admin/methods")
async def create_method(body: MethodCreate, request: Request, db: Session = Depends(get_db)):
    admin, reason = require_admin(request, db)
    if not admin:
        return JSONResponse({"error": reason}, status_code=auth_error_status(reason))
    method_id = (body.id or "").strip().lower()
    if not method_id or not (body.name or "").strip():
        return JSONResponse({"error": "id and name are required"}, status_code=400)
    if db.query(ManualPaymentMethod.id).filter(ManualPaymentMethod.id == method_id).first():
        return JSONResponse({"error": "A payment method with this ID already exists"}, status_code=409)

    method = ManualPaymentMethod(
        id=method_id,
        name=body.name.strip(),
        instructions=body.instructions,
        account_number=body.account_number,
        account_name=body.account_name,
        qr_code_url=body.qr_code_url,
        is_active=bool(body.is_active) if body.is_active is not None else True,
        sort_order=body.sort_order or 0,
    )
    db.add(method)
    db.commit()
    db.refresh(method)
    logger.info(f"[manual.methods] {admin.id} created method {method_id}")
    return {"method": method.to_dict()}


@router.patch("/admin/methods/{method_id}")
async def update_method(method_id: str, body: MethodUpdate, request: Request, db: Session = Depends(get_db)):
    admin, reason = require_admin(request, db)
    if not admin:
        return JSONResponse({"error": reason}, status_code=auth_error_status(reason))
    updates = body.dict(exclude_unset=True)
    if not updates:
        return JSONResponse({"error": "No updates provided"}, status_code=400)
    method = db.query(ManualPaymentMethod).filter(ManualPaymentMethod.id == method_id).first()
    if not method:
        return JSONResponse({"error": "Payment method not found"}, status_code=404)
    for key, value in updates.items():
        setattr(method, key, value)
    method.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(method)
    return {"method": method.to_dict()}
