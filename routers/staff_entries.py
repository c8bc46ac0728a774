"""
Staff Entries Router
Offline sales recorded by staff and approved by an admin
"""
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from core import config
from core.config import logger
from core.auth import require_admin, require_staff, auth_error_status
from core.database import get_db
from models.ownership import ApprovalStatus, Ownership, OwnershipPaymentMethod
from models.property import PricingTier
from utils.identity import get_affiliate_link
from utils.staff_entries import StaffEntryError, approve_staff_entry, create_staff_entry, reject_staff_entry

router = APIRouter(prefix="/api/staff", tags=["staff"])


class StaffOwnershipCreate(BaseModel):
    investor_email: str
    investor_name: Optional[str] = None
    collection_id: int
    pricing_tier_id: int
    purchase_price: Optional[Decimal] = None
    currency: Optional[str] = None
    payment_method: str  # FIAT | CRYPTO | MANUAL
    affiliate_code: Optional[str] = None
    notes: Optional[str] = None


class StaffApproveRequest(BaseModel):
    unit_id: Optional[int] = None


class StaffRejectRequest(BaseModel):
    reason: str


@router.post("/ownerships")
async def create_entry(body: StaffOwnershipCreate, request: Request, db: Session = Depends(get_db)):
    staff, reason = require_staff(request, db)
    if not staff:
        return JSONResponse({"error": reason}, status_code=auth_error_status(reason))

    method = (body.payment_method or "").strip().upper()
    if method not in {m.value for m in OwnershipPaymentMethod}:
        return JSONResponse({"error": "payment_method must be FIAT, CRYPTO or MANUAL"}, status_code=400)
    if (body.affiliate_code or "").strip() and not get_affiliate_link(db, body.affiliate_code):
        return JSONResponse({"error": "Invalid affiliate code"}, status_code=400)

    purchase_price = body.purchase_price
    if purchase_price is None:
        tier = db.query(PricingTier).filter(PricingTier.id == body.pricing_tier_id).first()
        purchase_price = tier.fiat_price if tier else Decimal("0")
    if Decimal(str(purchase_price)) < 0:
        return JSONResponse({"error": "purchase_price cannot be negative"}, status_code=400)

    try:
        ownership = await run_in_threadpool(
            create_staff_entry,
            db,
            staff.id,
            body.investor_email,
            body.collection_id,
            body.pricing_tier_id,
            purchase_price,
            method,
            body.currency or config.CURRENCY_CODE,
            body.investor_name,
            body.affiliate_code,
            body.notes,
        )
    except StaffEntryError as ex:
        return JSONResponse({"error": ex.message}, status_code=ex.status_code)
    return {"ownership": ownership.to_dict()}


@router.get("/ownerships/pending")
async def pending_entries(request: Request, db: Session = Depends(get_db)):
    staff, reason = require_staff(request, db)
    if not staff:
        return JSONResponse({"error": reason}, status_code=auth_error_status(reason))
    rows = (
        db.query(Ownership)
        .filter(Ownership.approval_status == ApprovalStatus.PENDING_APPROVAL.value)
        .order_by(Ownership.created_at.asc(), Ownership.id.asc())
        .all()
    )
    return {"ownerships": [o.to_dict() for o in rows]}


@router.post("/ownerships/{ownership_id}/approve")
async def approve_entry(ownership_id: int, request: Request, body: Optional[StaffApproveRequest] = None, db: Session = Depends(get_db)):
    admin, reason = require_admin(request, db)
    if not admin:
        return JSONResponse({"error": reason}, status_code=auth_error_status(reason))
    unit_id = body.unit_id if body else None
    try:
        ownership = await run_in_threadpool(approve_staff_entry, db, ownership_id, admin.id, unit_id)
    except StaffEntryError as ex:
        return JSONResponse({"error": ex.message}, status_code=ex.status_code)
    except Exception as ex:
        logger.exception(f"[staff.approve] ownership={ownership_id} failed: {ex}")
        return JSONResponse({"error": "Failed to approve ownership"}, status_code=500)
    return {"success": True, "ownership": ownership.to_dict()}


@router.post("/ownerships/{ownership_id}/reject")
async def reject_entry(ownership_id: int, body: StaffRejectRequest, request: Request, db: Session = Depends(get_db)):
    admin, reason = require_admin(request, db)
    if not admin:
        return JSONResponse({"error": reason}, status_code=auth_error_status(reason))
    if not (body.reason or "").strip():
        return JSONResponse({"error": "A rejection reason is required"}, status_code=400)
    try:
        ownership = await run_in_threadpool(reject_staff_entry, db, ownership_id, admin.id, body.reason.strip())
    except StaffEntryError as ex:
        return JSONResponse({"error": ex.message}, status_code=ex.status_code)
    return {"success": True, "ownership": ownership.to_dict()}
