from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from core.config import logger
from core.auth import require_admin, auth_error_status
from core.database import get_db
from models.affiliates import AffiliateLink, AffiliateProfile, AffiliateTransaction
from models.property import PricingTier, PropertyCollection, Unit
from utils.reconciliation import find_total_drift, repair_total_drift

router = APIRouter(prefix="/api/admin", tags=["admin"])


class MarkPaidPayload(BaseModel):
    notes: Optional[str] = None


@router.get("/reconciliation")
async def reconciliation_report(request: Request, db: Session = Depends(get_db)):
    admin, reason = require_admin(request, db)
    if not admin:
        return JSONResponse({"error": reason}, status_code=auth_error_status(reason))
    drift = await run_in_threadpool(find_total_drift, db)
    return {"ok": not drift, "drift": drift}


@router.post("/reconciliation/repair")
async def reconciliation_repair(request: Request, db: Session = Depends(get_db)):
    admin, reason = require_admin(request, db)
    if not admin:
        return JSONResponse({"error": reason}, status_code=auth_error_status(reason))
    try:
        repaired = await run_in_threadpool(repair_total_drift, db)
    except Exception as ex:
        db.rollback()
        logger.exception(f"[reconcile] repair failed: {ex}")
        return JSONResponse({"error": "Repair failed"}, status_code=500)
    logger.info(f"[reconcile] {admin.id} repaired {len(repaired)} counters")
    return {"ok": True, "repaired": repaired}


@router.post("/commissions/{transaction_id}/mark-paid")
async def mark_commission_paid(transaction_id: int, request: Request, payload: Optional[MarkPaidPayload] = None, db: Session = Depends(get_db)):
    admin, reason = require_admin(request, db)
    if not admin:
        return JSONResponse({"error": reason}, status_code=auth_error_status(reason))

    txn = db.query(AffiliateTransaction).filter(AffiliateTransaction.id == transaction_id).first()
    if not txn:
        return JSONResponse({"error": "Commission not found"}, status_code=404)

    claimed = (
        db.query(AffiliateTransaction)
        .filter(AffiliateTransaction.id == transaction_id, AffiliateTransaction.is_paid.is_(False))
        .update(
            {
                AffiliateTransaction.is_paid: True,
                AffiliateTransaction.paid_at: datetime.now(timezone.utc),
                AffiliateTransaction.paid_by: admin.id,
                AffiliateTransaction.notes: (payload.notes if payload else None) or txn.notes,
            },
            synchronize_session=False,
        )
    )
    if not claimed:
        db.rollback()
        return JSONResponse({"error": "Commission already marked as paid"}, status_code=409)

    link = db.query(AffiliateLink).filter(AffiliateLink.id == txn.affiliate_link_id).first()
    if link:
        db.query(AffiliateProfile).filter(AffiliateProfile.user_id == link.affiliate_user_id).update(
            {AffiliateProfile.total_paid: AffiliateProfile.total_paid + txn.commission_amount},
            synchronize_session=False,
        )
    db.commit()
    db.refresh(txn)
    logger.info(f"[commission] transaction={transaction_id} marked paid by {admin.id}")
    return {"success": True, "commission": txn.to_dict()}


@router.delete("/collections/{collection_id}")
async def delete_collection(collection_id: int, request: Request, db: Session = Depends(get_db)):
    admin, reason = require_admin(request, db)
    if not admin:
        return JSONResponse({"error": reason}, status_code=auth_error_status(reason))

    collection = db.query(PropertyCollection).filter(PropertyCollection.id == collection_id).first()
    if not collection:
        return JSONResponse({"error": "Property collection not found"}, status_code=404)

    unit_count = db.query(Unit).filter(Unit.collection_id == collection_id).count()
    tier_count = db.query(PricingTier).filter(PricingTier.collection_id == collection_id).count()
    if unit_count or tier_count:
        return JSONResponse(
            {
                "error": "Collection still has units or pricing tiers",
                "unitCount": unit_count,
                "pricingTierCount": tier_count,
            },
            status_code=409,
        )

    db.delete(collection)
    db.commit()
    logger.info(f"[admin] collection={collection_id} deleted by {admin.id}")
    return {"success": True}
