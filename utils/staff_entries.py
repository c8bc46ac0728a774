"""
Staff-entered ownerships (offline sales)

Staff record a sale with only the investor's email; the row holds no unit and
no user and does not consume capacity. Admin approval allocates a unit through
the allocation engine under the collection lock, resolves the investor
account and applies the same commission and profile bookkeeping as the
settlement pipeline.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from core.config import logger
from models.ownership import ApprovalStatus, Ownership
from models.property import PricingTier, PropertyCollection, Unit, UnitStatus, UNIT_CAPACITY_BP
from models.user import User
from utils import notifications
from utils.allocation import allocation_lock, find_available_unit, get_unit_allocated
from utils.identity import get_affiliate_link_id, get_or_create_user, normalize_email
from utils.payment_processor import apply_affiliate_commission, record_investment, to_money


class StaffEntryError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def create_staff_entry(
    db: Session,
    staff_user_id: str,
    investor_email: str,
    collection_id: int,
    pricing_tier_id: int,
    purchase_price,
    payment_method: str,
    currency: str,
    investor_name: Optional[str] = None,
    affiliate_code: Optional[str] = None,
    notes: Optional[str] = None,
) -> Ownership:
    tier = db.query(PricingTier).filter(PricingTier.id == pricing_tier_id).first()
    if not tier:
        raise StaffEntryError("Pricing tier not found", 404)
    if tier.collection_id != collection_id:
        raise StaffEntryError("Pricing tier does not belong to selected collection", 400)
    email = normalize_email(investor_email)
    if not email or "@" not in email:
        raise StaffEntryError("A valid investor email is required", 400)

    # The investor account is only created on approval
    ownership = Ownership(
        unit_id=None,
        user_id=None,
        pending_investor_email=email,
        pending_investor_name=(investor_name or "").strip() or None,
        pricing_tier_id=tier.id,
        percentage_owned=int(tier.percentage),
        purchase_price=to_money(purchase_price),
        currency=(currency or "PHP").upper(),
        payment_method=payment_method,
        affiliate_link_id=get_affiliate_link_id(db, affiliate_code),
        approval_status=ApprovalStatus.PENDING_APPROVAL.value,
        created_by_user_id=staff_user_id,
        notes=notes,
    )
    db.add(ownership)
    db.commit()
    db.refresh(ownership)
    logger.info(f"[staff.create] ownership={ownership.id} for {email} by {staff_user_id}")
    return ownership


def _get_pending(db: Session, ownership_id: int) -> Ownership:
    ownership = (
        db.query(Ownership)
        .filter(Ownership.id == ownership_id, Ownership.approval_status == ApprovalStatus.PENDING_APPROVAL.value)
        .first()
    )
    if not ownership:
        raise StaffEntryError("Pending ownership not found", 404)
    return ownership


def approve_staff_entry(db: Session, ownership_id: int, admin_user_id: str, unit_id: Optional[int] = None) -> Ownership:
    ownership = _get_pending(db, ownership_id)
    if not ownership.pending_investor_email:
        raise StaffEntryError("Ownership has no pending investor email", 400)
    tier = db.query(PricingTier).filter(PricingTier.id == ownership.pricing_tier_id).first()
    if not tier:
        raise StaffEntryError("Ownership has no pricing tier", 400)

    collection_id = tier.collection_id
    percentage = int(ownership.percentage_owned)
    purchase_price = Decimal(str(ownership.purchase_price))
    affiliate_link_id = ownership.affiliate_link_id
    fiat_price = Decimal(str(tier.fiat_price))

    investor_id, is_new_user = get_or_create_user(db, ownership.pending_investor_email, ownership.pending_investor_name)

    with allocation_lock(db, collection_id):
        status = db.query(Ownership.approval_status).filter(Ownership.id == ownership_id).scalar()
        if status != ApprovalStatus.PENDING_APPROVAL.value:
            db.rollback()
            raise StaffEntryError("Pending ownership not found", 404)

        if unit_id:
            unit = db.query(Unit).filter(Unit.id == unit_id).first()
            if not unit or unit.collection_id != collection_id:
                db.rollback()
                raise StaffEntryError("Unit does not belong to this collection", 400)
            if get_unit_allocated(db, unit_id) + percentage > UNIT_CAPACITY_BP:
                db.rollback()
                raise StaffEntryError(f"Unit {unit.name} cannot accommodate {percentage} basis points", 409)
        else:
            unit_id = find_available_unit(db, collection_id, percentage)
            if unit_id is None:
                db.rollback()
                raise StaffEntryError(f"No available units in collection for {percentage} basis points", 409)

        db.query(Ownership).filter(Ownership.id == ownership_id).update(
            {
                Ownership.unit_id: unit_id,
                Ownership.user_id: investor_id,
                Ownership.approval_status: ApprovalStatus.APPROVED.value,
                Ownership.approved_by_user_id: admin_user_id,
                Ownership.approved_at: datetime.now(timezone.utc),
                Ownership.pending_investor_email: None,
                Ownership.pending_investor_name: None,
            },
            synchronize_session=False,
        )
        db.flush()
        if get_unit_allocated(db, unit_id) >= UNIT_CAPACITY_BP:
            db.query(Unit).filter(Unit.id == unit_id).update(
                {Unit.status: UnitStatus.SOLD_OUT.value},
                synchronize_session=False,
            )
        db.commit()

    logger.info(f"[staff.approve] ownership={ownership_id} unit={unit_id} investor={investor_id} by {admin_user_id}")

    try:
        record_investment(db, investor_id, purchase_price)
    except Exception as ex:
        db.rollback()
        logger.exception(f"[staff.approve] investor profile update failed: {ex}")

    collection = db.query(PropertyCollection).filter(PropertyCollection.id == collection_id).first()
    collection_name = collection.name if collection else ""
    if affiliate_link_id:
        try:
            apply_affiliate_commission(db, ownership_id, affiliate_link_id, fiat_price, collection_name, percentage)
        except Exception as ex:
            db.rollback()
            logger.exception(f"[staff.approve] affiliate commission failed: {ex}")

    investor = db.query(User).filter(User.id == investor_id).first()
    if investor and investor.email:
        try:
            notifications.send_moa_ready(investor.email, investor.name, ownership_id, collection_name)
        except Exception as ex:
            logger.warning(f"[staff.approve] MOA email failed: {ex}")
        if is_new_user:
            try:
                notifications.send_guest_welcome(investor.email, investor.name)
            except Exception as ex:
                logger.warning(f"[staff.approve] welcome email failed: {ex}")

    return db.query(Ownership).filter(Ownership.id == ownership_id).first()


def reject_staff_entry(db: Session, ownership_id: int, admin_user_id: str, reason: str) -> Ownership:
    updated = (
        db.query(Ownership)
        .filter(Ownership.id == ownership_id, Ownership.approval_status == ApprovalStatus.PENDING_APPROVAL.value)
        .update(
            {
                Ownership.approval_status: ApprovalStatus.REJECTED.value,
                Ownership.approved_by_user_id: admin_user_id,
                Ownership.approved_at: datetime.now(timezone.utc),
                Ownership.rejection_reason: reason,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    if not updated:
        raise StaffEntryError("Pending ownership not found", 404)
    logger.info(f"[staff.reject] ownership={ownership_id} rejected by {admin_user_id}: {reason}")
    return db.query(Ownership).filter(Ownership.id == ownership_id).first()
