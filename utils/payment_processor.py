"""
Settlement pipeline

Every payment rail (Stripe webhook, DePay callback, manual approval) funnels a
confirmed payment into process_successful_payment. The pipeline is idempotent
on payment id: replaying a payment returns the ownership created the first
time and produces no side effects.

Steps:
1. idempotency lookup by payment id
2. tier lookup (the tier, not the caller, decides the percentage)
3. allocate a unit and insert the ownership under the collection lock;
   the payment is stamped as settled in the same commit
4. affiliate commission (best-effort)
5. investor profile and role upgrade (best-effort)
6. notifications (best-effort, each independent)
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.config import logger
from models.affiliates import AffiliateLink, AffiliateProfile, AffiliateTransaction
from models.ownership import Ownership
from models.payments import Payment
from models.property import PricingTier, PropertyCollection, Unit, UnitStatus, UNIT_CAPACITY_BP
from models.user import InvestorProfile, User, UserRole
from utils import notifications
from utils.allocation import allocation_lock, find_available_unit, get_unit_allocated

CENTS = Decimal("0.01")


@dataclass
class ProcessPaymentInput:
    payment_id: int
    user_id: str
    collection_id: int
    pricing_tier_id: int
    percentage_to_buy: int
    amount_paid: Decimal
    currency: str
    payment_method: str  # FIAT | CRYPTO | MANUAL
    affiliate_link_id: Optional[int] = None
    is_new_user: bool = False


@dataclass
class ProcessPaymentResult:
    success: bool
    ownership_id: Optional[int] = None
    unit_id: Optional[int] = None
    unit_name: Optional[str] = None
    error: Optional[str] = None
    already_processed: bool = False
    sold_out: bool = False

    def to_dict(self):
        return {
            "success": self.success,
            "ownershipId": self.ownership_id,
            "unitId": self.unit_id,
            "unitName": self.unit_name,
            "error": self.error,
            "alreadyProcessed": self.already_processed,
        }


def to_money(value) -> Decimal:
    return Decimal(str(value if value is not None else 0)).quantize(CENTS, rounding=ROUND_HALF_UP)


def compute_commission(fiat_price, rate) -> Decimal:
    """Commission on the tier fiat price, rounded half-up to cents (725000 at 5% -> 36250.00)"""
    return (Decimal(str(fiat_price)) * Decimal(str(rate)) / Decimal(100)).quantize(CENTS, rounding=ROUND_HALF_UP)


def input_from_payment(payment: Payment, payment_method: str, is_new_user: bool = False) -> ProcessPaymentInput:
    """Rebuild the pipeline input from a stored payment row (resumed or reviewed payments)"""
    return ProcessPaymentInput(
        payment_id=payment.id,
        user_id=payment.user_id,
        collection_id=payment.collection_id,
        pricing_tier_id=payment.pricing_tier_id,
        percentage_to_buy=int(payment.percentage_to_buy or 0),
        amount_paid=to_money(payment.amount),
        currency=payment.currency,
        payment_method=payment_method,
        affiliate_link_id=payment.affiliate_link_id,
        is_new_user=is_new_user,
    )


def _existing_result(db: Session, payment_id: int) -> Optional[ProcessPaymentResult]:
    row = (
        db.query(Ownership.id, Ownership.unit_id, Unit.name)
        .outerjoin(Unit, Unit.id == Ownership.unit_id)
        .filter(Ownership.payment_id == payment_id)
        .first()
    )
    if not row:
        return None
    return ProcessPaymentResult(
        success=True,
        ownership_id=row[0],
        unit_id=row[1],
        unit_name=row[2],
        already_processed=True,
    )


def process_successful_payment(db: Session, data: ProcessPaymentInput) -> ProcessPaymentResult:
    tag = f"[settlement] payment={data.payment_id}"
    try:
        existing = _existing_result(db, data.payment_id)
        if existing:
            logger.info(f"{tag} already settled as ownership={existing.ownership_id}")
            return existing

        tier = db.query(PricingTier).filter(PricingTier.id == data.pricing_tier_id).first()
        if not tier or tier.collection_id != data.collection_id:
            logger.warning(f"{tag} pricing tier {data.pricing_tier_id} not found in collection {data.collection_id}")
            return ProcessPaymentResult(success=False, error="Pricing tier not found")

        percentage = int(tier.percentage)
        fiat_price = Decimal(str(tier.fiat_price))
        if data.percentage_to_buy and int(data.percentage_to_buy) != percentage:
            logger.warning(f"{tag} requested {data.percentage_to_buy}bp but tier {tier.id} sells {percentage}bp; using tier")

        with allocation_lock(db, data.collection_id):
            existing = _existing_result(db, data.payment_id)
            if existing:
                db.rollback()
                return existing

            unit_id = find_available_unit(db, data.collection_id, percentage)
            if unit_id is None:
                db.rollback()
                msg = f"No available units in collection for {percentage} basis points"
                logger.warning(f"{tag} {msg}")
                return ProcessPaymentResult(success=False, error=msg, sold_out=True)

            ownership = Ownership(
                unit_id=unit_id,
                user_id=data.user_id,
                pricing_tier_id=tier.id,
                percentage_owned=percentage,
                purchase_price=to_money(data.amount_paid),
                payment_method=data.payment_method,
                currency=data.currency,
                affiliate_link_id=data.affiliate_link_id,
                payment_id=data.payment_id,
            )
            db.add(ownership)
            db.flush()
            ownership_id = ownership.id

            db.query(Payment).filter(Payment.id == data.payment_id).update(
                {Payment.webhook_processed_at: datetime.now(timezone.utc)},
                synchronize_session=False,
            )
            if get_unit_allocated(db, unit_id) >= UNIT_CAPACITY_BP:
                db.query(Unit).filter(Unit.id == unit_id).update(
                    {Unit.status: UnitStatus.SOLD_OUT.value},
                    synchronize_session=False,
                )
            db.commit()
    except IntegrityError:
        # A concurrent delivery of the same payment committed first
        db.rollback()
        existing = _existing_result(db, data.payment_id)
        if existing:
            logger.info(f"{tag} lost settlement race; returning ownership={existing.ownership_id}")
            return existing
        logger.exception(f"{tag} integrity error while settling")
        return ProcessPaymentResult(success=False, error="Failed to record ownership")
    except Exception as ex:
        db.rollback()
        logger.exception(f"{tag} settlement failed: {ex}")
        return ProcessPaymentResult(success=False, error=str(ex) or "Settlement failed")

    unit = db.query(Unit).filter(Unit.id == unit_id).first()
    collection = db.query(PropertyCollection).filter(PropertyCollection.id == data.collection_id).first()
    unit_name = unit.name if unit else None
    collection_name = collection.name if collection else (unit_name or "")
    logger.info(f"{tag} ownership={ownership_id} unit={unit_id} percentage={percentage}bp method={data.payment_method}")

    if data.affiliate_link_id:
        try:
            apply_affiliate_commission(db, ownership_id, data.affiliate_link_id, fiat_price, collection_name, percentage)
        except Exception as ex:
            db.rollback()
            logger.exception(f"{tag} affiliate commission failed: {ex}")

    is_first_purchase = False
    try:
        is_first_purchase = record_investment(db, data.user_id, to_money(data.amount_paid))
    except Exception as ex:
        db.rollback()
        logger.exception(f"{tag} investor profile update failed: {ex}")

    _send_purchase_emails(
        db,
        data,
        ownership_id=ownership_id,
        unit_name=unit_name or "",
        collection_name=collection_name,
        percentage=percentage,
        is_first_purchase=is_first_purchase,
    )

    return ProcessPaymentResult(success=True, ownership_id=ownership_id, unit_id=unit_id, unit_name=unit_name)


def apply_affiliate_commission(
    db: Session,
    ownership_id: int,
    affiliate_link_id: int,
    fiat_price,
    collection_name: str,
    percentage_bp: int,
) -> Optional[AffiliateTransaction]:
    """Record the commission for one ownership and bump the affiliate's counters.

    One transaction row per ownership; a second call for the same ownership
    is a no-op.
    """
    link = db.query(AffiliateLink).filter(AffiliateLink.id == affiliate_link_id).first()
    if not link:
        logger.warning(f"[commission] affiliate link {affiliate_link_id} not found; skipping ownership={ownership_id}")
        return None
    if db.query(AffiliateTransaction.id).filter(AffiliateTransaction.ownership_id == ownership_id).first():
        return None

    rate = Decimal(str(link.commission_rate))
    commission = compute_commission(fiat_price, rate)
    txn = AffiliateTransaction(
        affiliate_link_id=link.id,
        ownership_id=ownership_id,
        commission_amount=commission,
        commission_rate=rate,
    )
    db.add(txn)

    updated = db.query(AffiliateProfile).filter(AffiliateProfile.user_id == link.affiliate_user_id).update(
        {AffiliateProfile.total_earned: AffiliateProfile.total_earned + commission},
        synchronize_session=False,
    )
    if not updated:
        db.add(AffiliateProfile(
            user_id=link.affiliate_user_id,
            default_commission_rate=rate,
            total_earned=commission,
            total_paid=Decimal("0"),
        ))
    db.query(AffiliateLink).filter(AffiliateLink.id == link.id).update(
        {AffiliateLink.conversion_count: AffiliateLink.conversion_count + 1},
        synchronize_session=False,
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"[commission] ownership={ownership_id} already has a commission row")
        return None

    logger.info(f"[commission] ownership={ownership_id} link={link.code} rate={rate}% amount={commission}")

    affiliate = db.query(User).filter(User.id == link.affiliate_user_id).first()
    if affiliate and affiliate.email:
        try:
            notifications.send_commission_earned(
                affiliate.email, affiliate.name, commission, rate, collection_name, percentage_bp,
            )
        except Exception as ex:
            logger.warning(f"[commission] commission email failed for ownership={ownership_id}: {ex}")
    return txn


def _upgrade_visitor(db: Session, user_id: str) -> None:
    db.query(User).filter(User.id == user_id, User.role == UserRole.VISITOR.value).update(
        {User.role: UserRole.INVESTOR.value},
        synchronize_session=False,
    )


def record_investment(db: Session, user_id: str, amount: Decimal) -> bool:
    """Add one ownership to the investor's running totals.

    Returns True when this call created the investor profile, i.e. this was
    the user's first counted ownership. Of two first purchases settling at
    once, only the one whose insert wins the unique constraint gets True.
    """
    _upgrade_visitor(db, user_id)
    updated = db.query(InvestorProfile).filter(InvestorProfile.user_id == user_id).update(
        {
            InvestorProfile.total_invested: InvestorProfile.total_invested + amount,
            InvestorProfile.total_units_owned: InvestorProfile.total_units_owned + 1,
        },
        synchronize_session=False,
    )
    if updated:
        db.commit()
        return False

    db.add(InvestorProfile(user_id=user_id, total_invested=amount, total_units_owned=1))
    try:
        db.commit()
    except IntegrityError:
        # Another settlement for this user created the profile first
        db.rollback()
        _upgrade_visitor(db, user_id)
        db.query(InvestorProfile).filter(InvestorProfile.user_id == user_id).update(
            {
                InvestorProfile.total_invested: InvestorProfile.total_invested + amount,
                InvestorProfile.total_units_owned: InvestorProfile.total_units_owned + 1,
            },
            synchronize_session=False,
        )
        db.commit()
        return False
    return True


def _send_purchase_emails(
    db: Session,
    data: ProcessPaymentInput,
    ownership_id: int,
    unit_name: str,
    collection_name: str,
    percentage: int,
    is_first_purchase: bool,
) -> None:
    user = db.query(User).filter(User.id == data.user_id).first()
    if not user or not user.email:
        logger.warning(f"[settlement] payment={data.payment_id} user {data.user_id} has no email; skipping notifications")
        return
    to_addr, name = user.email, user.name

    try:
        notifications.send_purchase_confirmation(
            to_addr, name, ownership_id, collection_name, unit_name, percentage,
            data.amount_paid, data.currency, data.payment_method,
        )
    except Exception as ex:
        logger.warning(f"[settlement] purchase confirmation email failed: {ex}")

    try:
        notifications.send_moa_ready(to_addr, name, ownership_id, collection_name)
    except Exception as ex:
        logger.warning(f"[settlement] MOA email failed: {ex}")

    if not is_first_purchase:
        return
    try:
        if data.is_new_user:
            notifications.send_guest_welcome(to_addr, name)
        else:
            notifications.send_investor_welcome(to_addr, name)
    except Exception as ex:
        logger.warning(f"[settlement] welcome email failed: {ex}")
