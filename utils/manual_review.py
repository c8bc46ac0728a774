"""
Manual (bank transfer / e-wallet) payments

The buyer pays outside the platform and uploads a proof; an admin approval is
the success signal. Approval claims the payment with a conditional update so
two admins (or a double click) cannot both move it out of PENDING, and the
settlement pipeline's idempotency covers any replay after that.
"""
import re
import secrets
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from core.config import logger
from models.ownership import OwnershipPaymentMethod
from models.payments import Payment, PaymentProvider, PaymentStatus
from models.user import User
from utils import notifications
from utils.payment_processor import ProcessPaymentResult, input_from_payment, process_successful_payment
from utils.payment_records import resume_settlement

REFERENCE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no 0/O/1/I
REFERENCE_RE = re.compile(r"^PR-\d{4}-[" + REFERENCE_ALPHABET + r"]{6}$")


class ManualReviewError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def generate_reference_code(now: Optional[datetime] = None) -> str:
    """PR-2025-K7M2QX"""
    year = (now or datetime.now(timezone.utc)).year
    suffix = "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(6))
    return f"PR-{year}-{suffix}"


def is_reference_code(value: str) -> bool:
    return bool(REFERENCE_RE.match(value or ""))


def _get_manual_payment(db: Session, payment_id: int) -> Payment:
    payment = (
        db.query(Payment)
        .filter(Payment.id == payment_id, Payment.provider == PaymentProvider.MANUAL.value)
        .first()
    )
    if not payment:
        raise ManualReviewError("Payment not found", 404)
    return payment


def approve_manual_payment(db: Session, payment_id: int, reviewer_id: str) -> ProcessPaymentResult:
    payment = _get_manual_payment(db, payment_id)

    if payment.status == PaymentStatus.SUCCESS.value:
        # Already approved; the pipeline returns the ownership it created
        return resume_settlement(db, payment, OwnershipPaymentMethod.MANUAL.value)
    if payment.status != PaymentStatus.PENDING.value:
        raise ManualReviewError(f"Cannot approve payment with status: {payment.status}", 409)
    if not payment.user_id or not payment.collection_id or not payment.pricing_tier_id:
        raise ManualReviewError("Payment is missing required fields", 400)

    claimed = (
        db.query(Payment)
        .filter(Payment.id == payment_id, Payment.status == PaymentStatus.PENDING.value)
        .update(
            {
                Payment.status: PaymentStatus.SUCCESS.value,
                Payment.reviewed_at: datetime.now(timezone.utc),
                Payment.reviewed_by: reviewer_id,
                Payment.rejection_reason: None,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    db.refresh(payment)

    if not claimed:
        if payment.status == PaymentStatus.SUCCESS.value:
            return resume_settlement(db, payment, OwnershipPaymentMethod.MANUAL.value)
        raise ManualReviewError(f"Cannot approve payment with status: {payment.status}", 409)

    logger.info(f"[manual.approve] payment={payment.id} ({payment.external_id}) approved by {reviewer_id}")
    result = process_successful_payment(db, input_from_payment(payment, OwnershipPaymentMethod.MANUAL.value))
    if not result.success:
        # Hand the payment back to the review queue unless a concurrent approval settled it
        db.query(Payment).filter(Payment.id == payment.id, Payment.webhook_processed_at.is_(None)).update(
            {
                Payment.status: PaymentStatus.PENDING.value,
                Payment.reviewed_at: None,
                Payment.reviewed_by: None,
            },
            synchronize_session=False,
        )
        db.commit()
        logger.warning(f"[manual.approve] payment={payment.id} reverted to PENDING: {result.error}")
    return result


def reject_manual_payment(db: Session, payment_id: int, reviewer_id: str, reason: str) -> Payment:
    payment = _get_manual_payment(db, payment_id)
    if payment.status != PaymentStatus.PENDING.value:
        raise ManualReviewError(f"Cannot reject payment with status: {payment.status}", 409)

    rejected = (
        db.query(Payment)
        .filter(Payment.id == payment_id, Payment.status == PaymentStatus.PENDING.value)
        .update(
            {
                Payment.status: PaymentStatus.FAILED.value,
                Payment.reviewed_at: datetime.now(timezone.utc),
                Payment.reviewed_by: reviewer_id,
                Payment.rejection_reason: reason,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    db.refresh(payment)
    if not rejected:
        raise ManualReviewError(f"Cannot reject payment with status: {payment.status}", 409)

    logger.info(f"[manual.reject] payment={payment.id} ({payment.external_id}) rejected by {reviewer_id}: {reason}")
    user = db.query(User).filter(User.id == payment.user_id).first() if payment.user_id else None
    if user and user.email:
        try:
            notifications.send_manual_payment_rejected(user.email, user.name, payment.external_id, reason)
        except Exception as ex:
            logger.warning(f"[manual.reject] rejection email failed: {ex}")
    return payment
