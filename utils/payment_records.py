"""Payment row bookkeeping shared by the provider rails"""
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.config import logger
from models.ownership import Ownership
from models.payments import Payment, PaymentStatus
from utils.payment_processor import ProcessPaymentResult, input_from_payment, process_successful_payment


def find_payment(db: Session, external_id: str) -> Optional[Payment]:
    return db.query(Payment).filter(Payment.external_id == external_id).first()


def payment_is_settled(db: Session, payment: Payment) -> bool:
    return db.query(Ownership.id).filter(Ownership.payment_id == payment.id).first() is not None


def record_provider_payment(db: Session, **fields) -> Tuple[Payment, bool]:
    """Insert a SUCCESS payment keyed by external_id.

    Returns (payment, created). A concurrent delivery that inserted the same
    external_id first wins; its row is returned with created=False.
    """
    payment = Payment(status=PaymentStatus.SUCCESS.value, **fields)
    db.add(payment)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = find_payment(db, fields["external_id"])
        if not existing:
            raise
        logger.info(f"[payments] duplicate delivery for {fields['provider']} {fields['external_id']}")
        return existing, False
    db.refresh(payment)
    return payment, True


def resume_settlement(db: Session, payment: Payment, payment_method: str) -> ProcessPaymentResult:
    """Settle a stored payment that has no ownership yet (earlier delivery failed mid-way)"""
    if payment.status != PaymentStatus.SUCCESS.value:
        return ProcessPaymentResult(success=False, error=f"Payment is {payment.status}")
    if not payment.user_id or not payment.collection_id or not payment.pricing_tier_id:
        return ProcessPaymentResult(success=False, error="Payment is missing purchase details")
    logger.info(f"[payments] resuming settlement for payment={payment.id} ({payment.provider} {payment.external_id})")
    return process_successful_payment(db, input_from_payment(payment, payment_method))
