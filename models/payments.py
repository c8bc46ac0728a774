"""
Payment models

A Payment row records one provider-confirmed (or admin-reviewed) transaction.
`external_id` is the idempotency key shared by every rail:
- STRIPE: checkout session id
- DEPAY: transaction hash
- MANUAL: generated reference code
Payment rows are never deleted.
"""
import enum

from sqlalchemy import Column, String, Text, DateTime, Boolean, Integer, Numeric, JSON, ForeignKey
from sqlalchemy.sql import func
from core.database import Base


class PaymentProvider(str, enum.Enum):
    STRIPE = "STRIPE"
    DEPAY = "DEPAY"
    MANUAL = "MANUAL"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class ManualPaymentMethod(Base):
    __tablename__ = "manual_payment_methods"

    id = Column(String(50), primary_key=True)  # slug, e.g. "gcash"
    name = Column(String(100), nullable=False)
    instructions = Column(Text, nullable=True)
    account_number = Column(String(100), nullable=True)
    account_name = Column(String(255), nullable=True)
    qr_code_url = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "instructions": self.instructions,
            "accountNumber": self.account_number,
            "accountName": self.account_name,
            "qrCodeUrl": self.qr_code_url,
            "isActive": bool(self.is_active),
            "sortOrder": self.sort_order,
        }


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)

    provider = Column(String(20), nullable=False)
    external_id = Column(String(255), unique=True, index=True, nullable=False)
    user_id = Column(String(64), ForeignKey("users.id"), index=True, nullable=True)

    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(10), nullable=False)
    status = Column(String(20), default=PaymentStatus.PENDING.value, nullable=False, index=True)

    # Purchase details, so a stored payment can be settled without the provider
    collection_id = Column(Integer, ForeignKey("property_collections.id"), nullable=True)
    pricing_tier_id = Column(Integer, ForeignKey("pricing_tiers.id"), nullable=True)
    percentage_to_buy = Column(Integer, nullable=True)
    affiliate_link_id = Column(Integer, ForeignKey("affiliate_links.id"), nullable=True)

    # Manual payment review
    manual_payment_method_id = Column(String(50), ForeignKey("manual_payment_methods.id"), nullable=True)
    proof_image_url = Column(Text, nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_by = Column(String(64), nullable=True)
    rejection_reason = Column(Text, nullable=True)

    extra_metadata = Column("metadata", JSON, default=dict)

    # Set by the settlement pipeline together with the ownership insert
    webhook_processed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "provider": self.provider,
            "externalId": self.external_id,
            "userId": self.user_id,
            "amount": f"{self.amount:.2f}" if self.amount is not None else None,
            "currency": self.currency,
            "status": self.status,
            "collectionId": self.collection_id,
            "pricingTierId": self.pricing_tier_id,
            "percentageToBuy": self.percentage_to_buy,
            "manualPaymentMethodId": self.manual_payment_method_id,
            "proofImageUrl": self.proof_image_url,
            "reviewedAt": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "reviewedBy": self.reviewed_by,
            "rejectionReason": self.rejection_reason,
            "metadata": self.extra_metadata or {},
            "settled": self.webhook_processed_at is not None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
