"""
Ownership model

One row per purchased fraction of a unit. Rows are created by the settlement
pipeline (one per payment) or by staff entries, and are never deleted.
Capacity of a unit counts rows whose approval_status is NULL or APPROVED.
"""
import enum

from sqlalchemy import Column, String, Text, DateTime, Boolean, Integer, Numeric, ForeignKey
from sqlalchemy.sql import func
from core.database import Base


class OwnershipPaymentMethod(str, enum.Enum):
    FIAT = "FIAT"
    CRYPTO = "CRYPTO"
    MANUAL = "MANUAL"


class ApprovalStatus(str, enum.Enum):
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Ownership(Base):
    __tablename__ = "ownerships"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Both nullable only while a staff entry awaits approval
    unit_id = Column(Integer, ForeignKey("units.id"), index=True, nullable=True)
    user_id = Column(String(64), ForeignKey("users.id"), index=True, nullable=True)
    pending_investor_email = Column(String(255), nullable=True)
    pending_investor_name = Column(String(255), nullable=True)

    pricing_tier_id = Column(Integer, ForeignKey("pricing_tiers.id"), nullable=True)
    percentage_owned = Column(Integer, nullable=False)  # basis points
    purchase_price = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(20), nullable=False)
    currency = Column(String(10), default="PHP", nullable=False)

    affiliate_link_id = Column(Integer, ForeignKey("affiliate_links.id"), nullable=True)
    # At most one ownership per payment
    payment_id = Column(Integer, ForeignKey("payments.id"), unique=True, index=True, nullable=True)

    # Management agreement (MOA) and rental agreement (RMA) signing state
    moa_url = Column(Text, nullable=True)
    is_signed = Column(Boolean, default=False, nullable=False)
    moa_signed_at = Column(DateTime(timezone=True), nullable=True)
    signer_name = Column(String(255), nullable=True)
    rma_url = Column(Text, nullable=True)
    is_rma_signed = Column(Boolean, default=False, nullable=False)
    rma_signed_at = Column(DateTime(timezone=True), nullable=True)
    rma_signer_name = Column(String(255), nullable=True)
    certificate_url = Column(Text, nullable=True)

    # Staff entry approval
    approval_status = Column(String(30), nullable=True, index=True)
    created_by_user_id = Column(String(64), nullable=True)
    approved_by_user_id = Column(String(64), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "unitId": self.unit_id,
            "userId": self.user_id,
            "pendingInvestorEmail": self.pending_investor_email,
            "pendingInvestorName": self.pending_investor_name,
            "pricingTierId": self.pricing_tier_id,
            "percentageOwned": self.percentage_owned,
            "purchasePrice": f"{self.purchase_price:.2f}",
            "paymentMethod": self.payment_method,
            "currency": self.currency,
            "affiliateLinkId": self.affiliate_link_id,
            "paymentId": self.payment_id,
            "isSigned": bool(self.is_signed),
            "moaSignedAt": self.moa_signed_at.isoformat() if self.moa_signed_at else None,
            "isRmaSigned": bool(self.is_rma_signed),
            "rmaSignedAt": self.rma_signed_at.isoformat() if self.rma_signed_at else None,
            "approvalStatus": self.approval_status,
            "approvedAt": self.approved_at.isoformat() if self.approved_at else None,
            "rejectionReason": self.rejection_reason,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
