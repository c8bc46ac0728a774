"""
Affiliate models
- affiliate_profiles: running earnings per affiliate user
- affiliate_links: referral codes with a commission rate
- affiliate_transactions: one commission row per attributed ownership
"""
import enum

from sqlalchemy import Column, String, Integer, Boolean, DateTime, Text, Numeric, ForeignKey
from sqlalchemy.sql import func
from core.database import Base


class AffiliateLinkStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    EXPIRED = "EXPIRED"


class AffiliateProfile(Base):
    __tablename__ = "affiliate_profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("users.id"), unique=True, index=True, nullable=False)

    default_commission_rate = Column(Numeric(5, 2), default=5, nullable=False)

    # Aggregate counters
    total_earned = Column(Numeric(12, 2), default=0, nullable=False)
    total_paid = Column(Numeric(12, 2), default=0, nullable=False)

    status = Column(String(20), default="ACTIVE", nullable=False)

    # Audit
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def to_dict(self):
        return {
            "userId": self.user_id,
            "defaultCommissionRate": f"{self.default_commission_rate:.2f}",
            "totalEarned": f"{self.total_earned or 0:.2f}",
            "totalPaid": f"{self.total_paid or 0:.2f}",
            "status": self.status,
        }


class AffiliateLink(Base):
    __tablename__ = "affiliate_links"

    id = Column(Integer, primary_key=True, autoincrement=True)

    code = Column(String(50), unique=True, index=True, nullable=False)
    affiliate_user_id = Column(String(64), ForeignKey("users.id"), unique=True, index=True, nullable=False)
    commission_rate = Column(Numeric(5, 2), nullable=False)  # percent of the tier fiat price

    status = Column(String(20), default=AffiliateLinkStatus.ACTIVE.value, nullable=False)
    click_count = Column(Integer, default=0, nullable=False)
    conversion_count = Column(Integer, default=0, nullable=False)
    created_by = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "affiliateUserId": self.affiliate_user_id,
            "commissionRate": f"{self.commission_rate:.2f}",
            "status": self.status,
            "clickCount": self.click_count,
            "conversionCount": self.conversion_count,
        }


class AffiliateTransaction(Base):
    __tablename__ = "affiliate_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)

    affiliate_link_id = Column(Integer, ForeignKey("affiliate_links.id"), index=True, nullable=False)
    ownership_id = Column(Integer, ForeignKey("ownerships.id"), unique=True, index=True, nullable=False)

    commission_amount = Column(Numeric(12, 2), nullable=False)
    commission_rate = Column(Numeric(5, 2), nullable=False)  # snapshot of the link rate at purchase

    is_paid = Column(Boolean, default=False, nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    paid_by = Column(String(64), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "affiliateLinkId": self.affiliate_link_id,
            "ownershipId": self.ownership_id,
            "commissionAmount": f"{self.commission_amount:.2f}",
            "commissionRate": f"{self.commission_rate:.2f}",
            "isPaid": bool(self.is_paid),
            "paidAt": self.paid_at.isoformat() if self.paid_at else None,
            "paidBy": self.paid_by,
            "notes": self.notes,
        }
