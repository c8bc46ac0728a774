"""
User and investor models
"""
import enum
import uuid

from sqlalchemy import Column, String, DateTime, Integer, Numeric, ForeignKey
from sqlalchemy.sql import func
from core.database import Base


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    STAFF = "STAFF"
    AFFILIATE = "AFFILIATE"
    INVESTOR = "INVESTOR"
    VISITOR = "VISITOR"


def _uuid() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True, default=_uuid)

    # Basic info (email is stored lower-cased)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)

    role = Column(String(20), default=UserRole.VISITOR.value, nullable=False, index=True)
    status = Column(String(20), default="ACTIVE", nullable=False)
    email_verified_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def to_dict(self):
        """Convert to dict for API responses"""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "status": self.status,
            "emailVerified": self.email_verified_at.isoformat() if self.email_verified_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class InvestorProfile(Base):
    """Running investment totals; always reconcilable from ownership rows"""
    __tablename__ = "investor_profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("users.id"), unique=True, index=True, nullable=False)

    total_invested = Column(Numeric(12, 2), default=0, nullable=False)
    total_units_owned = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def to_dict(self):
        return {
            "userId": self.user_id,
            "totalInvested": f"{self.total_invested or 0:.2f}",
            "totalUnitsOwned": int(self.total_units_owned or 0),
        }
