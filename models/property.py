"""
Property inventory models: collections, units and pricing tiers

Percentages are integer basis points (10000 = 100% of one unit).
"""
import enum

from sqlalchemy import Column, String, Text, DateTime, Boolean, Integer, Numeric, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from core.database import Base

UNIT_CAPACITY_BP = 10000


class UnitStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    SOLD_OUT = "SOLD_OUT"
    DRAFT = "DRAFT"


class PropertyCollection(Base):
    __tablename__ = "property_collections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, index=True, nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String(255), nullable=True)
    image_url = Column(Text, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    display_order = Column(Integer, default=0, nullable=False)

    # Stay pricing, shown on the collection page
    price_per_night = Column(Numeric(10, 2), nullable=True)
    cleaning_fee = Column(Numeric(10, 2), nullable=True)
    service_fee_percent = Column(Numeric(5, 2), nullable=True)
    min_nights = Column(Integer, default=1)
    max_guests = Column(Integer, default=2)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "location": self.location,
            "imageUrl": self.image_url,
            "isActive": bool(self.is_active),
            "displayOrder": self.display_order,
        }


class Unit(Base):
    __tablename__ = "units"

    id = Column(Integer, primary_key=True, autoincrement=True)
    collection_id = Column(Integer, ForeignKey("property_collections.id"), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), default=UnitStatus.AVAILABLE.value, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "collectionId": self.collection_id,
            "name": self.name,
            "status": self.status,
        }


class PricingTier(Base):
    __tablename__ = "pricing_tiers"
    __table_args__ = (
        UniqueConstraint("collection_id", "percentage", name="uq_pricing_tier_collection_percentage"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    collection_id = Column(Integer, ForeignKey("property_collections.id"), index=True, nullable=False)

    percentage = Column(Integer, nullable=False)  # basis points
    crypto_price = Column(Numeric(12, 2), nullable=False)  # USD
    fiat_price = Column(Numeric(12, 2), nullable=False)  # site currency; commissions use this
    display_label = Column(String(100), nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    effective_from = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    effective_until = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "collectionId": self.collection_id,
            "percentage": self.percentage,
            "cryptoPrice": f"{self.crypto_price:.2f}",
            "fiatPrice": f"{self.fiat_price:.2f}",
            "displayLabel": self.display_label,
            "isActive": bool(self.is_active),
        }
