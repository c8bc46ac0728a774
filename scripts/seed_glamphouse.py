"""
Seed the Glamphouse collection: the collection row, 24 units (A1-A8, B1-B8,
C1-C8), the eight pricing tiers and the default manual payment methods.
Safe to re-run; existing rows are left untouched.

After seeding, prices and methods are managed in the database.
"""
import sys
import os
from decimal import Decimal

# Add parent directory to path to import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.database import SessionLocal, init_db
from models.payments import ManualPaymentMethod
from models.property import PricingTier, PropertyCollection, Unit, UnitStatus

COLLECTION = {
    "name": "Glamphouse",
    "slug": "glamphouse",
    "description": "Experience modern oceanfront living in our glamphouses designed for sustainability and comfort.",
    "display_order": 1,
}

BUILDINGS = [("A", 8), ("B", 8), ("C", 8)]

# (basis points, crypto USD, fiat PHP, label)
PRICING_TIERS = [
    (75, "350.00", "25000.00", "0.75%"),
    (150, "670.00", "47000.00", "1.5%"),
    (300, "1320.00", "94000.00", "3%"),
    (600, "2575.00", "187000.00", "6%"),
    (1250, "5110.00", "371000.00", "12.5%"),
    (2500, "10100.00", "725000.00", "25%"),
    (5000, "20000.00", "1450000.00", "50%"),
    (10000, "40000.00", "2750000.00", "100%"),
]

_STEPS = """1. Open your {app} app
2. Tap "Send Money"
3. Enter the mobile number below
4. Enter the exact amount shown
5. Add the reference code in the message field
6. Confirm and complete the payment
7. Upload the confirmation screenshot as proof of payment"""

MANUAL_METHODS = [
    {"id": "gcash", "name": "GCash", "instructions": _STEPS.format(app="GCash"), "sort_order": 1},
    {"id": "maya", "name": "Maya", "instructions": _STEPS.format(app="Maya"), "sort_order": 2},
    {
        "id": "bank_transfer",
        "name": "Bank Transfer",
        "instructions": "Transfer the exact amount to the account below and put the reference code in the remarks.",
        "sort_order": 3,
    },
]


def seed():
    init_db()
    db = SessionLocal()
    try:
        collection = db.query(PropertyCollection).filter(PropertyCollection.slug == COLLECTION["slug"]).first()
        if collection:
            print(f"✓ Collection exists: {collection.name} (id={collection.id})")
        else:
            collection = PropertyCollection(**COLLECTION)
            db.add(collection)
            db.flush()
            print(f"✓ Created collection {collection.name} (id={collection.id})")

        existing_units = {u.name for u in db.query(Unit).filter(Unit.collection_id == collection.id).all()}
        created = 0
        for letter, count in BUILDINGS:
            for i in range(1, count + 1):
                name = f"Glamphouse {letter}{i}"
                if name in existing_units:
                    continue
                db.add(Unit(collection_id=collection.id, name=name, status=UnitStatus.AVAILABLE.value))
                created += 1
        print(f"✓ Units: {created} created, {len(existing_units)} already present")

        existing_tiers = {
            t.percentage for t in db.query(PricingTier).filter(PricingTier.collection_id == collection.id).all()
        }
        created = 0
        for bp, crypto, fiat, label in PRICING_TIERS:
            if bp in existing_tiers:
                continue
            db.add(PricingTier(
                collection_id=collection.id,
                percentage=bp,
                crypto_price=Decimal(crypto),
                fiat_price=Decimal(fiat),
                display_label=label,
            ))
            created += 1
        print(f"✓ Pricing tiers: {created} created")

        for method in MANUAL_METHODS:
            if not db.query(ManualPaymentMethod.id).filter(ManualPaymentMethod.id == method["id"]).first():
                db.add(ManualPaymentMethod(**method))
                print(f"✓ Payment method {method['name']} created")

        db.commit()
    except Exception as e:
        db.rollback()
        print(f"✗ Seed failed: {e}")
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    seed()
