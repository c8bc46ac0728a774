"""
Shared fixtures: a throwaway SQLite database, API client, auth tokens and
inventory factories. Environment is set before any project module is imported
because core.database builds its engine at import time.
"""
import os
import tempfile
import uuid
from decimal import Decimal

_TMP_DIR = tempfile.mkdtemp(prefix="samalreef-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["SESSION_JWT_SECRET"] = "test-session-secret"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["ADMIN_EMAILS"] = ""
os.environ["SMTP_HOST"] = ""
os.environ["REDIS_URL"] = ""

import jwt  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from core.database import Base, SessionLocal, engine, init_db  # noqa: E402
from models.affiliates import AffiliateLink, AffiliateProfile  # noqa: E402
from models.payments import ManualPaymentMethod  # noqa: E402
from models.property import PricingTier, PropertyCollection, Unit, UnitStatus  # noqa: E402
from models.user import User, UserRole  # noqa: E402
from utils import notifications  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_schema():
    Base.metadata.drop_all(bind=engine)
    init_db()
    yield


@pytest.fixture(autouse=True)
def sent_emails(monkeypatch):
    """Capture notifier output instead of talking to SMTP"""
    sent = []

    def _record(to_addr, subject, template, tag, **context):
        sent.append({"to": to_addr, "subject": subject, "template": template, "context": context})
        return True

    monkeypatch.setattr(notifications, "_send", _record)
    return sent


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    from main import app
    return TestClient(app)


@pytest.fixture
def make_user(db):
    def _make(email=None, role=UserRole.VISITOR.value, name=None):
        user = User(
            email=(email or f"user-{uuid.uuid4().hex[:8]}@example.com").lower(),
            name=name,
            role=role,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def auth_headers():
    def _headers(user):
        token = jwt.encode({"sub": user.id}, os.environ["SESSION_JWT_SECRET"], algorithm="HS256")
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def make_collection(db):
    """Collection with `units` sellable units (plus optional draft units listed first)"""
    def _make(units=1, draft_units=0, name="Glamphouse"):
        collection = PropertyCollection(name=name, slug=f"{name.lower()}-{uuid.uuid4().hex[:6]}")
        db.add(collection)
        db.flush()
        created = []
        for i in range(draft_units):
            unit = Unit(collection_id=collection.id, name=f"Draft {i + 1}", status=UnitStatus.DRAFT.value)
            db.add(unit)
            db.flush()
            created.append(unit)
        for i in range(units):
            unit = Unit(collection_id=collection.id, name=f"{name} A{i + 1}")
            db.add(unit)
            db.flush()
            created.append(unit)
        db.commit()
        db.refresh(collection)
        return collection, created
    return _make


@pytest.fixture
def make_tier(db):
    def _make(collection, percentage=2500, fiat_price="725000.00", crypto_price="10100.00", label=None):
        tier = PricingTier(
            collection_id=collection.id,
            percentage=percentage,
            fiat_price=Decimal(fiat_price),
            crypto_price=Decimal(crypto_price),
            display_label=label or f"{Decimal(percentage) / Decimal(100):g}%",
        )
        db.add(tier)
        db.commit()
        db.refresh(tier)
        return tier
    return _make


@pytest.fixture
def make_affiliate(db, make_user):
    """Active link (and profile) for a fresh affiliate user"""
    def _make(code=None, rate="5.00", with_profile=True):
        affiliate = make_user(role=UserRole.AFFILIATE.value, name="Ana Affiliate")
        link = AffiliateLink(
            code=code or f"REF{uuid.uuid4().hex[:6].upper()}",
            affiliate_user_id=affiliate.id,
            commission_rate=Decimal(rate),
        )
        db.add(link)
        if with_profile:
            db.add(AffiliateProfile(user_id=affiliate.id, default_commission_rate=Decimal(rate)))
        db.commit()
        db.refresh(link)
        return affiliate, link
    return _make


@pytest.fixture
def make_manual_method(db):
    def _make(method_id="gcash", name="GCash", is_active=True):
        method = ManualPaymentMethod(id=method_id, name=name, instructions="Send money", is_active=is_active)
        db.add(method)
        db.commit()
        db.refresh(method)
        return method
    return _make
