"""
Manual payments: reference codes, proof submission, admin review
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from core import config
from models.ownership import Ownership
from models.payments import Payment
from models.user import UserRole
from utils.manual_review import (
    ManualReviewError,
    approve_manual_payment,
    generate_reference_code,
    is_reference_code,
)


@pytest.fixture
def setup(make_collection, make_tier, make_manual_method, make_user, auth_headers):
    collection, units = make_collection(units=1)
    tier = make_tier(collection, percentage=2500, fiat_price="725000.00")
    method = make_manual_method()
    buyer = make_user(email="manual@example.com", name="Maria Santos")
    admin = make_user(email="admin@example.com", role=UserRole.ADMIN.value)
    return {
        "collection": collection,
        "units": units,
        "tier": tier,
        "method": method,
        "buyer": buyer,
        "buyer_headers": auth_headers(buyer),
        "admin": admin,
        "admin_headers": auth_headers(admin),
    }


def _submit(client, s, reference_code=None, proof="https://cdn.example.com/proof.jpg"):
    return client.post(
        "/api/manual-payments/submit-proof",
        json={
            "reference_code": reference_code or generate_reference_code(),
            "collection_id": s["collection"].id,
            "pricing_tier_id": s["tier"].id,
            "manual_payment_method_id": s["method"].id,
            "proof_image_url": proof,
        },
        headers=s["buyer_headers"],
    )


def test_reference_code_format():
    """PR-<year>-<6 unambiguous characters>"""
    code = generate_reference_code(datetime(2025, 3, 1, tzinfo=timezone.utc))
    assert code.startswith("PR-2025-")
    assert len(code) == len("PR-2025-") + 6
    assert is_reference_code(code)
    assert not is_reference_code("PR-2025-ABC0O1")
    assert not is_reference_code("PR-25-ABCDEF")


def test_initiate_requires_auth(client, setup):
    """Anonymous buyers cannot start a manual payment"""
    r = client.post("/api/manual-payments/initiate", json={
        "collection_id": setup["collection"].id,
        "pricing_tier_id": setup["tier"].id,
        "manual_payment_method_id": "gcash",
    })
    assert r.status_code == 401


def test_initiate_returns_reference_and_amount(client, setup, db):
    """Amount due is the tier fiat price; nothing is written yet"""
    r = client.post("/api/manual-payments/initiate", json={
        "collection_id": setup["collection"].id,
        "pricing_tier_id": setup["tier"].id,
        "manual_payment_method_id": "gcash",
    }, headers=setup["buyer_headers"])

    assert r.status_code == 200
    body = r.json()
    assert is_reference_code(body["referenceCode"])
    assert body["amountDue"] == "725000.00"
    assert body["currency"] == config.CURRENCY_CODE
    assert body["paymentMethod"]["id"] == "gcash"
    assert db.query(Payment).count() == 0


def test_initiate_invalid_affiliate_code_is_400(client, setup):
    """Unknown referral codes are refused up front"""
    r = client.post("/api/manual-payments/initiate", json={
        "collection_id": setup["collection"].id,
        "pricing_tier_id": setup["tier"].id,
        "manual_payment_method_id": "gcash",
        "affiliate_code": "NOPE",
    }, headers=setup["buyer_headers"])
    assert r.status_code == 400


def test_submit_proof_creates_pending_payment(client, setup, db, sent_emails):
    """Proof upload writes a PENDING manual payment and emails the buyer"""
    r = _submit(client, setup)
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "PENDING"

    db.expire_all()
    payment = db.get(Payment, body["paymentId"])
    assert payment.provider == "MANUAL"
    assert payment.amount == Decimal("725000.00")
    assert payment.user_id == setup["buyer"].id
    assert payment.proof_image_url == "https://cdn.example.com/proof.jpg"
    assert any(e["template"] == "manual_payment_review.html" for e in sent_emails)


def test_submit_proof_rejects_bad_or_reused_reference(client, setup):
    """Reference codes are validated and single-use"""
    assert _submit(client, setup, reference_code="not-a-code").status_code == 400

    code = generate_reference_code()
    assert _submit(client, setup, reference_code=code).status_code == 200
    r = _submit(client, setup, reference_code=code)
    assert r.status_code == 400
    assert "already been used" in r.json()["error"]


def test_pending_submission_cap(client, setup, monkeypatch):
    """Too many PENDING submissions per user answers 429"""
    monkeypatch.setattr(config, "MANUAL_PAYMENT_MAX_PENDING", 2)
    assert _submit(client, setup).status_code == 200
    assert _submit(client, setup).status_code == 200
    assert _submit(client, setup).status_code == 429


def test_non_admin_cannot_approve(client, setup):
    """Review endpoints are admin-only"""
    payment_id = _submit(client, setup).json()["paymentId"]
    r = client.post(f"/api/manual-payments/{payment_id}/approve", headers=setup["buyer_headers"])
    assert r.status_code == 403


def test_admin_approval_creates_manual_ownership(client, setup, db):
    """Approval is the success signal for the settlement pipeline"""
    payment_id = _submit(client, setup).json()["paymentId"]

    r = client.post(f"/api/manual-payments/{payment_id}/approve", headers=setup["admin_headers"])

    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["unitId"] == setup["units"][0].id
    db.expire_all()
    payment = db.get(Payment, payment_id)
    assert payment.status == "SUCCESS"
    assert payment.reviewed_by == setup["admin"].id
    ownership = db.get(Ownership, body["ownershipId"])
    assert ownership.payment_method == "MANUAL"
    assert ownership.payment_id == payment_id


def test_double_approval_is_idempotent(client, setup, db):
    """A second click returns the same ownership"""
    payment_id = _submit(client, setup).json()["paymentId"]

    first = client.post(f"/api/manual-payments/{payment_id}/approve", headers=setup["admin_headers"])
    second = client.post(f"/api/manual-payments/{payment_id}/approve", headers=setup["admin_headers"])

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["ownershipId"] == first.json()["ownershipId"]
    assert second.json()["alreadyProcessed"] is True
    db.expire_all()
    assert db.query(Ownership).filter(Ownership.payment_id == payment_id).count() == 1


def test_approval_when_sold_out_reverts_to_pending(client, setup, db, make_user):
    """A failed settlement hands the payment back to the review queue"""
    payment_id = _submit(client, setup).json()["paymentId"]
    db.add(Ownership(
        unit_id=setup["units"][0].id,
        user_id=make_user().id,
        percentage_owned=10000,
        purchase_price=Decimal("2750000.00"),
        payment_method="FIAT",
    ))
    db.commit()

    r = client.post(f"/api/manual-payments/{payment_id}/approve", headers=setup["admin_headers"])

    assert r.status_code == 409
    db.expire_all()
    payment = db.get(Payment, payment_id)
    assert payment.status == "PENDING"
    assert payment.reviewed_by is None


def test_reject_then_resubmit(client, setup, db, sent_emails):
    """Rejected proofs can be replaced and go back to PENDING"""
    payment_id = _submit(client, setup).json()["paymentId"]

    r = client.post(
        f"/api/manual-payments/{payment_id}/reject",
        json={"reason": "Amount does not match"},
        headers=setup["admin_headers"],
    )
    assert r.status_code == 200
    assert r.json()["payment"]["status"] == "FAILED"
    assert any(e["template"] == "manual_payment_rejected.html" for e in sent_emails)

    r = client.post(
        f"/api/manual-payments/{payment_id}/resubmit",
        json={"proof_image_url": "https://cdn.example.com/proof-2.jpg"},
        headers=setup["buyer_headers"],
    )
    assert r.status_code == 200
    db.expire_all()
    payment = db.get(Payment, payment_id)
    assert payment.status == "PENDING"
    assert payment.rejection_reason is None
    assert payment.proof_image_url.endswith("proof-2.jpg")


def test_reject_requires_reason(client, setup):
    """Blank reasons are refused"""
    payment_id = _submit(client, setup).json()["paymentId"]
    r = client.post(f"/api/manual-payments/{payment_id}/reject", json={"reason": "  "}, headers=setup["admin_headers"])
    assert r.status_code == 400


def test_cannot_approve_rejected_payment(client, setup, db):
    """Only PENDING payments can be approved"""
    payment_id = _submit(client, setup).json()["paymentId"]
    client.post(f"/api/manual-payments/{payment_id}/reject", json={"reason": "Blurry"}, headers=setup["admin_headers"])

    with pytest.raises(ManualReviewError) as exc:
        approve_manual_payment(db, payment_id, setup["admin"].id)
    assert exc.value.status_code == 409


def test_pending_queue_lists_submissions(client, setup):
    """Admins see pending submissions oldest first with the buyer"""
    _submit(client, setup)
    r = client.get("/api/manual-payments/pending", headers=setup["admin_headers"])
    assert r.status_code == 200
    payments = r.json()["payments"]
    assert len(payments) == 1
    assert payments[0]["user"]["email"] == "manual@example.com"


def test_admin_manages_methods(client, setup):
    """Admins create and update payment methods"""
    r = client.post("/api/manual-payments/admin/methods", json={"id": "Maya", "name": "Maya"}, headers=setup["admin_headers"])
    assert r.status_code == 200
    assert r.json()["method"]["id"] == "maya"

    r = client.patch("/api/manual-payments/admin/methods/maya", json={"is_active": False}, headers=setup["admin_headers"])
    assert r.status_code == 200
    assert r.json()["method"]["isActive"] is False

    listed = client.get("/api/manual-payments/methods").json()["methods"]
    assert [m["id"] for m in listed] == ["gcash"]
