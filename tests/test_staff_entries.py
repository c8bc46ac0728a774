"""
Staff-entered ownerships: creation, admin approval and rejection
"""
from decimal import Decimal

import pytest

from models.affiliates import AffiliateTransaction
from models.ownership import Ownership
from models.property import Unit, UnitStatus
from models.user import InvestorProfile, User, UserRole
from utils.allocation import find_available_unit
from utils.staff_entries import StaffEntryError, approve_staff_entry, create_staff_entry


@pytest.fixture
def staff_setup(make_collection, make_tier, make_user, auth_headers):
    collection, units = make_collection(units=2)
    tier = make_tier(collection, percentage=5000, fiat_price="1450000.00")
    staff = make_user(email="staff@example.com", role=UserRole.STAFF.value)
    admin = make_user(email="boss@example.com", role=UserRole.ADMIN.value)
    return {
        "collection": collection,
        "units": units,
        "tier": tier,
        "staff": staff,
        "admin": admin,
        "staff_headers": auth_headers(staff),
        "admin_headers": auth_headers(admin),
    }


def _create(client, s, **overrides):
    body = {
        "investor_email": "Offline.Buyer@Example.com",
        "investor_name": "Offline Buyer",
        "collection_id": s["collection"].id,
        "pricing_tier_id": s["tier"].id,
        "payment_method": "MANUAL",
    }
    body.update(overrides)
    return client.post("/api/staff/ownerships", json=body, headers=s["staff_headers"])


def test_staff_entry_is_pending_and_consumes_nothing(client, staff_setup, db):
    """A new entry has no unit or user and leaves capacity untouched"""
    r = _create(client, staff_setup)
    assert r.status_code == 200
    entry = r.json()["ownership"]
    assert entry["approvalStatus"] == "PENDING_APPROVAL"
    assert entry["unitId"] is None
    assert entry["userId"] is None
    assert entry["pendingInvestorEmail"] == "offline.buyer@example.com"
    assert entry["purchasePrice"] == "1450000.00"
    assert entry["percentageOwned"] == 5000

    db.expire_all()
    assert db.query(User).filter(User.email == "offline.buyer@example.com").count() == 0
    assert find_available_unit(db, staff_setup["collection"].id, 10000) == staff_setup["units"][0].id


def test_visitors_cannot_create_entries(client, staff_setup, make_user, auth_headers):
    """Only STAFF and ADMIN roles record offline sales"""
    visitor = make_user()
    r = client.post("/api/staff/ownerships", json={
        "investor_email": "x@example.com",
        "collection_id": staff_setup["collection"].id,
        "pricing_tier_id": staff_setup["tier"].id,
        "payment_method": "FIAT",
    }, headers=auth_headers(visitor))
    assert r.status_code == 403


def test_tier_must_belong_to_collection(db, staff_setup, make_collection, make_tier):
    """Mismatched tier and collection is a 400"""
    other, _ = make_collection(units=1, name="Villa")
    other_tier = make_tier(other, percentage=2500)
    with pytest.raises(StaffEntryError) as exc:
        create_staff_entry(
            db, staff_setup["staff"].id, "a@example.com", staff_setup["collection"].id, other_tier.id,
            Decimal("1.00"), "FIAT", "PHP",
        )
    assert exc.value.status_code == 400


def test_staff_cannot_approve(client, staff_setup):
    """Approval is admin-only"""
    entry_id = _create(client, staff_setup).json()["ownership"]["id"]
    r = client.post(f"/api/staff/ownerships/{entry_id}/approve", headers=staff_setup["staff_headers"])
    assert r.status_code == 403


def test_approval_allocates_and_creates_investor(client, staff_setup, db, sent_emails):
    """Approval picks a unit, creates the user, counts capacity and updates the profile"""
    entry_id = _create(client, staff_setup).json()["ownership"]["id"]

    r = client.post(f"/api/staff/ownerships/{entry_id}/approve", headers=staff_setup["admin_headers"])

    assert r.status_code == 200
    db.expire_all()
    ownership = db.get(Ownership, entry_id)
    assert ownership.approval_status == "APPROVED"
    assert ownership.unit_id == staff_setup["units"][0].id
    assert ownership.pending_investor_email is None
    assert ownership.approved_by_user_id == staff_setup["admin"].id

    investor = db.get(User, ownership.user_id)
    assert investor.email == "offline.buyer@example.com"
    assert investor.role == UserRole.INVESTOR.value
    profile = db.query(InvestorProfile).filter(InvestorProfile.user_id == investor.id).one()
    assert profile.total_units_owned == 1
    assert profile.total_invested == Decimal("1450000.00")
    assert any(e["template"] == "moa_ready.html" for e in sent_emails)

    # Now counted: 5000 of unit 1 used, a whole unit goes to unit 2
    assert find_available_unit(db, staff_setup["collection"].id, 10000) == staff_setup["units"][1].id


def test_approval_with_explicit_unit(client, staff_setup, db):
    """Admins may pick the unit if it has room"""
    entry_id = _create(client, staff_setup).json()["ownership"]["id"]
    target = staff_setup["units"][1]

    r = client.post(
        f"/api/staff/ownerships/{entry_id}/approve",
        json={"unit_id": target.id},
        headers=staff_setup["admin_headers"],
    )
    assert r.status_code == 200
    assert r.json()["ownership"]["unitId"] == target.id


def test_explicit_unit_without_room_is_409(client, staff_setup, db, make_user):
    """Chosen units are capacity-checked like allocated ones"""
    target = staff_setup["units"][0]
    db.add(Ownership(
        unit_id=target.id,
        user_id=make_user().id,
        percentage_owned=7500,
        purchase_price=Decimal("1.00"),
        payment_method="FIAT",
    ))
    db.commit()
    entry_id = _create(client, staff_setup).json()["ownership"]["id"]

    r = client.post(
        f"/api/staff/ownerships/{entry_id}/approve",
        json={"unit_id": target.id},
        headers=staff_setup["admin_headers"],
    )
    assert r.status_code == 409
    db.expire_all()
    assert db.get(Ownership, entry_id).approval_status == "PENDING_APPROVAL"


def test_approval_fills_unit_and_marks_sold_out(db, staff_setup, make_tier):
    """A 100% staff sale marks the unit SOLD_OUT"""
    whole = make_tier(staff_setup["collection"], percentage=10000, fiat_price="2750000.00")
    entry = create_staff_entry(
        db, staff_setup["staff"].id, "whole@example.com", staff_setup["collection"].id, whole.id,
        whole.fiat_price, "FIAT", "PHP",
    )
    approve_staff_entry(db, entry.id, staff_setup["admin"].id)

    db.expire_all()
    assert db.get(Unit, staff_setup["units"][0].id).status == UnitStatus.SOLD_OUT.value


def test_sold_out_collection_blocks_approval(db, staff_setup, make_user):
    """No room anywhere keeps the entry pending"""
    for unit in staff_setup["units"]:
        db.add(Ownership(
            unit_id=unit.id,
            user_id=make_user().id,
            percentage_owned=10000,
            purchase_price=Decimal("1.00"),
            payment_method="FIAT",
        ))
    db.commit()
    entry = create_staff_entry(
        db, staff_setup["staff"].id, "late@example.com", staff_setup["collection"].id, staff_setup["tier"].id,
        Decimal("1450000.00"), "FIAT", "PHP",
    )

    with pytest.raises(StaffEntryError) as exc:
        approve_staff_entry(db, entry.id, staff_setup["admin"].id)
    assert exc.value.status_code == 409


def test_approval_applies_affiliate_commission(client, staff_setup, db, make_affiliate):
    """Referral codes on staff entries pay commission on approval"""
    _, link = make_affiliate(code="STAFF5", rate="5.00")
    entry_id = _create(client, staff_setup, affiliate_code="STAFF5").json()["ownership"]["id"]

    assert client.post(f"/api/staff/ownerships/{entry_id}/approve", headers=staff_setup["admin_headers"]).status_code == 200

    db.expire_all()
    txn = db.query(AffiliateTransaction).filter(AffiliateTransaction.ownership_id == entry_id).one()
    assert txn.affiliate_link_id == link.id
    assert txn.commission_amount == Decimal("72500.00")


def test_reject_and_double_decision(client, staff_setup, db):
    """Rejected entries cannot be approved or rejected again"""
    entry_id = _create(client, staff_setup).json()["ownership"]["id"]

    r = client.post(
        f"/api/staff/ownerships/{entry_id}/reject",
        json={"reason": "Duplicate entry"},
        headers=staff_setup["admin_headers"],
    )
    assert r.status_code == 200
    assert r.json()["ownership"]["approvalStatus"] == "REJECTED"
    assert r.json()["ownership"]["rejectionReason"] == "Duplicate entry"

    again = client.post(
        f"/api/staff/ownerships/{entry_id}/reject",
        json={"reason": "Again"},
        headers=staff_setup["admin_headers"],
    )
    assert again.status_code == 404
    approve = client.post(f"/api/staff/ownerships/{entry_id}/approve", headers=staff_setup["admin_headers"])
    assert approve.status_code == 404


def test_pending_list(client, staff_setup):
    """Pending entries are listed for staff"""
    _create(client, staff_setup)
    _create(client, staff_setup, investor_email="second@example.com")
    r = client.get("/api/staff/ownerships/pending", headers=staff_setup["staff_headers"])
    assert r.status_code == 200
    assert len(r.json()["ownerships"]) == 2
