"""
Unit allocation: first-fit over units, capacity accounting, availability
"""
from decimal import Decimal

import pytest

from models.ownership import ApprovalStatus, Ownership
from models.property import UnitStatus
from utils.allocation import (
    find_available_unit,
    get_collection_tier_availability,
    get_unit_allocated,
)


def _own(db, unit, percentage, approval_status=None, user_id=None):
    row = Ownership(
        unit_id=unit.id if unit else None,
        user_id=user_id,
        percentage_owned=percentage,
        purchase_price=Decimal("1.00"),
        payment_method="FIAT",
        approval_status=approval_status,
    )
    db.add(row)
    db.commit()
    return row


def test_empty_collection_allocates_first_unit(db, make_collection):
    """A fresh collection gives the lowest-id unit"""
    collection, units = make_collection(units=3)
    assert find_available_unit(db, collection.id, 2500) == units[0].id


def test_first_fit_moves_to_next_unit_when_full(db, make_collection):
    """Units fill in id order; a fraction never splits across units"""
    collection, units = make_collection(units=2)
    _own(db, units[0], 7500)

    assert find_available_unit(db, collection.id, 2500) == units[0].id
    assert find_available_unit(db, collection.id, 5000) == units[1].id


def test_exact_fill_is_allowed(db, make_collection):
    """allocated + requested == 10000 still fits"""
    collection, units = make_collection(units=1)
    _own(db, units[0], 9925)
    assert find_available_unit(db, collection.id, 75) == units[0].id
    assert find_available_unit(db, collection.id, 76) is None


def test_sold_out_returns_none(db, make_collection):
    """Every unit full means no allocation"""
    collection, units = make_collection(units=2)
    _own(db, units[0], 10000)
    _own(db, units[1], 10000)
    assert find_available_unit(db, collection.id, 75) is None


def test_draft_units_are_skipped(db, make_collection):
    """Unpublished units never receive allocations"""
    collection, units = make_collection(units=1, draft_units=2)
    assert units[0].status == UnitStatus.DRAFT.value
    assert find_available_unit(db, collection.id, 10000) == units[2].id


def test_sold_out_status_units_still_counted_by_sum(db, make_collection):
    """Capacity comes from ownership rows, not the unit status flag"""
    collection, units = make_collection(units=1)
    units[0].status = UnitStatus.SOLD_OUT.value
    db.commit()
    assert find_available_unit(db, collection.id, 2500) == units[0].id


def test_pending_and_rejected_staff_entries_do_not_consume_capacity(db, make_collection):
    """Only NULL or APPROVED approval status counts toward a unit"""
    collection, units = make_collection(units=1)
    _own(db, units[0], 5000, approval_status=ApprovalStatus.PENDING_APPROVAL.value)
    _own(db, units[0], 5000, approval_status=ApprovalStatus.REJECTED.value)
    _own(db, units[0], 2500, approval_status=ApprovalStatus.APPROVED.value)
    _own(db, units[0], 2500)

    assert get_unit_allocated(db, units[0].id) == 5000
    assert find_available_unit(db, collection.id, 5000) == units[0].id


@pytest.mark.parametrize("bad", [0, -100, 10001])
def test_percentage_out_of_range_is_rejected(db, make_collection, bad):
    """Requests outside 1..10000 basis points are invalid input"""
    collection, _ = make_collection(units=1)
    with pytest.raises(ValueError):
        find_available_unit(db, collection.id, bad)


def test_tier_availability_uses_largest_remaining_slot(db, make_collection, make_tier):
    """A tier is available when some single unit can hold it"""
    collection, units = make_collection(units=2)
    small = make_tier(collection, percentage=2500)
    half = make_tier(collection, percentage=5000, fiat_price="1450000.00")
    whole = make_tier(collection, percentage=10000, fiat_price="2750000.00")
    _own(db, units[0], 7500)
    _own(db, units[1], 5000)

    availability = get_collection_tier_availability(db, collection.id)
    assert availability == {small.id: True, half.id: True, whole.id: False}
