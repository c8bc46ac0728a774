"""
Unit allocation

Maps a requested fraction (basis points) of a collection onto one concrete
unit. First-fit over units ordered by id, so the same state always yields
the same answer. A fraction is never split across units.
"""
import threading
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import func, or_, text
from sqlalchemy.orm import Session

from core.config import logger
from models.ownership import Ownership, ApprovalStatus
from models.property import Unit, UnitStatus, PricingTier, UNIT_CAPACITY_BP

# Namespace for pg advisory lock keys so they don't collide with other users of the lock space
_ADVISORY_NAMESPACE = 0x5AE0_0000

_local_locks: dict[int, threading.Lock] = {}
_local_locks_guard = threading.Lock()


def counts_toward_capacity():
    """Filter for ownerships that consume unit capacity (regular and approved staff entries)"""
    return or_(
        Ownership.approval_status.is_(None),
        Ownership.approval_status == ApprovalStatus.APPROVED.value,
    )


def _lock_for(collection_id: int) -> threading.Lock:
    with _local_locks_guard:
        lock = _local_locks.get(collection_id)
        if lock is None:
            lock = threading.Lock()
            _local_locks[collection_id] = lock
        return lock


@contextmanager
def allocation_lock(db: Session, collection_id: int):
    """Serialize allocate-then-insert for one collection.

    Hold this across find_available_unit, the ownership insert and the commit.
    Threads of this process are serialized by a per-collection lock; on
    PostgreSQL a transaction-scoped advisory lock serializes other workers
    and is released by the caller's commit or rollback.
    """
    lock = _lock_for(collection_id)
    with lock:
        if db.get_bind().dialect.name == "postgresql":
            db.execute(
                text("SELECT pg_advisory_xact_lock(:key)"),
                {"key": _ADVISORY_NAMESPACE + int(collection_id)},
            )
        yield


def allocated_by_unit(db: Session, collection_id: int) -> dict[int, int]:
    rows = (
        db.query(Ownership.unit_id, func.coalesce(func.sum(Ownership.percentage_owned), 0))
        .join(Unit, Unit.id == Ownership.unit_id)
        .filter(Unit.collection_id == collection_id, counts_toward_capacity())
        .group_by(Ownership.unit_id)
        .all()
    )
    return {unit_id: int(total or 0) for unit_id, total in rows}


def get_unit_allocated(db: Session, unit_id: int) -> int:
    total = (
        db.query(func.coalesce(func.sum(Ownership.percentage_owned), 0))
        .filter(Ownership.unit_id == unit_id, counts_toward_capacity())
        .scalar()
    )
    return int(total or 0)


def _sellable_unit_ids(db: Session, collection_id: int) -> list[int]:
    rows = (
        db.query(Unit.id)
        .filter(Unit.collection_id == collection_id, Unit.status != UnitStatus.DRAFT.value)
        .order_by(Unit.id.asc())
        .all()
    )
    return [r[0] for r in rows]


def find_available_unit(db: Session, collection_id: int, percentage_bp: int) -> Optional[int]:
    """Return the id of the first unit with room for `percentage_bp`, or None when sold out.

    The result is advisory unless the caller holds allocation_lock for the
    collection until its ownership insert commits.
    """
    percentage_bp = int(percentage_bp)
    if percentage_bp <= 0 or percentage_bp > UNIT_CAPACITY_BP:
        raise ValueError(f"percentage must be within 1..{UNIT_CAPACITY_BP} basis points, got {percentage_bp}")

    allocated = allocated_by_unit(db, collection_id)
    for unit_id in _sellable_unit_ids(db, collection_id):
        if allocated.get(unit_id, 0) + percentage_bp <= UNIT_CAPACITY_BP:
            return unit_id

    logger.info(f"[allocation] collection={collection_id} has no unit with room for {percentage_bp}bp")
    return None


def get_collection_tier_availability(db: Session, collection_id: int) -> dict[int, bool]:
    """Map each active tier id of a collection to whether some unit can still take it"""
    allocated = allocated_by_unit(db, collection_id)
    max_remaining = 0
    for unit_id in _sellable_unit_ids(db, collection_id):
        max_remaining = max(max_remaining, UNIT_CAPACITY_BP - allocated.get(unit_id, 0))

    tiers = (
        db.query(PricingTier)
        .filter(PricingTier.collection_id == collection_id, PricingTier.is_active.is_(True))
        .order_by(PricingTier.percentage.asc())
        .all()
    )
    return {t.id: max_remaining >= int(t.percentage) for t in tiers}
