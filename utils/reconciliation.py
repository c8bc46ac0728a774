"""
Counter reconciliation

Investor and affiliate totals are denormalized counters maintained by the
settlement pipeline. Ownership and commission rows are the source of truth;
this module recomputes the counters from them and reports or repairs drift.
"""
from decimal import Decimal
from typing import Dict, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.config import logger
from models.affiliates import AffiliateLink, AffiliateProfile, AffiliateTransaction
from models.ownership import Ownership
from models.user import InvestorProfile
from utils.allocation import counts_toward_capacity
from utils.payment_processor import to_money


def _expected_investor_totals(db: Session) -> Dict[str, tuple]:
    rows = (
        db.query(
            Ownership.user_id,
            func.coalesce(func.sum(Ownership.purchase_price), 0),
            func.count(Ownership.id),
        )
        .filter(Ownership.user_id.isnot(None), counts_toward_capacity())
        .group_by(Ownership.user_id)
        .all()
    )
    return {user_id: (to_money(total), int(count or 0)) for user_id, total, count in rows}


def _expected_affiliate_earned(db: Session) -> Dict[str, Decimal]:
    rows = (
        db.query(AffiliateLink.affiliate_user_id, func.coalesce(func.sum(AffiliateTransaction.commission_amount), 0))
        .join(AffiliateTransaction, AffiliateTransaction.affiliate_link_id == AffiliateLink.id)
        .group_by(AffiliateLink.affiliate_user_id)
        .all()
    )
    return {user_id: to_money(total) for user_id, total in rows}


def _expected_conversions(db: Session) -> Dict[int, int]:
    rows = (
        db.query(AffiliateTransaction.affiliate_link_id, func.count(AffiliateTransaction.id))
        .group_by(AffiliateTransaction.affiliate_link_id)
        .all()
    )
    return {link_id: int(count or 0) for link_id, count in rows}


def find_total_drift(db: Session) -> List[dict]:
    """Every counter whose stored value differs from the value recomputed from rows"""
    drift = []

    investors = _expected_investor_totals(db)
    profiles = {p.user_id: p for p in db.query(InvestorProfile).all()}
    for user_id in sorted(set(investors) | set(profiles)):
        expected_invested, expected_units = investors.get(user_id, (Decimal("0.00"), 0))
        profile = profiles.get(user_id)
        stored_invested = to_money(profile.total_invested) if profile else None
        stored_units = int(profile.total_units_owned or 0) if profile else None
        if stored_invested != expected_invested:
            drift.append({
                "kind": "investor.total_invested",
                "key": user_id,
                "stored": f"{stored_invested:.2f}" if stored_invested is not None else None,
                "expected": f"{expected_invested:.2f}",
            })
        if stored_units != expected_units:
            drift.append({
                "kind": "investor.total_units_owned",
                "key": user_id,
                "stored": stored_units,
                "expected": expected_units,
            })

    earned = _expected_affiliate_earned(db)
    affiliates = {p.user_id: p for p in db.query(AffiliateProfile).all()}
    for user_id in sorted(set(earned) | set(affiliates)):
        expected = earned.get(user_id, Decimal("0.00"))
        profile = affiliates.get(user_id)
        stored = to_money(profile.total_earned) if profile else None
        if stored != expected:
            drift.append({
                "kind": "affiliate.total_earned",
                "key": user_id,
                "stored": f"{stored:.2f}" if stored is not None else None,
                "expected": f"{expected:.2f}",
            })

    conversions = _expected_conversions(db)
    for link in db.query(AffiliateLink).order_by(AffiliateLink.id.asc()).all():
        expected = conversions.get(link.id, 0)
        if int(link.conversion_count or 0) != expected:
            drift.append({
                "kind": "link.conversion_count",
                "key": link.id,
                "stored": int(link.conversion_count or 0),
                "expected": expected,
            })

    return drift


def repair_total_drift(db: Session) -> List[dict]:
    """Rewrite drifted counters to their recomputed values; returns what was fixed"""
    drift = find_total_drift(db)
    if not drift:
        return drift

    investors = _expected_investor_totals(db)
    earned = _expected_affiliate_earned(db)
    conversions = _expected_conversions(db)

    for item in drift:
        kind, key = item["kind"], item["key"]
        if kind.startswith("investor."):
            invested, units = investors.get(key, (Decimal("0.00"), 0))
            profile = db.query(InvestorProfile).filter(InvestorProfile.user_id == key).first()
            if profile:
                profile.total_invested = invested
                profile.total_units_owned = units
            else:
                db.add(InvestorProfile(user_id=key, total_invested=invested, total_units_owned=units))
                # Both investor kinds can name the same missing profile
                db.flush()
        elif kind == "affiliate.total_earned":
            profile = db.query(AffiliateProfile).filter(AffiliateProfile.user_id == key).first()
            if profile:
                profile.total_earned = earned.get(key, Decimal("0.00"))
            else:
                db.add(AffiliateProfile(user_id=key, total_earned=earned.get(key, Decimal("0.00")), total_paid=Decimal("0")))
        elif kind == "link.conversion_count":
            db.query(AffiliateLink).filter(AffiliateLink.id == key).update(
                {AffiliateLink.conversion_count: conversions.get(key, 0)},
                synchronize_session=False,
            )
    db.commit()

    for item in drift:
        logger.warning(f"[reconcile] repaired {item['kind']} {item['key']}: {item['stored']} -> {item['expected']}")
    return drift
