"""Buyer and affiliate resolution shared by every payment rail"""
from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.config import logger
from models.affiliates import AffiliateLink, AffiliateLinkStatus
from models.user import User, UserRole


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def get_or_create_user(db: Session, email: str, name: Optional[str] = None) -> Tuple[str, bool]:
    """Resolve a buyer by email, creating a guest account when none exists.

    Returns (user_id, is_new_user). An existing row always wins, so a guest
    checkout and a signed-in checkout with the same email land on the same
    user. New guest accounts start as INVESTOR with the email marked verified
    (the provider has just confirmed a payment from it).
    """
    email_n = normalize_email(email)
    if not email_n:
        raise ValueError("email is required")

    existing = db.query(User.id).filter(User.email == email_n).first()
    if existing:
        return existing[0], False

    user = User(
        email=email_n,
        name=(name or "").strip() or None,
        role=UserRole.INVESTOR.value,
        email_verified_at=datetime.now(timezone.utc),
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Lost the insert race to another checkout with the same email
        db.rollback()
        winner = db.query(User.id).filter(User.email == email_n).first()
        if not winner:
            raise
        logger.info(f"[identity] concurrent signup for {email_n}; using existing user {winner[0]}")
        return winner[0], False

    logger.info(f"[identity] created guest user {user.id} for {email_n}")
    return user.id, True


def get_affiliate_link(db: Session, code: Optional[str]) -> Optional[AffiliateLink]:
    code_n = (code or "").strip()
    if not code_n:
        return None
    return (
        db.query(AffiliateLink)
        .filter(AffiliateLink.code == code_n, AffiliateLink.status == AffiliateLinkStatus.ACTIVE.value)
        .first()
    )


def get_affiliate_link_id(db: Session, code: Optional[str]) -> Optional[int]:
    link = get_affiliate_link(db, code)
    return link.id if link else None
