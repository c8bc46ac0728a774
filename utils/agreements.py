"""
Signed ownership agreements

Each counted ownership carries two agreements: the Management Agreement (MOA)
and the Rental Management Agreement (RMA). The signed PDF is produced and
stored elsewhere; here we record its URL, the signer and the time, once per
agreement.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from core import config
from core.config import logger
from models.ownership import ApprovalStatus, Ownership
from models.property import Unit
from models.user import User
from utils import notifications


class AgreementError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass(frozen=True)
class AgreementKind:
    key: str
    name: str
    signed_flag: object
    url: object
    signed_at: object
    signer: object


MOA = AgreementKind(
    key="moa",
    name="Management Agreement",
    signed_flag=Ownership.is_signed,
    url=Ownership.moa_url,
    signed_at=Ownership.moa_signed_at,
    signer=Ownership.signer_name,
)
RMA = AgreementKind(
    key="rma",
    name="Rental Management Agreement",
    signed_flag=Ownership.is_rma_signed,
    url=Ownership.rma_url,
    signed_at=Ownership.rma_signed_at,
    signer=Ownership.rma_signer_name,
)
AGREEMENTS = {MOA.key: MOA, RMA.key: RMA}


def agreement_status(ownership: Ownership, unit: Optional[Unit]) -> dict:
    return {
        "ownershipId": ownership.id,
        "unitName": unit.name if unit else None,
        "percentageOwned": f"{ownership.percentage_owned / 100:.2f}",
        "purchasePrice": f"{ownership.purchase_price:.2f}",
        "purchaseDate": ownership.created_at.isoformat() if ownership.created_at else None,
        "moa": {
            "isSigned": bool(ownership.is_signed),
            "url": ownership.moa_url,
            "signedAt": ownership.moa_signed_at.isoformat() if ownership.moa_signed_at else None,
            "signerName": ownership.signer_name,
        },
        "rma": {
            "isSigned": bool(ownership.is_rma_signed),
            "url": ownership.rma_url,
            "signedAt": ownership.rma_signed_at.isoformat() if ownership.rma_signed_at else None,
            "signerName": ownership.rma_signer_name,
        },
        "certificateUrl": ownership.certificate_url,
    }


def list_agreements(db: Session, user_id: str) -> list:
    rows = (
        db.query(Ownership, Unit)
        .outerjoin(Unit, Unit.id == Ownership.unit_id)
        .filter(Ownership.user_id == user_id)
        .order_by(Ownership.created_at.desc(), Ownership.id.desc())
        .all()
    )
    return [agreement_status(ownership, unit) for ownership, unit in rows]


def get_agreement(db: Session, ownership_id: int, user: User, is_admin: bool = False) -> dict:
    row = (
        db.query(Ownership, Unit)
        .outerjoin(Unit, Unit.id == Ownership.unit_id)
        .filter(Ownership.id == ownership_id)
        .first()
    )
    if not row:
        raise AgreementError("Ownership not found", 404)
    ownership, unit = row
    if ownership.user_id != user.id and not is_admin:
        raise AgreementError("You don't have access to this agreement", 403)
    return agreement_status(ownership, unit)


def _clean_url(value: str) -> str:
    url = (value or "").strip()
    if not url.lower().startswith(("https://", "http://")):
        raise AgreementError("document_url must be an http(s) URL", 400)
    return url


def submit_signed_agreement(
    db: Session,
    kind: AgreementKind,
    ownership_id: int,
    user: User,
    signer_name: str,
    document_url: str,
    certificate_url: Optional[str] = None,
) -> dict:
    """Record a signed agreement for the caller's ownership.

    Only approved (counted) ownerships with a unit can be signed, and each
    agreement is signed once; the flag is claimed with a conditional update
    so a double submit cannot overwrite the first signature.
    """
    signer_name = (signer_name or "").strip()
    if not 2 <= len(signer_name) <= 255:
        raise AgreementError("signer_name must be between 2 and 255 characters", 400)
    document_url = _clean_url(document_url)
    if certificate_url:
        certificate_url = _clean_url(certificate_url)

    ownership = db.query(Ownership).filter(Ownership.id == ownership_id).first()
    if not ownership:
        raise AgreementError("Ownership not found", 404)
    if ownership.user_id != user.id:
        raise AgreementError("You don't own this ownership", 403)
    if not ownership.unit_id or ownership.approval_status not in (None, ApprovalStatus.APPROVED.value):
        raise AgreementError("Ownership is pending approval", 400)

    values = {
        kind.signed_flag: True,
        kind.url: document_url,
        kind.signed_at: datetime.now(timezone.utc),
        kind.signer: signer_name,
    }
    if kind is MOA and certificate_url:
        values[Ownership.certificate_url] = certificate_url

    claimed = (
        db.query(Ownership)
        .filter(Ownership.id == ownership_id, kind.signed_flag.is_(False))
        .update(values, synchronize_session=False)
    )
    if not claimed:
        db.rollback()
        raise AgreementError(f"{kind.name} is already signed for this ownership", 409)
    db.commit()
    logger.info(f"[agreements] {kind.key} signed for ownership={ownership_id} by {user.id}")

    unit = db.query(Unit).filter(Unit.id == ownership.unit_id).first()
    db.refresh(ownership)
    _notify_signed(kind, ownership, unit, user, document_url)
    return agreement_status(ownership, unit)


def _notify_signed(kind: AgreementKind, ownership: Ownership, unit: Optional[Unit], user: User, document_url: str) -> None:
    unit_name = unit.name if unit else ""
    if user.email:
        try:
            notifications.send_agreement_signed(user.email, user.name, kind.name, unit_name, document_url)
        except Exception as ex:
            logger.warning(f"[agreements] confirmation email failed for ownership={ownership.id}: {ex}")
    for admin_email in config.ADMIN_EMAILS:
        try:
            notifications.send_admin_agreement_signed(
                admin_email, user.name, user.email, kind.name, unit_name,
                ownership.percentage_owned, document_url, ownership.id,
            )
        except Exception as ex:
            logger.warning(f"[agreements] admin notification to {admin_email} failed: {ex}")
