"""
Agreements Router
Investors sign the Management (MOA) and Rental Management (RMA) agreements
for their ownerships and look up signing status
"""
from typing import Optional

from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from core.config import logger
from core.auth import get_current_user, require_admin
from core.database import get_db
from utils.agreements import AGREEMENTS, AgreementError, get_agreement, list_agreements, submit_signed_agreement

router = APIRouter(prefix="/api/agreements", tags=["agreements"])


class SignedAgreementPayload(BaseModel):
    signer_name: str
    document_url: str  # signed PDF, already uploaded
    certificate_url: Optional[str] = None


@router.get("/mine")
async def my_agreements(request: Request, db: Session = Depends(get_db)):
    user = get_current_user(request, db)
    if not user:
        return JSONResponse({"error": "Unauthorized"}, status_code=401)
    return {"agreements": list_agreements(db, user.id)}


@router.get("/ownerships/{ownership_id}")
async def agreement_for_ownership(ownership_id: int, request: Request, db: Session = Depends(get_db)):
    user = get_current_user(request, db)
    if not user:
        return JSONResponse({"error": "Unauthorized"}, status_code=401)
    admin, _ = require_admin(request, db)
    try:
        return get_agreement(db, ownership_id, user, is_admin=admin is not None)
    except AgreementError as ex:
        return JSONResponse({"error": ex.message}, status_code=ex.status_code)


@router.post("/ownerships/{ownership_id}/{kind}")
async def sign_agreement(ownership_id: int, kind: str, body: SignedAgreementPayload, request: Request, db: Session = Depends(get_db)):
    user = get_current_user(request, db)
    if not user:
        return JSONResponse({"error": "Unauthorized"}, status_code=401)
    agreement = AGREEMENTS.get(kind.lower())
    if not agreement:
        return JSONResponse({"error": "Unknown agreement; use moa or rma"}, status_code=404)

    try:
        status = await run_in_threadpool(
            submit_signed_agreement,
            db,
            agreement,
            ownership_id,
            user,
            body.signer_name,
            body.document_url,
            body.certificate_url,
        )
    except AgreementError as ex:
        return JSONResponse({"error": ex.message}, status_code=ex.status_code)
    except Exception as ex:
        db.rollback()
        logger.exception(f"[agreements] signing {kind} for ownership={ownership_id} failed: {ex}")
        return JSONResponse({"error": "Failed to record signed agreement"}, status_code=500)

    return {"success": True, "agreement": status}
