from typing import Optional, Tuple

import jwt
from fastapi import Request
from sqlalchemy.orm import Session

from core import config
from core.config import logger
from models.user import User, UserRole

STAFF_ROLES = {UserRole.ADMIN.value, UserRole.STAFF.value}


def get_uid_from_request(request: Request) -> Optional[str]:
    """User id from the web app's session token (Bearer JWT, `sub` claim)"""
    auth_header = request.headers.get("authorization") or request.headers.get("Authorization")
    if not auth_header or not auth_header.lower().startswith("bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    if not token:
        return None
    if not config.SESSION_JWT_SECRET:
        logger.warning("SESSION_JWT_SECRET not configured; rejecting bearer token")
        return None
    try:
        payload = jwt.decode(token, config.SESSION_JWT_SECRET, algorithms=[config.SESSION_JWT_ALGORITHM])
        uid = str(payload.get("sub") or payload.get("uid") or "").strip()
        return uid or None
    except jwt.PyJWTError as ex:
        logger.warning(f"Token verification failed: {ex}")
        return None


def get_current_user(request: Request, db: Session) -> Optional[User]:
    uid = get_uid_from_request(request)
    if not uid:
        return None
    return db.query(User).filter(User.id == uid).first()


def _is_admin(user: User) -> bool:
    if user.role == UserRole.ADMIN.value:
        return True
    return bool(user.email) and user.email.lower() in config.ADMIN_EMAILS


def require_admin(request: Request, db: Session) -> Tuple[Optional[User], str]:
    """Returns (user, "") for admins, else (None, reason)"""
    user = get_current_user(request, db)
    if not user:
        return None, "unauthorized"
    if _is_admin(user):
        return user, ""
    return None, "forbidden"


def require_staff(request: Request, db: Session) -> Tuple[Optional[User], str]:
    """Staff or admin"""
    user = get_current_user(request, db)
    if not user:
        return None, "unauthorized"
    if user.role in STAFF_ROLES or _is_admin(user):
        return user, ""
    return None, "forbidden"


def auth_error_status(reason: str) -> int:
    return 401 if reason == "unauthorized" else 403
