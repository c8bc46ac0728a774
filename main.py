from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
import os

from core.config import logger  # type: ignore

# Routers
from routers import (
    purchase, stripe_webhook, depay, manual_payments,
    staff_entries, agreements, admin,
)  # type: ignore

app = FastAPI(title="Samal Reef Ownership API")

# ---- CORS setup ----
# Prefer ALLOWED_ORIGINS, but also support legacy env names used in .env
_default_origins = ",".join([
    "https://samalreef.com",
    "https://www.samalreef.com",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
])
_origins_env = os.getenv("ALLOWED_ORIGINS") or os.getenv("CORS_ORIGINS") or os.getenv("FRONTEND_ORIGIN") or _default_origins
ALLOWED_ORIGINS = [o.strip() for o in _origins_env.split(",") if o.strip()]
# Optional regex to match specific domains - SECURITY: Never use .* in production!
_origin_regex_raw = os.getenv("ALLOWED_ORIGINS_REGEX") or os.getenv("CORS_ORIGIN_REGEX") or ""
# Reject overly permissive patterns that would allow any origin
_origin_regex_env = _origin_regex_raw if (_origin_regex_raw and _origin_regex_raw.strip() not in (".*", "^.*$", ".+")) else None
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_origin_regex=_origin_regex_env,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Security headers ---
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("Strict-Transport-Security", "max-age=63072000; includeSubDomains; preload")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("X-Frame-Options", "DENY")
    # API only; nothing here is meant to be rendered or framed
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    return response


app.include_router(purchase.router)
app.include_router(stripe_webhook.router)
app.include_router(depay.router)
app.include_router(manual_payments.router)
app.include_router(staff_entries.router)
app.include_router(agreements.router)
app.include_router(admin.router)


@app.on_event("startup")
async def _init_schema():
    try:
        from core.database import init_db
        init_db()
    except Exception as _ex:
        logger.warning(f"init_db failed: {_ex}")


@app.get("/")
async def root():
    return {"ok": True}


@app.get("/api/health")
async def health():
    from sqlalchemy import text
    from core.database import SessionLocal
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return {"ok": True, "database": "up"}
    except Exception as ex:
        logger.warning(f"[health] database check failed: {ex}")
        return {"ok": False, "database": "down"}
    finally:
        db.close()
