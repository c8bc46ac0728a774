"""Rate limiting utilities using throttled-py"""
import os
import logging
from datetime import timedelta
from throttled import Throttled, RateLimiterType, store, rate_limiter

logger = logging.getLogger("samalreef")

# Initialize storage - Redis for production, MemoryStore for development
try:
    redis_url = os.getenv("REDIS_URL", "").strip()
    if redis_url:
        # RedisStore expects the URL string, not a Redis client object
        storage = store.RedisStore(server=redis_url)
        logger.info("[rate_limit] Using Redis for rate limiting")
    else:
        storage = store.MemoryStore()
        logger.warning("[rate_limit] REDIS_URL not set - using in-memory storage (not suitable for production with multiple workers)")
except Exception as ex:
    storage = store.MemoryStore()
    logger.warning(f"[rate_limit] Redis connection failed, using in-memory storage: {ex}")

# Checkout creation: 30 per IP per 10 minutes (each call may create a Stripe session)
checkout_throttle = Throttled(
    using=RateLimiterType.FIXED_WINDOW.value,
    quota=rate_limiter.per_duration(timedelta(minutes=10), limit=int(os.getenv("CHECKOUT_RATE_LIMIT", "30"))),
    store=storage,
)

# Manual proof uploads: 10 per user per hour, on top of the pending-submission cap
proof_submission_throttle = Throttled(
    using=RateLimiterType.FIXED_WINDOW.value,
    quota=rate_limiter.per_duration(timedelta(hours=1), limit=int(os.getenv("PROOF_RATE_LIMIT", "10"))),
    store=storage,
)


def client_ip(request) -> str:
    fwd = request.headers.get("x-forwarded-for") or ""
    if fwd:
        return fwd.split(",")[0].strip()
    return getattr(getattr(request, "client", None), "host", "") or "unknown"


def check_limit(throttle: Throttled, key: str) -> bool:
    """True when the call is allowed; limiter failures fail open"""
    try:
        result = throttle.limit(key, cost=1)
        return not result.limited
    except Exception as ex:
        logger.warning(f"[rate_limit] limiter error for {key}: {ex}")
        return True
