import os
import logging
from dotenv import load_dotenv

# Load .env from project root
try:
    load_dotenv(dotenv_path=os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".env")))
except Exception:
    try:
        load_dotenv()
    except Exception:
        pass


def _strip(value: str) -> str:
    return (value or "").strip().strip('"').strip("'").strip("`")


APP_NAME = os.getenv("APP_NAME", "Samal Reef")
APP_URL = _strip(os.getenv("APP_URL", "http://localhost:3000")).rstrip("/")

# Site currency (fiat rail and manual payments settle in this currency)
CURRENCY_CODE = _strip(os.getenv("CURRENCY_CODE", "PHP")).upper() or "PHP"
CURRENCY_SYMBOL = os.getenv("CURRENCY_SYMBOL", "₱")

# Payments (Stripe)
STRIPE_SECRET_KEY = _strip(os.getenv("STRIPE_SECRET_KEY", ""))
STRIPE_WEBHOOK_SECRET = _strip(os.getenv("STRIPE_WEBHOOK_SECRET", ""))

# Payments (DePay). Keys are PEM strings or *_FILE paths to PEM files.
DEPAY_PUBLIC_KEY = os.getenv("DEPAY_PUBLIC_KEY", "").strip()
DEPAY_PUBLIC_KEY_FILE = os.getenv("DEPAY_PUBLIC_KEY_FILE", "").strip()
DEPAY_PRIVATE_KEY = os.getenv("DEPAY_PRIVATE_KEY", "").strip()
DEPAY_PRIVATE_KEY_FILE = os.getenv("DEPAY_PRIVATE_KEY_FILE", "").strip()
DEPAY_WALLET_ADDRESS = _strip(os.getenv("DEPAY_WALLET_ADDRESS", ""))
DEPAY_INTEGRATION_ID = _strip(os.getenv("DEPAY_INTEGRATION_ID", ""))

# If provided as file paths, read PEM contents
try:
    if (not DEPAY_PRIVATE_KEY) and DEPAY_PRIVATE_KEY_FILE and os.path.isfile(DEPAY_PRIVATE_KEY_FILE):
        with open(DEPAY_PRIVATE_KEY_FILE, "r", encoding="utf-8") as f:
            DEPAY_PRIVATE_KEY = f.read()
except Exception:
    pass
try:
    if (not DEPAY_PUBLIC_KEY) and DEPAY_PUBLIC_KEY_FILE and os.path.isfile(DEPAY_PUBLIC_KEY_FILE):
        with open(DEPAY_PUBLIC_KEY_FILE, "r", encoding="utf-8") as f:
            DEPAY_PUBLIC_KEY = f.read()
except Exception:
    pass

# Env files usually carry PEM keys with literal \n sequences
DEPAY_PUBLIC_KEY = DEPAY_PUBLIC_KEY.replace("\\n", "\n")
DEPAY_PRIVATE_KEY = DEPAY_PRIVATE_KEY.replace("\\n", "\n")

# Manual payments
MANUAL_PAYMENT_MAX_PENDING = int(os.getenv("MANUAL_PAYMENT_MAX_PENDING", "3"))

MAIL_FROM = os.getenv("MAIL_FROM", "Samal Reef <no-reply@your-domain.com>")
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASS = os.getenv("SMTP_PASS", "")

ADMIN_EMAILS = [e.strip().lower() for e in (os.getenv("ADMIN_EMAILS", "").split(",") if os.getenv("ADMIN_EMAILS") else []) if e.strip()]

# Session tokens are issued by the web app; this service only verifies them
SESSION_JWT_SECRET = os.getenv("SESSION_JWT_SECRET", "").strip()
SESSION_JWT_ALGORITHM = os.getenv("SESSION_JWT_ALGORITHM", "HS256").strip() or "HS256"

# Logging
logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")
logger = logging.getLogger("samalreef")
