import os
from dotenv import load_dotenv

load_dotenv()

def _get(name: str, default: str | None = None) -> str | None:
    v = os.getenv(name, default)
    if v is None:
        return None
    v = v.strip()
    return v if v != "" else default

def _list(name: str) -> list[str]:
    return [s.strip() for s in (_get(name, "") or "").split(",") if s.strip()]

def _trial_days(raw: str | None) -> int:
    try:
        n = int(raw or "7")
    except ValueError:
        return 7
    return min(n, 60) if n > 0 else 7

APP_ENV = (_get("APP_ENV", "local") or "local").lower()  # local | prod
IS_PROD = APP_ENV == "prod"
LOG_LEVEL = (_get("LOG_LEVEL", "INFO") or "INFO").upper()

# Database (blob store); in-process store when unset
DATABASE_URL = _get("DATABASE_URL")

# Stripe
STRIPE_SECRET_KEY = _get("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = _get("STRIPE_WEBHOOK_SECRET")
STRIPE_API_BASE = _get("STRIPE_API_BASE", "https://api.stripe.com") or "https://api.stripe.com"
STRIPE_TIMEOUT_SECONDS = float(_get("STRIPE_TIMEOUT_SECONDS", "10") or "10")
STRIPE_MAX_RETRIES = int(_get("STRIPE_MAX_RETRIES", "2") or "2")
ALLOWED_PRICE_IDS = _list("ALLOWED_PRICE_IDS")

PRICE_IDS = {
    "INR": {"month": _get("PRICE_PRO_MONTHLY_INR"), "year": _get("PRICE_PRO_ANNUAL_INR")},
    "USD": {"month": _get("PRICE_PRO_MONTHLY_USD"), "year": _get("PRICE_PRO_ANNUAL_USD")},
}
DOMAIN = _get("DOMAIN")

# Trials
TRIAL_DAYS = _trial_days(_get("TRIAL_DAYS"))
TRIAL_COOKIE_NAME = _get("TRIAL_COOKIE_NAME", "db_trial_started_at") or "db_trial_started_at"
SESSION_SECRET = _get("SESSION_SECRET", "dev-only-session-secret") or "dev-only-session-secret"
JWT_ALGORITHM = _get("JWT_ALGORITHM", "HS256") or "HS256"

# Admin
ADMIN_TOKEN = _get("ADMIN_TOKEN")

# Blob URLs are served by this app under /blobs/
PUBLIC_BASE_URL = (_get("PUBLIC_BASE_URL", "http://localhost:8000") or "").rstrip("/")

# Quotas / rate limits
FREE_DAILY_LIMIT = int(_get("FREE_DAILY_LIMIT", "5") or "5")
REPORTS_RATE_LIMIT = int(_get("REPORTS_RATE_LIMIT", "30") or "30")
REPORTS_RATE_WINDOW_SECONDS = int(_get("REPORTS_RATE_WINDOW_SECONDS", "60") or "60")

# CORS / Hosts
# comma-separated lists
ALLOWED_ORIGINS = _list("ALLOWED_ORIGINS")
ALLOWED_HOSTS = _list("ALLOWED_HOSTS")

# Request limits
MAX_BODY_BYTES = int(_get("MAX_BODY_BYTES", "1048576") or "1048576")  # 1MB default

UPGRADE_URL = "/pricing"

def validate_settings():
    if not IS_PROD:
        return
    if not STRIPE_SECRET_KEY:
        raise RuntimeError("STRIPE_SECRET_KEY is not set")
    if not STRIPE_WEBHOOK_SECRET:
        raise RuntimeError("STRIPE_WEBHOOK_SECRET is not set")
    if SESSION_SECRET == "dev-only-session-secret":
        raise RuntimeError("SESSION_SECRET must be set in production")
    if not DOMAIN:
        raise RuntimeError("DOMAIN must be set in production")
