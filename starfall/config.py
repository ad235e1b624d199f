import os
from decimal import Decimal


def _int_env(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _packs_env(name: str, default: str) -> list:
    raw = os.getenv(name, default)
    return [int(p) for p in raw.split(",") if p.strip()]


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "a_default_secret_key")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Public https base of this service; payment providers call back here
    PUBLIC_BASE = os.getenv("PUBLIC_BASE", "").rstrip("/")

    # --- Pricing ---
    RUB_PER_STAR = Decimal(os.getenv("RUB_PER_STAR", "1.8"))
    USDT_PER_STAR = Decimal(os.getenv("USDT_PER_STAR", "0.025"))
    MIN_QUANTITY = _int_env("MIN_QUANTITY", 50)
    MAX_QUANTITY = _int_env("MAX_QUANTITY", 1_000_000)
    STAR_PACKS = _packs_env("STAR_PACKS", "50,100,250,500,1000,2500")

    # --- Payment webhooks (X-Sign shared secrets; empty disables the channel) ---
    WEBHOOK_SECRET_RUB = os.getenv("WEBHOOK_SECRET_RUB", "")
    WEBHOOK_SECRET_CRYPTO = os.getenv("WEBHOOK_SECRET_CRYPTO", "")
    WEBHOOK_SECRET_SBP = os.getenv("WEBHOOK_SECRET_SBP", "")

    # --- SBP QR manager ---
    QRM_BASE = os.getenv("QRM_BASE", "").rstrip("/")
    QRM_TOKEN = os.getenv("QRM_TOKEN", "")
    SBP_PAID_STATUS_CODE = _int_env("SBP_PAID_STATUS_CODE", 1)
    PAYMENT_PURPOSE_MAX_LEN = _int_env("PAYMENT_PURPOSE_MAX_LEN", 140)

    # --- Hosted checkout links ---
    CHECKOUT_RUB = os.getenv("CHECKOUT_RUB", "")
    CHECKOUT_CRYPTO = os.getenv("CHECKOUT_CRYPTO", "")

    # --- Telegram ---
    BOT_TOKEN = os.getenv("BOT_TOKEN", "")
    ADMIN_CHAT_ID = os.getenv("ADMIN_CHAT_ID", "")
    TELEGRAM_API_BASE = os.getenv("TELEGRAM_API_BASE", "https://api.telegram.org").rstrip("/")
    TELEGRAM_WEBHOOK_SECRET = os.getenv("TELEGRAM_WEBHOOK_SECRET", "")
    SESSION_TTL_SECONDS = _int_env("SESSION_TTL_SECONDS", 900)
    DELIVERY_ETA_MIN = _int_env("DELIVERY_ETA_MIN", 15)

    # --- Delivery ---
    DELIVERY_PROVIDER = os.getenv("DELIVERY_PROVIDER", "demo").strip().lower()
    DELIVERY_HTTP_URL = os.getenv("DELIVERY_HTTP_URL", "")
    DELIVERY_HTTP_API_KEY = os.getenv("DELIVERY_HTTP_API_KEY", "")
    AUTODELIVER = os.getenv("AUTODELIVER", "1") == "1"
    DELIVERY_INTERVAL = _int_env("DELIVERY_INTERVAL", 7)
    DELIVERY_MAX_RETRIES = _int_env("DELIVERY_MAX_RETRIES", 4)

    # --- Payment watch (status polling) ---
    PAYMENT_WATCH_INTERVAL = _int_env("PAYMENT_WATCH_INTERVAL", 10)
    PAYMENT_WATCH_BATCH = _int_env("PAYMENT_WATCH_BATCH", 10)
    PAYMENT_WATCH_BASE_DELAY = _int_env("PAYMENT_WATCH_BASE_DELAY", 15)
    PAYMENT_WATCH_MAX_DELAY = _int_env("PAYMENT_WATCH_MAX_DELAY", 60)
    PAYMENT_WATCH_MAX_TRIES = _int_env("PAYMENT_WATCH_MAX_TRIES", 40)
    PAYMENT_WATCH_ERROR_DELAY = _int_env("PAYMENT_WATCH_ERROR_DELAY", 30)

    SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "1") == "1"
    RUN_MIGRATIONS = os.getenv("RUN_MIGRATIONS", "0") == "1"
