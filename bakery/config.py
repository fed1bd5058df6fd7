# bakery/config.py
import os
from typing import List


def _sanitize_base_url(raw: str, default: str) -> str:
    raw = (raw or "").strip()
    if not raw.startswith(("http://", "https://")):
        return default
    return raw.rstrip("/")


def _csv(raw: str) -> List[str]:
    return [p.strip() for p in (raw or "").split(",") if p.strip()]


# -----------------------------------------------------------------------------
# App / DB
# -----------------------------------------------------------------------------
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./bakery.db")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = _csv(os.getenv("CORS_ORIGINS", "http://localhost:3000"))
FRONTEND_URL = _sanitize_base_url(os.getenv("FRONTEND_URL"), "http://localhost:3000")

# -----------------------------------------------------------------------------
# Auth
# -----------------------------------------------------------------------------
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
ALGO = "HS256"
ACCESS_EXPIRE_MIN = int(os.getenv("ACCESS_EXPIRE_MIN", str(24 * 60)))
VERIFY_EMAIL_EXPIRE_MIN = int(os.getenv("VERIFY_EMAIL_EXPIRE_MIN", str(3 * 24 * 60)))
RESET_CODE_EXPIRE_MIN = int(os.getenv("RESET_CODE_EXPIRE_MIN", "15"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

# -----------------------------------------------------------------------------
# VNPay
# -----------------------------------------------------------------------------
VNP_TMN_CODE = os.getenv("VNP_TMN_CODE", "")
VNP_HASH_SECRET = os.getenv("VNP_HASH_SECRET", "")
VNP_URL = os.getenv("VNP_URL", "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html")
VNP_API_URL = os.getenv("VNP_API_URL", "https://sandbox.vnpayment.vn/merchant_webapi/api/transaction")
VNP_RETURN_URL = _sanitize_base_url(
    os.getenv("VNP_RETURN_URL"), "http://localhost:8000/api/payment/vnpay/return"
)

# -----------------------------------------------------------------------------
# Mail
# -----------------------------------------------------------------------------
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASS = os.getenv("SMTP_PASS", "")
MAIL_FROM = os.getenv("MAIL_FROM", "Cake Shop <no-reply@cakeshop.local>")

# -----------------------------------------------------------------------------
# Back-office
# -----------------------------------------------------------------------------
LOW_STOCK_THRESHOLD = int(os.getenv("LOW_STOCK_THRESHOLD", "5"))
