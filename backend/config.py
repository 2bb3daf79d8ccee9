"""
NoteTrade configuration.
Loads settings from the environment (and a local .env file when present).
"""
import os
from dotenv import load_dotenv

load_dotenv()

# ── Database ──
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./notetrade.db")

# ── Auth ──
SECRET_KEY = os.getenv("SECRET_KEY", "notetrade-dev-secret-change-in-production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))

# ── Marketplace rules ──
INQUIRY_EXPIRY_DAYS = int(os.getenv("INQUIRY_EXPIRY_DAYS", "14"))
SIGNED_URL_TTL_SECONDS = int(os.getenv("SIGNED_URL_TTL_SECONDS", "900"))
SEARCH_DEFAULT_LIMIT = 20
SEARCH_MAX_LIMIT = 100

# ── Web ──
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# ── Email (Gmail API) ──
EMAIL_CONFIG = {
    "token_file": os.getenv("GMAIL_TOKEN_FILE", "token.json"),
    "sender_name": os.getenv("EMAIL_SENDER_NAME", "NoteTrade"),
    "sender_email": os.getenv("EMAIL_SENDER_ADDRESS", "noreply@notetrade.app"),
}
