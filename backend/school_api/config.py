import os
import logging
from pathlib import Path
from urllib.parse import quote_plus

from dotenv import load_dotenv

BACKEND_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BACKEND_DIR / ".env")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

MONGO_URL = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.environ.get("DB_NAME", "school_management")
JWT_ALGORITHM = "HS256"
JWT_EXPIRES_MINUTES = int(os.environ.get("JWT_EXPIRES_MINUTES", 60 * 24 * 7))
DEFAULT_USER_PASSWORD = os.environ.get("DEFAULT_USER_PASSWORD", "defaultPassword123")
DEFAULT_ADMIN_EMAIL = os.environ.get("DEFAULT_ADMIN_EMAIL", "admin@school.local")
DEFAULT_ADMIN_PASSWORD = os.environ.get("DEFAULT_ADMIN_PASSWORD", "Admin@123")


def setup_logging() -> None:
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format=LOG_FORMAT,
    )


def get_jwt_secret() -> str:
    return os.environ.get("JWT_SECRET", "")


def get_cors_origins() -> list:
    raw = os.environ.get("CORS_ORIGINS", "*").strip()
    origins = [o.strip() for o in raw.split(",") if o.strip()] if raw else []
    return origins or ["*"]


def normalize_mongo_url(url: str) -> str:
    """URL-encode the password part of a Mongo URL when it holds reserved characters."""
    if "@" not in url or "://" not in url:
        return url
    protocol_end = url.find("://") + 3
    at_pos = url.rfind("@")
    if at_pos <= protocol_end:
        return url
    user_pass = url[protocol_end:at_pos]
    if ":" not in user_pass:
        return url
    username, password = user_pass.split(":", 1)
    if not any(c in password for c in ["@", "#", "$", "%", "&", "+", "=", "/", ":"]):
        return url
    return url[:protocol_end] + f"{username}:{quote_plus(password)}" + url[at_pos:]
