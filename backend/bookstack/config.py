# backend/bookstack/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/bookstack.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///bookstack.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Entitlements
    DEFAULT_ACCESS_DURATION_DAYS = int(os.environ.get("DEFAULT_ACCESS_DURATION_DAYS", "14"))
    EXPIRY_SWEEP_ENABLED = _env_bool("EXPIRY_SWEEP_ENABLED", False)
    EXPIRY_SWEEP_INTERVAL_SECONDS = int(os.environ.get("EXPIRY_SWEEP_INTERVAL_SECONDS", "3600"))

    # Orders (all amounts in cents)
    RETURN_WINDOW_DAYS = int(os.environ.get("RETURN_WINDOW_DAYS", "7"))
    DELIVERY_FEE_CENTS = int(os.environ.get("DELIVERY_FEE_CENTS", "5000"))
    FREE_DELIVERY_THRESHOLD_CENTS = int(os.environ.get("FREE_DELIVERY_THRESHOLD_CENTS", "50000"))

    # Legacy borrow path
    FINE_PER_DAY_CENTS = int(os.environ.get("FINE_PER_DAY_CENTS", "1000"))

    # Collaborators (relative blob root resolves under the instance folder)
    BLOB_STORE_ROOT = os.environ.get("BLOB_STORE_ROOT", "blobs")
    MAIL_FROM = os.environ.get("MAIL_FROM", "no-reply@bookstack.local")

    # Identity
    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))
