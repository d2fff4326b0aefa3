# backend/erpcore/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/erpcore.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location (MySQL/Postgres in production)
        "sqlite:///erpcore.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # Location used when a reception item or adjustment does not name one
    DEFAULT_LOCATION = os.environ.get("DEFAULT_LOCATION", "General")

    # Purchase order tax in basis points (2100 = 21%)
    DEFAULT_TAX_RATE_BPS = int(os.environ.get("DEFAULT_TAX_RATE_BPS", "2100"))

    # "allow": receptions may push quantity_received past quantity_ordered (logged)
    # "reject": approval fails with OVER_RECEIPT
    OVER_RECEIPT_POLICY = os.environ.get("OVER_RECEIPT_POLICY", "allow").lower()

    AUDIT_LOG_ENABLED = _env_bool("AUDIT_LOG_ENABLED", True)
