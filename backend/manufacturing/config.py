# backend/manufacturing/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/manufacturing.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///manufacturing.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Production orders created without a code get "<prefix>-YYYYMMDD-XXXXXX"
    MANUFACTURING_ORDER_CODE_PREFIX = os.environ.get("MANUFACTURING_ORDER_CODE_PREFIX", "MO")

    # Retry policy for lock/stale-version conflicts during order transitions
    MANUFACTURING_LOCK_RETRY_ATTEMPTS = int(os.environ.get("MANUFACTURING_LOCK_RETRY_ATTEMPTS", "3"))
    MANUFACTURING_LOCK_RETRY_BACKOFF = float(os.environ.get("MANUFACTURING_LOCK_RETRY_BACKOFF", "0.1"))
