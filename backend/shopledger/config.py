# backend/shopledger/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/shopledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location (postgresql+psycopg://...)
        "sqlite:///shopledger.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # All money values are integer minor units of this currency
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "RUB")

    # Each channel has its own order number sequence
    ORDER_CHANNELS = tuple(
        c.strip().upper()
        for c in os.environ.get("ORDER_CHANNELS", "AS,LAB").split(",")
        if c.strip()
    )
    DEFAULT_ORDER_CHANNEL = os.environ.get("DEFAULT_ORDER_CHANNEL", "AS")

    # Bounded retry for lock conflicts (deadlocks, "database is locked", stale rows)
    LOCK_RETRY_ATTEMPTS = _env_int("LOCK_RETRY_ATTEMPTS", 3)
    LOCK_RETRY_BACKOFF = float(os.environ.get("LOCK_RETRY_BACKOFF", "0.1"))
