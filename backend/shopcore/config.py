# backend/shopcore/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/shopcore.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///shopcore.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Money is held in minor units (paise); CURRENCY is passed through to the gateway
    CURRENCY = os.environ.get("CURRENCY", "INR")

    # Intra-state orders split GST into CGST + SGST, everything else is IGST
    STORE_STATE = os.environ.get("STORE_STATE", "Maharashtra")

    SHIPPING_FLAT_RATE_CENTS = _env_int("SHIPPING_FLAT_RATE_CENTS", 4900)
    FREE_SHIPPING_THRESHOLD_CENTS = _env_int("FREE_SHIPPING_THRESHOLD_CENTS", 49900)

    PAYMENT_GATEWAY = os.environ.get("PAYMENT_GATEWAY", "fake")
    FAKE_PAYMENT_OUTCOME = os.environ.get("FAKE_PAYMENT_OUTCOME", "success")
    PAYMENT_TIMEOUT_SECONDS = _env_int("PAYMENT_TIMEOUT_SECONDS", 30)

    ORDER_NUMBER_PREFIX = os.environ.get("ORDER_NUMBER_PREFIX", "ORD")
    PO_NUMBER_PREFIX = os.environ.get("PO_NUMBER_PREFIX", "PO")

    # Retry policy for transient DB contention (locked database, stale rows)
    DB_RETRY_ATTEMPTS = _env_int("DB_RETRY_ATTEMPTS", 5)
    DB_RETRY_BACKOFF_SECONDS = float(os.environ.get("DB_RETRY_BACKOFF_SECONDS", "0.05"))
