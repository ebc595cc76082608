# backend/depot/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/depot.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///depot.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Human-readable numbering: LOAD-2026-1001, PO-1001, FB-2026-1001 ...
    LOAD_NUMBER_BASE = _env_int("DEPOT_LOAD_NUMBER_BASE", 1000)
    DOCUMENT_NUMBER_BASE = _env_int("DEPOT_DOCUMENT_NUMBER_BASE", 1000)

    # Receiving location used when a purchase or free bill names none
    DEFAULT_WAREHOUSE_NAME = os.environ.get("DEPOT_DEFAULT_WAREHOUSE", "Main Warehouse")

    # Retry policy for lock/optimistic-version conflicts
    RETRY_ATTEMPTS = _env_int("DEPOT_RETRY_ATTEMPTS", 3)
    RETRY_BACKOFF_BASE = _env_float("DEPOT_RETRY_BACKOFF_BASE", 0.1)
