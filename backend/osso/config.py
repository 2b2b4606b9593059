# backend/osso/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/osso.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///osso.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Month close refuses to lock a period while checklist items fail
    MONTH_CLOSE_CHECKLIST_ENFORCED = _env_flag("MONTH_CLOSE_CHECKLIST_ENFORCED", True)

    # Used only when no CurrencySetting row exists yet
    DEFAULT_CNY_TO_USD_RATE = float(os.environ.get("DEFAULT_CNY_TO_USD_RATE", "0.14"))
