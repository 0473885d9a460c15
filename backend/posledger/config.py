# backend/posledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/posledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///posledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Ledger defaults
    DEFAULT_TAX_RATE = float(os.environ.get("POS_DEFAULT_TAX_RATE", "0.20"))
    DEFAULT_CURRENCY = os.environ.get("POS_CURRENCY", "EUR")
    LOW_STOCK_THRESHOLD = int(os.environ.get("POS_LOW_STOCK_THRESHOLD", "5"))

    # Freestanding counter returns (no originating sale) are accepted unless set
    RETURNS_REQUIRE_SALE = _env_bool("POS_RETURNS_REQUIRE_SALE", False)

    # Bounded retry for the document counter uniqueness race
    NUMBERING_MAX_ATTEMPTS = int(os.environ.get("POS_NUMBERING_MAX_ATTEMPTS", "5"))

    # Chart of accounts used by the FEC ledger export
    ACCOUNTING_JOURNAL_CODE = "VT"
    ACCOUNTING_JOURNAL_LABEL = "Ventes caisse"
    ACCOUNTING_ACCOUNTS = {
        "cash": ("530000", "Caisse"),
        "bank": ("512000", "Banque"),
        "revenue": ("707000", "Ventes de marchandises"),
        "tax": ("445710", "TVA collectee"),
    }

    MAX_PAGE_SIZE = 100
