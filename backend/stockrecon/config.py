# backend/stockrecon/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockrecon.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockrecon.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Label used in the "Credit: <label> <amount>" sale note
    CREDIT_CURRENCY_LABEL = os.environ.get("CREDIT_CURRENCY_LABEL", "NLe")

    # Auto-created trade-in products are costed at this share of the trade-in value
    TRADE_IN_COST_RATIO = float(os.environ.get("TRADE_IN_COST_RATIO", "0.8"))
