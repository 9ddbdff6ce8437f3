# backend/stitchline/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-in-production")

    # SQLite DB stored in backend/instance/stitchline.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///stitchline.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Inventory summary: available stock below this is "low_stock"
    LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", "10"))

    # Unfiltered activity log reads return at most this many rows
    ACTIVITY_LOG_DEFAULT_LIMIT = int(os.environ.get("ACTIVITY_LOG_DEFAULT_LIMIT", "100"))

    # Gate-check-then-write retries on lock/stale conflicts
    WRITE_RETRY_ATTEMPTS = int(os.environ.get("WRITE_RETRY_ATTEMPTS", "3"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    WRITE_RETRY_ATTEMPTS = 1
