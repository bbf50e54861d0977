import os
from typing import List

DATABASE_URL = os.getenv("DATABASE_URL", "postgresql+psycopg2://postgres:postgres@db:5432/studio_orders")
SQL_ECHO = os.getenv("SQL_ECHO", "0") == "1"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Origin of the storefront that posts orders cross-origin
STOREFRONT_ORIGIN = os.getenv("STOREFRONT_ORIGIN", "https://oldastudio.up.railway.app")

SSE_KEEPALIVE_SECONDS = float(os.getenv("SSE_KEEPALIVE_SECONDS", "25"))


def dashboard_origins() -> List[str]:
    raw = os.getenv("DASHBOARD_ORIGINS", "http://localhost:3000,http://localhost:80")
    return [o.strip() for o in raw.split(",") if o.strip()]


def webhook_secret() -> str:
    """Shared ingestion secret. Read on every call so a rotated value applies without restart."""
    return os.getenv("WEBHOOK_SECRET", "")


# Base URL the sync client uses to reach this service
STUDIO_SYNC_URL = os.getenv("STUDIO_SYNC_URL", "http://localhost:8000")
