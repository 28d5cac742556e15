import os

try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass  # dotenv is optional for production, but useful locally

class Settings:
    # --- Database ---
    DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite+aiosqlite:///./mindping.db")
    DATABASE_PUBLIC_URL = os.environ.get("DATABASE_PUBLIC_URL")

    # --- Redis (Celery broker) ---
    REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

    # --- Local calendar ---
    DEFAULT_TIMEZONE = os.environ.get("DEFAULT_TIMEZONE", "Asia/Seoul")
    DEFAULT_TIME_SLOTS = os.environ.get("DEFAULT_TIME_SLOTS", "forenoon,afternoon,evening")

    # --- Scheduling window and retention ---
    FORWARD_WINDOW_DAYS = int(os.environ.get("FORWARD_WINDOW_DAYS", "7"))
    ARCHIVE_RETENTION = int(os.environ.get("ARCHIVE_RETENTION", "100"))
    LEDGER_RETENTION_DAYS = int(os.environ.get("LEDGER_RETENTION_DAYS", "30"))

    # --- Notification scheduler calls ---
    DEVICE_CALL_TIMEOUT = float(os.environ.get("DEVICE_CALL_TIMEOUT", "5"))
    DEVICE_CALL_ATTEMPTS = int(os.environ.get("DEVICE_CALL_ATTEMPTS", "3"))
    DISPATCH_INTERVAL_SECONDS = float(os.environ.get("DISPATCH_INTERVAL_SECONDS", "60"))

    # --- Catalog asset paths ---
    CATALOG_ASSET_DIR = os.environ.get("CATALOG_ASSET_DIR", "app/services/catalog_assets")
    CATALOG_FILE = os.environ.get("CATALOG_FILE", "messages.json")

    # --- Banner ---
    NOTIFICATION_TITLE = os.environ.get("NOTIFICATION_TITLE", "MindPing")

    # --- Add more as needed ---

settings = Settings()
