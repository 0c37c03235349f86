from __future__ import annotations

import logging
import os

logger = logging.getLogger(__name__)


def load_dotenv(path: str = ".env") -> None:
    if not os.path.exists(path):
        return

    try:
        with open(path, "r", encoding="utf-8") as env_file:
            for raw_line in env_file:
                line = raw_line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue

                key, value = line.split("=", 1)
                key = key.strip()
                value = value.strip().strip("'").strip('"')
                if key:
                    os.environ.setdefault(key, value)
    except OSError:
        logger.exception("Failed to read %s", path)


load_dotenv()


def required_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"{name} is not configured")
    return value


def database_url() -> str:
    # Read on first pool use so the package imports without a database.
    return required_env("DATABASE_URL")


SUPABASE_URL = os.environ.get("SUPABASE_URL", "").rstrip("/")
SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY", "")
SUPABASE_SERVICE_ROLE_KEY = os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "")
SUPABASE_TIMEOUT_SECONDS = float(os.environ.get("SUPABASE_TIMEOUT_SECONDS", "10"))
STORAGE_BUCKET = os.environ.get("STORAGE_BUCKET", "evidencias")

APP_URL = os.environ.get("APP_URL", "http://localhost:5001").rstrip("/")
SECRET_KEY = os.environ.get("SECRET_KEY", "")

WEATHER_API_URL = os.environ.get("WEATHER_API_URL", "https://api.open-meteo.com/v1/forecast")
WEATHER_LATITUDE = float(os.environ.get("WEATHER_LATITUDE", "18.2619"))
WEATHER_LONGITUDE = float(os.environ.get("WEATHER_LONGITUDE", "-93.2250"))
WEATHER_TIMEZONE = os.environ.get("WEATHER_TIMEZONE", "America/Mexico_City")
WEATHER_LOCATION_LABEL = os.environ.get("WEATHER_LOCATION_LABEL", "Comalcalco")
WEATHER_TIMEOUT_SECONDS = float(os.environ.get("WEATHER_TIMEOUT_SECONDS", "5"))
WEATHER_CACHE_SECONDS = int(os.environ.get("WEATHER_CACHE_SECONDS", "3600"))

REALTIME_CHANNEL = os.environ.get("REALTIME_CHANNEL", "table_changes")
REALTIME_RECONNECT_SECONDS = float(os.environ.get("REALTIME_RECONNECT_SECONDS", "5"))
REALTIME_ENABLED = os.environ.get("REALTIME_ENABLED", "1") == "1"

DB_POOL_MAX = int(os.environ.get("DB_POOL_MAX", "10"))
RUN_DB_INIT = os.environ.get("RUN_DB_INIT", "0") == "1"
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
