from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from qr_attendance.config.user_settings_store import UserSettingsStore

BASE_DIR = Path(__file__).resolve().parents[2]
ENV_PATH = BASE_DIR / ".env"
load_dotenv(ENV_PATH)

APP_NAME = os.getenv("APP_NAME", "QR Attendance")
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
user_settings_store = UserSettingsStore()

APP_DATA_DIR = Path(user_settings_store.get("app_data_dir")).expanduser()


def _env_float(name: str, fallback: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return float(fallback)
    try:
        return float(raw)
    except ValueError:
        return float(fallback)


@dataclass(frozen=True)
class Settings:
    app_name: str = APP_NAME
    database_path: Path = APP_DATA_DIR / "attendance.db"
    token_ttl_seconds: int = 300
    missing_location_policy: str = "allow"
    success_close_delay_seconds: float = 2.0
    error_reset_delay_seconds: float = 1.5
    db_busy_timeout_seconds: float = 5.0
    qr_camera_index: int = 0
    location_endpoint: str | None = None
    location_timeout_seconds: float = 5.0
    log_level: str = "INFO"


def _build_settings(store: UserSettingsStore, app_data_dir: Path) -> Settings:
    return Settings(
        app_name=APP_NAME,
        database_path=Path(os.getenv("DATABASE_PATH", str(app_data_dir / "attendance.db"))),
        token_ttl_seconds=int(os.getenv("TOKEN_TTL_SECONDS", store.get("token_ttl_seconds", 300))),
        missing_location_policy=os.getenv(
            "MISSING_LOCATION_POLICY", store.get("missing_location_policy", "allow")
        ).strip().lower(),
        success_close_delay_seconds=_env_float(
            "SUCCESS_CLOSE_DELAY_SECONDS", store.get("success_close_delay_seconds", 2.0)
        ),
        error_reset_delay_seconds=_env_float(
            "ERROR_RESET_DELAY_SECONDS", store.get("error_reset_delay_seconds", 1.5)
        ),
        db_busy_timeout_seconds=_env_float("DB_BUSY_TIMEOUT_SECONDS", 5.0),
        qr_camera_index=int(os.getenv("QR_CAMERA_INDEX", "0")),
        location_endpoint=os.getenv("LOCATION_ENDPOINT") or store.get("location_endpoint"),
        location_timeout_seconds=_env_float("LOCATION_TIMEOUT_SECONDS", 5.0),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )


settings = _build_settings(user_settings_store, APP_DATA_DIR)


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    logging.getLogger(__name__).debug("Loaded %s", settings)
