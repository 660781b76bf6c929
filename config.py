"""
Runtime configuration for the Bakery Storefront API.

Values come from the environment; a local .env file is loaded first.
"""
import logging.config
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


def _csv_env(name: str, default: str = "") -> List[str]:
    raw = os.getenv(name, default) or ""
    return [part.strip() for part in raw.split(",") if part.strip()]


@dataclass
class Settings:
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "bakery_storefront"
    admin_emails: List[str] = field(default_factory=list)
    frontend_urls: List[str] = field(default_factory=lambda: ["http://localhost:3000"])
    firebase_service_account_json: Optional[str] = None
    firebase_project_id: Optional[str] = None
    firebase_client_email: Optional[str] = None
    firebase_private_key: Optional[str] = None
    order_id_prefix: str = "KAKE"
    log_level: str = "INFO"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", "mongodb://localhost:27017"),
            database_name=os.getenv("DATABASE_NAME", "bakery_storefront"),
            admin_emails=[e.lower() for e in _csv_env("ADMIN_EMAILS")],
            frontend_urls=_csv_env("FRONTEND_URLS", "http://localhost:3000"),
            firebase_service_account_json=os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON") or None,
            firebase_project_id=os.getenv("FIREBASE_PROJECT_ID") or None,
            firebase_client_email=os.getenv("FIREBASE_CLIENT_EMAIL") or None,
            firebase_private_key=(os.getenv("FIREBASE_PRIVATE_KEY") or "").replace("\\n", "\n") or None,
            order_id_prefix=os.getenv("ORDER_ID_PREFIX", "KAKE").strip().upper() or "KAKE",
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            port=_int_env("PORT", 8000),
        )

    def is_admin_email(self, email: Optional[str]) -> bool:
        return bool(email) and email.strip().lower() in self.admin_emails


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()


def configure_logging(level: str = "INFO") -> None:
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "simple": {
                "format": "{levelname} {asctime} {name} {message}",
                "style": "{",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "simple",
            },
        },
        "root": {
            "handlers": ["console"],
            "level": level,
        },
        "loggers": {
            # pymongo heartbeats are noisy at DEBUG
            "pymongo": {"level": "WARNING"},
        },
    })
