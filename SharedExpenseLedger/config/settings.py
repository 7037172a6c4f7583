"""
Settings Module

Environment-driven configuration for the shared expense ledger.

Environment Variables:
    LEDGER_STORE_BACKEND: "firestore" (default) or "memory"
    FIREBASE_CREDENTIALS: path to a service-account JSON file (optional)
    FIREBASE_PROJECT_ID: Firestore project override (optional)
    LEDGER_LOG_LEVEL: logging level name (default INFO)

Functions:
    get_settings: Read settings from the environment once.
    configure_logging: Configure root logging from settings.
"""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


VALID_BACKENDS = {"firestore", "memory"}

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@dataclass(frozen=True)
class Settings:
    """Runtime configuration values."""
    store_backend: str = "firestore"
    firebase_credentials: Optional[str] = None
    firebase_project_id: Optional[str] = None
    log_level: str = "INFO"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Read settings from environment variables.

    Returns:
        Settings: Parsed settings (cached after the first call).

    Raises:
        ValueError: If LEDGER_STORE_BACKEND is not a known backend.
    """
    backend = os.environ.get("LEDGER_STORE_BACKEND", "firestore").strip().lower()
    if backend not in VALID_BACKENDS:
        raise ValueError(
            f"LEDGER_STORE_BACKEND must be one of {sorted(VALID_BACKENDS)}, got: {backend}"
        )

    return Settings(
        store_backend=backend,
        firebase_credentials=os.environ.get("FIREBASE_CREDENTIALS") or None,
        firebase_project_id=os.environ.get("FIREBASE_PROJECT_ID") or None,
        log_level=os.environ.get("LEDGER_LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure root logging once at application start-up."""
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
