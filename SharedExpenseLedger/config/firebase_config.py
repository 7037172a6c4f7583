"""
Firebase Configuration Module

Lazily initialises the firebase_admin app and hands out a Firestore client.

Functions:
    get_db: Return the Firestore client, or None if Firestore is unavailable.
"""

import logging
from typing import Optional

import firebase_admin
from firebase_admin import credentials, firestore

from config.settings import get_settings


logger = logging.getLogger(__name__)

_db = None


def _initialize_app() -> None:
    """Initialise the default firebase_admin app if it does not exist yet."""
    try:
        firebase_admin.get_app()
        return
    except ValueError:
        pass

    settings = get_settings()
    options = {}
    if settings.firebase_project_id:
        options["projectId"] = settings.firebase_project_id

    if settings.firebase_credentials:
        cred = credentials.Certificate(settings.firebase_credentials)
    else:
        cred = credentials.ApplicationDefault()

    firebase_admin.initialize_app(cred, options or None)


def get_db() -> Optional["firestore.Client"]:
    """
    Get the shared Firestore client.

    Returns:
        firestore.Client | None: The client, or None when credentials are
        missing or the app cannot be initialised.
    """
    global _db
    if _db is not None:
        return _db

    try:
        _initialize_app()
        _db = firestore.client()
    except Exception:
        logger.exception("Could not initialise Firestore")
        return None

    return _db
