"""Firebase Admin SDK bootstrap."""

from __future__ import annotations

import logging
from typing import Any

import firebase_admin
from firebase_admin import credentials, firestore_async

from pylamp.config import LampConfig
from pylamp.exceptions import LampConfigError

_logger = logging.getLogger(__name__)

_APP_NAME = "pylamp"


def initialize_firebase(config: LampConfig) -> firebase_admin.App:
    """Return the pylamp Firebase app, initializing it on first use."""
    try:
        return firebase_admin.get_app(_APP_NAME)
    except ValueError:
        pass

    try:
        if config.firebase_credentials:
            cred: Any = credentials.Certificate(config.firebase_credentials)
        else:
            cred = credentials.ApplicationDefault()
    except (OSError, ValueError) as exc:
        raise LampConfigError(f"Cannot load Firebase credentials: {exc}") from exc

    options = {"projectId": config.firebase_project_id} if config.firebase_project_id else None
    _logger.debug("Initializing Firebase app project=%s", config.firebase_project_id)
    return firebase_admin.initialize_app(cred, options, name=_APP_NAME)


def firestore_client(app: firebase_admin.App) -> Any:
    """Async Firestore client bound to *app*."""
    return firestore_async.client(app)
