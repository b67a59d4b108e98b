"""Firebase Admin bootstrap.

The cart store is the same Firestore database the dashboard writes to.
Credentials come from GOOGLE_APPLICATION_CREDENTIALS when it points at a
service-account file, otherwise from the runtime's default credentials.
"""

import logging
import os

import firebase_admin
from firebase_admin import credentials, firestore_async

from cartops.core.config import settings

logger = logging.getLogger(__name__)


def init_firebase() -> firebase_admin.App:
    """Initialize Firebase Admin SDK if not already initialized."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        # Not initialized yet
        options = {"projectId": settings.FIREBASE_PROJECT_ID} if settings.FIREBASE_PROJECT_ID else None
        cred_path = settings.GOOGLE_APPLICATION_CREDENTIALS
        if cred_path and os.path.exists(cred_path):
            logger.info(f"Initializing Firebase with service account {cred_path}")
            return firebase_admin.initialize_app(credentials.Certificate(cred_path), options)

        logger.info("Initializing Firebase with application default credentials")
        return firebase_admin.initialize_app(options=options)


def get_firestore_client():
    """Async Firestore client bound to the default Firebase app."""
    app = init_firebase()
    return firestore_async.client(app)
