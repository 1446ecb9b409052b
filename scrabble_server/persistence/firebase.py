from __future__ import annotations
import json
import logging
from typing import Optional

import firebase_admin
from firebase_admin import credentials, firestore
from google.cloud.firestore import Client as FirestoreClient

from .firestore import FirestoreGateway
from .gateway import PersistenceGateway
from .memory import MemoryGateway

logger = logging.getLogger(__name__)


def init_firestore(service_account_json: Optional[str]) -> Optional[FirestoreClient]:
    """Initialise the default firebase app and return a Firestore client.

    Returns None when no usable service account is configured.
    """
    if not service_account_json:
        logger.warning("FIREBASE_SERVICE_ACCOUNT_KEY is not set")
        return None
    try:
        firebase_admin.get_app()
    except ValueError:
        try:
            cred = credentials.Certificate(json.loads(service_account_json))
        except ValueError as exc:
            logger.error("Could not parse FIREBASE_SERVICE_ACCOUNT_KEY: %s", exc)
            return None
        firebase_admin.initialize_app(cred)
        logger.info("Firebase Admin SDK initialised")
    return firestore.client()


def build_gateway(service_account_json: Optional[str]) -> PersistenceGateway:
    db = init_firestore(service_account_json)
    if db is None:
        logger.warning("No Firestore available; sessions are kept in memory only")
        return MemoryGateway()
    return FirestoreGateway(db)
