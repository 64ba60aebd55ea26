import os
import logging
import threading
from functools import lru_cache

import firebase_admin
from firebase_admin import credentials, firestore
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

FIREBASE_CREDENTIALS = os.getenv("FIREBASE_CREDENTIALS")
USERS_COLLECTION = os.getenv("USERS_COLLECTION", "users")
EVENTS_COLLECTION = os.getenv("EVENTS_COLLECTION", "events")

_init_lock = threading.Lock()


def get_firebase_app() -> firebase_admin.App:
    """
    Return the default Firebase app, initializing it once per process.
    Uses the service account file in FIREBASE_CREDENTIALS when set,
    application default credentials otherwise.
    """
    with _init_lock:
        try:
            return firebase_admin.get_app()
        except ValueError:
            pass
        if FIREBASE_CREDENTIALS:
            cred = credentials.Certificate(FIREBASE_CREDENTIALS)
        else:
            cred = credentials.ApplicationDefault()
        logger.info("Initializing Firebase app")
        return firebase_admin.initialize_app(cred)


@lru_cache(maxsize=1)
def get_firestore():
    return firestore.client(app=get_firebase_app())
