import json
import base64
import logging
from functools import lru_cache

from firebase_admin import App, credentials, initialize_app, get_app, firestore

from miprojet.core.config import settings

logger = logging.getLogger("miprojet.firebase")


def init_firebase() -> App:
    try:
        return get_app()
    except ValueError:
        pass

    if settings.MIPROJET_FIREBASE_KEY:
        try:
            decoded_json = base64.b64decode(settings.MIPROJET_FIREBASE_KEY).decode("utf-8")
            service_account_info = json.loads(decoded_json)
        except Exception as e:
            raise RuntimeError(f"❌ Failed to decode or parse MIPROJET_FIREBASE_KEY: {e}")

        if not service_account_info.get("project_id"):
            raise ValueError("❌ 'project_id' missing in Firebase service account JSON")

        cred = credentials.Certificate(service_account_info)
        logger.info("🔑 Loaded Firebase credentials from MIPROJET_FIREBASE_KEY")
    elif settings.GOOGLE_APPLICATION_CREDENTIALS:
        cred = credentials.Certificate(settings.GOOGLE_APPLICATION_CREDENTIALS)
        logger.info("🔑 Loaded Firebase credentials from GOOGLE_APPLICATION_CREDENTIALS")
    else:
        # Cloud Run / Functions runtime identity
        cred = credentials.ApplicationDefault()
        logger.info("🔑 Using application default credentials for Firebase")

    app = initialize_app(cred)
    logger.info(f"🔥 Firebase Admin SDK initialized | Project: {app.project_id}")
    return app


@lru_cache(maxsize=1)
def get_firestore_client():
    init_firebase()
    client = firestore.client()
    logger.info("✅ Firestore client ready")
    return client


def get_db():
    """FastAPI dependency: the Firestore client handed to stores and engines."""
    return get_firestore_client()
