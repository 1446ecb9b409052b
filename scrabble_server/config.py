import os

from dotenv import load_dotenv

from .constants import DEFAULT_SESSION_ID

load_dotenv()


def _origins(raw: str):
    return [o.strip() for o in raw.split(',') if o.strip()]


class Settings:
    PORT = int(os.environ.get('PORT', '3000'))
    ALLOWED_ORIGINS = _origins(os.environ.get('ALLOWED_ORIGINS', 'http://localhost:5173,http://127.0.0.1:5173'))
    # Seconds a session may sit with nobody attached before it is evicted
    IDLE_EVICTION_SECONDS = float(os.environ.get('IDLE_EVICTION_SECONDS', '300'))
    DEFAULT_SESSION_ID = os.environ.get('DEFAULT_SESSION_ID') or DEFAULT_SESSION_ID
    # Service account JSON; without it the server runs memory-only
    FIREBASE_SERVICE_ACCOUNT_KEY = os.environ.get('FIREBASE_SERVICE_ACCOUNT_KEY')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
