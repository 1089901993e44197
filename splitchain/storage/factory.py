import logging

from splitchain.config import Settings
from splitchain.db import make_engine
from splitchain.storage.base import GroupBackend
from splitchain.storage.local import LocalBackend
from splitchain.storage.remote import FirebaseBackend


def build_backend(settings: Settings) -> GroupBackend:
    if settings.firebase_configured:
        logging.info("Using remote group store at %s", settings.firebase_database_url)
        return FirebaseBackend(settings.firebase_database_url, auth_token=settings.firebase_auth_token)
    logging.warning("Remote store not configured, using local fallback at %s", settings.local_db_file)
    return LocalBackend(make_engine(settings.local_db_file), poll_interval=settings.local_poll_interval)
