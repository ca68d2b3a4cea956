import logging
import threading
from typing import Optional

from config import Settings, get_settings
from memory_store import MemoryStore
from mongo_store import MongoStore
from storage import Store

logger = logging.getLogger(__name__)

_store: Optional[Store] = None
_store_lock = threading.Lock()


def create_store(settings: Settings) -> Store:
    url = settings.DATABASE_URL
    if url.startswith(("mongodb://", "mongodb+srv://")):
        logger.info(f"Using MongoDB database '{settings.DATABASE_NAME}'")
        store = MongoStore.from_url(url, settings.DATABASE_NAME)
        store.ensure_indexes()
        return store
    if url.startswith("memory://"):
        logger.warning("Using the in-memory store; data is lost on restart")
        return MemoryStore()
    raise ValueError(f"Unsupported DATABASE_URL: {url}")


def get_store() -> Store:
    global _store
    if _store is None:
        with _store_lock:
            if _store is None:
                _store = create_store(get_settings())
    return _store
