import logging
from datetime import timedelta
from fastapi import Request
from app.core.config import Settings
from app.core.exceptions import StorageUnavailable
from app.core.mongo import create_mongo_client
from app.repositories.memory_storage import InMemoryStorage
from app.repositories.mongo_storage import MongoStorage

logger = logging.getLogger("database")

BACKENDS = ("auto", "mongo", "memory")


def _memory_storage(settings: Settings, degraded: bool = False) -> InMemoryStorage:
    return InMemoryStorage(
        session_ttl=timedelta(hours=settings.session_ttl_hours),
        message_log_cap=settings.message_log_cap,
        degraded=degraded,
    )


async def init_storage(settings: Settings):
    """Pick the storage backend once at startup.

    ``auto`` tries MongoDB and falls back to memory (degraded) when it cannot
    be reached; ``mongo`` fails hard instead.
    """
    backend = settings.storage_backend.lower()
    if backend not in BACKENDS:
        raise StorageUnavailable(f"Unknown storage backend: {settings.storage_backend}")

    if backend == "memory":
        logger.info("Using in-memory storage")
        return _memory_storage(settings)

    client = create_mongo_client(settings)
    storage = MongoStorage(
        client,
        settings.mongo_db,
        session_ttl=timedelta(hours=settings.session_ttl_hours),
        max_append_retries=settings.max_append_retries,
    )
    try:
        await storage.ping()
        await storage.ensure_indexes()
    except Exception as e:
        client.close()
        if backend == "mongo":
            logger.error(f"MongoDB unavailable: {e}")
            raise StorageUnavailable(f"MongoDB unavailable at startup: {e}")
        logger.warning(f"MongoDB unavailable ({e}), falling back to in-memory storage")
        return _memory_storage(settings, degraded=True)

    logger.info(f"Connected to MongoDB database {settings.mongo_db}")
    return storage


def get_storage(request: Request):
    return request.app.state.storage
