from motor.motor_asyncio import AsyncIOMotorClient
from app.core.config import Settings


def create_mongo_client(settings: Settings) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(
        settings.mongo_url,
        serverSelectionTimeoutMS=settings.mongo_connect_timeout_ms,
        tz_aware=True,
    )
