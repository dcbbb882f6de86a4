import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

import asyncio
from datetime import timedelta
from app.core.config import settings
from app.core.mongo import create_mongo_client
from app.repositories.mongo_storage import MongoStorage


async def init_mongo_indexes():
    storage = MongoStorage(
        create_mongo_client(settings),
        settings.mongo_db,
        session_ttl=timedelta(hours=settings.session_ttl_hours),
    )
    try:
        await storage.ping()
        await storage.ensure_indexes()
        print(f"✅ MongoDB indexes created in database '{settings.mongo_db}'")
        for name in ("accounts", "chat_sessions", "message_logs", "subscriptions"):
            indexes = await storage.db[name].index_information()
            print(f"📋 {name}: {sorted(indexes)}")
    finally:
        await storage.close()


if __name__ == "__main__":
    asyncio.run(init_mongo_indexes())
