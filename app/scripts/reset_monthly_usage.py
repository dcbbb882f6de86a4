"""Reset every account's monthly message counter. Run from cron on the 1st."""
import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

import asyncio
from app.core.config import settings
from app.core.database import init_storage

PAGE_SIZE = 100


async def reset_all(storage) -> int:
    count = 0
    offset = 0
    while True:
        page = await storage.list_accounts(limit=PAGE_SIZE, offset=offset)
        for account in page:
            await storage.reset_monthly_usage(account.id)
            count += 1
        if len(page) < PAGE_SIZE:
            return count
        offset += PAGE_SIZE


async def main():
    storage = await init_storage(settings)
    try:
        if storage.status()["degraded"]:
            print("❌ MongoDB is not reachable, nothing to reset")
            return
        count = await reset_all(storage)
        print(f"✅ Monthly usage reset for {count} accounts")
    finally:
        await storage.close()


if __name__ == "__main__":
    asyncio.run(main())
