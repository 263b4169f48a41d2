from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from complaint_tracker.core.config import Settings


def create_client(settings: Settings) -> AsyncIOMotorClient:
    # bounded timeouts on every call; nothing waits on the server indefinitely
    timeout = settings.mongo_timeout_ms
    return AsyncIOMotorClient(
        settings.mongo_uri,
        tz_aware=True,
        serverSelectionTimeoutMS=timeout,
        connectTimeoutMS=timeout,
        socketTimeoutMS=timeout,
    )


def get_database(client: AsyncIOMotorClient, settings: Settings) -> AsyncIOMotorDatabase:
    return client[settings.mongo_db]
