from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection
import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from app.config import MONGO_URI, MONGO_DB

logger = logging.getLogger(__name__)

# ==============================
# MongoDB Connection
# ==============================

_client: Optional[AsyncIOMotorClient] = None


def get_database():
    global _client
    if _client is None:
        _client = AsyncIOMotorClient(MONGO_URI)
    return _client[MONGO_DB]


def batch_metadata_collection() -> AsyncIOMotorCollection:
    return get_database()["batch_metadata"]


# ==============================
# BATCH METADATA SIDE-INDEX
# ==============================

"""
batchId -> metadata hash, recorded after every successful creation.
Only a cache / fallback: the ledger's own ipfsHash field wins when set.

Document shape:
- batch_id (int, unique)
- ipfs_hash (str)
- updated_at (datetime)
"""


class MetadataIndex:
    async def set_batch_metadata(self, batch_id: int, ipfs_hash: str) -> None:
        raise NotImplementedError

    async def get_batch_metadata(self, batch_id: int) -> Optional[str]:
        raise NotImplementedError

    async def get_all_batch_metadata(self) -> Dict[int, str]:
        raise NotImplementedError

    async def remove_batch_metadata(self, batch_id: int) -> None:
        raise NotImplementedError

    async def clear_all_metadata(self) -> None:
        raise NotImplementedError

    async def has_batch_metadata(self, batch_id: int) -> bool:
        ipfs_hash = await self.get_batch_metadata(batch_id)
        return bool(ipfs_hash)


class InMemoryMetadataIndex(MetadataIndex):
    def __init__(self):
        self._entries: Dict[int, str] = {}

    async def set_batch_metadata(self, batch_id: int, ipfs_hash: str) -> None:
        self._entries[batch_id] = ipfs_hash
        logger.info("[INDEX] Stored metadata hash for batch %s: %s", batch_id, ipfs_hash)

    async def get_batch_metadata(self, batch_id: int) -> Optional[str]:
        return self._entries.get(batch_id)

    async def get_all_batch_metadata(self) -> Dict[int, str]:
        return dict(self._entries)

    async def remove_batch_metadata(self, batch_id: int) -> None:
        self._entries.pop(batch_id, None)

    async def clear_all_metadata(self) -> None:
        self._entries.clear()
        logger.info("[INDEX] Cleared all batch metadata")


class MongoMetadataIndex(MetadataIndex):
    def __init__(self, collection: Optional[AsyncIOMotorCollection] = None):
        self.collection = collection if collection is not None else batch_metadata_collection()

    async def set_batch_metadata(self, batch_id: int, ipfs_hash: str) -> None:
        await self.collection.update_one(
            {"batch_id": batch_id},
            {"$set": {"ipfs_hash": ipfs_hash, "updated_at": datetime.now(timezone.utc)}},
            upsert=True,
        )
        logger.info("[INDEX] Stored metadata hash for batch %s: %s", batch_id, ipfs_hash)

    async def get_batch_metadata(self, batch_id: int) -> Optional[str]:
        doc = await self.collection.find_one({"batch_id": batch_id})
        if not doc:
            return None
        return doc.get("ipfs_hash") or None

    async def get_all_batch_metadata(self) -> Dict[int, str]:
        return {doc["batch_id"]: doc["ipfs_hash"] async for doc in self.collection.find({})}

    async def remove_batch_metadata(self, batch_id: int) -> None:
        await self.collection.delete_one({"batch_id": batch_id})

    async def clear_all_metadata(self) -> None:
        await self.collection.delete_many({})
        logger.info("[INDEX] Cleared all batch metadata")


def get_metadata_index() -> MetadataIndex:
    if MONGO_URI:
        return MongoMetadataIndex()
    return InMemoryMetadataIndex()
