"""
College lookup used by issuance (wallet address, access code prefix) and verification (summary).
"""

from abc import ABC, abstractmethod
from typing import Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from ..core.exceptions import StoreUnavailable
from ..models.college import CollegeInDB
from ..utils.serialization import convert_objectid_to_str
from ..utils.logger import get_logger

logger = get_logger("college_store")


class CollegeStore(ABC):
    """Read-only college capability."""

    @abstractmethod
    async def find_by_id(self, college_id: str) -> Optional[CollegeInDB]: ...


class MongoCollegeStore(CollegeStore):
    def __init__(self, db: AsyncIOMotorDatabase, collection_name: str = "colleges"):
        self.collection = db[collection_name]

    async def find_by_id(self, college_id: str) -> Optional[CollegeInDB]:
        if not ObjectId.is_valid(college_id):
            return None
        try:
            document = await self.collection.find_one({"_id": ObjectId(college_id)})
        except PyMongoError as e:
            logger.error(f"College lookup failed for {college_id}: {e}")
            raise StoreUnavailable(f"college lookup failed: {e}") from e

        if document is None:
            return None
        document = convert_objectid_to_str(document)
        document["id"] = document.pop("_id")
        return CollegeInDB.model_validate(document)
