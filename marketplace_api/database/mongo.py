import re
import logging
from datetime import timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import PyMongoError

from marketplace_api.core.config import Settings
from marketplace_api.core.errors import ListingStoreError
from marketplace_api.database.base import ListingStore
from marketplace_api.models.listing_models import ListingFilters

logger = logging.getLogger(__name__)

SEARCH_FIELDS = ("name", "description", "seller")


def build_listing_query(filters: ListingFilters) -> Dict[str, Any]:
    query: Dict[str, Any] = {"isActive": True}

    if filters.search:
        pattern = re.escape(filters.search)
        query["$or"] = [
            {field: {"$regex": pattern, "$options": "i"}} for field in SEARCH_FIELDS
        ]

    if filters.min_price is not None or filters.max_price is not None:
        query["price"] = {}
        if filters.min_price is not None:
            query["price"]["$gte"] = filters.min_price
        if filters.max_price is not None:
            query["price"]["$lte"] = filters.max_price

    if filters.condition:
        query["condition"] = filters.condition

    return query


def build_sort(sort: Optional[str]) -> List[tuple]:
    if sort == "price_low":
        return [("price", ASCENDING)]
    if sort == "price_high":
        return [("price", DESCENDING)]
    if sort == "name":
        return [("name", ASCENDING)]
    return [("dateAdded", DESCENDING)]


def document_to_listing(doc: Dict[str, Any]) -> Dict[str, Any]:
    listing = dict(doc)
    listing["id"] = str(listing.pop("_id"))
    return listing


def _object_id(listing_id: str) -> Optional[ObjectId]:
    if not ObjectId.is_valid(listing_id):
        return None
    return ObjectId(listing_id)


class MongoListingStore(ListingStore):
    name = "mongo"

    def __init__(self, url: str, database: str, collection: str = "products", client: AsyncIOMotorClient = None):
        self.url = url
        self.database_name = database
        self.collection_name = collection
        self.client = client
        self.db = None
        self.connected = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "MongoListingStore":
        return cls(settings.MONGO_URL, settings.DATABASE_NAME, settings.PRODUCTS_COLLECTION)

    @property
    def collection(self):
        return self.db[self.collection_name]

    # 🔌 Connexion au démarrage de FastAPI
    async def connect(self) -> None:
        if self.client is None:
            self.client = AsyncIOMotorClient(self.url, tz_aware=True, tzinfo=timezone.utc)
        self.db = self.client[self.database_name]
        try:
            await self.client.admin.command("ping")
            await self.ensure_indexes()
            self.connected = True
            logger.info("✅ Connected to MongoDB (database: %s)", self.database_name)
        except PyMongoError:
            self.connected = False
            logger.error("❌ MongoDB connection failed", exc_info=True)

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("dateAdded", DESCENDING)])
        await self.collection.create_index([("price", ASCENDING)])

    # 🔌 Fermeture propre
    async def close(self) -> None:
        if self.client:
            self.client.close()
            self.connected = False
            logger.info("🔌 MongoDB connection closed")

    async def ping(self) -> bool:
        if self.client is None:
            return False
        try:
            await self.client.admin.command("ping")
        except PyMongoError:
            return False
        return True

    async def list_listings(self, filters: ListingFilters) -> List[Dict[str, Any]]:
        try:
            cursor = self.collection.find(build_listing_query(filters)).sort(build_sort(filters.sort))
            return [document_to_listing(doc) async for doc in cursor]
        except PyMongoError as e:
            raise ListingStoreError("find failed") from e

    async def get_listing(self, listing_id: str) -> Optional[Dict[str, Any]]:
        oid = _object_id(listing_id)
        if oid is None:
            return None
        try:
            doc = await self.collection.find_one({"_id": oid})
        except PyMongoError as e:
            raise ListingStoreError("find_one failed") from e
        return document_to_listing(doc) if doc else None

    async def create_listing(self, document: Dict[str, Any]) -> Dict[str, Any]:
        doc = dict(document)
        try:
            result = await self.collection.insert_one(doc)
        except PyMongoError as e:
            raise ListingStoreError("insert_one failed") from e
        doc["_id"] = result.inserted_id
        return document_to_listing(doc)

    async def update_listing(self, listing_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        oid = _object_id(listing_id)
        if oid is None:
            return None
        if not fields:
            return await self.get_listing(listing_id)
        try:
            doc = await self.collection.find_one_and_update(
                {"_id": oid},
                {"$set": fields},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise ListingStoreError("find_one_and_update failed") from e
        return document_to_listing(doc) if doc else None

    async def delete_listing(self, listing_id: str) -> Optional[Dict[str, Any]]:
        oid = _object_id(listing_id)
        if oid is None:
            return None
        try:
            doc = await self.collection.find_one_and_delete({"_id": oid})
        except PyMongoError as e:
            raise ListingStoreError("find_one_and_delete failed") from e
        return document_to_listing(doc) if doc else None

    async def stats(self) -> Dict[str, Any]:
        active = {"isActive": True}
        try:
            total = await self.collection.count_documents(active)
            sellers = await self.collection.distinct("seller", active)
            rows = await self.collection.aggregate([
                {"$match": active},
                {"$group": {"_id": None, "avgPrice": {"$avg": "$price"}}},
            ]).to_list(length=1)
        except PyMongoError as e:
            raise ListingStoreError("stats aggregation failed") from e
        return {
            "total_products": total,
            "total_sellers": len(sellers),
            "average_price": rows[0]["avgPrice"] if rows and rows[0].get("avgPrice") is not None else 0,
        }
