from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from bson import ObjectId
from bson.errors import InvalidId
from gridfs.errors import NoFile
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase, AsyncIOMotorGridFSBucket
from pymongo.errors import PyMongoError

from .config import settings
from .errors import DataStoreError

logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None


async def get_db() -> AsyncIOMotorDatabase:
    global _client, _db
    if _db is None:
        _client = AsyncIOMotorClient(settings.DATABASE_URL)
        _db = _client[settings.DATABASE_NAME]
    return _db


def _to_oid(doc_id: str) -> ObjectId | str:
    try:
        return ObjectId(doc_id)
    except (InvalidId, TypeError):
        # documents seeded with string ids
        return doc_id


def _to_client(doc: dict[str, Any] | None) -> dict[str, Any] | None:
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    return doc


def _store_error(exc: PyMongoError) -> DataStoreError:
    code = getattr(exc, "code", None)
    return DataStoreError(str(code) if code is not None else type(exc).__name__, str(exc))


class MongoStore:
    """Document store over named collections. Every returned document has a string ``id``."""

    async def create_document(self, collection_name: str, data: dict[str, Any]) -> dict[str, Any]:
        db = await get_db()
        now = datetime.now(timezone.utc)
        data_with_meta = {k: v for k, v in data.items() if k != "id"}
        data_with_meta.update(created_at=now, updated_at=now)
        try:
            result = await db[collection_name].insert_one(data_with_meta)
            inserted = await db[collection_name].find_one({"_id": result.inserted_id})
        except PyMongoError as e:
            raise _store_error(e) from e
        return _to_client(inserted) or {}

    async def get_documents(
        self,
        collection_name: str,
        filter_dict: dict[str, Any] | None = None,
        limit: int = 100,
        sort: list[tuple[str, int]] | None = None,
    ) -> list[dict[str, Any]]:
        db = await get_db()
        cursor = db[collection_name].find(filter_dict or {})
        if sort:
            cursor = cursor.sort(sort)
        cursor = cursor.limit(limit)
        docs = []
        try:
            async for d in cursor:
                docs.append(_to_client(d))
        except PyMongoError as e:
            raise _store_error(e) from e
        return docs

    async def find_document(self, collection_name: str, filter_dict: dict[str, Any]) -> dict[str, Any] | None:
        db = await get_db()
        filter_dict = dict(filter_dict)
        if "id" in filter_dict:
            filter_dict["_id"] = _to_oid(filter_dict.pop("id"))
        try:
            doc = await db[collection_name].find_one(filter_dict)
        except PyMongoError as e:
            raise _store_error(e) from e
        return _to_client(doc)

    async def update_document(self, collection_name: str, doc_id: str, values: dict[str, Any]) -> bool:
        db = await get_db()
        values = {k: v for k, v in values.items() if k != "id"}
        values["updated_at"] = datetime.now(timezone.utc)
        try:
            res = await db[collection_name].update_one({"_id": _to_oid(doc_id)}, {"$set": values})
        except PyMongoError as e:
            raise _store_error(e) from e
        return res.matched_count > 0

    async def update_many(self, collection_name: str, filter_dict: dict[str, Any], values: dict[str, Any]) -> int:
        db = await get_db()
        try:
            res = await db[collection_name].update_many(filter_dict, {"$set": values})
        except PyMongoError as e:
            raise _store_error(e) from e
        return res.modified_count

    async def delete_document(self, collection_name: str, doc_id: str) -> bool:
        db = await get_db()
        try:
            res = await db[collection_name].delete_one({"_id": _to_oid(doc_id)})
        except PyMongoError as e:
            raise _store_error(e) from e
        return res.deleted_count > 0

    async def increment_field(
        self, collection_name: str, doc_id: str, field: str, amount: int = 1, below: int | None = None
    ) -> bool:
        """Atomically add ``amount`` to ``field``; with ``below`` set, only while the field is under it."""
        db = await get_db()
        query: dict[str, Any] = {"_id": _to_oid(doc_id)}
        if below is not None:
            query[field] = {"$lt": below}
        try:
            res = await db[collection_name].update_one(
                query, {"$inc": {field: amount}, "$set": {"updated_at": datetime.now(timezone.utc)}}
            )
        except PyMongoError as e:
            raise _store_error(e) from e
        return res.modified_count > 0

    async def count_documents(self, collection_name: str, filter_dict: dict[str, Any] | None = None) -> int:
        db = await get_db()
        try:
            return await db[collection_name].count_documents(filter_dict or {})
        except PyMongoError as e:
            raise _store_error(e) from e

    async def collection_names(self) -> list[str]:
        db = await get_db()
        return await db.list_collection_names()


class GridFSBlobStore:
    """Image storage in a GridFS bucket, served back through ``/api/files/<id>``."""

    def __init__(self, public_prefix: str = "/api/files"):
        self.public_prefix = public_prefix

    async def _bucket(self) -> AsyncIOMotorGridFSBucket:
        return AsyncIOMotorGridFSBucket(await get_db(), bucket_name="images")

    async def upload(self, filename: str, data: bytes, content_type: str) -> str:
        bucket = await self._bucket()
        try:
            file_id = await bucket.upload_from_stream(filename, data, metadata={"contentType": content_type})
        except PyMongoError as e:
            raise _store_error(e) from e
        logger.info("Stored upload %s (%d bytes) as %s", filename, len(data), file_id)
        return f"{self.public_prefix}/{file_id}"

    async def read(self, file_id: str) -> tuple[bytes, str] | None:
        bucket = await self._bucket()
        try:
            stream = await bucket.open_download_stream(ObjectId(file_id))
        except (InvalidId, NoFile):
            return None
        except PyMongoError as e:
            raise _store_error(e) from e
        data = await stream.read()
        content_type = (stream.metadata or {}).get("contentType", "application/octet-stream")
        return data, content_type


store = MongoStore()
blob_store = GridFSBlobStore()


def get_store() -> MongoStore:
    return store


def get_blob_store() -> GridFSBlobStore:
    return blob_store
