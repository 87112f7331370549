"""
Document store abstraction.

Services talk to collections through ``DocumentStore``: plain CRUD, a single
equality filter for listings, and ``mutate`` for read-modify-write cycles.
Every document carries an integer ``version``; conditional updates only
succeed when the stored version still matches the one that was read, which is
what keeps concurrent stock, cart and coupon writes from losing updates.
"""
import copy
import inspect
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from shared.utils import (
    Settings, get_db_client, NotFoundException, ConflictException
)

logger = logging.getLogger("marketplace.store")

PROTECTED_FIELDS = {"id", "_id", "version", "created_at"}


class ConflictError(Exception):
    """Stored version no longer matches the expected one."""


class DuplicateError(Exception):
    """A unique index rejected the write."""


def new_id() -> str:
    return str(ObjectId())


def _from_storage(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


class DocumentStore:
    def __init__(self, name: str, max_retries: int = 5):
        self.name = name
        self.max_retries = max_retries

    async def create(self, data: dict) -> dict:
        raise NotImplementedError

    async def get_by_id(self, doc_id: str) -> Optional[dict]:
        raise NotImplementedError

    async def update(self, doc_id: str, patch: dict, expected_version: Optional[int] = None) -> Optional[dict]:
        raise NotImplementedError

    async def delete(self, doc_id: str) -> bool:
        raise NotImplementedError

    async def list_by_equality(self, field: Optional[str] = None, value: Any = None,
                               limit: Optional[int] = None) -> List[dict]:
        raise NotImplementedError

    async def count(self, field: Optional[str] = None, value: Any = None) -> int:
        raise NotImplementedError

    async def create_index(self, field: str, unique: bool = False):
        raise NotImplementedError

    async def find_one_by(self, field: str, value: Any) -> Optional[dict]:
        docs = await self.list_by_equality(field, value, limit=1)
        return docs[0] if docs else None

    async def list_all(self) -> List[dict]:
        return await self.list_by_equality()

    @staticmethod
    def _prepare_new(data: dict) -> dict:
        doc = {k: v for k, v in data.items() if k not in ("id", "_id")}
        doc["_id"] = data.get("id") or data.get("_id") or new_id()
        doc["version"] = 1
        doc.setdefault("created_at", datetime.utcnow())
        doc.setdefault("updated_at", doc["created_at"])
        return doc

    @staticmethod
    def _prepare_patch(patch: dict) -> dict:
        clean = {k: v for k, v in patch.items() if k not in PROTECTED_FIELDS}
        clean.setdefault("updated_at", datetime.utcnow())
        return clean

    async def mutate(self, doc_id: str, fn: Callable[[dict], Any],
                     not_found: str = "Resource not found") -> dict:
        """
        Read the document, let ``fn`` compute a patch, and write it back only
        if nobody else wrote in between. Retries on conflict.

        ``fn`` receives a private copy of the document and returns the patch
        (or an awaitable of it). Returning an empty patch skips the write.
        Exceptions raised by ``fn`` abort without writing.
        """
        for attempt in range(1, self.max_retries + 1):
            doc = await self.get_by_id(doc_id)
            if doc is None:
                raise NotFoundException(not_found)
            patch = fn(doc)
            if inspect.isawaitable(patch):
                patch = await patch
            if not patch:
                return doc
            try:
                updated = await self.update(doc_id, patch, expected_version=doc.get("version", 0))
            except ConflictError:
                logger.info(
                    f"Version conflict on {self.name}/{doc_id}, attempt {attempt}",
                    extra={"event": "store.conflict"}
                )
                continue
            if updated is None:
                raise NotFoundException(not_found)
            return updated
        raise ConflictException()


class MongoDocumentStore(DocumentStore):
    def __init__(self, collection, max_retries: int = 5):
        super().__init__(collection.name, max_retries)
        self.collection = collection

    async def create(self, data: dict) -> dict:
        doc = self._prepare_new(data)
        try:
            await self.collection.insert_one(doc)
        except DuplicateKeyError as e:
            raise DuplicateError(str(e))
        return _from_storage(doc)

    async def get_by_id(self, doc_id: str) -> Optional[dict]:
        return _from_storage(await self.collection.find_one({"_id": doc_id}))

    async def update(self, doc_id: str, patch: dict, expected_version: Optional[int] = None) -> Optional[dict]:
        query: Dict[str, Any] = {"_id": doc_id}
        if expected_version is not None:
            # Documents written before versioning have no field at all
            query["version"] = expected_version if expected_version else None
        update: Dict[str, Any] = {"$inc": {"version": 1}}
        clean = self._prepare_patch(patch)
        if clean:
            update["$set"] = clean
        try:
            doc = await self.collection.find_one_and_update(
                query, update, return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError as e:
            raise DuplicateError(str(e))
        if doc is None and expected_version is not None:
            if await self.collection.count_documents({"_id": doc_id}, limit=1):
                raise ConflictError(f"{self.name}/{doc_id}")
        return _from_storage(doc)

    async def delete(self, doc_id: str) -> bool:
        result = await self.collection.delete_one({"_id": doc_id})
        return result.deleted_count > 0

    async def list_by_equality(self, field: Optional[str] = None, value: Any = None,
                               limit: Optional[int] = None) -> List[dict]:
        query = {field: value} if field else {}
        cursor = self.collection.find(query)
        if limit:
            cursor = cursor.limit(limit)
        return [_from_storage(doc) async for doc in cursor]

    async def count(self, field: Optional[str] = None, value: Any = None) -> int:
        query = {field: value} if field else {}
        return await self.collection.count_documents(query)

    async def create_index(self, field: str, unique: bool = False):
        await self.collection.create_index(field, unique=unique)


class MemoryDocumentStore(DocumentStore):
    """Process-local backend with the same contract, used for tests and local runs."""

    def __init__(self, name: str, max_retries: int = 5):
        super().__init__(name, max_retries)
        self._docs: Dict[str, dict] = {}
        self._unique: Set[str] = set()

    def _check_unique(self, doc: dict, exclude_id: Optional[str] = None):
        for field in self._unique:
            value = doc.get(field)
            if value is None:
                continue
            for other_id, other in self._docs.items():
                if other_id != exclude_id and other.get(field) == value:
                    raise DuplicateError(f"{self.name}.{field} duplicate: {value!r}")

    async def create(self, data: dict) -> dict:
        doc = copy.deepcopy(self._prepare_new(data))
        if doc["_id"] in self._docs:
            raise DuplicateError(f"{self.name}._id duplicate: {doc['_id']!r}")
        self._check_unique(doc)
        self._docs[doc["_id"]] = doc
        return _from_storage(copy.deepcopy(doc))

    async def get_by_id(self, doc_id: str) -> Optional[dict]:
        doc = self._docs.get(doc_id)
        return _from_storage(copy.deepcopy(doc)) if doc is not None else None

    async def update(self, doc_id: str, patch: dict, expected_version: Optional[int] = None) -> Optional[dict]:
        current = self._docs.get(doc_id)
        if current is None:
            return None
        if expected_version is not None and current.get("version", 0) != expected_version:
            raise ConflictError(f"{self.name}/{doc_id}")
        updated = dict(current)
        updated.update(copy.deepcopy(self._prepare_patch(patch)))
        updated["version"] = current.get("version", 0) + 1
        self._check_unique(updated, exclude_id=doc_id)
        self._docs[doc_id] = updated
        return _from_storage(copy.deepcopy(updated))

    async def delete(self, doc_id: str) -> bool:
        return self._docs.pop(doc_id, None) is not None

    async def list_by_equality(self, field: Optional[str] = None, value: Any = None,
                               limit: Optional[int] = None) -> List[dict]:
        out = []
        for doc in self._docs.values():
            if field and doc.get(field) != value:
                continue
            out.append(_from_storage(copy.deepcopy(doc)))
            if limit and len(out) >= limit:
                break
        return out

    async def count(self, field: Optional[str] = None, value: Any = None) -> int:
        if not field:
            return len(self._docs)
        return sum(1 for doc in self._docs.values() if doc.get(field) == value)

    async def create_index(self, field: str, unique: bool = False):
        if unique:
            self._unique.add(field)


class Datastore:
    backend = "unknown"

    def __init__(self, max_retries: int = 5):
        self.max_retries = max_retries
        self._stores: Dict[str, DocumentStore] = {}

    def collection(self, name: str) -> DocumentStore:
        store = self._stores.get(name)
        if store is None:
            store = self._stores[name] = self._open(name)
        return store

    def _open(self, name: str) -> DocumentStore:
        raise NotImplementedError

    async def ping(self) -> bool:
        return True

    def close(self):
        pass


class MongoDatastore(Datastore):
    backend = "mongo"

    def __init__(self, client: AsyncIOMotorClient, database: str, max_retries: int = 5):
        super().__init__(max_retries)
        self.client = client
        self.db = client[database]

    def _open(self, name: str) -> DocumentStore:
        return MongoDocumentStore(self.db[name], self.max_retries)

    async def ping(self) -> bool:
        try:
            await self.client.admin.command("ping")
            return True
        except Exception:
            logger.warning("Database ping failed", exc_info=True)
            return False

    def close(self):
        self.client.close()


class MemoryDatastore(Datastore):
    backend = "memory"

    def _open(self, name: str) -> DocumentStore:
        return MemoryDocumentStore(name, self.max_retries)


def open_datastore(config: Settings) -> Datastore:
    if config.STORE_BACKEND == "memory":
        return MemoryDatastore(max_retries=config.STORE_MAX_RETRIES)
    return MongoDatastore(
        get_db_client(config.MONGO_URL), config.DATABASE_NAME,
        max_retries=config.STORE_MAX_RETRIES
    )
