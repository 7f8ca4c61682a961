"""
DOCUMENT STORE

Keyed, versioned documents grouped into collections. Every write may carry
the version the writer last read; a mismatch is a VersionConflictError and
the writer is expected to reload and retry.

Implementations:
- MotorDocumentStore: one Mongo collection per document collection,
  compare-and-swap through an update filtered on the version column
- InMemoryDocumentStore: same semantics, for tests and local runs
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Callable, Dict, List, Optional
import asyncio
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from waqf_engine.clock import now_nanos

logger = logging.getLogger(__name__)


class VersionConflictError(Exception):
    """Raised when a write's expected version does not match the stored one"""
    def __init__(self, collection: str, key: str, expected: Optional[int], actual: Optional[int]):
        self.collection = collection
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Version conflict on {collection}/{key}: expected {expected}, found {actual}"
        )


class Document(BaseModel):
    key: str
    data: bytes
    version: int = 1
    description: Optional[str] = None
    owner: Optional[str] = None
    created_at: int
    updated_at: int


DocumentMatcher = Callable[[Document], bool]


class DocumentStore(ABC):
    """Async document store contract used by hooks and services."""

    @abstractmethod
    async def get(self, collection: str, key: str) -> Optional[Document]:
        ...

    @abstractmethod
    async def set(
        self,
        collection: str,
        key: str,
        data: bytes,
        expected_version: Optional[int] = None,
        description: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> Document:
        """
        Write data under key.

        expected_version=None writes unconditionally. Otherwise the write only
        succeeds when the stored version equals expected_version (0 meaning
        "must not exist yet").
        """

    @abstractmethod
    async def list(self, collection: str, matcher: Optional[DocumentMatcher] = None) -> List[Document]:
        ...

    @abstractmethod
    async def delete(self, collection: str, key: str, expected_version: Optional[int] = None) -> None:
        ...


# =============================================================================
# IN-MEMORY
# =============================================================================

class InMemoryDocumentStore(DocumentStore):

    def __init__(self):
        self._collections: Dict[str, Dict[str, Document]] = defaultdict(dict)

    async def get(self, collection: str, key: str) -> Optional[Document]:
        doc = self._collections[collection].get(key)
        return doc.model_copy() if doc else None

    async def set(self, collection, key, data, expected_version=None, description=None, owner=None):
        existing = self._collections[collection].get(key)
        actual = existing.version if existing else 0
        if expected_version is not None and expected_version != actual:
            raise VersionConflictError(collection, key, expected_version, actual)

        now = now_nanos()
        doc = Document(
            key=key,
            data=data,
            version=actual + 1,
            description=description if description is not None else (existing.description if existing else None),
            owner=existing.owner if existing else owner,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        self._collections[collection][key] = doc
        return doc.model_copy()

    async def list(self, collection, matcher=None):
        docs = [doc.model_copy() for doc in self._collections[collection].values()]
        if matcher is None:
            return docs
        return [doc for doc in docs if matcher(doc)]

    async def delete(self, collection, key, expected_version=None):
        existing = self._collections[collection].get(key)
        if existing is None:
            return
        if expected_version is not None and expected_version != existing.version:
            raise VersionConflictError(collection, key, expected_version, existing.version)
        del self._collections[collection][key]


# =============================================================================
# MONGO (MOTOR)
# =============================================================================

class MotorDocumentStore(DocumentStore):
    """
    Documents live in db[collection] as
    {_id: key, data: <bytes>, version, description, owner, created_at, updated_at}.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    @staticmethod
    def _to_document(raw: dict) -> Document:
        return Document(
            key=raw["_id"],
            data=bytes(raw["data"]),
            version=raw.get("version", 1),
            description=raw.get("description"),
            owner=raw.get("owner"),
            created_at=raw.get("created_at", 0),
            updated_at=raw.get("updated_at", 0),
        )

    async def get(self, collection: str, key: str) -> Optional[Document]:
        raw = await self.db[collection].find_one({"_id": key})
        return self._to_document(raw) if raw else None

    async def set(self, collection, key, data, expected_version=None, description=None, owner=None):
        now = now_nanos()
        fields = {"data": data, "updated_at": now}
        if description is not None:
            fields["description"] = description

        if expected_version == 0:
            try:
                await self.db[collection].insert_one({
                    "_id": key, **fields, "version": 1, "owner": owner, "created_at": now
                })
            except DuplicateKeyError:
                current = await self.get(collection, key)
                raise VersionConflictError(collection, key, 0, current.version if current else None)
            return await self.get(collection, key)

        query = {"_id": key}
        if expected_version is not None:
            query["version"] = expected_version

        raw = await self.db[collection].find_one_and_update(
            query,
            {
                "$set": fields,
                "$inc": {"version": 1},
                "$setOnInsert": {"owner": owner, "created_at": now},
            },
            upsert=expected_version is None,
            return_document=ReturnDocument.AFTER,
        )
        if raw is None:
            current = await self.get(collection, key)
            raise VersionConflictError(
                collection, key, expected_version, current.version if current else 0
            )
        return self._to_document(raw)

    async def list(self, collection, matcher=None):
        docs = []
        async for raw in self.db[collection].find({}):
            doc = self._to_document(raw)
            if matcher is None or matcher(doc):
                docs.append(doc)
        return docs

    async def delete(self, collection, key, expected_version=None):
        query = {"_id": key}
        if expected_version is not None:
            query["version"] = expected_version
        result = await self.db[collection].delete_one(query)
        if result.deleted_count == 0 and expected_version is not None:
            current = await self.get(collection, key)
            if current is not None:
                raise VersionConflictError(collection, key, expected_version, current.version)


# =============================================================================
# PER-KEY LOCKS
# =============================================================================

class KeyedLocks:
    """
    One asyncio.Lock per key. Serialises read-modify-write cycles on a single
    waqf inside this process; cross-process safety comes from version checks.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock
