"""
Document store gateway — CRUD access to the ``orders`` and ``inventory`` collections.

Two implementations share the ``DocumentStore`` protocol:

* ``MongoDocumentStore`` backed by pymongo, used in deployment.
* ``InMemoryDocumentStore`` backed by dicts behind a lock, used by tests and
  local runs without a database.

Documents are plain dicts in the camelCase shape of the order / inventory
documents, keyed by ``id``. The conditional decrement is a single write in both
implementations: the availability check and the decrement never happen as a
separate read followed by a write.
"""

import copy
import logging
import threading
from decimal import Decimal
from typing import Dict, Optional, Protocol
from uuid import UUID

from bson.binary import UuidRepresentation
from bson.codec_options import CodecOptions, TypeCodec, TypeRegistry
from bson.decimal128 import Decimal128
from pymongo import MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from order_fulfillment.errors import StoreUnavailable

logger = logging.getLogger("DocumentStore")

ORDERS = "orders"
INVENTORY = "inventory"


class DocumentStore(Protocol):
    def find_by_id(self, collection: str, doc_id: UUID) -> Optional[dict]:
        ...

    def insert_one(self, collection: str, document: dict) -> None:
        ...

    def insert_if_absent(self, collection: str, document: dict) -> bool:
        ...

    def replace_by_id(self, collection: str, doc_id: UUID, document: dict) -> bool:
        ...

    def conditional_decrement(self, collection: str, doc_id: UUID, field: str, amount: int) -> bool:
        ...


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------

class InMemoryDocumentStore:
    def __init__(self):
        self._collections: Dict[str, Dict[UUID, dict]] = {ORDERS: {}, INVENTORY: {}}
        self._lock = threading.Lock()

    def _collection(self, name: str) -> Dict[UUID, dict]:
        return self._collections.setdefault(name, {})

    def find_by_id(self, collection: str, doc_id: UUID) -> Optional[dict]:
        with self._lock:
            doc = self._collection(collection).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def insert_one(self, collection: str, document: dict) -> None:
        with self._lock:
            docs = self._collection(collection)
            if document["id"] in docs:
                raise ValueError(f"Duplicate id {document['id']} in {collection}")
            docs[document["id"]] = copy.deepcopy(document)

    def insert_if_absent(self, collection: str, document: dict) -> bool:
        """Insert unless a document with the same id exists. Returns True if inserted."""
        with self._lock:
            docs = self._collection(collection)
            if document["id"] in docs:
                return False
            docs[document["id"]] = copy.deepcopy(document)
            return True

    def replace_by_id(self, collection: str, doc_id: UUID, document: dict) -> bool:
        with self._lock:
            docs = self._collection(collection)
            if doc_id not in docs:
                return False
            docs[doc_id] = copy.deepcopy(document)
            return True

    def conditional_decrement(self, collection: str, doc_id: UUID, field: str, amount: int) -> bool:
        """Decrement ``field`` by ``amount`` only if the current value is >= amount."""
        with self._lock:
            doc = self._collection(collection).get(doc_id)
            if doc is None or doc.get(field, 0) < amount:
                return False
            doc[field] -= amount
            return True

    def count(self, collection: str) -> int:
        with self._lock:
            return len(self._collection(collection))


# ---------------------------------------------------------------------------
# MongoDB store
# ---------------------------------------------------------------------------

class DecimalCodec(TypeCodec):
    python_type = Decimal
    bson_type = Decimal128

    def transform_python(self, value):
        return Decimal128(value)

    def transform_bson(self, value):
        return value.to_decimal()


CODEC_OPTIONS = CodecOptions(
    tz_aware=True,
    uuid_representation=UuidRepresentation.STANDARD,
    type_registry=TypeRegistry([DecimalCodec()]),
)


def _to_mongo(document: dict) -> dict:
    doc = dict(document)
    doc["_id"] = doc.pop("id")
    return doc


def _from_mongo(document: Optional[dict]) -> Optional[dict]:
    if document is None:
        return None
    doc = dict(document)
    doc["id"] = doc.pop("_id")
    return doc


class MongoDocumentStore:
    def __init__(self, url: str, database: str, server_selection_timeout_ms: int = 5000):
        self._client = MongoClient(
            url,
            uuidRepresentation="standard",
            tz_aware=True,
            serverSelectionTimeoutMS=server_selection_timeout_ms,
        )
        self._db = self._client.get_database(database, codec_options=CODEC_OPTIONS)
        logger.info("Using MongoDB database %s", database)

    def _col(self, name: str):
        return self._db.get_collection(name)

    def find_by_id(self, collection: str, doc_id: UUID) -> Optional[dict]:
        try:
            return _from_mongo(self._col(collection).find_one({"_id": doc_id}))
        except PyMongoError as e:
            raise StoreUnavailable(f"find_by_id on {collection} failed: {e}") from e

    def insert_one(self, collection: str, document: dict) -> None:
        try:
            self._col(collection).insert_one(_to_mongo(document))
        except PyMongoError as e:
            raise StoreUnavailable(f"insert_one on {collection} failed: {e}") from e

    def insert_if_absent(self, collection: str, document: dict) -> bool:
        doc = _to_mongo(document)
        doc_id = doc.pop("_id")
        try:
            result = self._col(collection).update_one(
                {"_id": doc_id},
                {"$setOnInsert": doc},
                upsert=True,
            )
        except DuplicateKeyError:
            # Concurrent upserts of the same id: the other writer won.
            return False
        except PyMongoError as e:
            raise StoreUnavailable(f"insert_if_absent on {collection} failed: {e}") from e
        return result.upserted_id is not None

    def replace_by_id(self, collection: str, doc_id: UUID, document: dict) -> bool:
        try:
            result = self._col(collection).replace_one({"_id": doc_id}, _to_mongo(document))
        except PyMongoError as e:
            raise StoreUnavailable(f"replace_by_id on {collection} failed: {e}") from e
        return result.matched_count == 1

    def conditional_decrement(self, collection: str, doc_id: UUID, field: str, amount: int) -> bool:
        try:
            result = self._col(collection).update_one(
                {"_id": doc_id, field: {"$gte": amount}},
                {"$inc": {field: -amount}},
            )
        except PyMongoError as e:
            raise StoreUnavailable(f"conditional_decrement on {collection} failed: {e}") from e
        return result.modified_count == 1

    def close(self) -> None:
        self._client.close()
