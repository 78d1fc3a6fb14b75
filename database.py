"""MongoDB access.

The connection is owned by a ``Database`` handle that the application opens on
startup and closes on shutdown; request handlers receive it as a dependency.
"""

from typing import Any, Dict, Optional

import structlog
from bson import ObjectId
from pymongo import ASCENDING, MongoClient
from pymongo.errors import PyMongoError

logger = structlog.get_logger(__name__)

COLLECTIONS = ("user", "product", "cart", "order")


class Database:
    def __init__(self, url: str, name: str, timeout_ms: int = 5000, client: Optional[MongoClient] = None):
        self.url = url
        self.name = name
        self.timeout_ms = timeout_ms
        self._client = client
        self._owns_client = client is None
        self._db = None

    def open(self) -> "Database":
        if self._client is None:
            self._client = MongoClient(
                self.url,
                serverSelectionTimeoutMS=self.timeout_ms,
                socketTimeoutMS=self.timeout_ms,
                tz_aware=True,
            )
        self._db = self._client[self.name]
        logger.info("Database opened", database=self.name)
        return self

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
        self._db = None
        logger.info("Database closed", database=self.name)

    def __enter__(self) -> "Database":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __getitem__(self, collection: str):
        if self._db is None:
            raise RuntimeError("Database is not open")
        return self._db[collection]

    def ensure_indexes(self) -> None:
        self["user"].create_index([("email", ASCENDING)], unique=True)
        self["cart"].create_index([("user", ASCENDING)], unique=True)
        self["order"].create_index([("user", ASCENDING)])

    def ping(self) -> Dict[str, Any]:
        status = {"database": "Not Available", "database_name": self.name, "collections": []}
        if self._db is None:
            return status
        try:
            status["collections"] = self._db.list_collection_names()
            status["database"] = "Available"
        except PyMongoError as e:
            logger.warning("Database ping failed", error=str(e))
            status["database"] = f"Error: {str(e)[:80]}"
        return status


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Return ``value`` as an ObjectId, or None when it is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def _serialize_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = _serialize_value(doc.pop("_id"))
    return {k: _serialize_value(v) for k, v in doc.items()}
