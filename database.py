"""
MongoDB access helpers.

The client is created once per process; request handlers receive the
database through the ``get_db`` dependency so tests can swap it out.
"""
import logging
from datetime import datetime, timezone
from typing import Any

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import get_settings
from errors import invalid_field

logger = logging.getLogger(__name__)

_settings = get_settings()

client = MongoClient(
    _settings.database_url,
    maxPoolSize=10,
    serverSelectionTimeoutMS=5000,
    socketTimeoutMS=45000,
)
db = client[_settings.database_name]


def get_db() -> Database:
    return db


def utcnow() -> datetime:
    # naive UTC, which is what pymongo hands back on reads
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_object_id(value: Any, field: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise invalid_field(field, f"Invalid {field.replace('_', ' ')}")
    return ObjectId(value)


def serialize_doc(value: Any) -> Any:
    """Make a Mongo document JSON friendly: `_id` becomes `id`, ObjectIds become strings."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, list):
        return [serialize_doc(v) for v in value]
    if isinstance(value, dict):
        out = {}
        for key, v in value.items():
            out["id" if key == "_id" else key] = serialize_doc(v)
        return out
    return value


def ensure_indexes(database: Database) -> None:
    database["user"].create_index("auth_uid", unique=True)
    database["user"].create_index("phone", unique=True, sparse=True)
    database["order"].create_index("order_id", unique=True)
    database["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["order"].create_index([("status", ASCENDING), ("created_at", DESCENDING)])
    database["product"].create_index("seo.slug", unique=True)
    database["product"].create_index([("category", ASCENDING), ("is_active", ASCENDING)])
    database["product"].create_index("price")
    database["product"].create_index([("rating.average", DESCENDING)])
    database["category"].create_index([("is_active", ASCENDING), ("sort_order", ASCENDING)])
    logger.info("Indexes ensured on %s", database.name)
