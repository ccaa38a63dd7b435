from __future__ import annotations
from typing import Any, Dict, Optional
from datetime import datetime, timezone
from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.database import Database

from tableside.config import settings

_client: Optional[MongoClient] = None
_db: Optional[Database] = None


def get_db() -> Database:
    global _client, _db
    if _db is None:
        _client = MongoClient(settings.DATABASE_URL)
        _db = _client[settings.DATABASE_NAME]
    return _db


def collection(name: str, db: Optional[Database] = None) -> Collection:
    return (db if db is not None else get_db())[name]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def oid(obj: Any) -> Any:
    if isinstance(obj, ObjectId):
        return str(obj)
    return obj


def to_object_id(value: str) -> Any:
    """ObjectId for a 24-char hex id, the raw string for anything else."""
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return value


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc["id"] = oid(doc.pop("_id"))
    return doc


def create_document(collection_name: str, data: Dict[str, Any], db: Optional[Database] = None) -> str:
    col = collection(collection_name, db)
    now = utcnow()
    data = {
        **data,
        "created_at": now,
        "updated_at": now,
    }
    res = col.insert_one(data)
    return str(res.inserted_id)


def ensure_indexes(db: Optional[Database] = None) -> None:
    """Uniqueness lives in the database, not in the services."""
    db = db if db is not None else get_db()
    db["order"].create_index([("order_number", ASCENDING)], unique=True)
    db["order"].create_index([("user_id", ASCENDING), ("idempotency_key", ASCENDING)], unique=True,
                             partialFilterExpression={"idempotency_key": {"$exists": True}})
    db["order"].create_index([("type", ASCENDING), ("pickup_date", ASCENDING), ("pickup_time", ASCENDING)])
    db["table_seating"].create_index([("number", ASCENDING)], unique=True)
    db["table_seating"].create_index([("qr_code", ASCENDING)], unique=True, sparse=True)
    db["group_order"].create_index([("join_code", ASCENDING)], unique=True)
    db["cart_item"].create_index([("user_id", ASCENDING)])
    db["cart_item"].create_index([("group_order_id", ASCENDING)])
    db["user"].create_index([("email", ASCENDING)], unique=True)
