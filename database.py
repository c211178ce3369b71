"""MongoDB access helpers.

Each collection is named after its schema class in lowercase (``User`` ->
``user``). The client is created once at startup and closed on shutdown; the
database handle travels to handlers through ``get_db``.
"""

import time
from datetime import datetime, timezone
from typing import Any, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Request
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from errors import ValidationFailed
from logging_config import get_logger

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def connect(url: str, name: str, retries: int = 5, delay: float = 5.0) -> MongoClient:
    """Open a client and ping the server, retrying a bounded number of times."""
    attempt = 0
    while True:
        attempt += 1
        client = MongoClient(url, tz_aware=True, serverSelectionTimeoutMS=5000)
        try:
            client.admin.command("ping")
            logger.info("mongo_connected", database=name, attempt=attempt)
            return client
        except PyMongoError as exc:
            client.close()
            if attempt >= retries:
                logger.error("mongo_connect_failed", database=name, attempts=attempt, error=str(exc))
                raise
            logger.warning("mongo_connect_retry", database=name, attempt=attempt, delay=delay, error=str(exc))
            time.sleep(delay)


def ensure_indexes(db: Database) -> None:
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["user"].create_index([("google_id", ASCENDING)], unique=True, sparse=True)
    db["order"].create_index([("user", ASCENDING), ("created_at", DESCENDING)])
    db["order"].create_index([("created_at", DESCENDING)])
    db["product"].create_index([("stock", ASCENDING)])


def get_db(request: Request) -> Database:
    return request.app.state.db


def to_object_id(value: Union[str, ObjectId], what: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationFailed(f"Invalid {what}: {value}", code="INVALID_ID")


def create_document(db: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document with created/updated timestamps and return its id."""
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc.setdefault("updated_at", now)
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(db: Database, collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None):
    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def serialize_doc(doc: Optional[dict]) -> Any:
    """Make a stored document JSON friendly: ``_id`` -> ``id``, ObjectIds and datetimes to strings."""
    if not doc:
        return doc
    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = str(v)
        else:
            out[k] = _serialize_value(v)
    return out


def _serialize_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _serialize_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value
