"""
MongoDB access helpers.

Each collection is named after the lowercased schema class (User -> "user").
``db`` is ``None`` when no DATABASE_URL is configured.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

import config
from errors import InternalError, ValidationError

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
db = None


def collection(name: str) -> Collection:
    if db is None:
        raise InternalError("Database is not configured")
    return db[name]


def ensure_indexes() -> None:
    """Create the indexes the services rely on. Safe to call repeatedly."""
    revoked = collection("revoked_token")
    revoked.create_index("jti", unique=True)
    # Revoked tokens are dropped by MongoDB once the token itself has expired
    revoked.create_index("expires_at", expireAfterSeconds=0)


if config.DATABASE_URL:
    _client = MongoClient(config.DATABASE_URL)
    db = _client[config.DATABASE_NAME]
    try:
        ensure_indexes()
    except PyMongoError as e:
        logger.error("Could not create indexes: %s", e)
else:
    logger.warning("DATABASE_URL is not set; database access is disabled")


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = collection(collection_name).insert_one(doc)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None,
                  sort: Optional[List[tuple]] = None) -> List[Dict[str, Any]]:
    cursor = collection(collection_name).find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def parse_object_id(value: Any, label: str = "ID") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise ValidationError(f"Invalid {label}", errors=[{"field": label, "message": f"Invalid {label}"}])
    return ObjectId(value)


def object_id_str(value: Any, label: str = "ID") -> str:
    """Validate an id and return it in canonical lowercase hex."""
    return str(parse_object_id(value, label))


def _plain(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def serialize_doc(doc: Optional[Dict[str, Any]]):
    if not doc:
        return doc
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    # Never leak credentials or reset material
    for secret in ("password_hash", "reset_token_hash", "reset_token_expires"):
        doc.pop(secret, None)
    return _plain(doc)
