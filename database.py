"""
Database connection and document helpers

The MongoDB connection is configured from the environment:
- DATABASE_URL: MongoDB connection string
- DATABASE_NAME: database to use

Collections are named after the lowercase schema class name
(Laptop -> "laptop", Order -> "order", ...).
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

from errors import ServiceUnavailable, ValidationError

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

db = None

try:
    if DATABASE_URL and DATABASE_NAME:
        client = MongoClient(DATABASE_URL, serverSelectionTimeoutMS=5000)
        db = client[DATABASE_NAME]
except Exception as e:
    logger.error("Database initialization failed: %s", e)
    db = None


def get_db():
    """FastAPI dependency returning the configured database."""
    if db is None:
        raise ServiceUnavailable("Database not configured")
    return db


def now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_indexes(database) -> None:
    database["user"].create_index("email", unique=True)
    database["laptop"].create_index("slug", unique=True)
    database["laptop"].create_index("category_id")
    database["category"].create_index("name", unique=True)
    database["category"].create_index("slug", unique=True)
    database["cart"].create_index("user_id", unique=True)
    database["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    # one review per user per laptop
    database["review"].create_index([("laptop_id", ASCENDING), ("user_id", ASCENDING)], unique=True)


def to_object_id(value: Any, label: str = "resource") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label} id: {value}")


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.get("_id")
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
        del doc["_id"]
    # Convert ObjectId in nested fields if any
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc


def create_document(database, collection_name: str, data) -> str:
    """Insert a pydantic model (or dict) with timestamps, return the new id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(mode="python")
    else:
        data_dict = dict(data)
    stamp = now()
    data_dict["created_at"] = stamp
    data_dict["updated_at"] = stamp
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(database, collection_name: str, filter_dict: Optional[dict] = None,
                  sort=None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize_doc(d) for d in cursor]
