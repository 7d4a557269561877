"""
MongoDB access helpers.

The connection is opened by ``connect()`` from the application lifespan and
kept in the module level ``db`` handle. Everything else goes through
``get_db()`` so a missing or broken store surfaces as ``StoreUnavailable``.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson.errors import InvalidId
from bson.objectid import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

import config
from logging_config import get_logger

logger = get_logger(__name__)

_client: Optional[MongoClient] = None
db: Optional[Database] = None


class StoreUnavailable(Exception):
    """The document store is not configured or an operation against it failed."""


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, the way BSON hands them back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_object_id(value: str) -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValueError(f"Invalid id: {value!r}") from None


def connect(database_url: Optional[str] = None, database_name: Optional[str] = None) -> Optional[Database]:
    global _client, db

    database_url = database_url or config.DATABASE_URL
    database_name = database_name or config.DATABASE_NAME
    if not (database_url and database_name):
        logger.warning("database_not_configured")
        return None

    _client = MongoClient(database_url, serverSelectionTimeoutMS=5000)
    db = _client[database_name]
    logger.info("database_connected", database=database_name)
    return db


def close() -> None:
    global _client, db

    if _client is not None:
        _client.close()
        logger.info("database_closed")
    _client = None
    db = None


def get_db() -> Database:
    if db is None:
        raise StoreUnavailable("Database not configured")
    return db


def ensure_indexes() -> None:
    """Create the indexes the API and the quotation sweep query on."""
    database = get_db()
    try:
        database["message"].create_index([("is_read", ASCENDING)])
        database["message"].create_index([("created_at", DESCENDING)])
        database["message"].create_index([("email", ASCENDING)])

        database["quote"].create_index([("status", ASCENDING)])
        database["quote"].create_index([("customer_id", ASCENDING)])
        database["quote"].create_index([("created_at", DESCENDING)])

        database["customer"].create_index([("email", ASCENDING)])
        database["customer"].create_index([("created_at", DESCENDING)])
        database["customer"].create_index([("status", ASCENDING), ("created_at", ASCENDING)])
    except PyMongoError as e:
        raise StoreUnavailable(str(e)) from e
    logger.info("indexes_ensured")


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document, stamping created_at/updated_at. Returns the new id."""
    database = get_db()

    if isinstance(data, BaseModel):
        data_dict = data.model_dump(mode="python")
    else:
        data_dict = dict(data)

    now = utcnow()
    data_dict["created_at"] = now
    data_dict["updated_at"] = now

    try:
        result = database[collection_name].insert_one(data_dict)
    except PyMongoError as e:
        raise StoreUnavailable(str(e)) from e
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    newest_first: bool = True,
) -> List[Dict[str, Any]]:
    database = get_db()
    try:
        cursor = database[collection_name].find(filter_dict or {})
        if newest_first:
            cursor = cursor.sort("created_at", DESCENDING)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)
    except PyMongoError as e:
        raise StoreUnavailable(str(e)) from e
