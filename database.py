"""
MongoDB access helpers.

The connection is configured from DATABASE_URL and DATABASE_NAME. When
either is missing `db` stays None and every helper raises
StoreUnavailableError.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from errors import StoreUnavailableError

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

db = None
if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL, tz_aware=True)
    db = client[DATABASE_NAME]


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _require_db():
    if db is None:
        raise StoreUnavailableError("Database is not configured")
    return db


def create_document(collection_name: str, data: Dict[str, Any]) -> str:
    """Insert a document, stamping created_at/updated_at. Returns its id."""
    database = _require_db()
    doc = dict(data)
    now = now_utc()
    doc.setdefault("created_at", now)
    doc.setdefault("updated_at", now)
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    database = _require_db()
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def undo(operation, *args) -> None:
    """Run a compensating write; a failure is logged so the caller can re-raise its own error."""
    try:
        operation(*args)
    except PyMongoError as e:
        logger.error("Compensating %s%r failed: %s", getattr(operation, "__name__", "write"), args, e)


def write_batch(writes: List[Tuple[str, Dict[str, Any]]]) -> List[str]:
    """
    Insert several documents across collections as one all-or-nothing unit.

    Documents are inserted in order. If any insert fails, the ones already
    written are deleted again (newest first) and the original error is
    re-raised, so callers never observe a partially applied batch after
    the call returns.
    """
    database = _require_db()
    written: List[Tuple[str, ObjectId]] = []
    try:
        for collection_name, data in writes:
            doc = dict(data)
            doc.setdefault("_id", ObjectId())
            database[collection_name].insert_one(doc)
            written.append((collection_name, doc["_id"]))
    except PyMongoError as e:
        logger.error("Batch write failed after %d/%d inserts: %s", len(written), len(writes), e)
        for collection_name, doc_id in reversed(written):
            undo(database[collection_name].delete_one, {"_id": doc_id})
        raise
    return [str(doc_id) for _, doc_id in written]


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d
