"""
MongoDB access for CampusConnect

The module-level ``db`` handle is what the app serves from; route dependencies
obtain it through ``get_db`` so tests can swap in another database.
"""
import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database

from config import settings
from errors import NotFoundError
from logging_config import logger
from schemas import RecordStatus

client = MongoClient(settings.DATABASE_URL, serverSelectionTimeoutMS=5000)
db = client[settings.DATABASE_NAME]

# Stands in for the author of content whose account was removed
DELETED_USER_ID = ObjectId("000000000000000000000000")

NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]

USER_SUMMARY = ("name", "email", "role", "department", "profile_picture")


def get_db() -> Database:
    return db


def now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes unless the client is tz aware
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_object_id(value: Union[str, ObjectId], resource_type: str) -> ObjectId:
    """Malformed ids are reported the same way as missing documents."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFoundError(resource_type)


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> Dict[str, Any]:
    """Insert a document, stamping created_at/updated_at. Returns the stored document."""
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    stamp = now()
    doc["created_at"] = stamp
    doc["updated_at"] = stamp
    doc["_id"] = database[collection_name].insert_one(doc).inserted_id
    return doc


class SoftDeleteCollection:
    """
    Collection view for documents carrying a ``status`` tombstone.

    Every read and write filter is scoped to ``RecordStatus.ACTIVE`` unless the
    view was built with ``include_deleted=True``, so callers never repeat the
    filter themselves.
    """

    def __init__(self, collection, include_deleted: bool = False):
        self.collection = collection
        self.include_deleted = include_deleted

    def with_deleted(self) -> "SoftDeleteCollection":
        return SoftDeleteCollection(self.collection, include_deleted=True)

    def scope(self, filter_dict: Optional[dict] = None) -> dict:
        scoped = dict(filter_dict or {})
        if not self.include_deleted:
            scoped["status"] = RecordStatus.ACTIVE.value
        return scoped

    def find(self, filter_dict: Optional[dict] = None, *args, **kwargs):
        return self.collection.find(self.scope(filter_dict), *args, **kwargs)

    def find_one(self, filter_dict: Optional[dict] = None, *args, **kwargs):
        return self.collection.find_one(self.scope(filter_dict), *args, **kwargs)

    def count_documents(self, filter_dict: Optional[dict] = None) -> int:
        return self.collection.count_documents(self.scope(filter_dict))

    def update_one(self, filter_dict: dict, update: dict, **kwargs):
        return self.collection.update_one(self.scope(filter_dict), update, **kwargs)

    def find_one_and_update(self, filter_dict: dict, update: dict, **kwargs):
        kwargs.setdefault("return_document", ReturnDocument.AFTER)
        return self.collection.find_one_and_update(self.scope(filter_dict), update, **kwargs)

    def aggregate(self, pipeline: List[dict]):
        return self.collection.aggregate([{"$match": self.scope()}] + list(pipeline))

    def soft_delete(self, doc_id: ObjectId) -> bool:
        result = self.collection.update_one(
            self.scope({"_id": doc_id}),
            {"$set": {"status": RecordStatus.DELETED.value, "updated_at": now()}},
        )
        return result.modified_count == 1


def post_collection(database: Database) -> SoftDeleteCollection:
    return SoftDeleteCollection(database["post"])


def comment_collection(database: Database) -> SoftDeleteCollection:
    return SoftDeleteCollection(database["comment"])


def paginate(collection, filter_dict: dict, page: int, limit: int, sort=None) -> Tuple[List[dict], Dict[str, int]]:
    """One page of ``collection`` plus the ``{page, limit, total, pages}`` block."""
    total = collection.count_documents(filter_dict)
    cursor = collection.find(filter_dict).sort(sort or NEWEST_FIRST).skip((page - 1) * limit).limit(limit)
    return list(cursor), {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit),
    }


def toggle_upvote(collection: SoftDeleteCollection, doc_id: ObjectId, user_id: ObjectId) -> Tuple[Optional[dict], bool]:
    """
    Add ``user_id`` to the upvoter set, or remove it if already present.

    Returns ``(document, added)``; the document is ``None`` when it no longer
    exists. ``upvote_count`` is recomputed from the set size and only written
    while the set still has that size, so a slower concurrent toggle cannot
    overwrite a newer count.
    """
    for _ in range(3):
        doc = collection.find_one_and_update(
            {"_id": doc_id, "upvotes": {"$ne": user_id}},
            {"$push": {"upvotes": user_id}, "$set": {"updated_at": now()}},
        )
        added = doc is not None
        if doc is None:
            doc = collection.find_one_and_update(
                {"_id": doc_id, "upvotes": user_id},
                {"$pull": {"upvotes": user_id}, "$set": {"updated_at": now()}},
            )
        if doc is not None:
            break
        if collection.find_one({"_id": doc_id}, {"_id": 1}) is None:
            return None, False
    else:
        return None, False

    count = len(doc.get("upvotes", []))
    collection.update_one(
        {"_id": doc_id, "upvotes": {"$size": count}},
        {"$set": {"upvote_count": count}},
    )
    doc["upvote_count"] = count
    return doc, added


def populate(database: Database, docs: Iterable[dict], field: str, fields: Tuple[str, ...] = USER_SUMMARY, collection_name: str = "user") -> List[dict]:
    """Replace the ObjectId stored under ``field`` with a summary of the referenced document."""
    docs = list(docs)
    ids = {d[field] for d in docs if isinstance(d.get(field), ObjectId)}
    found: Dict[ObjectId, dict] = {}
    if ids:
        projection = {name: 1 for name in fields}
        for ref in database[collection_name].find({"_id": {"$in": list(ids)}}, projection):
            found[ref["_id"]] = ref
    for d in docs:
        ref_id = d.get(field)
        if not isinstance(ref_id, ObjectId):
            continue
        ref = found.get(ref_id)
        if ref is None and collection_name == "user":
            # Removed accounts and the tombstone resolve to the same placeholder
            d[field] = {"id": None, "name": "Deleted user"}
        elif ref is None:
            d[field] = None
        else:
            d[field] = to_public(ref)
    return docs


def to_public(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """JSON-friendly copy of a stored document: string ids, ISO datetimes, no secrets."""
    if not doc:
        return doc
    out: Dict[str, Any] = {}
    for key, value in doc.items():
        if key == "_id":
            out["id"] = str(value)
        elif key == "password_hash":
            continue
        elif key == "status":
            out["is_deleted"] = value == RecordStatus.DELETED.value
        else:
            out[key] = _jsonable(value)
    return out


def _jsonable(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value


def ensure_indexes(database: Database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["session"].create_index([("token", ASCENDING)], unique=True)
    database["post"].create_index([("section", ASCENDING), ("created_at", DESCENDING)])
    database["post"].create_index([("author", ASCENDING)])
    database["post"].create_index([("tags", ASCENDING)])
    database["post"].create_index([("category", ASCENDING)])
    database["comment"].create_index([("post", ASCENDING), ("created_at", DESCENDING)])
    database["comment"].create_index([("author", ASCENDING)])
    database["notification"].create_index([("recipient", ASCENDING), ("created_at", DESCENDING)])
    logger.info("Database indexes ensured")
