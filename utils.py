import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from fastapi import HTTPException, Query

HIDDEN_FIELDS = ("tokens",)

_DOCUMENT_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def coerce_id(id_value: Any) -> Union[ObjectId, str]:
    """ObjectId for 24-hex ids, the raw string otherwise (Firestore-issued ids)."""
    if isinstance(id_value, ObjectId):
        return id_value
    id_str = str(id_value)
    return ObjectId(id_str) if ObjectId.is_valid(id_str) else id_str


def to_object_id(id_str: str) -> Union[ObjectId, str]:
    if not id_str or not _DOCUMENT_ID.match(id_str):
        raise HTTPException(status_code=400, detail="Invalid ID format")
    return coerce_id(id_str)


def _serialize_value(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: _serialize_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    for key in HIDDEN_FIELDS:
        d.pop(key, None)
    return {k: _serialize_value(v) for k, v in d.items()}


def serialize_many(docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [serialize(doc) for doc in docs]


class Pagination:
    """Query parameters shared by every paginated list endpoint."""

    def __init__(
        self,
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
    ):
        self.page = page
        self.limit = limit

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def envelope(self, total: int) -> Dict[str, int]:
        return {
            "page": self.page,
            "pages": math.ceil(total / self.limit),
            "total": total,
            "limit": self.limit,
        }


def regex_search(term: str, fields: List[str]) -> List[Dict[str, Any]]:
    """``$or`` clauses for a case-insensitive substring search."""
    pattern = re.escape(term)
    return [{field: {"$regex": pattern, "$options": "i"}} for field in fields]


def ensure_db(db) -> None:
    if db is None:
        raise HTTPException(status_code=503, detail="Database not available")


def find_or_404(db, collection_name: str, id_str: str, label: str) -> Dict[str, Any]:
    doc = db[collection_name].find_one({"_id": to_object_id(id_str)})
    if not doc:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return doc


def require_written(doc: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Result of a dual write, or 503 when the primary store did not take it."""
    if doc is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return doc
