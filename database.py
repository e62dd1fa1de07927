"""
MongoDB access.

The client is created at import time from ``DATABASE_URL`` / ``DATABASE_NAME``.
pymongo connects lazily, so importing this module never blocks; call
``check_connection`` (done at application startup) to find out whether the
server is actually reachable.  When it is not, ``get_db`` yields ``None``
and the routers fall back to the in-memory demo data.
"""
import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import settings
from schemas import utcnow

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = None
db: Optional[Database] = None
_connected = False

if settings.database_url:
    client = MongoClient(
        settings.database_url,
        serverSelectionTimeoutMS=settings.server_selection_timeout_ms,
        retryWrites=True,
    )
    db = client[settings.database_name]


def check_connection() -> bool:
    """Ping the server and remember the outcome."""
    global _connected
    if client is None:
        _connected = False
        return False
    try:
        client.admin.command("ping")
        _connected = True
    except PyMongoError as e:
        logger.warning("MongoDB not reachable, serving mock data: %s", e)
        _connected = False
    return _connected


def is_db_connected() -> bool:
    return db is not None and _connected


def get_db() -> Optional[Database]:
    """FastAPI dependency: the database handle, or None in mock mode."""
    return db if is_db_connected() else None


def create_indexes(database: Database) -> None:
    database["users"].create_index("email", unique=True)
    database["users"].create_index("tokens")
    database["services"].create_index("category")
    database["services"].create_index("is_active")
    database["services"].create_index([("rating.average", -1)])
    database["provider_services"].create_index([("provider_id", 1), ("title", 1), ("category", 1)])
    database["bookings"].create_index("booking_number", unique=True)
    database["bookings"].create_index([("client", 1), ("created_at", -1)])
    database["bookings"].create_index([("provider", 1), ("created_at", -1)])
    database["bookings"].create_index("service")
    database["payouts"].create_index("booking", unique=True)
    database["payouts"].create_index([("status", 1), ("timeline.payout_scheduled", 1)])
    database["reviews"].create_index([("booking", 1), ("reviewer", 1)], unique=True)


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document with timestamps and return its id as a string."""
    data_dict = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = utcnow()
    if not data_dict.get("created_at"):
        data_dict["created_at"] = now
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
