"""
Dual-write strategy for the MongoDB -> Firestore migration window.

Every write goes to the primary store first and is then mirrored to the
secondary one.  The secondary write is best-effort: a failure there is
recorded in ``sync_errors`` and replayed later by
``sync_data_inconsistencies`` (triggered from the admin API).  Reads can fall
back to the secondary store when the primary has nothing.

One instance is shared by the whole process (see
``create_dual_write_strategy``).  FastAPI runs sync endpoints in a thread
pool, so the error queue and the operation log are only touched under
``_lock``.  Writes themselves are not coordinated: two concurrent writers
can interleave between the primary and the secondary store.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Any, Deque, Dict, List, Optional, Tuple, Type

from bson.errors import InvalidDocument, InvalidId
from google.api_core.exceptions import InvalidArgument
from pydantic import BaseModel, ValidationError
from pymongo.database import Database
from pymongo.errors import WriteError

from database import create_document
from firestore_store import FirestoreStore
from schemas import (
    COLLECTION_MODELS,
    Booking,
    EscrowPayment,
    Payout,
    ProviderService,
    Review,
    Service,
    User,
    utcnow,
)
from utils import coerce_id

logger = logging.getLogger(__name__)

MONGODB = "mongodb"
FIRESTORE = "firestore"
DATABASES = (MONGODB, FIRESTORE)
OPERATIONS = ("create", "update", "delete")

# Errors that mean the write itself is wrong, not that the store is unhealthy.
# DuplicateKeyError is a WriteError.
CRITICAL_ERRORS = (ValidationError, InvalidId, InvalidDocument, WriteError, InvalidArgument)

OPERATION_LOG_LIMIT = 1000
OPERATION_LOG_KEEP = 500


def is_critical_error(error: Exception) -> bool:
    return isinstance(error, CRITICAL_ERRORS)


@dataclass
class SyncError:
    """A write that did not reach both stores."""
    operation: str
    collection_name: str
    data: Dict[str, Any]
    model: Optional[Type[BaseModel]]
    error: str
    timestamp: datetime = field(default_factory=utcnow)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "collection": self.collection_name,
            "data_id": _data_id(self.data),
            "error": self.error,
            "timestamp": self.timestamp,
        }


def _data_id(data: Dict[str, Any]) -> Optional[str]:
    value = data.get("id") or data.get("_id")
    return str(value) if value is not None else None


class DualWriteStrategy:
    def __init__(
        self,
        mongo_db: Database,
        firestore: Optional[FirestoreStore] = None,
        primary_database: str = MONGODB,
        enable_fallback: bool = True,
        record_sync_errors: bool = True,
        log_operations: bool = False,
        max_sync_errors: int = 1000,
    ):
        if primary_database not in DATABASES:
            raise ValueError(f"Invalid primary database: {primary_database}")
        if primary_database == FIRESTORE and firestore is None:
            raise RuntimeError("Firestore is not configured")
        self.mongo_db = mongo_db
        self.firestore = firestore
        self.primary_database = primary_database
        self.enable_fallback = enable_fallback
        self.record_sync_errors = record_sync_errors
        self.log_operations = log_operations
        self.sync_errors: Deque[SyncError] = deque(maxlen=max_sync_errors)
        self.operation_log: List[Dict[str, Any]] = []
        self._lock = Lock()

    @property
    def secondary_database(self) -> Optional[str]:
        if self.firestore is None:
            return None
        return FIRESTORE if self.primary_database == MONGODB else MONGODB

    # ---------------------------
    # Store adapters
    # ---------------------------

    def _mongo(self, operation: str, collection_name: str, data: Dict[str, Any], model) -> Optional[Dict[str, Any]]:
        collection = self.mongo_db[collection_name]
        doc_id = _data_id(data)

        if operation == "create":
            if doc_id is None:
                new_id = create_document(self.mongo_db, collection_name, data)
                return collection.find_one({"_id": coerce_id(new_id)})
            # Upsert so that replaying a create is harmless.
            body = {k: v for k, v in data.items() if k not in ("id", "_id", "created_at")}
            body["updated_at"] = utcnow()
            collection.update_one(
                {"_id": coerce_id(doc_id)},
                {"$set": body, "$setOnInsert": {"created_at": data.get("created_at") or body["updated_at"]}},
                upsert=True,
            )
            return collection.find_one({"_id": coerce_id(doc_id)})

        if operation == "update":
            current = collection.find_one({"_id": coerce_id(doc_id)})
            if current is None:
                return None
            changes = {k: v for k, v in data.items() if k not in ("id", "_id")}
            stored = {k: v for k, v in current.items() if k != "_id"}
            merged = {**stored, **changes}
            if model is not None:
                # Fields the model does not declare are kept as stored.
                merged = {**stored, **model.model_validate(merged).model_dump()}
                merged["created_at"] = current.get("created_at")
            merged["updated_at"] = utcnow()
            collection.replace_one({"_id": current["_id"]}, merged)
            return collection.find_one({"_id": current["_id"]})

        return collection.find_one_and_delete({"_id": coerce_id(doc_id)})

    def _firestore(self, operation: str, collection_name: str, data: Dict[str, Any], model) -> Optional[Dict[str, Any]]:
        doc_id = _data_id(data)

        if operation == "create":
            return self.firestore.create(collection_name, data)

        if operation == "update":
            if self.firestore.find_by_id(collection_name, doc_id) is None:
                raise LookupError(f"{collection_name}/{doc_id} not found in Firestore")
            changes = {k: v for k, v in data.items() if k not in ("id", "_id")}
            return self.firestore.update_by_id(collection_name, doc_id, changes, model)

        return {"id": doc_id} if self.firestore.delete_by_id(collection_name, doc_id) else None

    def _execute(self, database: str, operation: str, collection_name: str, data: Dict[str, Any], model):
        if database == MONGODB:
            return self._mongo(operation, collection_name, data, model)
        return self._firestore(operation, collection_name, data, model)

    # ---------------------------
    # Core
    # ---------------------------

    def dual_write(
        self,
        operation: str,
        collection_name: str,
        data: Dict[str, Any],
        model: Optional[Type[BaseModel]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Write to the primary store, then mirror the write to the secondary.

        ``data`` carries the document id as ``id`` for updates and deletes
        (and for creates that must reuse a known id).  ``model`` defaults to
        the collection's model.  Returns the primary store's document, or
        ``None`` when the primary failed with a non-critical error or the
        target document does not exist.
        """
        model = model or COLLECTION_MODELS.get(collection_name)
        result, _ = self._write(operation, collection_name, data, model)
        return result

    def _write(self, operation, collection_name, data, model) -> Tuple[Optional[Dict[str, Any]], List[str]]:
        if operation not in OPERATIONS:
            raise ValueError(f"Unsupported operation: {operation}")

        primary = self.primary_database
        secondary = self.secondary_database
        errors: List[str] = []

        try:
            if operation == "create" and model is not None:
                doc_id = _data_id(data)
                data = model.model_validate(data).model_dump()
                if doc_id is not None:
                    data["id"] = doc_id
            result = self._execute(primary, operation, collection_name, data, model)
        except Exception as e:
            errors.append(f"{primary} {operation} failed: {e}")
            self._log_operation(operation, collection_name, data, False, errors)
            if is_critical_error(e):
                raise
            logger.warning("Dual-write primary %s %s on %s failed: %s", primary, operation, collection_name, e)
            self._record(SyncError(operation, collection_name, dict(data), model, errors[0]))
            return None, errors

        if result is None or secondary is None:
            self._log_operation(operation, collection_name, data, result is not None, errors)
            return result, errors

        # Both stores must agree on the document id.
        mirrored = dict(data)
        mirrored["id"] = _data_id(result)
        mirrored.pop("_id", None)
        try:
            self._execute(secondary, operation, collection_name, mirrored, model)
        except Exception as e:
            errors.append(f"{secondary} {operation} failed: {e}")
            logger.warning("Dual-write secondary %s %s on %s failed: %s", secondary, operation, collection_name, e)
            self._record(SyncError(operation, collection_name, mirrored, model, errors[-1]))

        self._log_operation(operation, collection_name, mirrored, not errors, errors)
        return result, errors

    def read(self, collection_name: str, doc_id: str) -> Optional[Dict[str, Any]]:
        secondary = self.secondary_database
        fallback = self.enable_fallback and secondary is not None
        try:
            doc = self._find(self.primary_database, collection_name, doc_id)
        except Exception as e:
            if not fallback:
                raise
            logger.warning("Primary read of %s/%s failed, trying %s: %s", collection_name, doc_id, secondary, e)
            try:
                return self._find(secondary, collection_name, doc_id)
            except Exception:
                logger.warning("Fallback read of %s/%s from %s failed", collection_name, doc_id, secondary)
                raise e

        if doc is None and fallback:
            doc = self._find(secondary, collection_name, doc_id)
        return doc

    def _find(self, database: str, collection_name: str, doc_id: str) -> Optional[Dict[str, Any]]:
        if database == MONGODB:
            return self.mongo_db[collection_name].find_one({"_id": coerce_id(doc_id)})
        return self.firestore.find_by_id(collection_name, doc_id)

    def _record(self, sync_error: SyncError) -> None:
        if not self.record_sync_errors:
            return
        with self._lock:
            self.sync_errors.append(sync_error)

    def _log_operation(self, operation: str, collection_name: str, data: Dict[str, Any], success: bool, errors: List[str]) -> None:
        if not self.log_operations:
            return
        entry = {
            "timestamp": utcnow(),
            "operation": operation,
            "collection": collection_name,
            "data_id": _data_id(data),
            "success": success,
            "errors": list(errors),
        }
        with self._lock:
            self.operation_log.append(entry)
            if len(self.operation_log) > OPERATION_LOG_LIMIT:
                self.operation_log = self.operation_log[-OPERATION_LOG_KEEP:]

    # ---------------------------
    # Reconciliation
    # ---------------------------

    def sync_data_inconsistencies(self) -> Dict[str, Any]:
        """Replay every recorded failed write.

        The queue is drained up front; a replay that fails again is recorded
        again by ``dual_write`` itself.
        """
        with self._lock:
            pending = list(self.sync_errors)
            self.sync_errors.clear()

        logger.info("Replaying %d failed dual-write operations", len(pending))
        synced = 0
        details = []
        for item in pending:
            try:
                _, errors = self._write(item.operation, item.collection_name, item.data, item.model)
            except Exception as e:
                # Critical errors are not recorded by _write; keep the entry.
                self._record(SyncError(item.operation, item.collection_name, item.data, item.model, str(e)))
                details.append({**item.as_dict(), "success": False, "error": str(e)})
                continue
            if errors:
                details.append({**item.as_dict(), "success": False, "error": errors[-1]})
            else:
                synced += 1
                details.append({**item.as_dict(), "success": True})

        failed = len(pending) - synced
        logger.info("Dual-write reconciliation finished: %d synced, %d failed", synced, failed)
        return {"synced": synced, "errors": failed, "details": details}

    def switch_primary_database(self, new_primary: str) -> Dict[str, Any]:
        if new_primary not in DATABASES:
            raise ValueError("Invalid primary database. Must be 'mongodb' or 'firestore'")
        if new_primary == FIRESTORE and self.firestore is None:
            raise RuntimeError("Cannot switch to Firestore: Firestore is not configured")

        sync_result = self.sync_data_inconsistencies()
        previous = self.primary_database
        self.primary_database = new_primary
        logger.info("Primary database switched from %s to %s", previous, new_primary)
        return {"previous": previous, "primary_database": new_primary, "sync": sync_result}

    def get_operation_stats(self) -> Dict[str, Any]:
        with self._lock:
            total = len(self.operation_log)
            successful = sum(1 for entry in self.operation_log if entry["success"])
            pending = len(self.sync_errors)
        return {
            "primary_database": self.primary_database,
            "total": total,
            "successful": successful,
            "failed": total - successful,
            "success_rate": round(successful / total * 100) if total else 0,
            "sync_errors": pending,
        }

    def clear_logs(self) -> None:
        with self._lock:
            self.operation_log = []
            self.sync_errors.clear()

    # ---------------------------
    # Entity helpers
    # ---------------------------

    def create_user(self, data):
        return self.dual_write("create", "users", data, User)

    def update_user(self, user_id, changes):
        return self.dual_write("update", "users", {**changes, "id": user_id}, User)

    def delete_user(self, user_id):
        return self.dual_write("delete", "users", {"id": user_id}, User)

    def create_service(self, data):
        return self.dual_write("create", "services", data, Service)

    def update_service(self, service_id, changes):
        return self.dual_write("update", "services", {**changes, "id": service_id}, Service)

    def delete_service(self, service_id):
        return self.dual_write("delete", "services", {"id": service_id}, Service)

    def create_provider_service(self, data):
        return self.dual_write("create", "provider_services", data, ProviderService)

    def update_provider_service(self, service_id, changes):
        return self.dual_write("update", "provider_services", {**changes, "id": service_id}, ProviderService)

    def delete_provider_service(self, service_id):
        return self.dual_write("delete", "provider_services", {"id": service_id}, ProviderService)

    def create_booking(self, data):
        return self.dual_write("create", "bookings", data, Booking)

    def update_booking(self, booking_id, changes):
        return self.dual_write("update", "bookings", {**changes, "id": booking_id}, Booking)

    def delete_booking(self, booking_id):
        return self.dual_write("delete", "bookings", {"id": booking_id}, Booking)

    def create_payout(self, data):
        return self.dual_write("create", "payouts", data, Payout)

    def update_payout(self, payout_id, changes):
        return self.dual_write("update", "payouts", {**changes, "id": payout_id}, Payout)

    def delete_payout(self, payout_id):
        return self.dual_write("delete", "payouts", {"id": payout_id}, Payout)

    def create_review(self, data):
        return self.dual_write("create", "reviews", data, Review)

    def update_review(self, review_id, changes):
        return self.dual_write("update", "reviews", {**changes, "id": review_id}, Review)

    def delete_review(self, review_id):
        return self.dual_write("delete", "reviews", {"id": review_id}, Review)

    def create_escrow_payment(self, data):
        return self.dual_write("create", "escrow_payments", data, EscrowPayment)

    def update_escrow_payment(self, escrow_id, changes):
        return self.dual_write("update", "escrow_payments", {**changes, "id": escrow_id}, EscrowPayment)

    def delete_escrow_payment(self, escrow_id):
        return self.dual_write("delete", "escrow_payments", {"id": escrow_id}, EscrowPayment)


_strategy: Optional[DualWriteStrategy] = None
_strategy_lock = Lock()


def create_dual_write_strategy(mongo_db: Database, firestore: Optional[FirestoreStore] = None, **options) -> DualWriteStrategy:
    """Create the process-wide strategy; later calls return the existing one."""
    global _strategy
    with _strategy_lock:
        if _strategy is None:
            _strategy = DualWriteStrategy(mongo_db, firestore, **options)
            logger.info(
                "Dual-write strategy ready (primary=%s, secondary=%s)",
                _strategy.primary_database,
                _strategy.secondary_database or "none",
            )
        return _strategy


def get_dual_write_strategy() -> DualWriteStrategy:
    if _strategy is None:
        raise RuntimeError("Dual-write strategy not initialized. Call create_dual_write_strategy first.")
    return _strategy


def reset_dual_write_strategy() -> None:
    global _strategy
    with _strategy_lock:
        _strategy = None


def get_writer() -> Optional[DualWriteStrategy]:
    """FastAPI dependency: the shared strategy, or None in mock mode."""
    return _strategy
