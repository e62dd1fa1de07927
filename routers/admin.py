import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from pymongo.database import Database

from auth import require_admin
from database import get_db
from dual_write import get_writer
from mock_data import mock_data
from provider_services import ProviderServiceManager
from routers.services import (
    ServiceCreateRequest,
    ServiceUpdateRequest,
    find_services,
    has_active_bookings,
    list_response,
)
from schemas import ProviderStatus, utcnow
from utils import Pagination, find_or_404, require_written, regex_search, serialize, serialize_many

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


class UserStatusUpdate(BaseModel):
    is_active: bool


class ProviderStatusUpdate(BaseModel):
    status: ProviderStatus
    reason: Optional[str] = Field(None, max_length=500)


class ServiceBulkAction(BaseModel):
    action: Literal["activate", "deactivate", "delete"]
    service_ids: List[str] = Field(..., min_length=1)


class PrimaryDatabaseRequest(BaseModel):
    primary_database: str


def _writer_or_503(writer):
    if writer is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return writer


# ---------------------------
# Dashboard
# ---------------------------

@router.get("/stats")
def dashboard_stats(db: Optional[Database] = Depends(get_db)):
    if mock_data.is_fallback_mode(db):
        users = mock_data.users
        providers = [u for u in users if u["user_type"] == "provider"]
        bookings = mock_data.bookings
    else:
        users = list(db["users"].find({}, {"user_type": 1, "provider_status": 1}))
        providers = [u for u in users if u.get("user_type") == "provider"]
        bookings = list(db["bookings"].find({}, {"status": 1, "pricing.total_amount": 1}))

    completed = [b for b in bookings if b.get("status") == "completed"]
    return {
        "status": "success",
        "data": {
            "total_users": len(users),
            "total_providers": len(providers),
            "pending_verifications": sum(
                1 for p in providers if p.get("provider_status") in ("pending", "under_review")
            ),
            "approved_providers": sum(1 for p in providers if p.get("provider_status") == "approved"),
            "total_bookings": len(bookings),
            "completed_bookings": len(completed),
            "total_revenue": sum((b.get("pricing") or {}).get("total_amount", 0) for b in completed),
        },
    }


# ---------------------------
# Users & providers
# ---------------------------

@router.get("/users")
def list_users(
    user_type: Optional[str] = None,
    search: Optional[str] = None,
    pagination: Pagination = Depends(),
    db: Optional[Database] = Depends(get_db),
):
    if mock_data.is_fallback_mode(db):
        users = [u for u in mock_data.users if not user_type or u["user_type"] == user_type]
        total = len(users)
        users = users[pagination.skip:pagination.skip + pagination.limit]
    else:
        filt: Dict[str, Any] = {}
        if user_type and user_type != "all":
            filt["user_type"] = user_type
        if search:
            filt["$or"] = regex_search(search, ["name", "email"])
        cursor = db["users"].find(filt).sort("created_at", -1).skip(pagination.skip).limit(pagination.limit)
        users, total = list(cursor), db["users"].count_documents(filt)
    return {
        "status": "success",
        "results": len(users),
        "pagination": pagination.envelope(total),
        "data": {"users": serialize_many(users)},
    }


@router.put("/users/{user_id}/status")
def update_user_status(
    user_id: str,
    payload: UserStatusUpdate,
    current=Depends(require_admin),
    db: Optional[Database] = Depends(get_db),
    writer=Depends(get_writer),
):
    writer = _writer_or_503(writer)
    find_or_404(db, "users", user_id, "User")
    if user_id == current["id"] and not payload.is_active:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")
    updated = require_written(writer.update_user(user_id, {"is_active": payload.is_active}))
    logger.info("Admin %s set user %s active=%s", current["email"], user_id, payload.is_active)
    return {"status": "success", "data": {"user": serialize(updated)}}


@router.get("/providers")
def list_providers(
    status: Optional[str] = None,
    skills: Optional[str] = None,
    search: Optional[str] = None,
    pagination: Pagination = Depends(),
    db: Optional[Database] = Depends(get_db),
):
    if mock_data.is_fallback_mode(db):
        providers = [
            u for u in mock_data.users
            if u["user_type"] == "provider" and (not status or u.get("provider_status") == status)
        ]
        total = len(providers)
        providers = providers[pagination.skip:pagination.skip + pagination.limit]
    else:
        filt: Dict[str, Any] = {"user_type": "provider"}
        if status and status != "all":
            filt["provider_status"] = status
        if skills:
            filt["provider_profile.skills"] = {"$in": [s.strip() for s in skills.split(",") if s.strip()]}
        if search:
            filt["$or"] = regex_search(search, ["name", "email"])
        cursor = db["users"].find(filt).sort("created_at", -1).skip(pagination.skip).limit(pagination.limit)
        providers, total = list(cursor), db["users"].count_documents(filt)
    return {
        "status": "success",
        "results": len(providers),
        "pagination": pagination.envelope(total),
        "data": {"providers": serialize_many(providers)},
    }


@router.put("/providers/{provider_id}/status")
def update_provider_status(
    provider_id: str,
    payload: ProviderStatusUpdate,
    current=Depends(require_admin),
    db: Optional[Database] = Depends(get_db),
    writer=Depends(get_writer),
):
    writer = _writer_or_503(writer)
    provider = find_or_404(db, "users", provider_id, "Provider")
    if provider.get("user_type") != "provider":
        raise HTTPException(status_code=404, detail="Provider not found")
    if payload.status == "rejected" and not payload.reason:
        raise HTTPException(status_code=400, detail="A reason is required to reject a provider")

    now = utcnow()
    changes: Dict[str, Any] = {"provider_status": payload.status}
    if payload.status == "approved":
        changes.update({"approved_at": now, "approved_by": current["id"], "is_verified": True})
    elif payload.status == "rejected":
        changes.update({"rejected_at": now, "rejection_reason": payload.reason})
    updated = require_written(writer.update_user(provider_id, changes))
    logger.info("Admin %s set provider %s status to %s", current["email"], provider_id, payload.status)

    activated = []
    activation_error = None
    if payload.status == "approved":
        try:
            activated = ProviderServiceManager(db, writer).activate_provider_services(updated)
        except Exception as e:
            # Approval stands even if the services could not be generated.
            logger.exception("Service activation failed for provider %s", provider_id)
            activation_error = str(e)
        else:
            updated = db["users"].find_one({"_id": provider["_id"]}) or updated

    return {
        "status": "success",
        "message": f"Provider status updated to {payload.status}",
        "data": {
            "provider": serialize(updated),
            "activated_services": len(activated),
            "activation_error": activation_error,
        },
    }


# ---------------------------
# Service catalog
# ---------------------------

@router.get("/services")
def admin_list_services(
    search: Optional[str] = None,
    category: Optional[str] = None,
    status: Literal["all", "active", "inactive"] = "all",
    pagination: Pagination = Depends(),
    db: Optional[Database] = Depends(get_db),
):
    filt: Dict[str, Any] = {}
    if status != "all":
        filt["is_active"] = status == "active"
    if category:
        filt["category"] = category
    if search:
        filt["$or"] = regex_search(search, ["name", "description", "category"])
    services, total = find_services(db, filt, pagination)
    response = list_response(services, total, pagination)
    response["mock_mode"] = mock_data.is_fallback_mode(db)
    return response


@router.get("/services/{service_id}")
def admin_get_service(service_id: str, db: Optional[Database] = Depends(get_db)):
    if mock_data.is_fallback_mode(db):
        svc = mock_data.find_service_by_id(service_id)
        if not svc:
            raise HTTPException(status_code=404, detail="Service not found")
    else:
        svc = find_or_404(db, "services", service_id, "Service")
    return {"status": "success", "data": {"service": serialize(svc)}}


@router.post("/services", status_code=201)
def admin_create_service(
    payload: ServiceCreateRequest,
    current=Depends(require_admin),
    db: Optional[Database] = Depends(get_db),
    writer=Depends(get_writer),
):
    data = payload.model_dump()
    data["created_by"] = current["id"]
    if mock_data.is_fallback_mode(db):
        created = mock_data.create_service(data)
    else:
        created = require_written(writer.create_service(data))
    logger.info("Admin %s created service %s", current["email"], payload.name)
    return {"status": "success", "message": "Service created successfully", "data": {"service": serialize(created)}}


@router.put("/services/{service_id}")
def admin_update_service(
    service_id: str,
    payload: ServiceUpdateRequest,
    db: Optional[Database] = Depends(get_db),
    writer=Depends(get_writer),
):
    changes = payload.model_dump(exclude_unset=True)
    if mock_data.is_fallback_mode(db):
        updated = mock_data.update_service(service_id, changes)
        if not updated:
            raise HTTPException(status_code=404, detail="Service not found")
    else:
        find_or_404(db, "services", service_id, "Service")
        updated = require_written(writer.update_service(service_id, changes))
    return {"status": "success", "message": "Service updated successfully", "data": {"service": serialize(updated)}}


@router.put("/services/{service_id}/toggle-active")
def admin_toggle_service(
    service_id: str,
    db: Optional[Database] = Depends(get_db),
    writer=Depends(get_writer),
):
    if mock_data.is_fallback_mode(db):
        updated = mock_data.toggle_service(service_id)
        if not updated:
            raise HTTPException(status_code=404, detail="Service not found")
    else:
        svc = find_or_404(db, "services", service_id, "Service")
        updated = require_written(writer.update_service(service_id, {"is_active": not svc.get("is_active", True)}))
    state = "activated" if updated.get("is_active") else "deactivated"
    return {"status": "success", "message": f"Service {state} successfully", "data": {"service": serialize(updated)}}


def _delete_service(db: Optional[Database], writer, service_id: str) -> None:
    if has_active_bookings(db, service_id):
        raise HTTPException(status_code=400, detail="Cannot delete service with active bookings")
    if mock_data.is_fallback_mode(db):
        mock_data.delete_service(service_id)
    else:
        require_written(writer.delete_service(service_id))


@router.delete("/services/{service_id}")
def admin_delete_service(
    service_id: str,
    db: Optional[Database] = Depends(get_db),
    writer=Depends(get_writer),
):
    if mock_data.is_fallback_mode(db):
        if not mock_data.find_service_by_id(service_id):
            raise HTTPException(status_code=404, detail="Service not found")
    else:
        find_or_404(db, "services", service_id, "Service")
    _delete_service(db, writer, service_id)
    return {"status": "success", "message": "Service deleted successfully", "data": None}


@router.post("/services/bulk-action")
def admin_bulk_service_action(
    payload: ServiceBulkAction,
    db: Optional[Database] = Depends(get_db),
    writer=Depends(get_writer),
):
    results: Dict[str, List[Dict[str, Any]]] = {"successful": [], "failed": []}
    for service_id in payload.service_ids:
        try:
            if mock_data.is_fallback_mode(db):
                found = mock_data.find_service_by_id(service_id)
            else:
                found = find_or_404(db, "services", service_id, "Service")
            if not found:
                raise HTTPException(status_code=404, detail="Service not found")

            if payload.action == "delete":
                _delete_service(db, writer, service_id)
            else:
                changes = {"is_active": payload.action == "activate"}
                if mock_data.is_fallback_mode(db):
                    mock_data.update_service(service_id, changes)
                else:
                    require_written(writer.update_service(service_id, changes))
            results["successful"].append({"service_id": service_id, "action": payload.action})
        except HTTPException as e:
            results["failed"].append({"service_id": service_id, "error": e.detail})

    return {
        "status": "success",
        "message": f"Bulk {payload.action} operation completed",
        "data": {"results": results},
    }


# ---------------------------
# Dual-write reconciliation
# ---------------------------

@router.get("/sync/stats")
def sync_stats(writer=Depends(get_writer)):
    writer = _writer_or_503(writer)
    return {
        "status": "success",
        "data": {
            "stats": writer.get_operation_stats(),
            "pending": [item.as_dict() for item in list(writer.sync_errors)],
        },
    }


@router.post("/sync/reconcile")
def sync_reconcile(writer=Depends(get_writer)):
    writer = _writer_or_503(writer)
    result = writer.sync_data_inconsistencies()
    return {"status": "success", "data": result}


@router.post("/sync/primary")
def sync_switch_primary(payload: PrimaryDatabaseRequest, writer=Depends(get_writer)):
    writer = _writer_or_503(writer)
    try:
        result = writer.switch_primary_database(payload.primary_database)
    except (ValueError, RuntimeError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"status": "success", "data": result}
