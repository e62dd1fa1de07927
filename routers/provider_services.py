from collections import defaultdict
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from pymongo.database import Database

from auth import require_roles
from database import get_db
from dual_write import get_writer
from provider_services import ProviderServiceManager
from schemas import ACTIVE_BOOKING_STATUSES, SERVICE_CATEGORIES, AvailabilityHours, ServiceCategory, utcnow
from utils import ensure_db, find_or_404, require_written, serialize, serialize_many

router = APIRouter(prefix="/api/provider-services", tags=["provider-services"])

require_provider = require_roles("provider")


class ProviderServiceCreateRequest(BaseModel):
    title: str = Field(..., max_length=100)
    description: str = Field(..., max_length=1000)
    category: ServiceCategory
    price: float = Field(..., ge=0)
    price_type: Literal["fixed", "hourly", "quote"] = "fixed"
    duration: int = Field(60, ge=15)
    images: List[str] = []
    service_area: List[str] = []
    available_hours: Optional[AvailabilityHours] = None
    tags: List[str] = []


class ProviderServiceUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    category: Optional[ServiceCategory] = None
    price: Optional[float] = Field(None, ge=0)
    price_type: Optional[Literal["fixed", "hourly", "quote"]] = None
    duration: Optional[int] = Field(None, ge=15)
    images: Optional[List[str]] = None
    service_area: Optional[List[str]] = None
    available_hours: Optional[AvailabilityHours] = None
    tags: Optional[List[str]] = None
    is_active: Optional[bool] = None


def _own_service(db: Database, service_id: str, provider_id: str):
    service = find_or_404(db, "provider_services", service_id, "Service")
    if service.get("provider_id") != provider_id:
        raise HTTPException(status_code=403, detail="Not your service")
    return service


# ---------------------------
# Public
# ---------------------------

@router.get("/public")
def public_services(
    category: Optional[str] = None,
    limit: int = Query(100, ge=1, le=200),
    db: Optional[Database] = Depends(get_db),
):
    ensure_db(db)
    services = ProviderServiceManager(db).get_services_for_booking(category=category, limit=limit)
    services = serialize_many(services)
    grouped = defaultdict(list)
    for service in services:
        grouped[service["category"]].append(service)
    return {
        "success": True,
        "count": len(services),
        "data": {"services": services, "grouped": dict(grouped)},
    }


@router.get("/public/service/{service_id}")
def public_service_detail(service_id: str, db: Optional[Database] = Depends(get_db)):
    ensure_db(db)
    service = find_or_404(db, "provider_services", service_id, "Service")
    if not service.get("is_active"):
        raise HTTPException(status_code=404, detail="Service not found")
    ProviderServiceManager(db).attach_providers([service])
    return {"success": True, "data": {"service": serialize(service)}}


@router.get("/public/{category}")
def public_services_by_category(
    category: str,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    limit: int = Query(20, ge=1, le=100),
    db: Optional[Database] = Depends(get_db),
):
    ensure_db(db)
    if category not in SERVICE_CATEGORIES:
        raise HTTPException(status_code=400, detail="Invalid category")
    services = ProviderServiceManager(db).get_services_for_booking(category, min_price, max_price, limit)
    return {"success": True, "count": len(services), "data": {"services": serialize_many(services)}}


# ---------------------------
# Provider
# ---------------------------

@router.get("")
def my_services(current=Depends(require_provider), db: Optional[Database] = Depends(get_db)):
    ensure_db(db)
    services = list(db["provider_services"].find({"provider_id": current["id"]}).sort("created_at", -1))
    return {"success": True, "count": len(services), "data": {"services": serialize_many(services)}}


@router.post("", status_code=201)
def create_provider_service(
    payload: ProviderServiceCreateRequest,
    current=Depends(require_provider),
    db: Optional[Database] = Depends(get_db),
    writer=Depends(get_writer),
):
    ensure_db(db)
    if current.get("provider_status") != "approved":
        raise HTTPException(status_code=403, detail="Provider account is not approved")
    data = payload.model_dump(exclude_none=True)
    data["provider_id"] = current["id"]
    data["metadata"] = {"source": "manual", "activated_at": utcnow()}
    created = require_written(writer.create_provider_service(data))
    return {"success": True, "data": {"service": serialize(created)}}


@router.put("/{service_id}")
def update_provider_service(
    service_id: str,
    payload: ProviderServiceUpdateRequest,
    current=Depends(require_provider),
    db: Optional[Database] = Depends(get_db),
    writer=Depends(get_writer),
):
    ensure_db(db)
    _own_service(db, service_id, current["id"])
    updated = require_written(writer.update_provider_service(service_id, payload.model_dump(exclude_unset=True)))
    return {"success": True, "data": {"service": serialize(updated)}}


@router.patch("/{service_id}/toggle")
def toggle_provider_service(
    service_id: str,
    current=Depends(require_provider),
    db: Optional[Database] = Depends(get_db),
    writer=Depends(get_writer),
):
    ensure_db(db)
    service = _own_service(db, service_id, current["id"])
    is_active = not service.get("is_active", True)
    changes = {"is_active": is_active, "deactivated_at": None if is_active else utcnow()}
    updated = require_written(writer.update_provider_service(service_id, changes))
    return {"success": True, "data": {"service": serialize(updated)}}


@router.delete("/{service_id}")
def delete_provider_service(
    service_id: str,
    current=Depends(require_provider),
    db: Optional[Database] = Depends(get_db),
    writer=Depends(get_writer),
):
    ensure_db(db)
    _own_service(db, service_id, current["id"])
    active = db["bookings"].count_documents(
        {"service": service_id, "status": {"$in": list(ACTIVE_BOOKING_STATUSES)}}
    )
    if active:
        raise HTTPException(status_code=400, detail="Cannot delete service with active bookings")
    writer.delete_provider_service(service_id)
    return {"success": True, "message": "Service deleted successfully"}
