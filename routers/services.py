from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from pymongo.database import Database

from auth import require_admin, require_provider_or_admin
from database import get_db
from dual_write import get_writer
from mock_data import mock_data
from schemas import (
    ACTIVE_BOOKING_STATUSES,
    SERVICE_CATEGORIES,
    ServiceCategory,
    ServiceDuration,
    ServiceImage,
    ServiceRequirements,
)
from utils import Pagination, find_or_404, require_written, regex_search, serialize, serialize_many

router = APIRouter(prefix="/api/services", tags=["services"])

SEARCH_FIELDS = ["name", "description", "tags"]
DEFAULT_SORT = [("is_popular", -1), ("rating.average", -1), ("created_at", -1)]


class ServiceCreateRequest(BaseModel):
    name: str = Field(..., min_length=3, max_length=100)
    description: str = Field(..., max_length=500)
    category: ServiceCategory
    subcategory: Optional[str] = None
    base_price: float = Field(..., ge=0)
    price_type: Literal["fixed", "hourly", "per-unit"] = "fixed"
    currency: str = "KES"
    duration: ServiceDuration
    images: List[ServiceImage] = []
    tags: List[str] = []
    requirements: Optional[ServiceRequirements] = None


class ServiceUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    category: Optional[ServiceCategory] = None
    subcategory: Optional[str] = None
    base_price: Optional[float] = Field(None, ge=0)
    price_type: Optional[Literal["fixed", "hourly", "per-unit"]] = None
    duration: Optional[ServiceDuration] = None
    images: Optional[List[ServiceImage]] = None
    tags: Optional[List[str]] = None
    requirements: Optional[ServiceRequirements] = None
    is_active: Optional[bool] = None


def build_service_filter(
    category: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    is_active: Optional[bool] = True,
    search: Optional[str] = None,
) -> Dict[str, Any]:
    filt: Dict[str, Any] = {}
    if is_active is not None:
        filt["is_active"] = is_active
    if category:
        filt["category"] = category
    if min_price is not None or max_price is not None:
        filt["base_price"] = {}
        if min_price is not None:
            filt["base_price"]["$gte"] = min_price
        if max_price is not None:
            filt["base_price"]["$lte"] = max_price
    if search:
        filt["$or"] = regex_search(search, SEARCH_FIELDS)
    return filt


def find_services(db: Optional[Database], filt: Dict[str, Any], pagination: Pagination):
    if mock_data.is_fallback_mode(db):
        return mock_data.find_services(filt, pagination.skip, pagination.limit)
    cursor = db["services"].find(filt).sort(DEFAULT_SORT).skip(pagination.skip).limit(pagination.limit)
    return list(cursor), db["services"].count_documents(filt)


def list_response(services, total: int, pagination: Pagination) -> Dict[str, Any]:
    return {
        "status": "success",
        "results": len(services),
        "pagination": pagination.envelope(total),
        "data": {"services": serialize_many(services)},
    }


def has_active_bookings(db: Optional[Database], service_id: str) -> bool:
    if mock_data.is_fallback_mode(db):
        bookings, _ = mock_data.find_bookings({"service": service_id})
        return any(b.get("status") in ACTIVE_BOOKING_STATUSES for b in bookings)
    return db["bookings"].count_documents(
        {"service": service_id, "status": {"$in": list(ACTIVE_BOOKING_STATUSES)}}
    ) > 0


@router.get("")
def list_services(
    category: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    is_active: bool = True,
    search: Optional[str] = None,
    pagination: Pagination = Depends(),
    db: Optional[Database] = Depends(get_db),
):
    filt = build_service_filter(category, min_price, max_price, is_active, search)
    services, total = find_services(db, filt, pagination)
    return list_response(services, total, pagination)


@router.get("/search")
def search_services(
    q: str = Query(..., min_length=1),
    category: Optional[str] = None,
    pagination: Pagination = Depends(),
    db: Optional[Database] = Depends(get_db),
):
    filt = build_service_filter(category=category, search=q)
    services, total = find_services(db, filt, pagination)
    return list_response(services, total, pagination)


@router.get("/popular")
def popular_services(limit: int = Query(6, ge=1, le=50), db: Optional[Database] = Depends(get_db)):
    if mock_data.is_fallback_mode(db):
        services, _ = mock_data.find_services({"is_active": True})
        services = [s for s in services if s.get("is_popular")][:limit]
    else:
        cursor = db["services"].find({"is_active": True, "is_popular": True})
        services = list(cursor.sort([("rating.average", -1), ("booking_count", -1)]).limit(limit))
    return {"status": "success", "results": len(services), "data": {"services": serialize_many(services)}}


@router.get("/category/{category}")
def services_by_category(
    category: str,
    pagination: Pagination = Depends(),
    db: Optional[Database] = Depends(get_db),
):
    if category.lower() not in SERVICE_CATEGORIES:
        raise HTTPException(status_code=400, detail="Invalid category")
    filt = build_service_filter(category=category.lower())
    services, total = find_services(db, filt, pagination)
    return list_response(services, total, pagination)


@router.get("/{service_id}")
def get_service(service_id: str, db: Optional[Database] = Depends(get_db)):
    if mock_data.is_fallback_mode(db):
        svc = mock_data.find_service_by_id(service_id)
        if not svc:
            raise HTTPException(status_code=404, detail="Service not found")
    else:
        svc = find_or_404(db, "services", service_id, "Service")
    return {"status": "success", "data": {"service": serialize(svc)}}


@router.post("", status_code=201)
def create_service(
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
    return {"status": "success", "data": {"service": serialize(created)}}


@router.put("/{service_id}")
def update_service(
    service_id: str,
    payload: ServiceUpdateRequest,
    current=Depends(require_provider_or_admin),
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
    return {"status": "success", "data": {"service": serialize(updated)}}


@router.delete("/{service_id}")
def delete_service(
    service_id: str,
    current=Depends(require_provider_or_admin),
    db: Optional[Database] = Depends(get_db),
    writer=Depends(get_writer),
):
    if mock_data.is_fallback_mode(db):
        if not mock_data.find_service_by_id(service_id):
            raise HTTPException(status_code=404, detail="Service not found")
    else:
        find_or_404(db, "services", service_id, "Service")

    if has_active_bookings(db, service_id):
        raise HTTPException(status_code=400, detail="Cannot delete service with active bookings")

    if mock_data.is_fallback_mode(db):
        mock_data.update_service(service_id, {"is_active": False})
    else:
        writer.update_service(service_id, {"is_active": False})
    return {"status": "success", "message": "Service deleted successfully", "data": None}
