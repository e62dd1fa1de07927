import logging
from datetime import datetime
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, Field
from pymongo.database import Database

from auth import get_current_user, require_provider_or_admin
from database import get_db
from dual_write import get_writer
from mock_data import mock_data
from payouts import PayoutStateError, create_payout_for_booking
from schemas import (
    TERMINAL_BOOKING_STATUSES,
    BookingLocation,
    PaymentMethod,
    ScheduledTime,
    utcnow,
)
from utils import Pagination, ensure_db, find_or_404, require_written, serialize, serialize_many

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookings", tags=["bookings"])


class BookingCreateRequest(BaseModel):
    service: str
    service_type: Literal["Service", "ProviderService"] = "Service"
    provider: str
    scheduled_date: datetime
    scheduled_time: ScheduledTime
    location: BookingLocation
    payment_method: PaymentMethod = "mpesa"
    notes: Optional[str] = Field(None, max_length=500)


class BookingStatusUpdate(BaseModel):
    status: Literal["confirmed", "in-progress", "completed", "cancelled"]
    notes: Optional[str] = Field(None, max_length=500)


class BookingCancelRequest(BaseModel):
    reason: str = Field(..., min_length=5, max_length=200)


def _party_filter(current: Dict[str, Any]) -> Dict[str, Any]:
    if current["user_type"] == "client":
        return {"client": current["id"]}
    if current["user_type"] == "provider":
        return {"provider": current["id"]}
    return {}


def _check_access(booking: Dict[str, Any], current: Dict[str, Any]) -> None:
    if current["user_type"] == "admin":
        return
    if current["id"] not in (booking.get("client"), booking.get("provider")):
        raise HTTPException(status_code=403, detail="Not authorized to access this booking")


def _timeline_entry(status: str, current: Dict[str, Any], notes: Optional[str] = None) -> Dict[str, Any]:
    return {"status": status, "timestamp": utcnow(), "updated_by": current["id"], "notes": notes}


def _record_completion(db: Database, writer, booking: Dict[str, Any]) -> None:
    """Count the booking against its service and open its payout."""
    service_id = booking["service"]
    if booking.get("service_type") == "ProviderService":
        service = find_or_404(db, "provider_services", service_id, "Service")
        writer.update_provider_service(service_id, {
            "total_bookings": service.get("total_bookings", 0) + 1,
            "total_revenue": service.get("total_revenue", 0) + booking["pricing"]["total_amount"],
        })
    else:
        service = find_or_404(db, "services", service_id, "Service")
        writer.update_service(service_id, {"booking_count": service.get("booking_count", 0) + 1})

    try:
        create_payout_for_booking(db, booking, writer)
    except PayoutStateError as e:
        logger.warning("No payout created for booking %s: %s", booking.get("booking_number"), e)


@router.get("")
def list_bookings(
    status: Optional[str] = None,
    pagination: Pagination = Depends(),
    current=Depends(get_current_user),
    db: Optional[Database] = Depends(get_db),
):
    filt = _party_filter(current)
    if status:
        filt["status"] = status

    if mock_data.is_fallback_mode(db):
        bookings, total = mock_data.find_bookings(filt)
        bookings = bookings[pagination.skip:pagination.skip + pagination.limit]
    else:
        cursor = db["bookings"].find(filt).sort("created_at", -1).skip(pagination.skip).limit(pagination.limit)
        bookings, total = list(cursor), db["bookings"].count_documents(filt)

    return {
        "status": "success",
        "results": len(bookings),
        "pagination": pagination.envelope(total),
        "data": {"bookings": serialize_many(bookings)},
    }


@router.get("/stats")
def booking_stats(current=Depends(require_provider_or_admin), db: Optional[Database] = Depends(get_db)):
    ensure_db(db)
    match = _party_filter(current)
    pipeline = [
        {"$match": match},
        {"$group": {
            "_id": "$status",
            "count": {"$sum": 1},
            "total_amount": {"$sum": "$pricing.total_amount"},
        }},
        {"$sort": {"_id": 1}},
    ]
    by_status = [
        {"status": row["_id"], "count": row["count"], "total_amount": row["total_amount"]}
        for row in db["bookings"].aggregate(pipeline)
    ]
    return {
        "status": "success",
        "data": {
            "stats": by_status,
            "total": sum(row["count"] for row in by_status),
        },
    }


@router.get("/{booking_id}")
def get_booking(booking_id: str, current=Depends(get_current_user), db: Optional[Database] = Depends(get_db)):
    ensure_db(db)
    booking = find_or_404(db, "bookings", booking_id, "Booking")
    _check_access(booking, current)
    return {"status": "success", "data": {"booking": serialize(booking)}}


@router.post("", status_code=201)
def create_booking(
    payload: BookingCreateRequest,
    current=Depends(get_current_user),
    db: Optional[Database] = Depends(get_db),
    writer=Depends(get_writer),
):
    fallback = mock_data.is_fallback_mode(db)
    if fallback:
        if payload.service_type != "Service":
            raise HTTPException(status_code=503, detail="Database not available")
        service = mock_data.find_service_by_id(payload.service)
        provider = mock_data.find_user_by_id(payload.provider)
        if not service:
            raise HTTPException(status_code=404, detail="Service not found")
        base_price = service.get("base_price", 0)
    elif payload.service_type == "ProviderService":
        service = find_or_404(db, "provider_services", payload.service, "Service")
        base_price = service.get("price", 0)
    else:
        service = find_or_404(db, "services", payload.service, "Service")
        base_price = service.get("base_price", 0)
    if not service.get("is_active", True):
        raise HTTPException(status_code=400, detail="Service is not available")

    if not fallback:
        provider = find_or_404(db, "users", payload.provider, "Provider")
    if not provider or provider.get("user_type") != "provider":
        raise HTTPException(status_code=404, detail="Provider not found")

    data = payload.model_dump(exclude={"payment_method", "notes"})
    data.update({
        "client": current["id"],
        "status": "pending",
        "pricing": {
            "base_price": base_price,
            "total_amount": base_price,
            "currency": service.get("currency", "KES"),
        },
        "payment": {"method": payload.payment_method, "status": "pending"},
        "notes": {"client": payload.notes},
        "timeline": [_timeline_entry("pending", current, "Booking created")],
    })
    if fallback:
        created = mock_data.create_booking(data)
    else:
        created = require_written(writer.create_booking(data))
    logger.info("Booking %s created by %s", created.get("booking_number"), current["email"])
    return {"status": "success", "data": {"booking": serialize(created)}}


@router.put("/{booking_id}/status")
def update_booking_status(
    booking_id: str,
    payload: BookingStatusUpdate,
    current=Depends(get_current_user),
    db: Optional[Database] = Depends(get_db),
    writer=Depends(get_writer),
):
    ensure_db(db)
    booking = find_or_404(db, "bookings", booking_id, "Booking")
    _check_access(booking, current)
    if current["user_type"] == "client" and payload.status != "cancelled":
        raise HTTPException(status_code=403, detail="Clients can only cancel their bookings")
    if booking["status"] in TERMINAL_BOOKING_STATUSES:
        raise HTTPException(status_code=400, detail=f"Cannot update a {booking['status']} booking")

    changes: Dict[str, Any] = {
        "status": payload.status,
        "timeline": booking.get("timeline", []) + [_timeline_entry(payload.status, current, payload.notes)],
    }
    if payload.status == "cancelled":
        changes["cancellation"] = {
            "reason": payload.notes or "Cancelled",
            "cancelled_by": current["id"],
            "cancelled_at": utcnow(),
        }
    updated = require_written(writer.update_booking(booking_id, changes))

    if payload.status == "completed":
        _record_completion(db, writer, updated)

    return {"status": "success", "data": {"booking": serialize(updated)}}


@router.delete("/{booking_id}")
def cancel_booking(
    booking_id: str,
    payload: BookingCancelRequest = Body(...),
    current=Depends(get_current_user),
    db: Optional[Database] = Depends(get_db),
    writer=Depends(get_writer),
):
    ensure_db(db)
    booking = find_or_404(db, "bookings", booking_id, "Booking")
    _check_access(booking, current)
    if booking["status"] in TERMINAL_BOOKING_STATUSES:
        raise HTTPException(status_code=400, detail=f"Cannot cancel a {booking['status']} booking")

    updated = require_written(writer.update_booking(booking_id, {
        "status": "cancelled",
        "cancellation": {"reason": payload.reason, "cancelled_by": current["id"], "cancelled_at": utcnow()},
        "timeline": booking.get("timeline", []) + [_timeline_entry("cancelled", current, payload.reason)],
    }))
    return {"status": "success", "message": "Booking cancelled successfully", "data": {"booking": serialize(updated)}}
