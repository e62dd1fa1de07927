"""
Payout lifecycle.

A payout is created when a booking completes and becomes ``ready`` once the
payout delay has passed.  Administrators then process, cancel or retry it;
each of those actions appends an entry to the payout's ``activities`` list.
Sending money to the provider is handled outside this API, so processing a
payout only records the outcome.  The transfer system marks payouts it could
not deliver as ``failed`` directly in the payouts collection; ``retry_payout``
puts those back to ``ready``.
"""
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from config import settings
from database import get_documents
from schemas import utcnow
from utils import coerce_id

logger = logging.getLogger(__name__)

PROCESSABLE_STATUSES = ("pending", "ready")
FINAL_STATUSES = ("completed", "cancelled")


class PayoutStateError(ValueError):
    """The payout (or booking) is not in a state that allows the action."""


class PayoutExistsError(PayoutStateError):
    pass


@dataclass
class PayoutSettings:
    commission_rate: float = settings.commission_rate
    payout_delay_minutes: int = settings.payout_delay_minutes
    min_payout_amount: float = 100
    max_payout_amount: float = 1_000_000
    auto_processing: bool = True
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


payout_settings = PayoutSettings()


def calculate_amounts(total_amount: float, commission_rate: float = 30) -> Dict[str, float]:
    commission_amount = round(total_amount * commission_rate / 100)
    return {
        "total_amount": total_amount,
        "commission_amount": commission_amount,
        "payout_amount": total_amount - commission_amount,
        "commission_rate": commission_rate,
    }


def _activity(activity_type: str, description: str, reason: Optional[str] = None, admin: Optional[Dict[str, Any]] = None):
    return {
        "type": activity_type,
        "description": description,
        "reason": reason,
        "timestamp": utcnow(),
        "admin_id": admin.get("id") if admin else None,
    }


def _admin_name(admin: Optional[Dict[str, Any]]) -> str:
    return admin.get("name", "admin") if admin else "system"


def _completed_at(booking: Dict[str, Any]) -> datetime:
    for entry in reversed(booking.get("timeline") or []):
        if entry.get("status") == "completed" and entry.get("timestamp"):
            return entry["timestamp"]
    return utcnow()


def create_payout_for_booking(db: Database, booking: Dict[str, Any], writer) -> Dict[str, Any]:
    if booking.get("status") != "completed":
        raise PayoutStateError("Payouts can only be created for completed bookings")

    booking_id = str(booking.get("_id") or booking.get("id"))
    if db["payouts"].find_one({"booking": booking_id}):
        raise PayoutExistsError("A payout already exists for this booking")

    service = db["services"].find_one({"_id": coerce_id(booking["service"])}) or db["provider_services"].find_one(
        {"_id": coerce_id(booking["service"])}
    ) or {}
    provider = db["users"].find_one({"_id": coerce_id(booking["provider"])}) or {}
    client = db["users"].find_one({"_id": coerce_id(booking["client"])}) or {}

    pricing = booking.get("pricing") or {}
    amounts = calculate_amounts(pricing.get("total_amount", 0), payout_settings.commission_rate)
    amounts["currency"] = pricing.get("currency", "KES")
    completed_at = _completed_at(booking)

    payout = {
        "booking": booking_id,
        "provider": str(booking["provider"]),
        "client": str(booking["client"]),
        "amounts": amounts,
        "status": "pending",
        "timeline": {
            "service_completed": completed_at,
            "payout_scheduled": completed_at + timedelta(minutes=payout_settings.payout_delay_minutes),
        },
        "metadata": {
            "booking_reference": booking.get("booking_number"),
            "service_title": service.get("name") or service.get("title"),
            "provider_name": provider.get("name"),
            "client_email": client.get("email"),
        },
        "activities": [_activity("created", f"Payout created for booking {booking.get('booking_number')}")],
    }
    created = writer.create_payout(payout)
    logger.info("Payout created for booking %s (%s)", booking.get("booking_number"), amounts["payout_amount"])
    return created


def mark_ready_payouts(db: Database, writer, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Move pending payouts whose scheduled time has passed to ``ready``."""
    now = now or utcnow()
    due = get_documents(db, "payouts", {"status": "pending", "timeline.payout_scheduled": {"$lte": now}})
    ready = []
    for payout in due:
        activities = list(payout.get("activities") or [])
        activities.append(_activity("ready", "Payout delay elapsed"))
        updated = writer.update_payout(str(payout["_id"]), {"status": "ready", "activities": activities})
        if updated is not None:
            ready.append(updated)
    if ready:
        logger.info("Marked %d payouts as ready", len(ready))
    return ready


def _update(writer, payout: Dict[str, Any], changes: Dict[str, Any], activity: Dict[str, Any]):
    activities = list(payout.get("activities") or [])
    activities.append(activity)
    return writer.update_payout(str(payout["_id"]), {**changes, "activities": activities})


def process_payout(
    writer,
    payout: Dict[str, Any],
    admin: Optional[Dict[str, Any]] = None,
    reason: Optional[str] = None,
    activity_type: str = "admin_manual_process",
):
    if payout.get("status") not in PROCESSABLE_STATUSES:
        raise PayoutStateError("Payout is not in a processable state")

    now = utcnow()
    timeline = {**payout.get("timeline", {}), "payout_processed": now, "payout_completed": now}
    metadata = dict(payout.get("metadata") or {})
    metadata["attempt_count"] = metadata.get("attempt_count", 0) + 1
    metadata["last_attempt"] = now

    updated = _update(
        writer,
        payout,
        {"status": "completed", "timeline": timeline, "metadata": metadata},
        _activity(activity_type, f"Processed by {_admin_name(admin)}", reason or "Manual admin processing", admin),
    )
    logger.info("Payout %s processed by %s", payout["_id"], _admin_name(admin))
    return updated


def cancel_payout(
    writer,
    payout: Dict[str, Any],
    reason: str,
    admin: Optional[Dict[str, Any]] = None,
    activity_type: str = "admin_cancelled",
):
    if not reason:
        raise PayoutStateError("Cancellation reason is required")
    if payout.get("status") in FINAL_STATUSES:
        raise PayoutStateError("Cannot cancel this payout")

    updated = _update(
        writer,
        payout,
        {"status": "cancelled"},
        _activity(activity_type, f"Cancelled by {_admin_name(admin)}", reason, admin),
    )
    logger.info("Payout %s cancelled by %s: %s", payout["_id"], _admin_name(admin), reason)
    return updated


def retry_payout(
    writer,
    payout: Dict[str, Any],
    admin: Optional[Dict[str, Any]] = None,
    reason: Optional[str] = None,
    activity_type: str = "admin_retry",
):
    if payout.get("status") != "failed":
        raise PayoutStateError("Only failed payouts can be retried")

    updated = _update(
        writer,
        payout,
        {"status": "ready"},
        _activity(activity_type, f"Retry initiated by {_admin_name(admin)}", reason or "Admin retry", admin),
    )
    logger.info("Payout %s queued for retry by %s", payout["_id"], _admin_name(admin))
    return updated
