import logging
import math
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from pymongo.database import Database

from auth import require_admin
from database import get_db
from dual_write import get_writer
from payouts import (
    PayoutExistsError,
    PayoutStateError,
    cancel_payout,
    create_payout_for_booking,
    mark_ready_payouts,
    payout_settings,
    process_payout,
    retry_payout,
)
from schemas import utcnow
from utils import coerce_id, ensure_db, find_or_404, require_written, serialize, serialize_many

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/payouts", tags=["admin-payouts"], dependencies=[Depends(require_admin)])

PERIODS = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}
SORT_FIELDS = {
    "created_at": "created_at",
    "amount": "amounts.payout_amount",
    "status": "status",
    "scheduled": "timeline.payout_scheduled",
}


class PayoutCreateRequest(BaseModel):
    booking_id: str


class PayoutActionRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class PayoutBulkAction(BaseModel):
    action: Literal["process", "cancel", "retry"]
    payout_ids: List[str] = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=500)


class PayoutSettingsUpdate(BaseModel):
    commission_rate: Optional[float] = Field(None, ge=0, le=100)
    payout_delay_minutes: Optional[int] = Field(None, ge=0)
    min_payout_amount: Optional[float] = Field(None, ge=0)
    max_payout_amount: Optional[float] = Field(None, gt=0)
    auto_processing: Optional[bool] = None


def _raise_payout_http_error(exc: PayoutStateError) -> None:
    if isinstance(exc, PayoutExistsError):
        raise HTTPException(status_code=409, detail=str(exc))
    raise HTTPException(status_code=400, detail=str(exc))


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _summary(rows) -> List[Dict[str, Any]]:
    grouped: Dict[str, Dict[str, Any]] = defaultdict(lambda: {"count": 0, "total_amount": 0, "total_commission": 0})
    for payout in rows:
        amounts = payout.get("amounts") or {}
        entry = grouped[payout.get("status")]
        entry["count"] += 1
        entry["total_amount"] += amounts.get("payout_amount", 0)
        entry["total_commission"] += amounts.get("commission_amount", 0)
    return [{"status": status, **values} for status, values in sorted(grouped.items())]


@router.get("")
def list_payouts(
    status: Optional[str] = None,
    provider: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    min_amount: Optional[float] = Query(None, ge=0),
    max_amount: Optional[float] = Query(None, ge=0),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: Literal["created_at", "amount", "status", "scheduled"] = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    db: Optional[Database] = Depends(get_db),
):
    ensure_db(db)
    filt: Dict[str, Any] = {}
    if status:
        filt["status"] = status
    if provider:
        filt["provider"] = provider
    if date_from or date_to:
        filt["created_at"] = {}
        if date_from:
            filt["created_at"]["$gte"] = _naive_utc(date_from)
        if date_to:
            filt["created_at"]["$lte"] = _naive_utc(date_to)
    if min_amount is not None or max_amount is not None:
        filt["amounts.payout_amount"] = {}
        if min_amount is not None:
            filt["amounts.payout_amount"]["$gte"] = min_amount
        if max_amount is not None:
            filt["amounts.payout_amount"]["$lte"] = max_amount

    skip = (page - 1) * limit
    direction = -1 if sort_order == "desc" else 1
    payouts = list(db["payouts"].find(filt).sort(SORT_FIELDS[sort_by], direction).skip(skip).limit(limit))
    total = db["payouts"].count_documents(filt)

    return {
        "status": "success",
        "results": len(payouts),
        "pagination": {"page": page, "pages": math.ceil(total / limit), "total": total, "limit": limit},
        "data": {
            "payouts": serialize_many(payouts),
            "summary": _summary(db["payouts"].find(filt, {"status": 1, "amounts": 1})),
            "filters": {
                "status": status,
                "provider": provider,
                "date_from": date_from,
                "date_to": date_to,
                "min_amount": min_amount,
                "max_amount": max_amount,
            },
        },
    }


@router.get("/stats")
def payout_stats(
    period: Literal["7d", "30d", "90d", "1y"] = "30d",
    db: Optional[Database] = Depends(get_db),
):
    ensure_db(db)
    since = utcnow() - timedelta(days=PERIODS[period])
    payouts = list(db["payouts"].find({}, {"status": 1, "amounts": 1, "provider": 1, "created_at": 1}))

    amounts = [(p.get("amounts") or {}) for p in payouts]
    total_amount = sum(a.get("payout_amount", 0) for a in amounts)
    overall = {
        "total_payouts": len(payouts),
        "total_payout_amount": total_amount,
        "total_commission_earned": sum(a.get("commission_amount", 0) for a in amounts),
        "avg_payout_amount": round(total_amount / len(payouts), 2) if payouts else 0,
    }

    recent = [p for p in payouts if p.get("created_at") and p["created_at"] >= since]
    daily: Dict[str, Dict[str, Any]] = defaultdict(lambda: {"payouts": 0, "payout_amount": 0, "commission": 0})
    for p in recent:
        day = daily[p["created_at"].date().isoformat()]
        day["payouts"] += 1
        day["payout_amount"] += p["amounts"].get("payout_amount", 0)
        day["commission"] += p["amounts"].get("commission_amount", 0)

    by_provider: Dict[str, Dict[str, Any]] = defaultdict(lambda: {"total_payouts": 0, "total_amount": 0})
    for p in payouts:
        if p.get("status") in ("completed", "processing"):
            entry = by_provider[p["provider"]]
            entry["total_payouts"] += 1
            entry["total_amount"] += p["amounts"].get("payout_amount", 0)
    top = sorted(by_provider.items(), key=lambda item: item[1]["total_amount"], reverse=True)[:10]
    top_providers = []
    for provider_id, values in top:
        user = db["users"].find_one({"_id": coerce_id(provider_id)}, {"name": 1, "email": 1}) or {}
        top_providers.append({
            "provider_id": provider_id,
            "provider_name": user.get("name"),
            "provider_email": user.get("email"),
            **values,
        })

    return {
        "status": "success",
        "data": {
            "overall": overall,
            "by_status": _summary(payouts),
            "recent_period": {
                "period_payouts": len(recent),
                "period_payout_amount": sum(p["amounts"].get("payout_amount", 0) for p in recent),
                "period_commission_earned": sum(p["amounts"].get("commission_amount", 0) for p in recent),
            },
            "daily_breakdown": [{"date": day, **values} for day, values in sorted(daily.items())],
            "top_providers": top_providers,
            "period": period,
        },
    }


@router.put("/settings")
def update_payout_settings(payload: PayoutSettingsUpdate, current=Depends(require_admin)):
    for key, value in payload.model_dump(exclude_none=True).items():
        setattr(payout_settings, key, value)
    payout_settings.updated_by = current["id"]
    payout_settings.updated_at = utcnow()
    logger.info("Admin %s updated payout settings: %s", current["email"], payload.model_dump(exclude_none=True))
    return {"status": "success", "message": "Payout settings updated", "data": {"settings": payout_settings.as_dict()}}


@router.post("/create", status_code=201)
def create_payout(
    payload: PayoutCreateRequest,
    db: Optional[Database] = Depends(get_db),
    writer=Depends(get_writer),
):
    ensure_db(db)
    booking = find_or_404(db, "bookings", payload.booking_id, "Booking")
    try:
        payout = require_written(create_payout_for_booking(db, booking, writer))
    except PayoutStateError as e:
        _raise_payout_http_error(e)
    return {"status": "success", "message": "Payout created", "data": {"payout": serialize(payout)}}


@router.post("/mark-ready")
def mark_ready(db: Optional[Database] = Depends(get_db), writer=Depends(get_writer)):
    ensure_db(db)
    ready = mark_ready_payouts(db, writer)
    return {"status": "success", "results": len(ready), "data": {"payouts": serialize_many(ready)}}


@router.post("/bulk-action")
def bulk_action(
    payload: PayoutBulkAction,
    current=Depends(require_admin),
    db: Optional[Database] = Depends(get_db),
    writer=Depends(get_writer),
):
    ensure_db(db)
    results: Dict[str, List[Dict[str, Any]]] = {"successful": [], "failed": []}
    for payout_id in payload.payout_ids:
        try:
            payout = find_or_404(db, "payouts", payout_id, "Payout")
            if payload.action == "process":
                require_written(process_payout(writer, payout, current, payload.reason, "admin_bulk_process"))
                results["successful"].append({"payout_id": payout_id, "action": "processed"})
            elif payload.action == "cancel":
                require_written(cancel_payout(writer, payout, payload.reason or "Bulk cancellation", current, "admin_bulk_cancel"))
                results["successful"].append({"payout_id": payout_id, "action": "cancelled"})
            else:
                require_written(retry_payout(writer, payout, current, payload.reason, "admin_bulk_retry"))
                results["successful"].append({"payout_id": payout_id, "action": "queued_for_retry"})
        except HTTPException as e:
            results["failed"].append({"payout_id": payout_id, "error": e.detail})
        except PayoutStateError as e:
            results["failed"].append({"payout_id": payout_id, "error": str(e)})

    logger.info(
        "Admin %s bulk %s on %d payouts: %d ok, %d failed",
        current["email"], payload.action, len(payload.payout_ids),
        len(results["successful"]), len(results["failed"]),
    )
    return {
        "status": "success",
        "message": f"Bulk {payload.action} operation completed",
        "data": {"results": results},
    }


@router.get("/{payout_id}")
def get_payout(payout_id: str, db: Optional[Database] = Depends(get_db)):
    ensure_db(db)
    payout = find_or_404(db, "payouts", payout_id, "Payout")
    return {"status": "success", "data": {"payout": serialize(payout)}}


@router.post("/{payout_id}/process")
def process(
    payout_id: str,
    payload: PayoutActionRequest = PayoutActionRequest(),
    current=Depends(require_admin),
    db: Optional[Database] = Depends(get_db),
    writer=Depends(get_writer),
):
    ensure_db(db)
    payout = find_or_404(db, "payouts", payout_id, "Payout")
    try:
        updated = require_written(process_payout(writer, payout, current, payload.reason))
    except PayoutStateError as e:
        _raise_payout_http_error(e)
    return {"status": "success", "message": "Payout processed manually", "data": {"payout": serialize(updated)}}


@router.post("/{payout_id}/cancel")
def cancel(
    payout_id: str,
    payload: PayoutActionRequest,
    current=Depends(require_admin),
    db: Optional[Database] = Depends(get_db),
    writer=Depends(get_writer),
):
    ensure_db(db)
    payout = find_or_404(db, "payouts", payout_id, "Payout")
    try:
        updated = require_written(cancel_payout(writer, payout, payload.reason, current))
    except PayoutStateError as e:
        _raise_payout_http_error(e)
    return {"status": "success", "message": "Payout cancelled successfully", "data": {"payout": serialize(updated)}}


@router.post("/{payout_id}/retry")
def retry(
    payout_id: str,
    payload: PayoutActionRequest = PayoutActionRequest(),
    current=Depends(require_admin),
    db: Optional[Database] = Depends(get_db),
    writer=Depends(get_writer),
):
    ensure_db(db)
    payout = find_or_404(db, "payouts", payout_id, "Payout")
    try:
        updated = require_written(retry_payout(writer, payout, current, payload.reason))
    except PayoutStateError as e:
        _raise_payout_http_error(e)
    return {"status": "success", "message": "Payout queued for retry", "data": {"payout": serialize(updated)}}
