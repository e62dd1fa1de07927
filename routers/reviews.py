import logging
from collections import Counter
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from pymongo.database import Database

from auth import get_current_user
from database import get_db
from dual_write import get_writer
from utils import Pagination, coerce_id, ensure_db, find_or_404, require_written, serialize, serialize_many

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reviews", tags=["reviews"])


class ReviewCreateRequest(BaseModel):
    booking: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1, max_length=500)


def _rating_summary(db: Database, field: str, value: str):
    ratings = [r["rating"] for r in db["reviews"].find({field: value}, {"rating": 1})]
    if not ratings:
        return 0, 0
    return round(sum(ratings) / len(ratings), 1), len(ratings)


def _refresh_ratings(db: Database, writer, booking) -> None:
    average, count = _rating_summary(db, "service", booking["service"])
    if booking.get("service_type") == "ProviderService":
        writer.update_provider_service(booking["service"], {"rating": average, "review_count": count})
    elif db["services"].find_one({"_id": coerce_id(booking["service"])}):
        # Re-validation recomputes is_popular.
        writer.update_service(booking["service"], {"rating": {"average": average, "count": count}})

    provider = db["users"].find_one({"_id": coerce_id(booking["provider"])})
    if provider and provider.get("provider_profile") is not None:
        average, count = _rating_summary(db, "provider", booking["provider"])
        profile = {**provider["provider_profile"], "rating": average, "review_count": count}
        writer.update_user(booking["provider"], {"provider_profile": profile})


@router.post("", status_code=201)
def create_review(
    payload: ReviewCreateRequest,
    current=Depends(get_current_user),
    db: Optional[Database] = Depends(get_db),
    writer=Depends(get_writer),
):
    ensure_db(db)
    booking = find_or_404(db, "bookings", payload.booking, "Booking")
    if booking.get("client") != current["id"]:
        raise HTTPException(status_code=403, detail="You can only review your own bookings")
    if booking.get("status") != "completed":
        raise HTTPException(status_code=400, detail="You can only review completed bookings")
    if db["reviews"].find_one({"booking": payload.booking, "reviewer": current["id"]}):
        raise HTTPException(status_code=409, detail="You have already reviewed this booking")

    review = require_written(writer.create_review({
        "booking": payload.booking,
        "service": booking["service"],
        "reviewer": current["id"],
        "provider": booking["provider"],
        "rating": payload.rating,
        "comment": payload.comment.strip(),
        "is_verified": True,
    }))
    review_id = str(review.get("_id") or review.get("id"))
    writer.update_booking(payload.booking, {"review": review_id})
    _refresh_ratings(db, writer, booking)

    logger.info("Review %s created for booking %s by %s", review_id, payload.booking, current["email"])
    return {"status": "success", "message": "Review created successfully", "data": {"review": serialize(review)}}


@router.get("/service/{service_id}")
def service_reviews(
    service_id: str,
    pagination: Pagination = Depends(),
    db: Optional[Database] = Depends(get_db),
):
    ensure_db(db)
    filt = {"service": service_id}
    cursor = db["reviews"].find(filt).sort("created_at", -1).skip(pagination.skip).limit(pagination.limit)
    reviews = list(cursor)
    total = db["reviews"].count_documents(filt)

    ratings = [r["rating"] for r in db["reviews"].find(filt, {"rating": 1})]
    distribution = Counter(ratings)
    return {
        "status": "success",
        "results": len(reviews),
        "pagination": pagination.envelope(total),
        "data": {
            "reviews": serialize_many(reviews),
            "rating_distribution": {str(star): distribution.get(star, 0) for star in range(1, 6)},
            "average_rating": round(sum(ratings) / len(ratings), 1) if ratings else 0,
        },
    }
