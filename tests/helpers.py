import uuid
from datetime import timedelta

from schemas import utcnow


def service_payload(**overrides):
    data = {
        "name": "Pipe Repair",
        "description": "Fixing leaking pipes and taps",
        "category": "plumbing",
        "base_price": 2000,
        "duration": {"estimated": 2, "unit": "hours"},
        "tags": ["leaks"],
    }
    data.update(overrides)
    return data


def booking_payload(service_id, provider_id, **overrides):
    data = {
        "service": service_id,
        "provider": provider_id,
        "scheduled_date": "2030-05-01T09:00:00",
        "scheduled_time": {"start": "09:00", "end": "11:00"},
        "location": {
            "address": "12 Ngong Road, Nairobi",
            "city": "Nairobi",
            "coordinates": {"lat": -1.2921, "lng": 36.8219},
        },
        "payment_method": "mpesa",
    }
    data.update(overrides)
    return data


def completed_booking(db, service_id, client_id, provider_id, completed_at=None, total_amount=2000, **overrides):
    """Insert a booking that finished at ``completed_at`` and return its id."""
    completed_at = completed_at or utcnow()
    doc = {
        "booking_number": f"SOL-{uuid.uuid4().hex[:9]}",
        "client": client_id,
        "provider": provider_id,
        "service": service_id,
        "service_type": "Service",
        "status": "completed",
        "scheduled_date": completed_at - timedelta(hours=3),
        "scheduled_time": {"start": "09:00", "end": "11:00"},
        "location": {
            "address": "12 Ngong Road, Nairobi",
            "coordinates": {"lat": -1.2921, "lng": 36.8219},
        },
        "pricing": {"base_price": total_amount, "total_amount": total_amount, "currency": "KES"},
        "payment": {"method": "mpesa", "status": "completed"},
        "timeline": [
            {"status": "pending", "timestamp": completed_at - timedelta(days=1)},
            {"status": "completed", "timestamp": completed_at},
        ],
        "created_at": completed_at - timedelta(days=1),
    }
    doc.update(overrides)
    return str(db["bookings"].insert_one(doc).inserted_id)
