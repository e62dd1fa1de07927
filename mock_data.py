"""
In-memory demo data served when MongoDB is unreachable.

Only the read paths the public site and the admin catalog screens need are
covered; nothing here is persisted and every process starts from the same
dataset.
"""
import copy
import logging
import re
import time
from datetime import datetime
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple

from schemas import generate_booking_number, utcnow

logger = logging.getLogger(__name__)

DEMO_ADMIN_TOKEN = "demo-admin-token"
DEMO_CLIENT_TOKEN = "demo-client-token"
DEMO_PROVIDER_TOKEN = "demo-provider-token"

_SERVICES = [
    {
        "_id": "64a1b2c3d4e5f6789012345a",
        "name": "House Cleaning",
        "description": "Professional house cleaning service for homes and apartments",
        "category": "cleaning",
        "base_price": 2000,
        "currency": "KES",
        "is_active": True,
        "is_popular": True,
        "rating": {"average": 4.5, "count": 125},
        "booking_count": 140,
        "duration": {"estimated": 2, "unit": "hours"},
        "tags": ["home", "deep-clean"],
        "created_at": datetime(2024, 1, 15),
        "updated_at": datetime(2024, 1, 15),
    },
    {
        "_id": "64a1b2c3d4e5f6789012345b",
        "name": "Plumbing Repair",
        "description": "Expert plumbing services for residential and commercial properties",
        "category": "plumbing",
        "base_price": 1500,
        "currency": "KES",
        "is_active": True,
        "is_popular": True,
        "rating": {"average": 4.8, "count": 89},
        "booking_count": 97,
        "duration": {"estimated": 1.5, "unit": "hours"},
        "tags": ["leaks", "emergency"],
        "created_at": datetime(2024, 1, 10),
        "updated_at": datetime(2024, 1, 10),
    },
    {
        "_id": "64a1b2c3d4e5f6789012345c",
        "name": "Electrical Installation",
        "description": "Safe and reliable electrical installation and repair services",
        "category": "electrical",
        "base_price": 3000,
        "currency": "KES",
        "is_active": True,
        "is_popular": False,
        "rating": {"average": 4.7, "count": 56},
        "booking_count": 8,
        "duration": {"estimated": 3, "unit": "hours"},
        "tags": ["wiring"],
        "created_at": datetime(2024, 1, 8),
        "updated_at": datetime(2024, 1, 8),
    },
    {
        "_id": "64a1b2c3d4e5f6789012345d",
        "name": "Garden Maintenance",
        "description": "Complete garden care including lawn mowing, pruning, and landscaping",
        "category": "gardening",
        "base_price": 2500,
        "currency": "KES",
        "is_active": True,
        "is_popular": False,
        "rating": {"average": 4.3, "count": 78},
        "booking_count": 81,
        "duration": {"estimated": 4, "unit": "hours"},
        "tags": ["lawn", "landscaping"],
        "created_at": datetime(2024, 1, 5),
        "updated_at": datetime(2024, 1, 5),
    },
    {
        "_id": "64a1b2c3d4e5f6789012345e",
        "name": "HVAC Service",
        "description": "Heating, ventilation, and air conditioning installation and repair",
        "category": "hvac",
        "base_price": 4000,
        "currency": "KES",
        "is_active": True,
        "is_popular": False,
        "rating": {"average": 4.6, "count": 34},
        "booking_count": 6,
        "duration": {"estimated": 2.5, "unit": "hours"},
        "tags": ["air-conditioning"],
        "created_at": datetime(2024, 1, 3),
        "updated_at": datetime(2024, 1, 3),
    },
]

_USERS = [
    {
        "_id": "64a1b2c3d4e5f6789012abc1",
        "name": "John Doe",
        "email": "john@example.com",
        "user_type": "client",
        "is_verified": True,
        "is_active": True,
        "phone": "+254712345678",
        "tokens": [DEMO_CLIENT_TOKEN],
        "created_at": datetime(2024, 1, 1),
    },
    {
        "_id": "64a1b2c3d4e5f6789012abc2",
        "name": "Admin User",
        "email": "admin@solutil.com",
        "user_type": "admin",
        "is_verified": True,
        "is_active": True,
        "phone": "+254700000000",
        "tokens": [DEMO_ADMIN_TOKEN],
        "created_at": datetime(2024, 1, 1),
    },
    {
        "_id": "64a1b2c3d4e5f6789012abc3",
        "name": "Grace Wanjiru",
        "email": "grace@example.com",
        "user_type": "provider",
        "provider_status": "approved",
        "is_verified": True,
        "is_active": True,
        "phone": "+254711111111",
        "provider_profile": {"skills": ["cleaning"], "hourly_rate": 1200},
        "tokens": [DEMO_PROVIDER_TOKEN],
        "created_at": datetime(2024, 1, 2),
    },
]

_BOOKINGS = [
    {
        "_id": "64a1b2c3d4e5f6789012def1",
        "booking_number": "SOL-000001001",
        "client": "64a1b2c3d4e5f6789012abc1",
        "provider": "64a1b2c3d4e5f6789012abc3",
        "service": "64a1b2c3d4e5f6789012345a",
        "status": "confirmed",
        "scheduled_date": datetime(2024, 9, 30, 10, 0),
        "pricing": {"base_price": 2000, "total_amount": 2000, "currency": "KES"},
        "created_at": datetime(2024, 9, 25),
    }
]


def _matches_regex(value: Any, condition: Dict[str, Any]) -> bool:
    flags = re.IGNORECASE if "i" in condition.get("$options", "") else 0
    pattern = re.compile(condition["$regex"], flags)
    values = value if isinstance(value, list) else [value]
    return any(isinstance(v, str) and pattern.search(v) for v in values)


class MockDataService:
    def __init__(self):
        self._lock = Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self.services: List[Dict[str, Any]] = copy.deepcopy(_SERVICES)
            self.users: List[Dict[str, Any]] = copy.deepcopy(_USERS)
            self.bookings: List[Dict[str, Any]] = copy.deepcopy(_BOOKINGS)

    @staticmethod
    def is_fallback_mode(db) -> bool:
        return db is None

    # Services

    def find_services(
        self,
        filters: Optional[Dict[str, Any]] = None,
        skip: int = 0,
        limit: Optional[int] = None,
        sort: bool = True,
    ) -> Tuple[List[Dict[str, Any]], int]:
        filters = filters or {}
        services = list(self.services)

        if "is_active" in filters:
            services = [s for s in services if s.get("is_active") == filters["is_active"]]
        if filters.get("category"):
            category = filters["category"].lower()
            services = [s for s in services if s.get("category", "").lower() == category]
        price = filters.get("base_price")
        if price:
            if "$gte" in price:
                services = [s for s in services if s.get("base_price", 0) >= price["$gte"]]
            if "$lte" in price:
                services = [s for s in services if s.get("base_price", 0) <= price["$lte"]]
        if filters.get("$or"):
            services = [
                s for s in services
                if any(
                    _matches_regex(s.get(field), condition)
                    for clause in filters["$or"]
                    for field, condition in clause.items()
                )
            ]

        if sort:
            services.sort(
                key=lambda s: (s.get("is_popular", False), s.get("rating", {}).get("average", 0)),
                reverse=True,
            )

        total = len(services)
        end = skip + limit if limit else None
        return services[skip:end], total

    def find_service_by_id(self, service_id: str) -> Optional[Dict[str, Any]]:
        return next((s for s in self.services if s["_id"] == service_id), None)

    def create_service(self, service_data: Dict[str, Any]) -> Dict[str, Any]:
        now = utcnow()
        new_service = {
            "_id": f"64a1b2c3d4e5f{int(time.time() * 1000)}",
            **service_data,
            "is_active": True,
            "rating": {"average": 0, "count": 0},
            "booking_count": 0,
            "is_popular": False,
            "created_at": now,
            "updated_at": now,
        }
        with self._lock:
            self.services.append(new_service)
        logger.info("Mock mode: created service %s", new_service["name"])
        return new_service

    def update_service(self, service_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        service = self.find_service_by_id(service_id)
        if service is not None:
            service.update(changes)
            service["updated_at"] = utcnow()
        return service

    def toggle_service(self, service_id: str) -> Optional[Dict[str, Any]]:
        service = self.find_service_by_id(service_id)
        if service is not None:
            return self.update_service(service_id, {"is_active": not service.get("is_active", True)})
        return None

    def delete_service(self, service_id: str) -> bool:
        with self._lock:
            before = len(self.services)
            self.services = [s for s in self.services if s["_id"] != service_id]
            return len(self.services) < before

    # Users

    def find_user_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        return next((u for u in self.users if u["_id"] == user_id), None)

    def find_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return next((u for u in self.users if u["email"] == email.lower()), None)

    def find_user_by_token(self, token: str) -> Optional[Dict[str, Any]]:
        return next((u for u in self.users if token in u.get("tokens", [])), None)

    # Bookings

    def find_bookings(self, filters: Optional[Dict[str, Any]] = None) -> Tuple[List[Dict[str, Any]], int]:
        filters = filters or {}
        bookings = [
            b for b in self.bookings
            if all(b.get(key) == value for key, value in filters.items())
        ]
        return bookings, len(bookings)

    def create_booking(self, booking_data: Dict[str, Any]) -> Dict[str, Any]:
        new_booking = {
            "_id": f"64a1b2c3d4e5b{int(time.time() * 1000)}",
            "booking_number": generate_booking_number(),
            **booking_data,
            "status": "pending",
            "created_at": utcnow(),
        }
        with self._lock:
            self.bookings.append(new_booking)
        return new_booking


mock_data = MockDataService()
