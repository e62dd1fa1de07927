"""
Provider service lifecycle.

When an administrator approves a provider, the services the provider
described during onboarding (or, failing that, their plain skills) become
bookable ``provider_services`` documents.
"""
import logging
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING
from pymongo.database import Database

from database import create_document
from schemas import SERVICE_CATEGORIES, ProviderService, utcnow
from utils import coerce_id

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_PRICE = 1000


def normalize_category(category: Optional[str]) -> str:
    value = (category or "").strip().lower().replace(" ", "-").replace("_", "-")
    return value if value in SERVICE_CATEGORIES else "other"


class ProviderServiceManager:
    def __init__(self, db: Database, writer=None):
        self.db = db
        self.writer = writer

    def _service_entries(self, provider: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Services to activate, from the first source that has any."""
        profile = provider.get("provider_profile") or {}
        onboarding = provider.get("onboarding_data") or {}

        if profile.get("services"):
            return [dict(s, source="onboarding") for s in profile["services"]]
        if onboarding.get("services"):
            return [dict(s, source="onboarding") for s in onboarding["services"]]
        return [
            {
                "title": f"{skill.strip().title()} Services",
                "description": f"Professional {skill.strip().lower()} services",
                "category": skill,
                "source": "skills",
            }
            for skill in profile.get("skills", [])
            if skill and skill.strip()
        ]

    def activate_provider_services(self, provider: Dict[str, Any]) -> List[Dict[str, Any]]:
        provider_id = str(provider.get("_id") or provider.get("id"))
        email = provider.get("email")
        profile = provider.get("provider_profile") or {}
        availability = profile.get("availability") or {}

        entries = self._service_entries(provider)
        if not entries:
            logger.warning("No onboarding services or skills found for provider: %s", email)
            return []

        created = []
        for entry in entries:
            title = entry["title"].strip()
            category = normalize_category(entry.get("category"))
            if self.db["provider_services"].find_one(
                {"provider_id": provider_id, "title": title, "category": category}
            ):
                logger.info("Service already exists: %s for %s", title, email)
                continue

            doc = ProviderService(
                provider_id=provider_id,
                title=title,
                description=entry.get("description") or f"Professional {title.lower()} services",
                category=category,
                price=entry.get("price") or profile.get("hourly_rate") or DEFAULT_SERVICE_PRICE,
                price_type=entry.get("price_type") or "hourly",
                service_area=profile.get("service_areas", []),
                available_hours=availability.get("hours") or {},
                metadata={"source": entry["source"], "activated_at": utcnow()},
            ).model_dump()

            if self.writer is not None:
                saved = self.writer.create_provider_service(doc)
            else:
                new_id = create_document(self.db, "provider_services", doc)
                saved = self.db["provider_services"].find_one({"_id": coerce_id(new_id)})
            if saved is not None:
                created.append(saved)
                logger.info("Activated service: %s for provider: %s", title, email)

        self._mark_activated(provider_id)
        return created

    def _mark_activated(self, provider_id: str) -> None:
        now = utcnow()
        if self.writer is not None:
            user = self.db["users"].find_one({"_id": coerce_id(provider_id)}) or {}
            onboarding = dict(user.get("onboarding_data") or {})
            onboarding.update({"services_activated": True, "activation_date": now})
            self.writer.update_user(provider_id, {"onboarding_data": onboarding})
        else:
            self.db["users"].update_one(
                {"_id": coerce_id(provider_id)},
                {"$set": {
                    "onboarding_data.services_activated": True,
                    "onboarding_data.activation_date": now,
                    "updated_at": now,
                }},
            )

    def get_provider_services(self, provider_id: str) -> List[Dict[str, Any]]:
        cursor = self.db["provider_services"].find(
            {"provider_id": provider_id, "is_active": True}
        ).sort("created_at", DESCENDING)
        return list(cursor)

    def get_services_for_booking(
        self,
        category: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        limit: int = 20,
    ) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {"is_active": True}
        if category:
            query["category"] = category
        if min_price is not None or max_price is not None:
            query["price"] = {"$gte": min_price or 0, "$lte": max_price if max_price is not None else 999999}

        services = list(
            self.db["provider_services"]
            .find(query)
            .sort([("rating", DESCENDING), ("created_at", DESCENDING)])
            .limit(limit)
        )
        return self.attach_providers(services)

    def attach_providers(self, services: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Add a short ``provider`` summary to each service, in place."""
        provider_ids = {coerce_id(s["provider_id"]) for s in services}
        providers = {
            str(p["_id"]): {
                "id": str(p["_id"]),
                "name": p.get("name"),
                "email": p.get("email"),
                "phone": p.get("phone"),
                "rating": (p.get("provider_profile") or {}).get("rating", 0),
            }
            for p in self.db["users"].find({"_id": {"$in": list(provider_ids)}})
        }
        for service in services:
            service["provider"] = providers.get(service["provider_id"])
        return services

    def deactivate_service(self, service_id: str, provider_id: str) -> Optional[Dict[str, Any]]:
        service = self.db["provider_services"].find_one(
            {"_id": coerce_id(service_id), "provider_id": provider_id}
        )
        if service is None:
            return None
        changes = {"is_active": False, "deactivated_at": utcnow()}
        if self.writer is not None:
            return self.writer.update_provider_service(service_id, changes)
        self.db["provider_services"].update_one({"_id": service["_id"]}, {"$set": changes})
        return self.db["provider_services"].find_one({"_id": service["_id"]})
