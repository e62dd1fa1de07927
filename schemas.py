"""
Database Schemas for Solutil Connect

Each Pydantic model represents a MongoDB collection (the collection name is
given in the class docstring and in ``COLLECTION_MODELS``).  Validation rules
and computed fields live on the models so that every write path, Mongo or
Firestore, re-derives them the same way.

References between documents are stored as string ids.
"""
import random
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator


ServiceCategory = Literal[
    "plumbing",
    "electrical",
    "cleaning",
    "carpentry",
    "painting",
    "gardening",
    "appliance-repair",
    "hvac",
    "roofing",
    "other",
]
SERVICE_CATEGORIES = get_args(ServiceCategory)

UserType = Literal["client", "provider", "admin"]
ProviderStatus = Literal["pending", "under_review", "approved", "rejected", "suspended"]

BookingStatus = Literal["pending", "confirmed", "in-progress", "completed", "cancelled", "disputed"]
ACTIVE_BOOKING_STATUSES = ("pending", "confirmed", "in-progress")
TERMINAL_BOOKING_STATUSES = ("completed", "cancelled")

PayoutStatus = Literal[
    "awaiting_payment",  # client has not paid yet
    "pending",           # waiting out the payout delay
    "ready",
    "processing",
    "completed",
    "failed",
    "cancelled",
]
PaymentMethod = Literal["card", "mpesa", "cash", "bank-transfer"]
PaymentStatus = Literal["pending", "processing", "completed", "failed", "refunded"]

POPULAR_MIN_RATING = 4.5
POPULAR_MIN_BOOKINGS = 10

TIME_PATTERN = r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$"


def utcnow() -> datetime:
    """Naive UTC timestamp, the form pymongo hands back from the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_booking_number() -> str:
    timestamp = str(int(time.time() * 1000))
    suffix = str(random.randint(0, 999)).zfill(3)
    return f"SOL-{timestamp[-6:]}{suffix}"


class Document(BaseModel):
    """Fields shared by every stored document."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ---------------------------
# Users & providers
# ---------------------------

class Coordinates(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: str = "Kenya"
    coordinates: Optional[Coordinates] = None


class OnboardingService(BaseModel):
    """A service a provider described while onboarding."""
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    sub_category: Optional[str] = None
    price: Optional[float] = None
    price_type: Optional[Literal["fixed", "hourly", "quote"]] = None


class AvailabilityHours(BaseModel):
    start: str = Field("08:00", pattern=TIME_PATTERN)
    end: str = Field("18:00", pattern=TIME_PATTERN)


class ProviderAvailability(BaseModel):
    days: List[str] = []
    hours: Optional[AvailabilityHours] = None


class PayoutDetails(BaseModel):
    payout_method: Literal["bank", "mpesa"] = "bank"
    recipient_code: Optional[str] = None
    bank_code: Optional[str] = None
    account_number: Optional[str] = None
    account_name: Optional[str] = None
    bank_name: Optional[str] = None
    mpesa_number: Optional[str] = None


class ProviderProfile(BaseModel):
    experience: Optional[str] = None
    skills: List[str] = []
    hourly_rate: Optional[float] = Field(None, ge=0)
    availability: Optional[ProviderAvailability] = None
    service_areas: List[str] = []
    bio: Optional[str] = None
    services: List[OnboardingService] = []
    completed_jobs: int = 0
    rating: float = 0
    review_count: int = 0
    total_earnings: float = 0
    payout_details: Optional[PayoutDetails] = None


class OnboardingData(BaseModel):
    services: List[OnboardingService] = []
    services_activated: bool = False
    activation_date: Optional[datetime] = None


class User(Document):
    """
    Platform accounts: clients, providers and administrators.
    Collection: "users"
    """
    name: str = Field(..., max_length=50, description="Full name")
    email: EmailStr = Field(..., description="Unique email address")
    user_type: UserType = "client"
    phone: Optional[str] = Field(None, pattern=r"^\+?[\d\s\-()]+$")
    address: Optional[Address] = None
    avatar_url: Optional[str] = None
    is_verified: bool = False
    is_active: bool = True
    provider_status: Optional[ProviderStatus] = None
    provider_profile: Optional[ProviderProfile] = None
    onboarding_data: Optional[OnboardingData] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    tokens: List[str] = Field([], description="Opaque bearer tokens; never serialized")

    @field_validator("email")
    @classmethod
    def _lowercase_email(cls, value: str) -> str:
        return value.lower()

    @model_validator(mode="after")
    def _default_provider_status(self) -> "User":
        if self.user_type == "provider" and self.provider_status is None:
            self.provider_status = "pending"
        return self


class ProviderLocation(BaseModel):
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    coordinates: Optional[Coordinates] = None


class Rating(BaseModel):
    average: float = Field(0, ge=0, le=5)
    count: int = Field(0, ge=0)


class Provider(Document):
    """
    Business profile attached to a provider account.
    Collection: "providers"
    """
    business_name: str = Field(..., max_length=100)
    user: str
    services: List[str] = []
    rating: Rating = Field(default_factory=Rating)
    location: Optional[ProviderLocation] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    is_active: bool = True
    verified: bool = False


# ---------------------------
# Catalog
# ---------------------------

class ServiceDuration(BaseModel):
    estimated: float = Field(..., ge=1, description="Estimated duration in `unit`")
    unit: Literal["minutes", "hours", "days"] = "hours"


class ServiceImage(BaseModel):
    public_id: Optional[str] = None
    url: str


class ServiceRequirements(BaseModel):
    tools: List[str] = []
    materials: List[str] = []
    skill_level: Literal["beginner", "intermediate", "expert"] = "intermediate"


class Service(Document):
    """
    Catalog entry curated by administrators.
    Collection: "services"
    """
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
    is_active: bool = True
    requirements: Optional[ServiceRequirements] = None
    rating: Rating = Field(default_factory=Rating)
    booking_count: int = Field(0, ge=0)
    is_popular: bool = False
    created_by: Optional[str] = None

    @model_validator(mode="after")
    def _update_popularity(self) -> "Service":
        # Derived on every save; an incoming value is never trusted.
        self.is_popular = (
            self.rating.average >= POPULAR_MIN_RATING and self.booking_count >= POPULAR_MIN_BOOKINGS
        )
        return self


class ProviderServiceMetadata(BaseModel):
    source: Literal["onboarding", "skills", "manual"] = "manual"
    activated_at: Optional[datetime] = None


class ProviderService(Document):
    """
    Bookable offering generated from an approved provider's services or skills.
    Collection: "provider_services"
    """
    title: str = Field(..., max_length=100)
    description: str = Field(..., max_length=1000)
    category: ServiceCategory
    price: float = Field(..., ge=0)
    price_type: Literal["fixed", "hourly", "quote"] = "fixed"
    duration: int = Field(60, ge=15, description="Minutes")
    images: List[str] = []
    is_active: bool = True
    service_area: List[str] = []
    available_hours: AvailabilityHours = Field(default_factory=AvailabilityHours)
    tags: List[str] = []
    provider_id: str
    total_bookings: int = 0
    total_revenue: float = 0
    rating: float = 0
    review_count: int = 0
    is_verified: bool = False
    metadata: ProviderServiceMetadata = Field(default_factory=ProviderServiceMetadata)
    deactivated_at: Optional[datetime] = None

    @field_validator("rating")
    @classmethod
    def _clamp_rating(cls, value: float) -> float:
        return min(max(value, 0), 5)


# ---------------------------
# Bookings
# ---------------------------

class ScheduledTime(BaseModel):
    start: str = Field(..., pattern=TIME_PATTERN)
    end: str = Field(..., pattern=TIME_PATTERN)


class BookingLocation(BaseModel):
    address: str = Field(..., min_length=5, max_length=200)
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    coordinates: Coordinates
    instructions: Optional[str] = None


class AdditionalCharge(BaseModel):
    description: str
    amount: float


class Discount(BaseModel):
    amount: float = 0
    reason: Optional[str] = None


class BookingPricing(BaseModel):
    base_price: float = Field(..., ge=0)
    additional_charges: List[AdditionalCharge] = []
    discount: Optional[Discount] = None
    total_amount: float = Field(..., ge=0)
    currency: str = "KES"


class BookingPayment(BaseModel):
    method: PaymentMethod
    status: PaymentStatus = "pending"
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None


class BookingNotes(BaseModel):
    client: Optional[str] = None
    provider: Optional[str] = None
    internal: Optional[str] = None


class TimelineEntry(BaseModel):
    status: BookingStatus
    timestamp: datetime = Field(default_factory=utcnow)
    updated_by: Optional[str] = None
    notes: Optional[str] = None


class Cancellation(BaseModel):
    reason: str
    cancelled_by: Optional[str] = None
    cancelled_at: datetime = Field(default_factory=utcnow)


class Booking(Document):
    """
    A client's booking of a provider for a service.
    Collection: "bookings"
    """
    booking_number: Optional[str] = None
    client: str
    provider: str
    service: str
    service_type: Literal["Service", "ProviderService"] = "Service"
    status: BookingStatus = "pending"
    scheduled_date: datetime
    scheduled_time: ScheduledTime
    location: BookingLocation
    pricing: BookingPricing
    payment: BookingPayment
    notes: BookingNotes = Field(default_factory=BookingNotes)
    timeline: List[TimelineEntry] = []
    cancellation: Optional[Cancellation] = None
    review: Optional[str] = None

    @model_validator(mode="after")
    def _ensure_booking_number(self) -> "Booking":
        if not self.booking_number:
            self.booking_number = generate_booking_number()
        return self


# ---------------------------
# Money
# ---------------------------

class PayoutAmounts(BaseModel):
    total_amount: float = Field(..., ge=0)
    commission_amount: float = Field(..., ge=0)
    payout_amount: float
    commission_rate: float = 30
    currency: str = "KES"


class PayoutTimeline(BaseModel):
    service_completed: datetime
    payout_scheduled: datetime
    payout_processed: Optional[datetime] = None
    payout_completed: Optional[datetime] = None
    payout_failed: Optional[datetime] = None


class PayoutMetadata(BaseModel):
    booking_reference: Optional[str] = None
    service_title: Optional[str] = None
    provider_name: Optional[str] = None
    client_email: Optional[str] = None
    attempt_count: int = 0
    last_attempt: Optional[datetime] = None
    notes: Optional[str] = None


class PayoutActivity(BaseModel):
    type: str
    description: str
    reason: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    admin_id: Optional[str] = None


class Payout(Document):
    """
    Money owed to a provider for one completed booking.
    Collection: "payouts"
    """
    booking: str
    provider: str
    client: str
    amounts: PayoutAmounts
    status: PayoutStatus = "pending"
    timeline: PayoutTimeline
    metadata: PayoutMetadata = Field(default_factory=PayoutMetadata)
    activities: List[PayoutActivity] = []


class Review(Document):
    """
    A client's rating of a completed booking.
    Collection: "reviews"
    """
    booking: str
    service: str
    reviewer: str
    provider: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1, max_length=500)
    is_verified: bool = False
    helpful_votes: int = 0


class EscrowPayment(Document):
    """
    Client money held until the booking is completed.
    Collection: "escrow_payments"
    """
    checkout_request_id: str
    merchant_request_id: str
    mpesa_receipt_number: Optional[str] = None
    amount: float = Field(..., ge=1)
    phone_number: str
    account_reference: str
    transaction_desc: str
    status: Literal["pending", "completed", "failed", "cancelled", "disputed", "released"] = "pending"
    booking_id: Optional[str] = None
    client_id: str
    provider_id: Optional[str] = None
    service_id: Optional[str] = None
    commission_rate: float = Field(0.10, ge=0, le=1)
    commission_amount: Optional[float] = None
    provider_amount: Optional[float] = None
    released_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _derive_amounts(self) -> "EscrowPayment":
        if self.commission_amount is None:
            self.commission_amount = self.amount * self.commission_rate
        if self.provider_amount is None:
            self.provider_amount = self.amount - self.commission_amount
        return self


COLLECTION_MODELS: Dict[str, Any] = {
    "users": User,
    "providers": Provider,
    "services": Service,
    "provider_services": ProviderService,
    "bookings": Booking,
    "payouts": Payout,
    "reviews": Review,
    "escrow_payments": EscrowPayment,
}
