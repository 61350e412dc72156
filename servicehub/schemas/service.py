from pydantic import BaseModel, Field
from typing import Optional, Literal, List

from .booking import CancellationPolicy, ServiceType

PriceUnit = Literal["night", "day", "hour", "event", "meal", "service"]

class ServiceCreate(BaseModel):
    title: str = Field(..., min_length=2, max_length=120)
    location: str = Field(..., min_length=1, max_length=200)
    price: float = Field(..., ge=0)
    price_unit: PriceUnit = "night"
    service_type: ServiceType = ServiceType.date_based
    cancellation_policy: CancellationPolicy = CancellationPolicy.hours_24
    images: List[str] = Field(default_factory=list, max_length=20)
    description: Optional[str] = Field(None, max_length=2000)

class ServiceOut(BaseModel):
    id: str
    provider_id: str
    title: str
    location: str
    price: float
    price_unit: PriceUnit = "night"
    service_type: ServiceType = ServiceType.date_based
    cancellation_policy: CancellationPolicy = CancellationPolicy.hours_24
    images: List[str] = []
    description: Optional[str] = None
    status: str = "active"
    rating: float = 0
    review_count: int = 0
    bookings: int = 0
