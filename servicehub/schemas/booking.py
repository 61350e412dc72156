from pydantic import BaseModel, Field, field_validator, model_validator
from enum import Enum
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union
import logging

from ..utils import as_date, date_to_datetime

logger = logging.getLogger(__name__)

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class ServiceType(str, Enum):
    date_based = "date_based"
    time_based = "time_based"


class BookingStatus(str, Enum):
    pending   = "pending"
    confirmed = "confirmed"
    cancelled = "cancelled"
    completed = "completed"


ACTIVE_STATUSES = frozenset({BookingStatus.pending, BookingStatus.confirmed})
TERMINAL_STATUSES = frozenset({BookingStatus.cancelled, BookingStatus.completed})


class CancellationPolicy(str, Enum):
    hours_24 = "24_hours"
    hours_48 = "48_hours"
    hours_72 = "72_hours"
    flexible = "flexible"
    strict   = "strict"

    @classmethod
    def parse(cls, value: Any) -> "CancellationPolicy":
        """Valores desconocidos caen en la política por defecto (24 horas)."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            logger.warning(f"Política de cancelación desconocida {value!r}; se aplica 24_hours")
            return cls.hours_24


class CancelledBy(str, Enum):
    customer = "customer"
    provider = "provider"
    admin    = "admin"


class CancellationRequestStatus(str, Enum):
    pending  = "pending"
    approved = "approved"
    rejected = "rejected"


class TimeSlot(BaseModel):
    date: date
    start_time: str = Field(..., pattern=HHMM_PATTERN, description="HH:mm, 24h")
    end_time: str = Field(..., pattern=HHMM_PATTERN, description="HH:mm, 24h")

    @field_validator("date", mode="before")
    @classmethod
    def _coerce_date(cls, v):
        return as_date(v)

    @model_validator(mode="after")
    def _check_order(self):
        # "HH:mm" con ceros a la izquierda ordena igual como texto que como hora
        if self.end_time <= self.start_time:
            raise ValueError("end_time debe ser posterior a start_time")
        return self


class CancellationRequest(BaseModel):
    status: CancellationRequestStatus = CancellationRequestStatus.pending
    requested_at: datetime
    requested_by: str
    reason: str = ""
    processed_at: Optional[datetime] = None
    processed_by: Optional[str] = None
    admin_notes: Optional[str] = None


class Booking(BaseModel):
    id: Optional[str] = None
    service_id: str
    user_id: str
    provider_id: str

    # Copia del servicio en el momento de reservar (histórico, nunca se actualiza)
    service_name: str
    service_location: str = ""
    service_images: List[str] = Field(default_factory=list)

    service_type: ServiceType = ServiceType.date_based
    check_in_date: Optional[date] = None
    check_out_date: Optional[date] = None
    time_slot: Optional[TimeSlot] = None

    guests: int = Field(1, ge=1)
    total_amount: float = Field(0, ge=0)
    special_requests: str = ""
    status: BookingStatus = BookingStatus.confirmed
    cancellation_policy: CancellationPolicy = CancellationPolicy.hours_24

    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[CancelledBy] = None
    cancellation_reason: Optional[str] = None
    refund_amount: Optional[float] = None
    refund_percentage: Optional[int] = None
    cancellation_request: Optional[CancellationRequest] = None

    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("check_in_date", "check_out_date", mode="before")
    @classmethod
    def _coerce_dates(cls, v):
        return as_date(v)

    @field_validator("cancellation_policy", mode="before")
    @classmethod
    def _coerce_policy(cls, v):
        return CancellationPolicy.parse(v)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "Booking":
        d = dict(doc)
        if "_id" in d:
            d["id"] = str(d.pop("_id"))
        return cls.model_validate(d)

    def to_doc(self) -> Dict[str, Any]:
        """Documento listo para Mongo (fechas como datetime, enums como str)."""
        d = self.model_dump(mode="python", exclude={"id"})
        d["check_in_date"] = date_to_datetime(self.check_in_date)
        d["check_out_date"] = date_to_datetime(self.check_out_date)
        if self.time_slot is not None:
            d["time_slot"]["date"] = date_to_datetime(self.time_slot.date)
        for key, value in list(d.items()):
            if isinstance(value, Enum):
                d[key] = value.value
        if d.get("cancellation_request"):
            d["cancellation_request"]["status"] = self.cancellation_request.status.value
        return d


# ---------- Entrada / salida HTTP ----------

class BookingCreate(BaseModel):
    # service_type y time_slot se validan en core.lifecycle.validate_booking_request (400)
    service_id: str
    service_type: Union[ServiceType, str] = ServiceType.date_based
    check_in_date: Optional[date] = None
    check_out_date: Optional[date] = None
    time_slot: Optional[Union[TimeSlot, Dict[str, Any]]] = None
    guests: int = 1
    special_requests: str = Field("", max_length=1000)


class CancelBody(BaseModel):
    reason: str = Field("", max_length=500)


class CancellationRequestCreate(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class CancellationDecision(BaseModel):
    approve: bool
    admin_notes: Optional[str] = Field(None, max_length=500)


class AvailabilityQuery(BaseModel):
    check_in_date: date
    check_out_date: date


class AvailabilityOut(BaseModel):
    available: bool
    conflicting_bookings: int


class CalendarEntry(BaseModel):
    id: str
    service_type: ServiceType
    check_in: Optional[date] = None
    check_out: Optional[date] = None
    time_slot: Optional[TimeSlot] = None
    customer_name: str = "Unknown"
    customer_email: str = ""
    guests: int
    status: BookingStatus
    total_amount: float


class CalendarOut(BaseModel):
    year: int
    month: int
    bookings: List[CalendarEntry] = Field(default_factory=list)
    booked_dates: List[str] = Field(default_factory=list)
    available_dates: List[str] = Field(default_factory=list)


class ProviderCalendarEntry(CalendarEntry):
    service_id: str
    service_name: str = ""


class ProviderCalendarOut(BaseModel):
    start_date: date
    end_date: date
    bookings: List[ProviderCalendarEntry] = Field(default_factory=list)
