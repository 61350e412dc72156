"""
Configuración de pytest para tests

Los tests no necesitan MongoDB: `InMemoryStore` implementa la misma interfaz
asíncrona que servicehub.core.store.BookingStore. Entre lectura y escritura
cede el control al event loop para que las carreras sean observables.
"""
import asyncio
from datetime import date
from typing import Any, Dict, Iterable, Optional

import pytest
from bson import ObjectId
from httpx import ASGITransport, AsyncClient

from servicehub.core.lifecycle import BookingLifecycle
from servicehub.core.locks import KeyedLock
from servicehub.db import get_store
from servicehub.errors import ConflictError
from servicehub.schemas.booking import ACTIVE_STATUSES, Booking, BookingStatus, CancellationRequestStatus
from servicehub.security import create_access_token
from servicehub.utils import utcnow


def _touches(booking: Booking, start: Optional[date], end: Optional[date]) -> bool:
    if start is None or end is None:
        return True
    if booking.time_slot is not None:
        return start <= booking.time_slot.date <= end
    return booking.check_in_date <= end and booking.check_out_date >= start


class InMemoryStore:
    def __init__(self):
        self.bookings: Dict[str, Booking] = {}
        self.services: Dict[str, Dict[str, Any]] = {}
        self.users: Dict[str, Dict[str, Any]] = {}
        self.reviews: Dict[str, Dict[str, Any]] = {}
        self._locks = KeyedLock()

    # ---------- helpers síncronos para preparar datos ----------

    def seed_user(self, full_name: str, email: str, role: str = "customer") -> Dict[str, Any]:
        user = {"id": str(ObjectId()), "full_name": full_name, "email": email, "role": role}
        self.users[user["id"]] = user
        return dict(user)

    def seed_service(self, provider_id: str, **fields) -> Dict[str, Any]:
        service = {
            "id": str(ObjectId()),
            "provider_id": provider_id,
            "title": "Casa rural",
            "location": "Segovia",
            "price": 100.0,
            "price_unit": "night",
            "service_type": "date_based",
            "cancellation_policy": "24_hours",
            "images": ["https://img.example.com/1.jpg"],
            "status": "active",
            "rating": 0,
            "review_count": 0,
            "bookings": 0,
        }
        service.update(fields)
        self.services[service["id"]] = service
        return dict(service)

    def seed_booking(self, **fields) -> Booking:
        booking = Booking(id=str(ObjectId()), **fields)
        self.bookings[booking.id] = booking
        return booking

    # ---------- Reservas ----------

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        return self.bookings.get(booking_id)

    async def find_bookings_for_user(self, user_id: str, limit: int = 500):
        return [b for b in self.bookings.values() if user_id in (b.user_id, b.provider_id)][:limit]

    async def find_active_bookings(self, service_id: str, start: Optional[date] = None, end: Optional[date] = None):
        await asyncio.sleep(0)
        return [
            b for b in self.bookings.values()
            if b.service_id == service_id and b.status in ACTIVE_STATUSES and _touches(b, start, end)
        ]

    async def find_active_bookings_for_provider(self, provider_id: str, start: date, end: date):
        return [
            b for b in self.bookings.values()
            if b.provider_id == provider_id and b.status in ACTIVE_STATUSES and _touches(b, start, end)
        ]

    async def insert_booking(self, booking: Booking) -> Booking:
        await asyncio.sleep(0)
        now = utcnow()
        created = booking.model_copy(update={"id": str(ObjectId()), "created_at": now, "updated_at": now})
        self.bookings[created.id] = created
        return created

    async def transition(self, booking_id: str, expected: Iterable[BookingStatus], updates: Dict[str, Any],
                         request_pending: Optional[bool] = None) -> Optional[Booking]:
        booking = self.bookings.get(booking_id)
        if booking is None or booking.status not in set(expected):
            return None
        has_pending = (
            booking.cancellation_request is not None
            and booking.cancellation_request.status == CancellationRequestStatus.pending
        )
        if request_pending is not None and has_pending != request_pending:
            return None
        data = booking.model_dump()
        data.update(updates)
        data["updated_at"] = utcnow()
        updated = Booking.model_validate(data)
        self.bookings[booking_id] = updated
        return updated

    # ---------- Servicios ----------

    async def get_service(self, service_id: str):
        service = self.services.get(service_id)
        return dict(service) if service else None

    async def insert_service(self, doc: Dict[str, Any]):
        service = dict(doc, id=str(ObjectId()))
        self.services[service["id"]] = service
        return dict(service)

    async def increment_service_bookings(self, service_id: str) -> None:
        if service_id in self.services:
            self.services[service_id]["bookings"] += 1

    # ---------- Usuarios ----------

    async def get_user(self, user_id: str):
        user = self.users.get(user_id)
        return dict(user) if user else None

    async def get_user_by_email(self, email: str):
        for user in self.users.values():
            if user["email"] == email:
                return dict(user)
        return None

    async def insert_user(self, doc: Dict[str, Any]):
        if await self.get_user_by_email(doc["email"]):
            raise ConflictError("Email ya registrado")
        user = dict(doc, id=str(ObjectId()))
        self.users[user["id"]] = user
        return dict(user)

    async def get_users(self, user_ids: Iterable[str]):
        return {uid: dict(self.users[uid]) for uid in set(user_ids) if uid in self.users}

    # ---------- Reseñas ----------

    async def find_review(self, booking_id: str, author_id: str):
        for review in self.reviews.values():
            if review["booking_id"] == booking_id and review["author_id"] == author_id:
                return dict(review)
        return None

    async def insert_review(self, doc: Dict[str, Any]):
        review = dict(doc, id=str(ObjectId()))
        self.reviews[review["id"]] = review
        return dict(review)

    async def service_rating_stats(self, service_id: str):
        ratings = [r["rating"] for r in self.reviews.values() if r["service_id"] == service_id]
        if not ratings:
            return 0.0, 0
        return sum(ratings) / len(ratings), len(ratings)

    async def set_service_rating(self, service_id: str, rating: float, review_count: int) -> None:
        self.services[service_id].update(rating=rating, review_count=review_count)

    # ---------- Candado ----------

    def lock(self, service_id: str):
        return self._locks.hold(service_id)


@pytest.fixture
def store():
    return InMemoryStore()

@pytest.fixture
def lifecycle(store):
    return BookingLifecycle(store)

@pytest.fixture
def customer(store):
    return store.seed_user("Test Customer", "customer@example.com")

@pytest.fixture
def provider(store):
    return store.seed_user("Test Provider", "provider@example.com", role="provider")

@pytest.fixture
def admin(store):
    return store.seed_user("Test Admin", "admin@example.com", role="admin")

@pytest.fixture
def rental_service(store, provider):
    """Alquiler por noches, política flexible"""
    return store.seed_service(provider["id"], cancellation_policy="flexible")

@pytest.fixture
def chef_service(store, provider):
    """Chef a domicilio por horas, política estricta"""
    return store.seed_service(
        provider["id"],
        title="Chef privado",
        price=50.0,
        price_unit="hour",
        service_type="time_based",
        cancellation_policy="strict",
    )

def auth_headers(user: Dict[str, Any]) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user['id'])}"}

@pytest.fixture
async def client(store):
    """Cliente HTTP contra la app con el store en memoria"""
    from servicehub.main import app
    # Deshabilitar rate limiting en tests
    app.state.limiter = None
    app.dependency_overrides[get_store] = lambda: store
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
