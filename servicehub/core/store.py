"""
Acceso a MongoDB para el núcleo de reservas.

Es el único sitio que lanza consultas. Cualquier PyMongoError sale como
StoreError, sin reintentos.
"""
import asyncio
import logging
from contextlib import asynccontextmanager, contextmanager
from datetime import date, timedelta
from typing import Any, AsyncIterator, Dict, Iterable, Iterator, List, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from ..errors import ConflictError, LockTimeoutError, StoreError
from ..schemas.booking import ACTIVE_STATUSES, Booking, BookingStatus, CancellationRequestStatus, ServiceType
from ..utils import date_to_datetime, to_id, utcnow
from .locks import KeyedLock

logger = logging.getLogger(__name__)

LOCK_RETRY_SECONDS = 0.05


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except PyMongoError as exc:
        logger.error(f"Error de MongoDB en {operation}: {exc}", exc_info=True)
        raise StoreError(f"Error de persistencia en {operation}") from exc


def _oid(value: str) -> Optional[ObjectId]:
    return ObjectId(value) if ObjectId.is_valid(value) else None


def _active_values() -> List[str]:
    return [s.value for s in ACTIVE_STATUSES]


def _window_filter(start: date, end: date) -> Dict[str, Any]:
    # Reservas que pueden tocar [start, end]; el solape exacto lo decide core.overlap
    start_dt, end_dt = date_to_datetime(start), date_to_datetime(end)
    return {"$or": [
        {
            "service_type": ServiceType.date_based.value,
            "check_in_date": {"$lte": end_dt},
            "check_out_date": {"$gte": start_dt},
        },
        {
            "service_type": ServiceType.time_based.value,
            "time_slot.date": {"$gte": start_dt, "$lte": end_dt},
        },
    ]}


class BookingStore:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        lock_ttl_seconds: int = 30,
        lock_wait_seconds: float = 10,
    ):
        self._db = db
        self._lock_ttl = lock_ttl_seconds
        self._lock_wait = lock_wait_seconds
        self._local_locks = KeyedLock()

    # ---------- Reservas ----------

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        oid = _oid(booking_id)
        if oid is None:
            return None
        with _translate_errors("get_booking"):
            doc = await self._db.bookings.find_one({"_id": oid})
        return Booking.from_doc(doc) if doc else None

    async def find_bookings_for_user(self, user_id: str, limit: int = 500) -> List[Booking]:
        with _translate_errors("find_bookings_for_user"):
            docs = await self._db.bookings.find({
                "$or": [{"user_id": user_id}, {"provider_id": user_id}]
            }).sort("created_at", -1).to_list(limit)
        return [Booking.from_doc(d) for d in docs]

    async def find_active_bookings(
        self,
        service_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[Booking]:
        """Reservas activas (pending/confirmed) del servicio, opcionalmente sólo las de [start, end]."""
        query: Dict[str, Any] = {"service_id": service_id, "status": {"$in": _active_values()}}
        if start is not None and end is not None:
            query.update(_window_filter(start, end))
        with _translate_errors("find_active_bookings"):
            docs = await self._db.bookings.find(query).to_list(None)
        return [Booking.from_doc(d) for d in docs]

    async def find_active_bookings_for_provider(self, provider_id: str, start: date, end: date) -> List[Booking]:
        """Reservas activas de todos los servicios del proveedor que tocan [start, end]."""
        query: Dict[str, Any] = {"provider_id": provider_id, "status": {"$in": _active_values()}}
        query.update(_window_filter(start, end))
        with _translate_errors("find_active_bookings_for_provider"):
            docs = await self._db.bookings.find(query).to_list(None)
        return [Booking.from_doc(d) for d in docs]

    async def insert_booking(self, booking: Booking) -> Booking:
        now = utcnow()
        booking = booking.model_copy(update={"created_at": now, "updated_at": now})
        with _translate_errors("insert_booking"):
            res = await self._db.bookings.insert_one(booking.to_doc())
        return booking.model_copy(update={"id": str(res.inserted_id)})

    async def transition(
        self,
        booking_id: str,
        expected: Iterable[BookingStatus],
        updates: Dict[str, Any],
        request_pending: Optional[bool] = None,
    ) -> Optional[Booking]:
        """
        Actualiza la reserva sólo si su estado sigue siendo uno de `expected`.
        Con `request_pending` exige además que haya (True) o no haya (False)
        una solicitud de cancelación pendiente. Devuelve None si otro cambio
        llegó antes.
        """
        oid = _oid(booking_id)
        if oid is None:
            return None
        query: Dict[str, Any] = {"_id": oid, "status": {"$in": [s.value for s in expected]}}
        if request_pending is True:
            query["cancellation_request.status"] = CancellationRequestStatus.pending.value
        elif request_pending is False:
            query["cancellation_request.status"] = {"$ne": CancellationRequestStatus.pending.value}
        with _translate_errors("transition"):
            doc = await self._db.bookings.find_one_and_update(
                query,
                {"$set": {**updates, "updated_at": utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
        return Booking.from_doc(doc) if doc else None

    # ---------- Servicios ----------

    async def get_service(self, service_id: str) -> Optional[Dict[str, Any]]:
        oid = _oid(service_id)
        if oid is None:
            return None
        with _translate_errors("get_service"):
            doc = await self._db.services.find_one({"_id": oid})
        return to_id(doc) if doc else None

    async def insert_service(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        with _translate_errors("insert_service"):
            res = await self._db.services.insert_one(dict(doc))
            created = await self._db.services.find_one({"_id": res.inserted_id})
        return to_id(created)

    async def increment_service_bookings(self, service_id: str) -> None:
        oid = _oid(service_id)
        if oid is None:
            return
        with _translate_errors("increment_service_bookings"):
            await self._db.services.update_one({"_id": oid}, {"$inc": {"bookings": 1}})

    # ---------- Usuarios ----------

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        oid = _oid(user_id)
        if oid is None:
            return None
        with _translate_errors("get_user"):
            doc = await self._db.users.find_one({"_id": oid})
        return to_id(doc) if doc else None

    async def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        with _translate_errors("get_user_by_email"):
            doc = await self._db.users.find_one({"email": email})
        return to_id(doc) if doc else None

    async def insert_user(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        with _translate_errors("insert_user"):
            try:
                res = await self._db.users.insert_one(dict(doc))
            except DuplicateKeyError:
                raise ConflictError("Email ya registrado")
            created = await self._db.users.find_one({"_id": res.inserted_id})
        return to_id(created)

    async def get_users(self, user_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        oids = [oid for oid in (_oid(u) for u in set(user_ids)) if oid is not None]
        if not oids:
            return {}
        with _translate_errors("get_users"):
            docs = await self._db.users.find(
                {"_id": {"$in": oids}}, {"full_name": 1, "email": 1}
            ).to_list(None)
        return {str(d["_id"]): to_id(d) for d in docs}

    # ---------- Reseñas ----------

    async def find_review(self, booking_id: str, author_id: str) -> Optional[Dict[str, Any]]:
        with _translate_errors("find_review"):
            doc = await self._db.reviews.find_one({"booking_id": booking_id, "author_id": author_id})
        return to_id(doc) if doc else None

    async def insert_review(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        with _translate_errors("insert_review"):
            try:
                res = await self._db.reviews.insert_one(dict(doc))
            except DuplicateKeyError:
                raise ConflictError("Ya has enviado una reseña para esta reserva")
            created = await self._db.reviews.find_one({"_id": res.inserted_id})
        return to_id(created)

    async def service_rating_stats(self, service_id: str) -> Tuple[float, int]:
        pipeline = [
            {"$match": {"service_id": service_id}},
            {"$group": {"_id": None, "avg": {"$avg": "$rating"}, "count": {"$sum": 1}}},
        ]
        with _translate_errors("service_rating_stats"):
            rows = await self._db.reviews.aggregate(pipeline).to_list(1)
        if not rows:
            return 0.0, 0
        return float(rows[0]["avg"]), int(rows[0]["count"])

    async def set_service_rating(self, service_id: str, rating: float, review_count: int) -> None:
        oid = _oid(service_id)
        if oid is None:
            return
        with _translate_errors("set_service_rating"):
            await self._db.services.update_one(
                {"_id": oid}, {"$set": {"rating": rating, "review_count": review_count}}
            )

    # ---------- Candado por servicio ----------

    @asynccontextmanager
    async def lock(self, service_id: str) -> AsyncIterator[None]:
        """
        Serializa escrituras sobre un servicio: primero entre corrutinas del
        proceso, después entre procesos con un documento-lease en Mongo.
        Ambas esperas comparten el plazo `lock_wait_seconds`.
        """
        deadline = asyncio.get_running_loop().time() + self._lock_wait
        async with self._local_locks.hold(service_id, timeout=self._lock_wait):
            token = await self._acquire_lease(service_id, deadline)
            try:
                yield
            finally:
                await self._release_lease(service_id, token)

    async def _acquire_lease(self, key: str, deadline: float) -> str:
        token = str(ObjectId())
        loop = asyncio.get_running_loop()
        while True:
            now = utcnow()
            with _translate_errors("lock"):
                try:
                    await self._db.booking_locks.insert_one({
                        "_id": key,
                        "token": token,
                        "expires_at": now + timedelta(seconds=self._lock_ttl),
                    })
                    return token
                except DuplicateKeyError:
                    # Lease ajeno; si ya caducó se libera aquí sin esperar al TTL
                    await self._db.booking_locks.delete_one({"_id": key, "expires_at": {"$lt": now}})
            if loop.time() >= deadline:
                logger.warning(f"Timeout esperando el candado del servicio {key}")
                raise LockTimeoutError("El servicio está ocupado, inténtalo de nuevo")
            await asyncio.sleep(LOCK_RETRY_SECONDS)

    async def _release_lease(self, key: str, token: str) -> None:
        with _translate_errors("unlock"):
            await self._db.booking_locks.delete_one({"_id": key, "token": token})
