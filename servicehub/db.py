"""
Conexión a MongoDB.

No hay cliente global: `Database` se construye explícitamente, se abre con
`connect()` (crea el cliente y los índices) y se cierra con `close()`. La app
lo hace en su lifespan y deja el handle en `app.state.database` y el
BookingStore construido sobre él en `app.state.store`.
"""
import logging

from fastapi import Depends, Request
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from .config import Settings
from .core.lifecycle import BookingLifecycle
from .core.store import BookingStore

logger = logging.getLogger(__name__)


class Database:
    def __init__(self, settings: Settings):
        self._settings = settings
        self._client: AsyncIOMotorClient | None = None
        self._db: AsyncIOMotorDatabase | None = None

    @property
    def db(self) -> AsyncIOMotorDatabase:
        if self._db is None:
            raise RuntimeError("Database.connect() no se ha llamado")
        return self._db

    async def connect(self) -> AsyncIOMotorDatabase:
        if self._db is not None:
            return self._db
        self._client = AsyncIOMotorClient(self._settings.mongodb_uri)
        self._db = self._client[self._settings.db_name]
        await self.ensure_indexes()
        logger.info(f"Conectado a MongoDB ({self._settings.db_name})")
        return self._db

    async def ensure_indexes(self) -> None:
        db = self.db
        await db.users.create_index("email", unique=True)
        await db.services.create_index([("provider_id", 1)])
        # Consultas de disponibilidad: reservas activas de un servicio
        await db.bookings.create_index([("service_id", 1), ("status", 1), ("check_in_date", 1)])
        await db.bookings.create_index([("service_id", 1), ("status", 1), ("time_slot.date", 1)])
        await db.bookings.create_index([("user_id", 1), ("created_at", -1)])
        await db.bookings.create_index([("provider_id", 1)])
        await db.reviews.create_index([("booking_id", 1), ("author_id", 1)], unique=True)
        await db.reviews.create_index([("service_id", 1)])
        # Los candados caducados los limpia Mongo solo
        await db.booking_locks.create_index("expires_at", expireAfterSeconds=0)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            logger.info("Conexión a MongoDB cerrada")
        self._client = None
        self._db = None


def get_store(request: Request) -> BookingStore:
    """Store de reservas creado en el lifespan de la app."""
    return request.app.state.store


def get_lifecycle(store: BookingStore = Depends(get_store)) -> BookingLifecycle:
    return BookingLifecycle(store)
