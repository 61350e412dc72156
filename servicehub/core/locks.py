import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from ..errors import LockTimeoutError


class KeyedLock:
    """
    Un asyncio.Lock por clave (p. ej. service_id).

    Claves distintas no se bloquean entre sí. Se lleva la cuenta de quién
    espera cada candado para soltarlo del registro cuando queda libre.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str, timeout: Optional[float] = None) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout)
            except asyncio.TimeoutError:
                raise LockTimeoutError("El servicio está ocupado, inténtalo de nuevo")
            try:
                yield
            finally:
                lock.release()
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __contains__(self, key: str) -> bool:
        return key in self._locks
