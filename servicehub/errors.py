"""
Errores de dominio de reservas y su traducción a respuestas HTTP.

El núcleo (servicehub.core) nunca lanza HTTPException: lanza estas
excepciones y la app las convierte en {"detail": ...} con el status adecuado.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class BookingError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    """Fechas ausentes o inválidas, guests < 1, tipo de servicio desconocido."""
    status_code = 400


class NotFoundError(BookingError):
    status_code = 404


class PermissionDeniedError(BookingError):
    status_code = 403


class ConflictError(BookingError):
    """Ya existe una reserva activa que se solapa con la solicitada."""
    status_code = 409


class InvalidStateError(BookingError):
    """Transición pedida sobre una reserva en estado terminal."""
    status_code = 409


class StoreError(BookingError):
    """Fallo de persistencia. Se propaga tal cual, sin reintentos."""
    status_code = 500


class LockTimeoutError(StoreError):
    status_code = 503


async def _booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    if isinstance(exc, StoreError):
        logger.error(f"Error de persistencia en {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingError, _booking_error_handler)
