"""
Ciclo de vida de una reserva.

    pending -> confirmed -> {cancelled, completed}
    pending -> {cancelled, completed}

cancelled y completed son terminales. Cada transición se persiste con
`store.transition`, que sólo escribe si el estado de partida sigue siendo el
esperado; así dos cambios simultáneos nunca se pisan.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from ..errors import ConflictError, InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError
from ..schemas.booking import (
    ACTIVE_STATUSES,
    Booking,
    BookingCreate,
    BookingStatus,
    CancellationPolicy,
    CancellationRequest,
    CancellationRequestStatus,
    CancelledBy,
    ServiceType,
    TimeSlot,
)
from ..utils import utcnow
from .queries import count_conflicts
from .refund import RefundCalculation, calculate_refund

logger = logging.getLogger(__name__)


def validate_booking_request(payload: BookingCreate) -> BookingCreate:
    """
    Validación previa a cualquier acceso al store.

    Devuelve la solicitud con service_type como ServiceType y, si es por
    horas, time_slot como TimeSlot.
    """
    try:
        service_type = ServiceType(payload.service_type)
    except ValueError:
        raise ValidationError(f"service_type desconocido: {payload.service_type!r}")

    if payload.guests is None or payload.guests < 1:
        raise ValidationError("guests debe ser al menos 1")

    if service_type == ServiceType.date_based:
        if payload.check_in_date is None or payload.check_out_date is None:
            raise ValidationError("check_in_date y check_out_date son obligatorios")
        if payload.check_out_date < payload.check_in_date:
            raise ValidationError("check_out_date no puede ser anterior a check_in_date")
        return payload.model_copy(update={"service_type": service_type})

    if payload.time_slot is None:
        raise ValidationError("time_slot (date, start_time, end_time) es obligatorio")
    try:
        time_slot = TimeSlot.model_validate(payload.time_slot)
    except PydanticValidationError as exc:
        raise ValidationError(f"time_slot inválido: {exc.errors()[0]['msg']}")
    return payload.model_copy(update={"service_type": service_type, "time_slot": time_slot})


def compute_total_amount(service: Dict[str, Any], payload: BookingCreate) -> float:
    price = float(service.get("price") or 0)
    if payload.service_type == ServiceType.date_based:
        nights = (payload.check_out_date - payload.check_in_date).days
        return round(price * max(nights, 1), 2)
    if service.get("price_unit") == "hour":
        slot = payload.time_slot
        start_h, start_m = map(int, slot.start_time.split(":"))
        end_h, end_m = map(int, slot.end_time.split(":"))
        minutes = (end_h * 60 + end_m) - (start_h * 60 + start_m)
        return round(price * minutes / 60, 2)
    return round(price, 2)


def actor_role(booking: Booking, user: Dict[str, Any]) -> CancelledBy:
    """Quién actúa sobre la reserva: admin, proveedor o cliente."""
    if user.get("role") == "admin":
        return CancelledBy.admin
    if str(user.get("id")) == booking.provider_id:
        return CancelledBy.provider
    if str(user.get("id")) == booking.user_id:
        return CancelledBy.customer
    raise PermissionDeniedError("Sin acceso a esta reserva")


def _request_doc(request: CancellationRequest) -> Dict[str, Any]:
    d = request.model_dump()
    d["status"] = request.status.value
    return d


def _has_pending_request(booking: Booking) -> bool:
    request = booking.cancellation_request
    return request is not None and request.status == CancellationRequestStatus.pending


def _cancel_updates(
    booking: Booking,
    cancelled_by: CancelledBy,
    reason: str,
    now: datetime,
    actor_id: Optional[str] = None,
) -> tuple[Dict[str, Any], RefundCalculation]:
    refund = calculate_refund(booking, now)
    updates = {
        "status": BookingStatus.cancelled.value,
        "cancelled_at": now,
        "cancelled_by": cancelled_by.value,
        "cancellation_reason": reason or "",
        "refund_amount": refund.refund_amount,
        "refund_percentage": refund.refund_percentage,
    }
    # Una solicitud pendiente queda resuelta por la propia cancelación
    if _has_pending_request(booking):
        updates["cancellation_request"] = _request_doc(booking.cancellation_request.model_copy(update={
            "status": CancellationRequestStatus.approved,
            "processed_at": now,
            "processed_by": actor_id,
            "admin_notes": f"Cancelada directamente por {cancelled_by.value}",
        }))
    return updates, refund



class BookingLifecycle:
    def __init__(self, store):
        self.store = store

    async def get(self, booking_id: str) -> Booking:
        booking = await self.store.get_booking(booking_id)
        if booking is None:
            raise NotFoundError("Reserva no encontrada")
        return booking

    async def create(self, payload: BookingCreate, customer_id: str) -> Booking:
        payload = validate_booking_request(payload)

        service = await self.store.get_service(payload.service_id)
        if not service:
            raise NotFoundError("Servicio no encontrado")
        if service.get("status", "active") != "active":
            raise ValidationError("El servicio no admite reservas")
        declared = service.get("service_type")
        if declared and declared != payload.service_type.value:
            raise ValidationError(f"El servicio es de tipo {declared}")

        is_slot = payload.service_type == ServiceType.time_based
        booking = Booking(
            service_id=service["id"],
            user_id=customer_id,
            provider_id=str(service["provider_id"]),
            service_name=service.get("title") or "",
            service_location=service.get("location") or "",
            service_images=list(service.get("images") or []),
            service_type=payload.service_type,
            check_in_date=None if is_slot else payload.check_in_date,
            check_out_date=None if is_slot else payload.check_out_date,
            time_slot=payload.time_slot if is_slot else None,
            guests=payload.guests,
            total_amount=compute_total_amount(service, payload),
            special_requests=payload.special_requests or "",
            status=BookingStatus.confirmed,  # sin pasarela de pago: se confirma directamente
            cancellation_policy=CancellationPolicy.parse(service.get("cancellation_policy", "24_hours")),
        )

        # Comprobar y guardar bajo el mismo candado del servicio
        async with self.store.lock(booking.service_id):
            conflicts = await count_conflicts(self.store, booking)
            if conflicts:
                logger.warning(f"Reserva rechazada en servicio {booking.service_id}: {conflicts} solape(s)")
                raise ConflictError("Las fechas seleccionadas ya no están disponibles")
            created = await self.store.insert_booking(booking)

        await self.store.increment_service_bookings(created.service_id)
        logger.info(f"Reserva {created.id} creada para servicio {created.service_id} por {customer_id}")
        return created

    async def confirm(self, booking_id: str) -> Booking:
        booking = await self.get(booking_id)
        if booking.status != BookingStatus.pending:
            raise InvalidStateError(f"Sólo se confirman reservas pendientes (estado: {booking.status.value})")
        updated = await self.store.transition(
            booking_id, {BookingStatus.pending}, {"status": BookingStatus.confirmed.value}
        )
        if updated is None:
            raise InvalidStateError("La reserva cambió de estado mientras se confirmaba")
        return updated

    async def cancel(
        self,
        booking_id: str,
        cancelled_by: CancelledBy,
        reason: str = "",
        now: Optional[datetime] = None,
        actor_id: Optional[str] = None,
    ) -> Booking:
        booking = await self.get(booking_id)
        if booking.is_terminal:
            raise InvalidStateError(f"La reserva ya está {booking.status.value}")

        now = now or utcnow()
        async with self.store.lock(booking.service_id):
            updates, refund = _cancel_updates(booking, CancelledBy(cancelled_by), reason, now, actor_id)
            updated = await self.store.transition(
                booking_id, ACTIVE_STATUSES, updates, request_pending=_has_pending_request(booking)
            )
        if updated is None:
            raise InvalidStateError("La reserva cambió de estado mientras se cancelaba")

        logger.info(
            f"Reserva {booking_id} cancelada por {updated.cancelled_by.value}: "
            f"reembolso {refund.refund_percentage}% ({refund.refund_amount})"
        )
        return updated

    async def complete(self, booking_id: str, now: Optional[datetime] = None) -> Booking:
        booking = await self.get(booking_id)
        if booking.is_terminal:
            raise InvalidStateError(f"La reserva ya está {booking.status.value}")

        updated = await self.store.transition(booking_id, ACTIVE_STATUSES, {
            "status": BookingStatus.completed.value,
            "completed_at": now or utcnow(),
        })
        if updated is None:
            raise InvalidStateError("La reserva cambió de estado mientras se completaba")
        logger.info(f"Reserva {booking_id} completada")
        return updated

    # ---------- Solicitudes de cancelación (revisión por admin) ----------

    async def request_cancellation(
        self,
        booking_id: str,
        requested_by: str,
        reason: str,
        now: Optional[datetime] = None,
    ) -> Booking:
        booking = await self.get(booking_id)
        if booking.is_terminal:
            raise InvalidStateError(f"La reserva ya está {booking.status.value}")
        if _has_pending_request(booking):
            raise InvalidStateError("Ya hay una solicitud de cancelación pendiente")

        request = CancellationRequest(requested_at=now or utcnow(), requested_by=requested_by, reason=reason)
        updated = await self.store.transition(
            booking_id,
            ACTIVE_STATUSES,
            {"cancellation_request": _request_doc(request)},
            request_pending=False,
        )
        if updated is None:
            raise InvalidStateError("La reserva cambió de estado mientras se registraba la solicitud")
        logger.info(f"Solicitud de cancelación registrada para la reserva {booking_id}")
        return updated

    async def process_cancellation_request(
        self,
        booking_id: str,
        approve: bool,
        admin_id: str,
        admin_notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        booking = await self.get(booking_id)
        request = booking.cancellation_request
        if request is None or request.status != CancellationRequestStatus.pending:
            raise InvalidStateError("No hay solicitud de cancelación pendiente")
        if booking.is_terminal:
            raise InvalidStateError(f"La reserva ya está {booking.status.value}")

        now = now or utcnow()
        processed = request.model_copy(update={
            "status": CancellationRequestStatus.approved if approve else CancellationRequestStatus.rejected,
            "processed_at": now,
            "processed_by": admin_id,
            "admin_notes": admin_notes,
        })
        if approve:
            async with self.store.lock(booking.service_id):
                updates, _ = _cancel_updates(booking, CancelledBy.admin, request.reason, now, admin_id)
                updates["cancellation_request"] = _request_doc(processed)
                updated = await self.store.transition(booking_id, ACTIVE_STATUSES, updates, request_pending=True)
        else:
            updates = {"cancellation_request": _request_doc(processed)}
            updated = await self.store.transition(booking_id, ACTIVE_STATUSES, updates, request_pending=True)

        if updated is None:
            raise InvalidStateError("La reserva cambió de estado mientras se procesaba la solicitud")
        logger.info(f"Solicitud de cancelación de {booking_id} {processed.status.value} por {admin_id}")
        return updated
