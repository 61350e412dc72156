# servicehub/routers/bookings.py
from fastapi import APIRouter, Depends, HTTPException, status, Path, Query, Request
from datetime import date
from typing import List, Optional

from ..db import get_store, get_lifecycle
from ..schemas.booking import (
    Booking,
    BookingCreate,
    CancelBody,
    CancellationDecision,
    CancellationRequestCreate,
    CancelledBy,
    ProviderCalendarOut,
)
from ..core import queries
from ..core.lifecycle import BookingLifecycle, actor_role
from ..core.refund import RefundCalculation, calculate_refund
from ..security import get_current_user, require_admin
from ..middleware.rate_limit import apply_rate_limit
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

BOOKING_ID = r"^[0-9a-fA-F]{24}$"

# ---------- Endpoints ----------

@router.get("/mine", response_model=List[Booking])
async def list_my_bookings(
    store=Depends(get_store),
    current=Depends(get_current_user),
):
    return await store.find_bookings_for_user(current["id"])

@router.get("/provider/calendar", response_model=ProviderCalendarOut)
async def provider_calendar(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    store=Depends(get_store),
    current=Depends(get_current_user),
):
    """Reservas activas de todos mis servicios (por defecto, el mes en curso)."""
    if current.get("role") not in ("provider", "admin"):
        raise HTTPException(403, "Solo proveedores")
    return await queries.get_provider_calendar(store, current["id"], start_date, end_date)

@router.get("/{booking_id}", response_model=Booking)
async def get_booking(
    booking_id: str = Path(..., pattern=BOOKING_ID),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    current=Depends(get_current_user),
):
    booking = await lifecycle.get(booking_id)
    actor_role(booking, current)
    return booking

@router.post("", response_model=Booking, status_code=status.HTTP_201_CREATED)
async def create_booking(
    request: Request,
    payload: BookingCreate,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    current=Depends(get_current_user),
):
    # Rate limiting: máximo 15 reservas por minuto por IP
    apply_rate_limit(request, "15/minute")
    return await lifecycle.create(payload, current["id"])

@router.get("/{booking_id}/refund", response_model=RefundCalculation)
async def preview_refund(
    booking_id: str = Path(..., pattern=BOOKING_ID),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    current=Depends(get_current_user),
):
    """Reembolso que se aplicaría si se cancelara ahora (no modifica nada)."""
    booking = await lifecycle.get(booking_id)
    actor_role(booking, current)
    return calculate_refund(booking)

@router.post("/{booking_id}/confirm", response_model=Booking)
async def confirm_booking(
    booking_id: str = Path(..., pattern=BOOKING_ID),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    current=Depends(get_current_user),
):
    booking = await lifecycle.get(booking_id)
    if actor_role(booking, current) == CancelledBy.customer:
        raise HTTPException(403, "Solo el proveedor puede confirmar la reserva")
    return await lifecycle.confirm(booking_id)

@router.post("/{booking_id}/cancel", response_model=Booking)
async def cancel_booking(
    body: CancelBody,
    booking_id: str = Path(..., pattern=BOOKING_ID),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    current=Depends(get_current_user),
):
    booking = await lifecycle.get(booking_id)
    cancelled_by = actor_role(booking, current)
    return await lifecycle.cancel(booking_id, cancelled_by, body.reason, actor_id=current["id"])

@router.post("/{booking_id}/complete", response_model=Booking)
async def complete_booking(
    booking_id: str = Path(..., pattern=BOOKING_ID),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    current=Depends(get_current_user),
):
    booking = await lifecycle.get(booking_id)
    if actor_role(booking, current) == CancelledBy.customer:
        raise HTTPException(403, "Solo el proveedor puede completar la reserva")
    return await lifecycle.complete(booking_id)

# ---------- Solicitudes de cancelación ----------

@router.post("/{booking_id}/cancellation-request", response_model=Booking)
async def request_cancellation(
    body: CancellationRequestCreate,
    booking_id: str = Path(..., pattern=BOOKING_ID),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    current=Depends(get_current_user),
):
    booking = await lifecycle.get(booking_id)
    actor_role(booking, current)
    return await lifecycle.request_cancellation(booking_id, current["id"], body.reason)

@router.patch("/{booking_id}/cancellation-request", response_model=Booking)
async def process_cancellation_request(
    body: CancellationDecision,
    booking_id: str = Path(..., pattern=BOOKING_ID),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    admin=Depends(require_admin),
):
    return await lifecycle.process_cancellation_request(
        booking_id, body.approve, admin["id"], body.admin_notes
    )
