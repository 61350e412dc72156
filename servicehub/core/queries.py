"""
Consultas de disponibilidad y calendario sobre las reservas activas.

Son lecturas sin candado: sirven para mostrar disponibilidad, no para
garantizarla. La garantía la da BookingLifecycle.create.
"""
import calendar
from datetime import date
from typing import Any, Dict, List, Optional

from ..errors import ValidationError
from ..schemas.booking import (
    AvailabilityOut,
    Booking,
    CalendarEntry,
    CalendarOut,
    ProviderCalendarEntry,
    ProviderCalendarOut,
    ServiceType,
    TimeSlot,
)
from .overlap import bookings_conflict, days_in_range


def _probe(service_id: str, **fields) -> Booking:
    # Reserva ficticia con la que comparar las existentes
    return Booking(service_id=service_id, user_id="", provider_id="", service_name="", **fields)


def _span(candidate: Booking) -> tuple[date, date]:
    if candidate.service_type == ServiceType.time_based:
        return candidate.time_slot.date, candidate.time_slot.date
    return candidate.check_in_date, candidate.check_out_date


async def find_conflicts(store, candidate: Booking) -> List[Booking]:
    start, end = _span(candidate)
    existing = await store.find_active_bookings(candidate.service_id, start, end)
    return [b for b in existing if b.id != candidate.id and bookings_conflict(b, candidate)]


async def count_conflicts(store, candidate: Booking) -> int:
    return len(await find_conflicts(store, candidate))


async def check_availability(store, service_id: str, check_in: date, check_out: date) -> AvailabilityOut:
    if check_out < check_in:
        raise ValidationError("check_out_date no puede ser anterior a check_in_date")
    probe = _probe(
        service_id,
        service_type=ServiceType.date_based,
        check_in_date=check_in,
        check_out_date=check_out,
    )
    conflicts = await count_conflicts(store, probe)
    # Sólo el número: no se exponen reservas de otros clientes
    return AvailabilityOut(available=conflicts == 0, conflicting_bookings=conflicts)


async def check_time_slot_availability(store, service_id: str, slot: TimeSlot) -> AvailabilityOut:
    probe = _probe(service_id, service_type=ServiceType.time_based, time_slot=slot)
    conflicts = await count_conflicts(store, probe)
    return AvailabilityOut(available=conflicts == 0, conflicting_bookings=conflicts)


def _blocked_days(bookings: List[Booking]) -> set[date]:
    blocked: set[date] = set()
    for b in bookings:
        if b.service_type != ServiceType.date_based or b.check_in_date is None or b.check_out_date is None:
            continue
        blocked.update(days_in_range(b.check_in_date, b.check_out_date))
    return blocked


async def get_booked_dates(store, service_id: str) -> List[str]:
    """Todos los días ocupados por reservas activas por días, sin duplicados."""
    bookings = await store.find_active_bookings(service_id)
    return sorted(d.isoformat() for d in _blocked_days(bookings))


def _entry_fields(b: Booking, users: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    user = users.get(b.user_id) or {}
    return {
        "id": b.id,
        "service_type": b.service_type,
        "check_in": b.check_in_date,
        "check_out": b.check_out_date,
        "time_slot": b.time_slot,
        "customer_name": user.get("full_name") or "Unknown",
        "customer_email": user.get("email") or "",
        "guests": b.guests,
        "status": b.status,
        "total_amount": b.total_amount,
    }


async def get_calendar_data(
    store,
    service_id: str,
    year: int,
    month: int,
    today: Optional[date] = None,
) -> CalendarOut:
    if not 1 <= month <= 12:
        raise ValidationError(f"Mes inválido: {month}")
    if year < 1:
        raise ValidationError(f"Año inválido: {year}")

    today = today or date.today()
    first = date(year, month, 1)
    last = date(year, month, calendar.monthrange(year, month)[1])

    bookings = await store.find_active_bookings(service_id, first, last)
    users = await store.get_users(b.user_id for b in bookings)

    month_days = list(days_in_range(first, last))
    blocked = {d for d in _blocked_days(bookings) if first <= d <= last}
    available = [d.isoformat() for d in month_days if d not in blocked and d >= today]

    entries = [CalendarEntry(**_entry_fields(b, users)) for b in sorted(bookings, key=lambda b: _span(b)[0])]

    return CalendarOut(
        year=year,
        month=month,
        bookings=entries,
        booked_dates=sorted(d.isoformat() for d in blocked),
        available_dates=available,
    )


async def get_provider_calendar(
    store,
    provider_id: str,
    start: Optional[date] = None,
    end: Optional[date] = None,
    today: Optional[date] = None,
) -> ProviderCalendarOut:
    """
    Reservas activas de todos los servicios de un proveedor entre start y end
    (ambos incluidos), ordenadas por fecha de inicio. Sin fechas se usa el mes
    en curso.
    """
    today = today or date.today()
    start = start or today.replace(day=1)
    end = end or today.replace(day=calendar.monthrange(today.year, today.month)[1])
    if end < start:
        raise ValidationError("end_date no puede ser anterior a start_date")

    window = _probe("", service_type=ServiceType.date_based, check_in_date=start, check_out_date=end)
    bookings = [
        b for b in await store.find_active_bookings_for_provider(provider_id, start, end)
        if bookings_conflict(b, window)
    ]
    users = await store.get_users(b.user_id for b in bookings)

    entries = [
        ProviderCalendarEntry(service_id=b.service_id, service_name=b.service_name, **_entry_fields(b, users))
        for b in sorted(bookings, key=lambda b: (_span(b)[0], b.time_slot.start_time if b.time_slot else ""))
    ]
    return ProviderCalendarOut(start_date=start, end_date=end, bookings=entries)
