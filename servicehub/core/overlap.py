"""
Detección de solapes entre reservas.

Rangos de fechas: intervalos cerrados a nivel de día.
Franjas horarias: "HH:mm" comparadas como texto; una franja que termina
justo cuando empieza otra NO se solapa con ella.
"""
from datetime import date, timedelta
from typing import Iterator, Optional

from ..schemas.booking import Booking, ServiceType, TimeSlot


def date_ranges_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """True si [a_start, a_end] y [b_start, b_end] comparten algún día."""
    return not (a_end < b_start or b_end < a_start)


def time_slots_overlap(a_start: str, a_end: str, b_start: str, b_end: str) -> bool:
    """Solape de la franja nueva (a) con la existente (b) el mismo día."""
    starts_during = b_start <= a_start < b_end
    ends_during = b_start < a_end <= b_end
    contains = a_start <= b_start and a_end >= b_end
    return starts_during or ends_during or contains


def slots_overlap(a: TimeSlot, b: TimeSlot) -> bool:
    if a.date != b.date:
        return False
    return time_slots_overlap(a.start_time, a.end_time, b.start_time, b.end_time)


def days_in_range(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def _date_range(booking: Booking) -> Optional[tuple[date, date]]:
    if booking.check_in_date is None or booking.check_out_date is None:
        return None
    return booking.check_in_date, booking.check_out_date


def bookings_conflict(existing: Booking, candidate: Booking) -> bool:
    """
    Decide si dos reservas del mismo servicio se bloquean entre sí.

    Cada reserva se compara según su representación autoritativa
    (service_type): rango de días o franja horaria. Una franja choca con un
    rango de días si su fecha cae dentro del rango.
    """
    if existing.service_type == ServiceType.time_based and candidate.service_type == ServiceType.time_based:
        if existing.time_slot is None or candidate.time_slot is None:
            return False
        return slots_overlap(candidate.time_slot, existing.time_slot)

    if existing.service_type == ServiceType.date_based and candidate.service_type == ServiceType.date_based:
        a, b = _date_range(candidate), _date_range(existing)
        if a is None or b is None:
            return False
        return date_ranges_overlap(a[0], a[1], b[0], b[1])

    # Mezcla: franja frente a rango de días
    slotted, ranged = (existing, candidate) if existing.service_type == ServiceType.time_based else (candidate, existing)
    days = _date_range(ranged)
    if slotted.time_slot is None or days is None:
        return False
    return days[0] <= slotted.time_slot.date <= days[1]
