"""
Tests de detección de solapes (rangos de días y franjas horarias)
"""
from datetime import date

import pytest

from servicehub.core.overlap import (
    bookings_conflict,
    date_ranges_overlap,
    days_in_range,
    slots_overlap,
    time_slots_overlap,
)
from servicehub.schemas.booking import Booking, ServiceType, TimeSlot

D = date

def _date_booking(check_in, check_out):
    return Booking(service_id="s", user_id="u", provider_id="p", service_name="x",
                   check_in_date=check_in, check_out_date=check_out)

def _slot_booking(day, start, end):
    return Booking(service_id="s", user_id="u", provider_id="p", service_name="x",
                   service_type=ServiceType.time_based,
                   time_slot=TimeSlot(date=day, start_time=start, end_time=end))

@pytest.mark.parametrize("a, b, expected", [
    ((D(2026, 5, 1), D(2026, 5, 5)), (D(2026, 5, 6), D(2026, 5, 9)), False),   # consecutivos
    ((D(2026, 5, 1), D(2026, 5, 5)), (D(2026, 5, 5), D(2026, 5, 9)), True),    # comparten el último día
    ((D(2026, 5, 3), D(2026, 5, 7)), (D(2026, 5, 1), D(2026, 5, 4)), True),    # empieza dentro
    ((D(2026, 5, 1), D(2026, 5, 10)), (D(2026, 5, 3), D(2026, 5, 4)), True),   # a contiene a b
    ((D(2026, 5, 3), D(2026, 5, 4)), (D(2026, 5, 1), D(2026, 5, 10)), True),   # b contiene a a
    ((D(2026, 5, 2), D(2026, 5, 2)), (D(2026, 5, 2), D(2026, 5, 2)), True),    # mismo día
])
def test_date_ranges_overlap_is_symmetric(a, b, expected):
    assert date_ranges_overlap(*a, *b) is expected
    assert date_ranges_overlap(*b, *a) is expected

def test_adjacent_time_slots_do_not_overlap():
    assert time_slots_overlap("10:00", "12:00", "12:00", "14:00") is False
    assert time_slots_overlap("12:00", "14:00", "10:00", "12:00") is False

def test_identical_time_slots_overlap():
    assert time_slots_overlap("09:30", "11:00", "09:30", "11:00") is True

@pytest.mark.parametrize("new, existing", [
    (("10:30", "11:30"), ("10:00", "12:00")),   # dentro de la existente
    (("09:00", "10:30"), ("10:00", "12:00")),   # termina durante la existente
    (("11:00", "13:00"), ("10:00", "12:00")),   # empieza durante la existente
    (("08:00", "13:00"), ("10:00", "12:00")),   # la contiene
])
def test_time_slots_overlap_cases(new, existing):
    assert time_slots_overlap(*new, *existing) is True

def test_time_slot_comparison_is_zero_padded_text():
    # "09:00" < "10:00" como texto porque el formato lleva ceros
    assert time_slots_overlap("09:00", "10:00", "10:00", "11:00") is False
    assert time_slots_overlap("09:00", "10:01", "10:00", "11:00") is True

def test_slots_on_different_days_never_overlap():
    a = TimeSlot(date=D(2026, 5, 1), start_time="10:00", end_time="12:00")
    b = TimeSlot(date=D(2026, 5, 2), start_time="10:00", end_time="12:00")
    assert slots_overlap(a, b) is False

def test_time_slot_rejects_end_before_start():
    with pytest.raises(ValueError):
        TimeSlot(date=D(2026, 5, 1), start_time="12:00", end_time="10:00")

def test_days_in_range_is_inclusive():
    days = list(days_in_range(D(2026, 2, 27), D(2026, 3, 2)))
    assert days == [D(2026, 2, 27), D(2026, 2, 28), D(2026, 3, 1), D(2026, 3, 2)]

def test_whole_day_booking_blocks_slot_on_that_day():
    rental = _date_booking(D(2026, 5, 1), D(2026, 5, 3))
    assert bookings_conflict(rental, _slot_booking(D(2026, 5, 3), "18:00", "20:00")) is True
    assert bookings_conflict(_slot_booking(D(2026, 5, 4), "18:00", "20:00"), rental) is False

def test_slot_bookings_conflict_only_on_same_day():
    a = _slot_booking(D(2026, 5, 1), "18:00", "20:00")
    assert bookings_conflict(a, _slot_booking(D(2026, 5, 1), "19:00", "21:00")) is True
    assert bookings_conflict(a, _slot_booking(D(2026, 5, 1), "20:00", "22:00")) is False
    assert bookings_conflict(a, _slot_booking(D(2026, 5, 2), "18:00", "20:00")) is False
