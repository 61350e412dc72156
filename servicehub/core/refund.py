"""
Motor de políticas de cancelación.

Cada política es una lista ordenada de tramos (horas mínimas, % de reembolso);
gana el primer tramo cuyo umbral se alcanza. Las horas hasta el servicio se
comparan con signo (una reserva ya pasada da horas negativas) y sólo se
recortan a 0 en el resultado.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple

from pydantic import BaseModel

from ..schemas.booking import Booking, CancellationPolicy, ServiceType
from ..utils import date_to_datetime, utcnow


@dataclass(frozen=True)
class PolicyRule:
    name: str
    tiers: Tuple[Tuple[float, int], ...]


POLICIES: dict[CancellationPolicy, PolicyRule] = {
    CancellationPolicy.hours_24: PolicyRule("24-hour cancellation policy", ((24, 100),)),
    CancellationPolicy.hours_48: PolicyRule("48-hour cancellation policy", ((48, 100),)),
    CancellationPolicy.hours_72: PolicyRule("72-hour cancellation policy", ((72, 100),)),
    CancellationPolicy.flexible: PolicyRule("Flexible cancellation policy", ((24, 100), (12, 50))),
    CancellationPolicy.strict: PolicyRule("Strict cancellation policy", ((72, 50),)),
}
DEFAULT_POLICY = CancellationPolicy.hours_24

# Margen mínimo para permitir cancelar, sea cual sea la política
MIN_HOURS_TO_CANCEL = 1


class RefundCalculation(BaseModel):
    refund_amount: float
    refund_percentage: int
    policy_name: str
    hours_until_service: float
    description: str
    is_eligible_for_refund: bool
    cancellation_deadline: datetime


def policy_rule(policy) -> PolicyRule:
    return POLICIES.get(CancellationPolicy.parse(policy), POLICIES[DEFAULT_POLICY])


def anchor_instant(booking: Booking) -> datetime:
    """Instante de referencia: fecha de la franja o fecha de check-in."""
    if booking.service_type == ServiceType.time_based and booking.time_slot is not None:
        return date_to_datetime(booking.time_slot.date)
    if booking.check_in_date is None:
        raise ValueError("La reserva no tiene fecha de check-in")
    return date_to_datetime(booking.check_in_date)


def hours_until_service(booking: Booking, now: Optional[datetime] = None) -> float:
    now = now or utcnow()
    return (anchor_instant(booking) - now).total_seconds() / 3600


def _describe(rule: PolicyRule, percentage: int, moment: str) -> str:
    for index, (min_hours, tier_pct) in enumerate(rule.tiers):
        if tier_pct != percentage:
            continue
        if percentage == 100:
            return f"Full refund - Cancellation made more than {min_hours:g} hours before {moment}."
        if index > 0:
            upper = rule.tiers[index - 1][0]
            return f"Partial refund - Cancellation made {min_hours:g}-{upper:g} hours before {moment}."
        return f"Partial refund - Cancellation made more than {min_hours:g} hours before {moment}."
    lowest = rule.tiers[-1][0]
    return f"No refund - Cancellation made less than {lowest:g} hours before {moment}."


def calculate_refund(booking: Booking, now: Optional[datetime] = None) -> RefundCalculation:
    rule = policy_rule(booking.cancellation_policy)
    hours = hours_until_service(booking, now)

    percentage = 0
    for min_hours, tier_pct in rule.tiers:
        if hours >= min_hours:
            percentage = tier_pct
            break

    moment = "service time" if booking.service_type == ServiceType.time_based else "check-in"
    return RefundCalculation(
        refund_amount=round(booking.total_amount * percentage / 100, 2),
        refund_percentage=percentage,
        policy_name=rule.name,
        hours_until_service=max(0.0, hours),
        description=_describe(rule, percentage, moment),
        is_eligible_for_refund=percentage > 0,
        cancellation_deadline=cancellation_deadline(booking),
    )


def cancellation_deadline(booking: Booking) -> datetime:
    """Último instante en el que aún se obtiene el reembolso máximo."""
    rule = policy_rule(booking.cancellation_policy)
    return anchor_instant(booking) - timedelta(hours=rule.tiers[0][0])


def is_cancellation_allowed(booking: Booking, now: Optional[datetime] = None) -> bool:
    return hours_until_service(booking, now) > MIN_HOURS_TO_CANCEL


def format_hours_until_service(hours: float) -> str:
    if hours <= 0:
        return "Past service time"

    days = int(hours // 24)
    remaining = int(hours % 24)

    if days > 0:
        day_text = f"{days} day{'s' if days > 1 else ''}"
        if remaining > 0:
            return f"{day_text} and {remaining} hour{'s' if remaining > 1 else ''}"
        return day_text
    return f"{remaining} hour{'s' if remaining > 1 else ''}"
