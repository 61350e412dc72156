# servicehub/routers/services.py
from fastapi import APIRouter, Depends, HTTPException, Path, status

from ..db import get_store
from ..security import get_current_user
from ..schemas.booking import AvailabilityOut, AvailabilityQuery, CalendarOut, TimeSlot
from ..schemas.service import ServiceCreate, ServiceOut
from ..core import queries
from ..utils import utcnow
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

async def _require_service(store, service_id: str) -> dict:
    service = await store.get_service(service_id)
    if not service:
        raise HTTPException(404, "Servicio no encontrado")
    return service

# POST /services
@router.post("", response_model=ServiceOut, status_code=status.HTTP_201_CREATED)
async def create_service(
    payload: ServiceCreate,
    store=Depends(get_store),
    current=Depends(get_current_user),
):
    if current.get("role") not in ("provider", "admin"):
        raise HTTPException(403, "Solo proveedores")

    doc = payload.model_dump(mode="json")
    doc.update({
        "provider_id": current["id"],
        "status": "active",
        "rating": 0,
        "review_count": 0,
        "bookings": 0,
        "created_at": utcnow(),
    })
    created = await store.insert_service(doc)
    logger.info(f"Servicio {created['id']} creado por {current['id']}")
    return created

# GET /services/{id}
@router.get("/{service_id}", response_model=ServiceOut)
async def get_service(service_id: str = Path(..., pattern=r"^[0-9a-fA-F]{24}$"), store=Depends(get_store)):
    return await _require_service(store, service_id)

# ---------- Disponibilidad (público) ----------

@router.get("/{service_id}/booked-dates", response_model=list[str])
async def booked_dates(service_id: str = Path(..., pattern=r"^[0-9a-fA-F]{24}$"), store=Depends(get_store)):
    await _require_service(store, service_id)
    return await queries.get_booked_dates(store, service_id)

@router.post("/{service_id}/check-availability", response_model=AvailabilityOut)
async def check_availability(
    body: AvailabilityQuery,
    service_id: str = Path(..., pattern=r"^[0-9a-fA-F]{24}$"),
    store=Depends(get_store),
):
    await _require_service(store, service_id)
    return await queries.check_availability(store, service_id, body.check_in_date, body.check_out_date)

@router.post("/{service_id}/check-slot", response_model=AvailabilityOut)
async def check_slot(
    body: TimeSlot,
    service_id: str = Path(..., pattern=r"^[0-9a-fA-F]{24}$"),
    store=Depends(get_store),
):
    await _require_service(store, service_id)
    return await queries.check_time_slot_availability(store, service_id, body)

@router.get("/{service_id}/calendar/{year}/{month}", response_model=CalendarOut)
async def calendar(
    year: int,
    month: int,
    service_id: str = Path(..., pattern=r"^[0-9a-fA-F]{24}$"),
    store=Depends(get_store),
):
    await _require_service(store, service_id)
    return await queries.get_calendar_data(store, service_id, year, month)
