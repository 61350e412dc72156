from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from typing import Optional
from ..db import get_store
from ..security import get_current_user
from ..schemas.booking import BookingStatus
from ..core.ratings import recompute_service_rating
from ..utils import utcnow
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

class ReviewCreate(BaseModel):
    booking_id: str = Field(..., pattern=r"^[0-9a-fA-F]{24}$")
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_review(payload: ReviewCreate,
                        store=Depends(get_store),
                        me=Depends(get_current_user)):
    booking = await store.get_booking(payload.booking_id)
    if booking is None:
        raise HTTPException(status_code=404, detail="Reserva no encontrada")
    if booking.user_id != me["id"]:
        raise HTTPException(status_code=403, detail="Solo el cliente puede reseñar la reserva")
    if booking.status != BookingStatus.completed:
        raise HTTPException(
            status_code=400,
            detail=f"La reserva debe estar completada. Estado actual: {booking.status.value}"
        )
    if await store.find_review(booking.id, me["id"]):
        raise HTTPException(status_code=409, detail="Ya has enviado una reseña para esta reserva")

    created = await store.insert_review({
        "booking_id": booking.id,
        "service_id": booking.service_id,
        "author_id": me["id"],
        "author": me.get("full_name") or me.get("email") or "Usuario",
        "rating": payload.rating,
        "comment": (payload.comment or "").strip(),
        "created_at": utcnow(),
    })

    # La puntuación del servicio se recalcula aquí, no en la capa de datos
    await recompute_service_rating(store, booking.service_id)
    return created
