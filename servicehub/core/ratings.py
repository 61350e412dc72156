import logging

logger = logging.getLogger(__name__)


async def recompute_service_rating(store, service_id: str) -> tuple[float, int]:
    """
    Recalcula la media de puntuación y el número de reseñas de un servicio.

    Se llama de forma explícita después de guardar una reseña; el store no
    dispara efectos sobre otras entidades por su cuenta.
    """
    average, count = await store.service_rating_stats(service_id)
    rating = round(average, 1) if count else 0.0
    await store.set_service_rating(service_id, rating, count)
    logger.info(f"Servicio {service_id}: rating {rating} ({count} reseñas)")
    return rating, count
