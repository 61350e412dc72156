# servicehub/utils.py
from typing import Any, Dict, Optional
from bson import ObjectId
from datetime import date, datetime, timezone

def to_id(doc: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Convierte _id -> id (str) y todos los ObjectIds a strings.
    También convierte datetime a ISO format strings.
    Si doc es None, devuelve {}.
    """
    if doc is None:
        return {}
    d = dict(doc)

    if "_id" in d:
        d["id"] = str(d.pop("_id"))

    for key, value in d.items():
        if isinstance(value, ObjectId):
            d[key] = str(value)
        elif isinstance(value, datetime):
            d[key] = value.isoformat()
        elif isinstance(value, dict):
            d[key] = to_id(value)
        elif isinstance(value, list):
            d[key] = [
                str(item) if isinstance(item, ObjectId)
                else item.isoformat() if isinstance(item, datetime)
                else to_id(item) if isinstance(item, dict)
                else item
                for item in value
            ]

    return d

# ==================== Fechas ====================

def utcnow() -> datetime:
    """Instante actual en UTC, naive (como lo devuelve Motor por defecto)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

def as_date(value: Any) -> Any:
    """datetime -> date; el resto se devuelve tal cual para que pydantic valide."""
    if isinstance(value, datetime):
        return value.date()
    return value

def date_to_datetime(value: Optional[date]) -> Optional[datetime]:
    # BSON no tiene tipo fecha: se guarda la medianoche del día
    if value is None:
        return None
    return datetime(value.year, value.month, value.day)
