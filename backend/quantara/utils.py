from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from bson import ObjectId


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Make a naive datetime timezone-aware (UTC). Already-aware datetimes pass through."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def quarter_bounds(now: datetime) -> tuple[datetime, datetime]:
    """Return [start, end) of the calendar quarter containing ``now`` (UTC)."""
    now = ensure_utc(now)
    first_month = 3 * ((now.month - 1) // 3) + 1
    start = datetime(now.year, first_month, 1, tzinfo=timezone.utc)
    if first_month == 10:
        end = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(now.year, first_month + 3, 1, tzinfo=timezone.utc)
    return start, end


def serialize_doc(value: Any) -> Any:
    """Make a Mongo document JSON-ready: ``_id`` -> ``id``, ObjectId -> str."""
    if isinstance(value, dict):
        out = {}
        for key, item in value.items():
            out["id" if key == "_id" else key] = serialize_doc(item)
        return out
    if isinstance(value, list):
        return [serialize_doc(item) for item in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, Decimal):
        return str(value)
    return value
