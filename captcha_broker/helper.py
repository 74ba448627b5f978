from datetime import datetime, timezone

from bson import ObjectId


def utcnow():
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(value):
    """
    Return `value` as an aware UTC datetime, or None.

    Documents written by older tooling may hold naive datetimes; those are
    taken to be UTC already.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_past(value, now=None):
    """True when `value` is set and `now` is strictly after it."""
    value = as_utc(value)
    if value is None:
        return False
    return (now or utcnow()) > value


def to_json_safe(value):
    """
    Recursively convert Mongo documents into JSON-safe structures.

    ObjectId becomes its hex string, datetimes become ISO-8601 strings.
    Lists and dicts are walked; everything else is returned unchanged.
    """
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, dict):
        return {k: to_json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_safe(v) for v in value]
    return value
