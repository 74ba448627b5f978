"""
Claim-on-first-use binding of pre-provisioned API keys to visitors.

A visitor holds at most one key, and a key is bound to at most one visitor.
Re-binding the same (key, visitor) pair is a no-op apart from refreshing
`last_used_at`.
"""

import random
import secrets

from .database import VisitorAlreadyBound
from .helper import is_past, to_json_safe, utcnow
from .utils.logger import get_logger

log = get_logger("binding")

DEFAULT_USER_NAME = "Unknown User"
KEY_PREFIXES = ("C_master", "R_H", "PC_CAP", "NH", "LOL")


def generate_api_key():
    """Random key in the `<prefix>.<64 hex chars>` format handed out to users."""
    return f"{random.choice(KEY_PREFIXES)}.{secrets.token_hex(32)}"


def _conflict():
    return {
        "status": "conflict",
        "message": "Visitor ID is already associated with another API key.",
    }, 409


def bind_key(stores, key, visitor_id, now=None):
    """
    Bind `key` to `visitor_id`.

    Returns a (body, http_status) pair. Outcomes: valid (200), conflict (409),
    invalid (404, unknown key), expire (403), unavailable (403).
    """
    now = now or utcnow()

    existing = stores.api_keys.find_by_visitor(visitor_id)
    if existing and existing.get("key") != key:
        log.info(f"Visitor {visitor_id} already bound to another key")
        return _conflict()

    assignment = stores.api_keys.find_by_key(key)
    if not assignment:
        return {"status": "invalid", "message": "API key not found"}, 404

    if assignment.get("status") == "expire" or is_past(assignment.get("expires_at"), now):
        return {"status": "expire", "message": "API key has expired"}, 403

    try:
        claimed = stores.api_keys.claim(key, visitor_id, now=now)
    except VisitorAlreadyBound:
        log.warning(f"Concurrent bind rejected for visitor {visitor_id}")
        return _conflict()

    if claimed is None:
        log.info(f"Key already used by another visitor (requested by {visitor_id})")
        return {
            "status": "unavailable",
            "message": "API key is already used by another user",
        }, 403

    stores.users.upsert_for_visitor(visitor_id, claimed.get("name") or DEFAULT_USER_NAME)
    log.success(f"Key bound to visitor {visitor_id}")

    return {
        "status": "valid",
        "message": "API key is valid",
        "apiKey": claimed["key"],
        "name": claimed.get("name"),
        "lastUsedAt": to_json_safe(claimed.get("last_used_at")),
        "visitorId": claimed.get("visitor_id"),
    }, 200
