"""
Access gate applied before any solver-facing operation.

Checks run in a fixed order and stop at the first failure:

1. maintenance mode                      -> maintenance_mode (503)
2. client version vs. required version   -> update_required  (426)
3. user exists / not suspended           -> user_not_found (404), suspended (403)
4. key assigned / status / expiry        -> api_error (400), inactive (403), expire (403)

On success the *global* upstream key from settings is returned. The
per-visitor key is an eligibility token, not a solver credential.
"""

from .database import is_suspended
from .helper import is_past
from .utils.logger import get_logger

log = get_logger("gate")


def deny(status, error, http_status, **extra):
    decision = {
        "allowed": False,
        "status": status,
        "error": error,
        "http_status": http_status,
    }
    decision.update(extra)
    return decision


def denial_response(decision):
    """Split a denial into a (body, http_status) pair for the HTTP layer."""
    body = {k: v for k, v in decision.items() if k not in ("allowed", "http_status")}
    return body, decision["http_status"]


def evaluate_access(stores, visitor_id, client_version=None, now=None):
    """Run the ordered access checks for `visitor_id`. Read-only."""
    settings = stores.settings.ensure_defaults()

    if settings.get("maintenance_mode"):
        return deny(
            "maintenance_mode",
            "The extension is currently under maintenance. Please try again later.",
            503,
        )

    required_version = settings.get("app_version") or ""
    if client_version is not None and client_version != required_version:
        log.info(f"Version mismatch for {visitor_id}: {client_version} != {required_version}")
        return deny(
            "update_required",
            "A newer version of the extension is required. Please update to continue.",
            426,
            currentVersion=client_version,
            requiredVersion=required_version,
        )

    user = stores.users.find_by_visitor(visitor_id)
    if not user:
        return deny("user_not_found", "User not found", 404)
    if is_suspended(user):
        return deny(
            "suspended",
            "This account is suspended. Please contact admin for assistance.",
            403,
        )

    assignment = stores.api_keys.find_by_visitor(visitor_id)
    if not assignment:
        return deny("api_error", "No API key found", 400)
    if assignment.get("status") == "inactive":
        return deny(
            "inactive",
            "This device is currently inactive. Please contact admin to activate it.",
            403,
        )
    if assignment.get("status") == "expire" or is_past(assignment.get("expires_at"), now):
        return deny(
            "expire",
            "API key has expired. Please contact admin to renew it.",
            403,
        )

    log.debug(f"Access granted for {visitor_id}")
    return {
        "allowed": True,
        "upstream_key": settings.get("upstream_key") or "",
        "settings": settings,
        "user": user,
        "assignment": assignment,
    }
