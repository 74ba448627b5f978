"""
Balance lookup for the extension popup and the store bootstrap used by
/init/setup.
"""

from .config import ADMIN_EMAIL, ADMIN_NAME
from .gate import evaluate_access, denial_response
from .helper import to_json_safe
from .upstream import UpstreamError
from .utils.logger import get_logger

log = get_logger("access")


def check_access(stores, solver, visitor_id, client_version=None):
    """Gate the visitor, then relay the solver balance for the global key."""
    decision = evaluate_access(stores, visitor_id, client_version)
    if not decision["allowed"]:
        return denial_response(decision)

    try:
        data = solver.get_balance(decision["upstream_key"])
    except UpstreamError as e:
        log.error(f"Balance lookup failed: {e}")
        return {"error": "Failed to connect to external service"}, 500

    if data.get("status") == "ok":
        return {
            "balance": data.get("balance"),
            "plan": data.get("plan"),
            "status": "active",
        }, 200

    return {"error": data.get("error") or "Failed to fetch balance"}, 400


def _public_settings(settings):
    # The upstream credential never leaves the server
    return {k: v for k, v in settings.items() if k != "upstream_key"}


def ensure_setup(stores, admin_email=ADMIN_EMAIL, admin_name=ADMIN_NAME):
    """
    Idempotent bootstrap: collection indexes, the settings singleton plus,
    when an admin email is configured, one admin user.
    """
    stores.ensure_indexes()
    settings = stores.settings.ensure_defaults()

    admin = None
    if admin_email:
        admin = stores.users.find_by_email(admin_email)
        if admin is None:
            admin = stores.users.create(admin_name, email=admin_email, role="admin")
            log.success(f"Created admin user {admin_email}")

    return {
        "message": "Database initialized successfully",
        "data": to_json_safe(_public_settings(settings)),
        "admin": to_json_safe(admin),
    }
