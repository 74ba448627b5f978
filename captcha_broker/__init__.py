"""Top-level package for the CAPTCHA solver broker service.

Exposes:
- flask_app: the Flask application built by create_app()
- create_app(): factory returning the Flask app
- evaluate_access: ordered access gate
- bind_key: claim-on-first-use key binding
- submit_task / list_tasks: solver task proxy and task log
"""

from .gate import evaluate_access
from .key_binding import bind_key, generate_api_key
from .tasks import submit_task, list_tasks
from .access import check_access, ensure_setup

# Keep it None until create_app() is called without arguments.
flask_app = None  # type: ignore


def create_app(stores=None, solver=None, config=None):
    """Return a Flask app instance.

    Called without arguments (e.g. `gunicorn "captcha_broker:create_app()"`)
    the app is built once on the Mongo-backed stores and reused. Passing
    collaborators always builds a fresh app, which is what the tests do.
    """
    global flask_app
    from .api_gateway import create_app as _create_app
    if stores is None and solver is None and config is None:
        if flask_app is None:
            flask_app = _create_app()
        return flask_app
    return _create_app(stores=stores, solver=solver, config=config)


__all__ = [
    "flask_app",
    "create_app",
    "evaluate_access",
    "bind_key",
    "generate_api_key",
    "submit_task",
    "list_tasks",
    "check_access",
    "ensure_setup",
]
