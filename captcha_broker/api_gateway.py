from flask import Blueprint, Flask, current_app, jsonify, request
from pymongo import errors

from .config import FLASK_HOST, FLASK_PORT, FLASK_DEBUG, RECORD_PENDING_TASKS, TASK_LIST_LIMIT
from .access import check_access, ensure_setup
from .database import DatabaseUnavailable, _db_available, get_stores
from .key_binding import bind_key
from .tasks import list_tasks, submit_task
from .upstream import SolverClient
from .utils.logger import get_logger

log = get_logger("api")

EXTENSION_KEY = "captcha_broker"

api = Blueprint("api", __name__)


def _stores():
    stores = current_app.extensions[EXTENSION_KEY]["stores"]
    return stores if stores is not None else get_stores()


def _solver():
    return current_app.extensions[EXTENSION_KEY]["solver"]


def _internal_error(context, e):
    if isinstance(e, (DatabaseUnavailable, errors.PyMongoError)):
        log.error(f"{context}: database error: {e}")
    else:
        log.error(f"{context}: {type(e).__name__}: {e}")
    return jsonify({'error': 'Internal server error'}), 500


def _validation_error(*fields):
    return jsonify({
        'error': [{'field': name, 'message': message} for name, message in fields],
    }), 400


def _is_blank(value):
    return not isinstance(value, str) or not value.strip()


# =========================
# Gated endpoints
# =========================

@api.route('/access', methods=['GET'])
def access():
    """
    Gate the visitor and relay the solver balance.

    Query: visitorId (required), app (optional client version).
    Response: {balance, plan, status: "active"} or {error, status} with the
    gate's status code.
    """
    visitor_id = request.args.get('visitorId', '')
    if _is_blank(visitor_id):
        return _validation_error(('visitorId', 'Required'))
    try:
        body, status = check_access(_stores(), _solver(), visitor_id, request.args.get('app') or None)
        return jsonify(body), status
    except Exception as e:
        return _internal_error("Error in access endpoint", e)


@api.route('/createTask', methods=['POST'])
def create_task():
    """
    Proxy a task to the solver.

    Body: {apiKey: <visitor id>, task: <opaque>, version?, source?, appID?}
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return _validation_error(('body', 'Expected a JSON object'))

    problems = []
    if _is_blank(payload.get('apiKey')):
        problems.append(('apiKey', 'Required'))
    if payload.get('task') is None:
        problems.append(('task', 'Required'))
    if payload.get('version') is not None and not isinstance(payload['version'], str):
        problems.append(('version', 'Must be a string'))
    if problems:
        return _validation_error(*problems)

    try:
        body, status = submit_task(
            _stores(),
            _solver(),
            payload['apiKey'],
            payload['task'],
            client_version=payload.get('version') or None,
            source=payload.get('source'),
            app_id=payload.get('appID'),
            record_pending=current_app.config.get('RECORD_PENDING_TASKS', False),
        )
        return jsonify(body), status
    except Exception as e:
        return _internal_error("createTask error", e)


@api.route('/createTask/tasks', methods=['GET'])
def get_tasks():
    limit = request.args.get('limit', type=int) or current_app.config.get('TASK_LIST_LIMIT', 100)
    full = request.args.get('full', 'false').lower() == 'true'
    try:
        return jsonify({'tasks': list_tasks(_stores(), limit=max(1, limit), include_payload=full)})
    except Exception as e:
        return _internal_error("Error fetching tasks", e)


# =========================
# API key endpoints
# =========================

@api.route('/api_key', methods=['POST'])
def post_api_key():
    payload = request.get_json(silent=True) or {}
    key = payload.get('key')
    visitor_id = payload.get('visitorId')

    if _is_blank(key):
        return jsonify({'error': 'API key is required', 'status': 'invalid_request'}), 400
    if _is_blank(visitor_id):
        return _validation_error(('visitorId', 'Required'))

    try:
        body, status = bind_key(_stores(), key.strip(), visitor_id)
        return jsonify(body), status
    except Exception as e:
        return _internal_error("Error binding API key", e)


@api.route('/api_key', methods=['GET'])
def get_api_key():
    try:
        doc = _stores().api_keys.first()
    except Exception as e:
        return _internal_error("Error fetching API key", e)
    if not doc:
        return jsonify({'error': 'No API key found', 'status': 'not_found'}), 404
    return jsonify({'apiKey': doc['key'], 'status': 'success'})


# =========================
# Administrative endpoints
# =========================

@api.route('/init/setup', methods=['GET'])
def init_setup():
    try:
        return jsonify(ensure_setup(_stores()))
    except Exception as e:
        return _internal_error("Error initializing database", e)


@api.route('/health', methods=['GET'])
def health():
    stores = current_app.extensions[EXTENSION_KEY]["stores"]
    database = True if stores is not None else _db_available()
    return jsonify({'status': 'ok', 'database': database})


def create_app(stores=None, solver=None, config=None):
    """
    Build the Flask app.

    `stores` defaults to the Mongo-backed stores (resolved lazily per
    request) and `solver` to a SolverClient on the configured base URL.
    """
    app = Flask(__name__)
    app.config.update(
        RECORD_PENDING_TASKS=RECORD_PENDING_TASKS,
        TASK_LIST_LIMIT=TASK_LIST_LIMIT,
    )
    if config:
        app.config.update(config)
    app.extensions[EXTENSION_KEY] = {
        "stores": stores,
        "solver": solver if solver is not None else SolverClient(),
    }
    app.register_blueprint(api, url_prefix='/api')
    return app


if __name__ == "__main__":
    create_app().run(host=FLASK_HOST, port=FLASK_PORT, debug=FLASK_DEBUG)
