"""
Task submission: gate the visitor, proxy the task to the solver, and record
the outcome.
"""

from .gate import evaluate_access, denial_response
from .helper import to_json_safe
from .upstream import UpstreamError
from .utils.logger import get_logger

log = get_logger("tasks")

UPSTREAM_SUCCESS_CODE = 200
UPSTREAM_FAILURE_BODY = {"error": "Failed to connect to external service"}


def submit_task(stores, solver, visitor_id, task, client_version=None, source=None,
                app_id=None, record_pending=False):
    """
    Submit `task` on behalf of `visitor_id`.

    Returns a (body, http_status) pair:
    - gate denial: its mapped body/status
    - solver code 200: the solver response verbatim, 200
    - other solver code: {error, code, response}, 400
    - transport failure: generic error, 500

    With `record_pending`, a pending record is written before the call and
    finished afterwards; otherwise one record is written once the outcome is
    known (transport failures then leave no record).
    """
    decision = evaluate_access(stores, visitor_id, client_version)
    if not decision["allowed"]:
        log.info(f"createTask denied for {visitor_id}: {decision['status']}")
        return denial_response(decision)

    meta = {"visitor_id": visitor_id, "source": source, "app_id": app_id}
    pending = None
    if record_pending:
        pending = stores.tasks.create(task, "pending", **meta)

    try:
        response = solver.create_task(decision["upstream_key"], task)
    except UpstreamError as e:
        log.error(f"Solver call failed for {visitor_id}: {e}")
        if pending is not None:
            stores.tasks.finish(pending["_id"], "failed", {"error": str(e)})
        return dict(UPSTREAM_FAILURE_BODY), 500

    succeeded = response.get("code") == UPSTREAM_SUCCESS_CODE
    status = "completed" if succeeded else "failed"
    if pending is not None:
        stores.tasks.finish(pending["_id"], status, response)
    else:
        stores.tasks.create(task, status, result=response, **meta)

    if succeeded:
        log.success(f"Task completed for {visitor_id}")
        return response, 200

    log.warning(f"Solver rejected task for {visitor_id}: code={response.get('code')} msg={response.get('msg')}")
    return {
        "error": response.get("msg") or "Task failed",
        "code": response.get("code"),
        "response": response,
    }, 400


def list_tasks(stores, limit=100, include_payload=False):
    """Most recent records first; `task`/`result` only when asked for."""
    items = []
    for doc in stores.tasks.list_recent(limit=limit):
        item = {
            "id": doc.get("_id"),
            "status": doc.get("status"),
            "visitorId": doc.get("visitor_id"),
            "source": doc.get("source"),
            "appID": doc.get("app_id"),
            "createdAt": doc.get("created_at"),
            "updatedAt": doc.get("updated_at"),
        }
        if include_payload:
            item["task"] = doc.get("task")
            item["result"] = doc.get("result")
        items.append(item)
    return to_json_safe(items)
