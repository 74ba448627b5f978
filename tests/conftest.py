"""Shared fixtures: in-memory stand-ins for the Mongo stores and the solver."""
from __future__ import annotations

import copy
import itertools
import threading
from datetime import datetime, timedelta, timezone

import pytest

from captcha_broker.api_gateway import create_app
from captcha_broker.config import DEFAULT_SETTINGS
from captcha_broker.database import SETTINGS_ID, Stores, VisitorAlreadyBound
from captcha_broker.upstream import UpstreamError

_ids = itertools.count(1)


def _now():
    return datetime.now(timezone.utc)


class FakeSettingsStore:
    def __init__(self):
        self.docs = {}
        self._lock = threading.Lock()

    def get(self):
        return copy.deepcopy(self.docs.get(SETTINGS_ID))

    def ensure_defaults(self):
        with self._lock:
            if SETTINGS_ID not in self.docs:
                now = _now()
                self.docs[SETTINGS_ID] = dict(DEFAULT_SETTINGS, _id=SETTINGS_ID, created_at=now, updated_at=now)
        return self.get()

    def update(self, fields):
        self.ensure_defaults()
        self.docs[SETTINGS_ID].update(fields, updated_at=_now())
        return self.get()


class FakeUserDirectory:
    def __init__(self):
        self.docs = []

    def find_by_visitor(self, visitor_id):
        for doc in self.docs:
            if visitor_id and doc.get("visitor_id") == visitor_id:
                return copy.deepcopy(doc)
        return None

    def find_by_email(self, email):
        for doc in self.docs:
            if doc.get("email") == email:
                return copy.deepcopy(doc)
        return None

    def upsert_for_visitor(self, visitor_id, name):
        for doc in self.docs:
            if doc.get("visitor_id") == visitor_id:
                doc.update(name=name, updated_at=_now())
                return copy.deepcopy(doc)
        return self.create(name, visitor_id=visitor_id)

    def create(self, name, email=None, role="user", visitor_id=None, status="active"):
        now = _now()
        doc = {
            "_id": next(_ids),
            "name": name,
            "email": email,
            "role": role,
            "status": status,
            "visitor_id": visitor_id,
            "created_at": now,
            "updated_at": now,
        }
        self.docs.append(doc)
        return copy.deepcopy(doc)


class FakeApiKeyRegistry:
    def __init__(self):
        self.docs = []

    def find_by_key(self, key):
        for doc in self.docs:
            if doc["key"] == key:
                return copy.deepcopy(doc)
        return None

    def find_by_visitor(self, visitor_id):
        for doc in self.docs:
            if visitor_id and doc.get("visitor_id") == visitor_id:
                return copy.deepcopy(doc)
        return None

    def first(self):
        return copy.deepcopy(self.docs[0]) if self.docs else None

    def claim(self, key, visitor_id, now=None):
        now = now or _now()
        for doc in self.docs:
            if doc["key"] == key and doc.get("visitor_id") in (None, visitor_id):
                if any(d is not doc and d.get("visitor_id") == visitor_id for d in self.docs):
                    raise VisitorAlreadyBound(visitor_id)
                doc.update(visitor_id=visitor_id, last_used_at=now, updated_at=now)
                return copy.deepcopy(doc)
        return None

    def create(self, key, name=None, status="active", expires_at=None, visitor_id=None):
        now = _now()
        doc = {
            "_id": next(_ids),
            "key": key,
            "name": name,
            "visitor_id": visitor_id,
            "status": status,
            "expires_at": expires_at,
            "last_used_at": None,
            "created_at": now,
            "updated_at": now,
        }
        self.docs.append(doc)
        return copy.deepcopy(doc)


class FakeTaskRecordStore:
    def __init__(self):
        self.docs = []

    def create(self, task, status, result=None, visitor_id=None, source=None, app_id=None):
        now = _now()
        doc = {
            "_id": next(_ids),
            "task": task,
            "status": status,
            "visitor_id": visitor_id,
            "source": source,
            "app_id": app_id,
            "created_at": now,
            "updated_at": now,
        }
        if result is not None:
            doc["result"] = result
        self.docs.append(doc)
        return copy.deepcopy(doc)

    def finish(self, task_id, status, result):
        for doc in self.docs:
            if doc["_id"] == task_id and doc["status"] == "pending":
                doc.update(status=status, result=result, updated_at=_now())
                return copy.deepcopy(doc)
        return None

    def list_recent(self, limit=100):
        ordered = sorted(self.docs, key=lambda d: (d["created_at"], d["_id"]), reverse=True)
        return copy.deepcopy(ordered[:limit])


class FakeSolver:
    """Records calls and replays canned responses (or raises UpstreamError)."""

    def __init__(self):
        self.balance_response = {"status": "ok", "balance": 42.5, "plan": "pro"}
        self.task_response = {"code": 200, "msg": "ok", "answers": [1, 4]}
        self.error = None
        self.calls = []

    def get_balance(self, api_key):
        self.calls.append(("balance", api_key))
        if self.error:
            raise self.error
        return self.balance_response

    def create_task(self, api_key, task):
        self.calls.append(("createTask", api_key, task))
        if self.error:
            raise self.error
        return self.task_response

    def fail_with(self, message="timeout"):
        self.error = UpstreamError(message)


@pytest.fixture
def stores():
    return Stores(
        settings=FakeSettingsStore(),
        users=FakeUserDirectory(),
        api_keys=FakeApiKeyRegistry(),
        tasks=FakeTaskRecordStore(),
    )


@pytest.fixture
def solver():
    return FakeSolver()


@pytest.fixture
def settings(stores):
    stores.settings.ensure_defaults()
    stores.settings.update({"upstream_key": "global-upstream-key", "app_version": "1.1"})
    return stores.settings


@pytest.fixture
def registered(stores, settings):
    """A visitor with an active user and a bound, unexpired key."""
    stores.users.create("Alice", visitor_id="visitor-1")
    stores.api_keys.create(
        "C_master.abc",
        name="Alice",
        visitor_id="visitor-1",
        expires_at=_now() + timedelta(days=30),
    )
    return "visitor-1"


@pytest.fixture
def client(stores, solver):
    app = create_app(stores=stores, solver=solver)
    app.testing = True
    with app.test_client() as test_client:
        yield test_client
