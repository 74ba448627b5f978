import threading

from pymongo import ReturnDocument, errors
from pymongo.mongo_client import MongoClient
from pymongo.server_api import ServerApi
from bson import ObjectId

from .config import (
    MONGO_URI,
    MONGO_DB_NAME,
    DEFAULT_SETTINGS,
    DB_CONNECTION_TIMEOUT,
    DB_MAX_POOL_SIZE,
    DB_MIN_POOL_SIZE,
)
from .helper import utcnow
from .utils.logger import get_logger

log = get_logger("database")

SETTINGS_ID = "global"

USER_STATUSES = ("active", "suspended")
# Older user documents spell the suspended state this way
LEGACY_SUSPENDED = "suespend"
USER_ROLES = ("admin", "user", "moderator")
KEY_STATUSES = ("active", "expire", "inactive")
TASK_STATUSES = ("pending", "completed", "failed")


class DatabaseUnavailable(Exception):
    """Raised when MongoDB cannot be reached or is not configured."""


class VisitorAlreadyBound(Exception):
    """Raised when a claim would bind a visitor that already holds another key."""


_client = None
_db = None
_lock = threading.Lock()


def _connect():
    global _client, _db
    if not MONGO_URI:
        raise DatabaseUnavailable("MONGO_URI is not configured")
    try:
        # Use stable Server API for Atlas; works locally as well
        client = MongoClient(
            MONGO_URI,
            server_api=ServerApi('1'),
            serverSelectionTimeoutMS=DB_CONNECTION_TIMEOUT,
            maxPoolSize=DB_MAX_POOL_SIZE,
            minPoolSize=DB_MIN_POOL_SIZE,
            tz_aware=True,
        )
        # Trigger server selection immediately
        client.admin.command("ping")
    except errors.PyMongoError as e:
        log.error(f"MongoDB connection failed: {e}")
        raise DatabaseUnavailable(str(e)) from e
    _client = client
    _db = client[MONGO_DB_NAME]
    log.success(f"Connected to MongoDB database '{MONGO_DB_NAME}'")


def get_db():
    """Return the shared database handle, connecting on first use."""
    if _db is None:
        with _lock:
            if _db is None:
                _connect()
    return _db


def _db_available():
    try:
        get_db()
        return True
    except DatabaseUnavailable:
        return False


def ensure_indexes(db=None):
    """Create indexes for all collections. Safe to call multiple times."""
    db = db if db is not None else get_db()
    has_string = {"$type": "string"}
    db.users.create_index(
        "visitor_id", unique=True, partialFilterExpression={"visitor_id": has_string}
    )
    db.users.create_index(
        "email", unique=True, partialFilterExpression={"email": has_string}
    )
    db.api_keys.create_index("key", unique=True)
    db.api_keys.create_index(
        "visitor_id", unique=True, partialFilterExpression={"visitor_id": has_string}
    )
    db.tasks.create_index([("created_at", -1)])
    db.tasks.create_index("visitor_id")
    log.debug("Indexes ensured")
    return True


# =========================
# Settings collection API
# =========================

class SettingsStore:
    """The single global settings document."""

    def __init__(self, db):
        self.collection = db.settings

    def get(self):
        return self.collection.find_one({"_id": SETTINGS_ID})

    def ensure_defaults(self):
        """
        Return the settings document, creating it with defaults if absent.

        The upsert targets a fixed _id, so concurrent callers converge on
        exactly one document.
        """
        now = utcnow()
        return self.collection.find_one_and_update(
            {"_id": SETTINGS_ID},
            {"$setOnInsert": dict(DEFAULT_SETTINGS, created_at=now, updated_at=now)},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    def update(self, fields):
        """Administrative update of the singleton; creates it if needed."""
        self.ensure_defaults()
        return self.collection.find_one_and_update(
            {"_id": SETTINGS_ID},
            {"$set": dict(fields, updated_at=utcnow())},
            return_document=ReturnDocument.AFTER,
        )


# =========================
# Users collection API
# =========================

class UserDirectory:
    def __init__(self, db):
        self.collection = db.users

    def find_by_visitor(self, visitor_id):
        if not visitor_id:
            return None
        return self.collection.find_one({"visitor_id": visitor_id})

    def find_by_email(self, email):
        return self.collection.find_one({"email": email})

    def upsert_for_visitor(self, visitor_id, name):
        """Create the user for `visitor_id`, or refresh its display name."""
        now = utcnow()
        return self.collection.find_one_and_update(
            {"visitor_id": visitor_id},
            {
                "$set": {"name": name, "updated_at": now},
                "$setOnInsert": {
                    "visitor_id": visitor_id,
                    "email": None,
                    "role": "user",
                    "status": "active",
                    "created_at": now,
                },
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    def create(self, name, email=None, role="user", visitor_id=None, status="active"):
        if role not in USER_ROLES:
            raise ValueError(f"role must be one of {USER_ROLES}")
        if status not in USER_STATUSES:
            raise ValueError(f"status must be one of {USER_STATUSES}")
        now = utcnow()
        doc = {
            "name": name,
            "email": email,
            "role": role,
            "status": status,
            "visitor_id": visitor_id,
            "created_at": now,
            "updated_at": now,
        }
        result = self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc


def is_suspended(user):
    return user.get("status") in ("suspended", LEGACY_SUSPENDED)


# =========================
# API key collection API
# =========================

class ApiKeyRegistry:
    def __init__(self, db):
        self.collection = db.api_keys

    def find_by_key(self, key):
        return self.collection.find_one({"key": key})

    def find_by_visitor(self, visitor_id):
        if not visitor_id:
            return None
        return self.collection.find_one({"visitor_id": visitor_id})

    def first(self):
        return self.collection.find_one({}, sort=[("created_at", 1)])

    def claim(self, key, visitor_id, now=None):
        """
        Atomically bind `key` to `visitor_id`.

        Succeeds only when the key is unclaimed or already bound to the same
        visitor; returns the updated document, or None when the key belongs
        to someone else.
        """
        now = now or utcnow()
        try:
            return self.collection.find_one_and_update(
                {"key": key, "visitor_id": {"$in": [None, visitor_id]}},
                {"$set": {"visitor_id": visitor_id, "last_used_at": now, "updated_at": now}},
                return_document=ReturnDocument.AFTER,
            )
        except errors.DuplicateKeyError as e:
            raise VisitorAlreadyBound(visitor_id) from e

    def create(self, key, name=None, status="active", expires_at=None):
        if status not in KEY_STATUSES:
            raise ValueError(f"status must be one of {KEY_STATUSES}")
        now = utcnow()
        doc = {
            "key": key,
            "name": name,
            "visitor_id": None,
            "status": status,
            "expires_at": expires_at,
            "last_used_at": None,
            "created_at": now,
            "updated_at": now,
        }
        result = self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc


# =========================
# Task collection API
# =========================

class TaskRecordStore:
    def __init__(self, db):
        self.collection = db.tasks

    def create(self, task, status, result=None, visitor_id=None, source=None, app_id=None):
        if status not in TASK_STATUSES:
            raise ValueError(f"status must be one of {TASK_STATUSES}")
        now = utcnow()
        doc = {
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
        inserted = self.collection.insert_one(doc)
        doc["_id"] = inserted.inserted_id
        return doc

    def finish(self, task_id, status, result):
        """Move a pending record to its terminal status. Returns the updated doc or None."""
        if status not in ("completed", "failed"):
            raise ValueError("terminal status must be 'completed' or 'failed'")
        if not isinstance(task_id, ObjectId):
            task_id = ObjectId(task_id)
        return self.collection.find_one_and_update(
            {"_id": task_id, "status": "pending"},
            {"$set": {"status": status, "result": result, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )

    def list_recent(self, limit=100):
        cursor = self.collection.find({}).sort([("created_at", -1), ("_id", -1)]).limit(int(limit))
        return list(cursor)


class Stores:
    """Bundle of the four persistence collaborators used by the workflows."""

    def __init__(self, settings, users, api_keys, tasks, db=None):
        self.settings = settings
        self.users = users
        self.api_keys = api_keys
        self.tasks = tasks
        self.db = db

    @classmethod
    def from_db(cls, db):
        return cls(
            settings=SettingsStore(db),
            users=UserDirectory(db),
            api_keys=ApiKeyRegistry(db),
            tasks=TaskRecordStore(db),
            db=db,
        )

    def ensure_indexes(self):
        """Create indexes on the backing database; False when there is none."""
        if self.db is None:
            return False
        return ensure_indexes(self.db)


_stores = None


def get_stores():
    """Mongo-backed stores on the shared connection."""
    global _stores
    if _stores is None:
        _stores = Stores.from_db(get_db())
    return _stores
