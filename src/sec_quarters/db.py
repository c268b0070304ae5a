"""Durable key-value storage for quarter records and the filing tracker.

Two implementations share one small interface:

  - InMemoryStore — process-local dict, used for tests and offline runs
  - MongoStore    — one MongoDB document per key, TTL index for ephemeral keys

Permanent keys are written without a TTL; ephemeral keys (assembled views
that can always be rebuilt from permanent ones) carry one. Every write is a
whole-value replacement, so concurrent writers race on which value wins but
can never leave a key half-written.

Backend failures surface as StoreError. Callers above this layer decide
whether that is fatal (it never is for a request).
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from pymongo import MongoClient
from pymongo.errors import PyMongoError

from sec_quarters.config import get_config
from sec_quarters.errors import StoreError

log = logging.getLogger(__name__)


class KeyValueStore:
    """Minimal byte-oriented store contract."""

    name = "abstract"

    def get(self, key: str) -> bytes | None:
        raise NotImplementedError

    def set(self, key: str, value: bytes, ttl: int | None = None) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def ping(self) -> bool:
        return True


# ── In-process store ───────────────────────────────────────────────────

class InMemoryStore(KeyValueStore):
    """Thread-safe dict store with per-key expiry."""

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[bytes, float | None]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> bytes | None:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and self._clock() >= expires_at:
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: bytes, ttl: int | None = None) -> bool:
        expires_at = self._clock() + ttl if ttl else None
        with self._lock:
            self._data[key] = (bytes(value), expires_at)
        return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


# ── MongoDB store ──────────────────────────────────────────────────────

class MongoStore(KeyValueStore):
    """Key-value documents ``{_id, value, expires_at, updated_at}`` in one collection.

    The connection is opened lazily on first use. A TTL index on
    ``expires_at`` lets MongoDB reap ephemeral keys; since the reaper only
    runs about once a minute, expiry is also checked on read.
    """

    name = "mongodb"

    def __init__(
        self,
        uri: str = "",
        database: str = "sec_quarters",
        collection_name: str = "kv",
        *,
        collection: Any = None,
    ):
        self._uri = uri
        self._database = database
        self._collection_name = collection_name
        self._client: MongoClient | None = None
        self._collection = collection

    def _get_collection(self):
        if self._collection is not None:
            return self._collection
        if not self._uri:
            raise StoreError("MONGODB_URI is not configured")

        client = MongoClient(self._uri, serverSelectionTimeoutMS=5000, tz_aware=True)
        # Ping confirms connectivity before we hand out the collection
        client.admin.command("ping")
        collection = client[self._database][self._collection_name]
        collection.create_index("expires_at", expireAfterSeconds=0)

        self._client = client
        self._collection = collection
        log.info("MongoDB connected (%s.%s)", self._database, self._collection_name)
        return collection

    def get(self, key: str) -> bytes | None:
        try:
            doc = self._get_collection().find_one({"_id": key})
        except PyMongoError as exc:
            raise StoreError(f"MongoDB read failed for {key}: {exc}", details={"key": key}) from exc
        if doc is None:
            return None

        expires_at = doc.get("expires_at")
        if expires_at is not None:
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if expires_at <= datetime.now(timezone.utc):
                return None
        return bytes(doc["value"])

    def set(self, key: str, value: bytes, ttl: int | None = None) -> bool:
        now = datetime.now(timezone.utc)
        doc = {
            "_id": key,
            "value": bytes(value),
            "expires_at": now + timedelta(seconds=ttl) if ttl else None,
            "updated_at": now,
        }
        try:
            self._get_collection().replace_one({"_id": key}, doc, upsert=True)
        except PyMongoError as exc:
            raise StoreError(f"MongoDB write failed for {key}: {exc}", details={"key": key}) from exc
        return True

    def delete(self, key: str) -> None:
        try:
            self._get_collection().delete_one({"_id": key})
        except PyMongoError as exc:
            raise StoreError(f"MongoDB delete failed for {key}: {exc}", details={"key": key}) from exc

    def ping(self) -> bool:
        try:
            self._get_collection()
            if self._client is not None:
                self._client.admin.command("ping")
            return True
        except (PyMongoError, StoreError) as exc:
            log.warning("MongoDB unavailable: %s", exc)
            return False


# ── Shared store ───────────────────────────────────────────────────────

_store: KeyValueStore | None = None


def get_store() -> KeyValueStore:
    """Get or create the shared store.

    MongoDB when MONGODB_URI is set and reachable; otherwise an in-process
    store, so the engine keeps working (without durability) offline.
    """
    global _store
    if _store is not None:
        return _store

    config = get_config()
    if not config.mongodb_uri:
        log.info("MONGODB_URI not set — running with an in-process quarter store")
        _store = InMemoryStore()
        return _store

    mongo = MongoStore(config.mongodb_uri, config.mongodb_database)
    if mongo.ping():
        _store = mongo
    else:
        log.warning("Falling back to an in-process quarter store; records will not survive restarts")
        _store = InMemoryStore()
    return _store


def is_available() -> bool:
    """Whether the shared store is durable and reachable."""
    store = get_store()
    return store.name == "mongodb" and store.ping()
