"""
Storage abstraction for feedback history and learned rules.

Provides pluggable record stores:
- In-memory (development, tests)
- Redis (production, shared between workers)

Configure via the STORAGE_BACKEND and REDIS_URL environment variables.
Records are plain JSON-compatible dicts grouped into named collections.
"""
import json
import uuid
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from vizengine.core.config import get_settings

logger = logging.getLogger(__name__)

FEEDBACK = "feedback"
CHART_FEEDBACK = "chart_feedback"
RULES = "rules"


class RecordStore(ABC):
    """Abstract base class for record stores."""

    @abstractmethod
    def create(self, collection: str, record: Dict[str, Any]) -> str:
        """Insert a record and return its generated id."""

    @abstractmethod
    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Get a record by id. Returns None if not found."""

    @abstractmethod
    def update(self, collection: str, record_id: str, fields: Dict[str, Any]) -> bool:
        """Merge fields into an existing record. Returns False if not found."""

    @abstractmethod
    def delete(self, collection: str, record_id: str) -> bool:
        """Delete a record. Returns True if deleted."""

    @abstractmethod
    def list(self, collection: str, owner_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """All records of a collection in insertion order, optionally filtered by user_id."""

    @staticmethod
    def _owned_by(record: Dict[str, Any], owner_id: Optional[str]) -> bool:
        return owner_id is None or record.get("user_id") == owner_id


class InMemoryStore(RecordStore):
    """
    In-memory store for development.

    Lost on restart and not shared between workers.
    """

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.Lock()
        logger.info("Using in-memory record store (development only)")

    def create(self, collection: str, record: Dict[str, Any]) -> str:
        record_id = str(uuid.uuid4())
        with self._lock:
            self._collections.setdefault(collection, {})[record_id] = {**record, "id": record_id}
        return record_id

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._collections.get(collection, {}).get(record_id)
            return dict(record) if record is not None else None

    def update(self, collection: str, record_id: str, fields: Dict[str, Any]) -> bool:
        with self._lock:
            records = self._collections.get(collection, {})
            if record_id not in records:
                return False
            records[record_id] = {**records[record_id], **fields, "id": record_id}
            return True

    def delete(self, collection: str, record_id: str) -> bool:
        with self._lock:
            return self._collections.get(collection, {}).pop(record_id, None) is not None

    def list(self, collection: str, owner_id: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            records = list(self._collections.get(collection, {}).values())
        return [dict(r) for r in records if self._owned_by(r, owner_id)]

    def size(self, collection: str) -> int:
        """Get current collection size."""
        with self._lock:
            return len(self._collections.get(collection, {}))


class RedisStore(RecordStore):
    """
    Redis store for production.

    Each collection is a hash of id -> JSON plus a list keeping insertion order.
    Requires the redis package.
    """

    def __init__(self, redis_url: str, prefix: str = "vizengine"):
        try:
            import redis
        except ImportError:
            raise RuntimeError(
                "Redis storage requires 'redis' package. "
                "Install with: pip install adaptive-viz-engine[redis]"
            )
        self._prefix = prefix
        try:
            self._client = redis.from_url(redis_url, decode_responses=True)
            self._client.ping()
        except redis.RedisError as e:
            raise RuntimeError(f"Failed to connect to Redis: {e}")
        logger.info("Connected to Redis record store")

    def _hash_key(self, collection: str) -> str:
        return f"{self._prefix}:{collection}"

    def _order_key(self, collection: str) -> str:
        return f"{self._prefix}:{collection}:order"

    def create(self, collection: str, record: Dict[str, Any]) -> str:
        record_id = str(uuid.uuid4())
        payload = json.dumps({**record, "id": record_id}, default=str)
        pipe = self._client.pipeline()
        pipe.hset(self._hash_key(collection), record_id, payload)
        pipe.rpush(self._order_key(collection), record_id)
        pipe.execute()
        return record_id

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        data = self._client.hget(self._hash_key(collection), record_id)
        return json.loads(data) if data else None

    def update(self, collection: str, record_id: str, fields: Dict[str, Any]) -> bool:
        current = self.get(collection, record_id)
        if current is None:
            return False
        payload = json.dumps({**current, **fields, "id": record_id}, default=str)
        self._client.hset(self._hash_key(collection), record_id, payload)
        return True

    def delete(self, collection: str, record_id: str) -> bool:
        pipe = self._client.pipeline()
        pipe.hdel(self._hash_key(collection), record_id)
        pipe.lrem(self._order_key(collection), 0, record_id)
        removed, _ = pipe.execute()
        return removed > 0

    def list(self, collection: str, owner_id: Optional[str] = None) -> List[Dict[str, Any]]:
        ids = self._client.lrange(self._order_key(collection), 0, -1)
        if not ids:
            return []
        payloads = self._client.hmget(self._hash_key(collection), ids)
        records = [json.loads(p) for p in payloads if p]
        return [r for r in records if self._owned_by(r, owner_id)]


# Store factory
_store_instance: Optional[RecordStore] = None


def get_store() -> RecordStore:
    """
    Get the configured record store (singleton).

    STORAGE_BACKEND selects "memory" (default) or "redis"; REDIS_URL is
    required for redis.
    """
    global _store_instance

    if _store_instance is None:
        settings = get_settings()
        if settings.storage_backend == 'redis':
            if not settings.redis_url:
                raise RuntimeError(
                    "REDIS_URL environment variable required for redis storage"
                )
            _store_instance = RedisStore(settings.redis_url)
        else:
            _store_instance = InMemoryStore()

    return _store_instance


def reset_store():
    """Reset store instance (for testing)."""
    global _store_instance
    _store_instance = None
