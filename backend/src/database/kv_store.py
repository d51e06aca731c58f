"""
Durable key-value storage for quota counters, the player directory and the event store.

The core only needs get/set/delete/clear by string key with JSON-serializable
values. The in-memory store backs tests and single-run deployments; the Supabase
store persists across restarts in a single key/value table.
"""

import copy
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from supabase import create_client, Client

from config import Config

logger = logging.getLogger(__name__)


class KeyValueStore:
    """Minimal durable key-value port."""

    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError


class MemoryKeyValueStore(KeyValueStore):
    """Process-local store. Values round-trip through JSON like the durable backend."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, str] = {}
        for key, value in (initial or {}).items():
            self.set(key, value)

    def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    def set_raw(self, key: str, raw: str) -> None:
        """Write an unparsed payload (used to simulate a corrupted entry)."""
        self._data[key] = raw

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def keys(self):
        return list(self._data.keys())

    def snapshot(self) -> Dict[str, Any]:
        return {key: copy.deepcopy(self.get(key)) for key in self._data}


class SupabaseKeyValueStore(KeyValueStore):
    """Key-value store on a Supabase table with columns key (pk), value (jsonb), updated_at."""

    def __init__(self, config: Config, client: Optional[Client] = None):
        self.config = config
        self.table = config.supabase_kv_table
        self.client: Optional[Client] = client
        if self.client is None:
            self._initialize_client()

    def _initialize_client(self):
        """Initialize Supabase client."""
        if not self.config.supabase_url or not self.config.supabase_key:
            raise ValueError("Supabase URL and key are required")

        # Service key bypasses row level security when available
        key = self.config.supabase_service_key or self.config.supabase_key
        self.client = create_client(self.config.supabase_url, key)

        logger.info("Initialized Supabase key-value store", extra={
            "url": self.config.supabase_url,
            "table": self.table,
            "using_service_key": bool(self.config.supabase_service_key)
        })

    def get(self, key: str) -> Optional[Any]:
        result = self.client.table(self.table).select("value").eq("key", key).limit(1).execute()
        rows = result.data or []
        if not rows:
            return None
        return rows[0].get("value")

    def set(self, key: str, value: Any) -> None:
        self.client.table(self.table).upsert(
            {
                "key": key,
                "value": value,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
            on_conflict="key",
        ).execute()

    def delete(self, key: str) -> None:
        self.client.table(self.table).delete().eq("key", key).execute()

    def clear(self) -> None:
        self.client.table(self.table).delete().neq("key", "").execute()
        logger.info("Cleared key-value store", extra={"table": self.table})


def create_kv_store(config: Config) -> KeyValueStore:
    """Build the store selected by STORAGE_BACKEND."""
    if config.storage_backend == "supabase":
        return SupabaseKeyValueStore(config)
    return MemoryKeyValueStore()


def read_json_entry(store: KeyValueStore, key: str) -> Optional[Any]:
    """
    Read a key, clearing it if the persisted payload cannot be decoded.

    A corrupted entry is dropped so the owning cache rebuilds from source
    instead of failing at startup.
    """
    try:
        return store.get(key)
    except (ValueError, TypeError) as e:
        logger.warning("Corrupted persisted entry cleared", extra={"key": key, "error": str(e)})
        try:
            store.delete(key)
        except Exception as delete_error:
            logger.error("Failed to clear corrupted entry", extra={
                "key": key,
                "error": str(delete_error)
            })
        return None
