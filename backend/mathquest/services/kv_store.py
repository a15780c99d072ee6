"""
Key-value persistence boundary for per-user question history.

Values are JSON-serialisable dicts. Stores never interpret them; shape
checks live in history_store.
"""
import json
import logging
import os
from pathlib import Path
from threading import Lock
from typing import Optional

logger = logging.getLogger("mathquest.kv_store")


class KeyValueStore:
    def get(self, key: str) -> Optional[dict]:
        raise NotImplementedError

    def set(self, key: str, value: dict) -> None:
        raise NotImplementedError


class InMemoryKeyValueStore(KeyValueStore):
    def __init__(self):
        self._data = {}
        self._lock = Lock()

    def get(self, key: str) -> Optional[dict]:
        with self._lock:
            raw = self._data.get(key)
        # round-trip so callers never share a mutable blob with the store
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: dict) -> None:
        raw = json.dumps(value)
        with self._lock:
            self._data[key] = raw


class JsonFileKeyValueStore(KeyValueStore):
    """All keys in one JSON document on disk. Last write wins."""

    def __init__(self, path):
        self.path = Path(path)
        self._lock = Lock()

    def _read_all(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Failed to load %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring non-object document in %s", self.path)
            return {}
        return data

    def _write_all(self, data: dict) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.path)
        except OSError as exc:
            logger.warning("Failed to save %s: %s", self.path, exc)

    def get(self, key: str) -> Optional[dict]:
        with self._lock:
            return self._read_all().get(key)

    def set(self, key: str, value: dict) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = value
            self._write_all(data)


class SupabaseKeyValueStore(KeyValueStore):
    """
    One row per key in `question_history` (key text pk, data jsonb).
    Keys are the full store key, e.g. "question_history:42".
    """

    def __init__(self, supabase_client, table: str = "question_history"):
        self.sb = supabase_client
        self.table = table

    def get(self, key: str) -> Optional[dict]:
        r = (
            self.sb.table(self.table)
            .select("data")
            .eq("key", key)
            .maybe_single()
            .execute()
        )
        row = getattr(r, "data", None)
        if not row:
            return None
        return row.get("data")

    def set(self, key: str, value: dict) -> None:
        (
            self.sb.table(self.table)
            .upsert({"key": key, "data": value}, on_conflict="key")
            .execute()
        )


KV_STORE = InMemoryKeyValueStore()


def get_key_value_store(settings=None) -> KeyValueStore:
    if settings is None:
        from mathquest.core.config import get_settings
        settings = get_settings()

    backend = (settings.history_store or "memory").lower()
    if backend == "file":
        return JsonFileKeyValueStore(settings.history_file)
    if backend != "supabase":
        return KV_STORE

    try:
        from mathquest.core.deps import get_supabase_client
        return SupabaseKeyValueStore(get_supabase_client())
    except Exception as exc:
        logger.warning("Supabase history store unavailable, using memory: %s", exc)
        return KV_STORE
