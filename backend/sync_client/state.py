"""Device-side persistence of sync credentials.

The agent never touches a concrete platform store directly; it is handed a
:class:`KeyValueStore` (string keys, string values, ``None`` deletes).
"""
from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Protocol

logger = logging.getLogger(__name__)

SYNC_STATE_KEY = 'signal-over-noise-sync-state'


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: Optional[str]) -> None: ...


class MemoryKeyValueStore:
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: Optional[str]) -> None:
        if value is None:
            self._data.pop(key, None)
        else:
            self._data[key] = value


class JsonFileKeyValueStore:
    """All keys in one JSON object on disk, rewritten atomically on every set."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, str]:
        try:
            raw = self.path.read_text(encoding='utf-8')
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("kv_store_corrupt", extra={"path": str(self.path)})
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: Optional[str]) -> None:
        with self._lock:
            data = self._load()
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_name(self.path.name + '.tmp')
            tmp.write_text(json.dumps(data), encoding='utf-8')
            os.replace(tmp, self.path)


@dataclass
class LocalSyncState:
    sync_code: str
    auth_token: str
    last_synced_at: int

    def to_json(self) -> str:
        return json.dumps({
            'syncCode': self.sync_code,
            'authToken': self.auth_token,
            'lastSyncedAt': self.last_synced_at,
        })

    @classmethod
    def from_json(cls, raw: str) -> 'LocalSyncState':
        data = json.loads(raw)
        return cls(
            sync_code=str(data['syncCode']),
            auth_token=str(data['authToken']),
            last_synced_at=int(data.get('lastSyncedAt') or 0),
        )


def load_local_sync_state(store: KeyValueStore) -> Optional[LocalSyncState]:
    """Read the saved credentials; unreadable entries count as "not synced"."""
    raw = store.get(SYNC_STATE_KEY)
    if not raw:
        return None
    try:
        return LocalSyncState.from_json(raw)
    except (ValueError, KeyError, TypeError):
        logger.warning("local_sync_state_unreadable")
        return None


def save_local_sync_state(store: KeyValueStore, state: Optional[LocalSyncState]) -> None:
    store.set(SYNC_STATE_KEY, state.to_json() if state else None)
