from .agent import SyncAgent, SyncStatus, full_snapshot
from .state import (
    JsonFileKeyValueStore,
    KeyValueStore,
    LocalSyncState,
    MemoryKeyValueStore,
    load_local_sync_state,
    save_local_sync_state,
)
from .transport import HttpSyncTransport, SyncRequestError

__all__ = [
    'HttpSyncTransport',
    'JsonFileKeyValueStore',
    'KeyValueStore',
    'LocalSyncState',
    'MemoryKeyValueStore',
    'SyncAgent',
    'SyncRequestError',
    'SyncStatus',
    'full_snapshot',
    'load_local_sync_state',
    'save_local_sync_state',
]
