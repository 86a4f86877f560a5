"""Blob stores holding one JSON account document per sync code.

The sync service only relies on the :class:`AccountStore` protocol, so the
backing store is swappable: ``DatabaseBlobStore`` persists through the
``SyncBlob`` model, ``InMemoryBlobStore`` keeps everything in a dict (tests,
throwaway dev servers). ``SYNC_STORE_BACKEND`` selects the default.
"""
from __future__ import annotations

import logging
import threading
from typing import Dict, Optional, Protocol

from django.conf import settings
from django.core.signals import setting_changed
from django.db import DatabaseError, IntegrityError, transaction
from django.dispatch import receiver
from django.utils.module_loading import import_string

from .models import SyncBlob

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    pass


class BlobNotFound(LookupError):
    pass


class BlobExists(StoreError):
    pass


class AccountStore(Protocol):
    def exists(self, key: str) -> bool: ...

    def read(self, key: str) -> bytes: ...

    def write(self, key: str, data: bytes) -> None: ...

    def create(self, key: str, data: bytes) -> None: ...


class DatabaseBlobStore:
    def exists(self, key: str) -> bool:
        try:
            return SyncBlob.objects.filter(key=key).exists()
        except DatabaseError as exc:
            raise StoreError('store_exists_failed') from exc

    def read(self, key: str) -> bytes:
        try:
            blob = SyncBlob.objects.get(key=key)
        except SyncBlob.DoesNotExist as exc:
            raise BlobNotFound(key) from exc
        except DatabaseError as exc:
            raise StoreError('store_read_failed') from exc
        # BinaryField may come back as memoryview depending on the backend.
        return bytes(blob.payload)

    def write(self, key: str, data: bytes) -> None:
        try:
            SyncBlob.objects.update_or_create(key=key, defaults={'payload': data})
        except DatabaseError as exc:
            raise StoreError('store_write_failed') from exc

    def create(self, key: str, data: bytes) -> None:
        try:
            with transaction.atomic():
                SyncBlob.objects.create(key=key, payload=data)
        except IntegrityError as exc:
            raise BlobExists(key) from exc
        except DatabaseError as exc:
            raise StoreError('store_write_failed') from exc


class InMemoryBlobStore:
    def __init__(self, initial: Optional[Dict[str, bytes]] = None):
        self._blobs: Dict[str, bytes] = dict(initial or {})
        self._lock = threading.Lock()

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._blobs

    def read(self, key: str) -> bytes:
        with self._lock:
            try:
                return self._blobs[key]
            except KeyError as exc:
                raise BlobNotFound(key) from exc

    def write(self, key: str, data: bytes) -> None:
        with self._lock:
            self._blobs[key] = bytes(data)

    def create(self, key: str, data: bytes) -> None:
        with self._lock:
            if key in self._blobs:
                raise BlobExists(key)
            self._blobs[key] = bytes(data)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._blobs)


_default_store: Optional[AccountStore] = None


def get_account_store() -> AccountStore:
    """Return the process-wide store configured by ``SYNC_STORE_BACKEND``."""
    global _default_store
    if _default_store is None:
        path = getattr(settings, 'SYNC_STORE_BACKEND', 'devicesync.store.DatabaseBlobStore')
        _default_store = import_string(path)()
        logger.info("sync_store_configured", extra={"backend": path})
    return _default_store


def reset_account_store() -> None:
    """Drop the cached store so the next call re-reads settings."""
    global _default_store
    _default_store = None


@receiver(setting_changed)
def _reset_store_on_setting_change(*, setting, **kwargs):
    if setting == 'SYNC_STORE_BACKEND':
        reset_account_store()
