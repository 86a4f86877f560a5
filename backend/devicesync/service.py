from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from django.conf import settings

from .codes import allocate_sync_code, generate_sync_code, normalize_sync_code
from .credentials import (
    burn_pin_check,
    derive_auth_token,
    derive_pin_hash,
    generate_salt,
    verify_auth_token,
    verify_pin,
)
from .documents import LIST_FIELDS, AccountDocument, DocumentFormatError, normalize_initial_snapshot, now_ms
from .store import AccountStore, BlobExists, BlobNotFound, StoreError, get_account_store

logger = logging.getLogger(__name__)

_PIN_RE = re.compile(r'[0-9]{4}')


class SyncValidationError(ValueError):
    pass


class SyncCodeNotFound(LookupError):
    pass


class InvalidCredentials(PermissionError):
    pass


@dataclass
class SetupResult:
    sync_code: str
    auth_token: str
    created_at: int


@dataclass
class LoginResult:
    sync_code: str
    auth_token: str
    snapshot: Dict[str, Any]
    last_synced_at: int


def validate_pin(pin: Any) -> str:
    if not isinstance(pin, str) or not _PIN_RE.fullmatch(pin):
        raise SyncValidationError('PIN must be exactly 4 digits')
    return pin


def validate_snapshot_fields(data: Mapping[str, Any]) -> None:
    """Reject snapshot fields of the wrong JSON type; absent/null fields pass."""
    for name in LIST_FIELDS:
        value = data.get(name)
        if value is not None and not isinstance(value, list):
            raise SyncValidationError(f'{name} must be a list')
    for name in ('todos', 'recurringTasks', 'pauseLogs'):
        if any(not isinstance(item, dict) for item in data.get(name) or []):
            raise SyncValidationError(f'{name} entries must be objects')
    timer = data.get('timerState')
    if timer is not None and not isinstance(timer, dict):
        raise SyncValidationError('timerState must be an object or null')


def _load_document(store: AccountStore, sync_code: str) -> AccountDocument:
    try:
        raw = store.read(sync_code)
    except BlobNotFound as exc:
        raise SyncCodeNotFound('Sync code not found') from exc
    try:
        return AccountDocument.from_json(raw)
    except DocumentFormatError as exc:
        logger.error("sync_document_corrupt", extra={"sync_code": sync_code, "reason": str(exc)})
        raise StoreError('document_corrupt') from exc


def _authenticate(store: AccountStore, sync_code: Optional[str], auth_token: Optional[str]) -> AccountDocument:
    if not sync_code or not str(sync_code).strip():
        raise SyncValidationError('Sync code required')
    if not auth_token:
        raise InvalidCredentials('Authentication required')
    code = normalize_sync_code(sync_code)
    document = _load_document(store, code)
    if not verify_auth_token(auth_token, code, document.salt):
        logger.warning("sync_auth_rejected", extra={"sync_code": code})
        raise InvalidCredentials('Invalid authentication token')
    return document


def setup_account(*, pin: Any, existing_data: Optional[Mapping[str, Any]] = None, store: Optional[AccountStore] = None) -> SetupResult:
    """Create a new sync account seeded with the device's current data."""
    validate_pin(pin)
    if existing_data is not None:
        if not isinstance(existing_data, Mapping):
            raise SyncValidationError('existingData must be an object')
        validate_snapshot_fields(existing_data)
    store = store or get_account_store()

    max_attempts = getattr(settings, 'SYNC_CODE_MAX_ATTEMPTS', 10)
    drawn = 0

    def _draw() -> str:
        nonlocal drawn
        drawn += 1
        return generate_sync_code()

    while True:
        # Existence check first, then an atomic create: a concurrent Setup that
        # drew the same code between the two makes create() fail, and we draw again.
        sync_code = allocate_sync_code(store.exists, max_attempts=max_attempts - drawn, generate=_draw)
        salt = generate_salt()
        now = now_ms()
        document = AccountDocument.create(
            sync_code=sync_code,
            pin_hash=derive_pin_hash(pin, salt),
            salt=salt,
            snapshot=normalize_initial_snapshot(existing_data, now),
            now=now,
        )
        try:
            store.create(sync_code, document.to_json())
        except BlobExists:
            logger.warning("sync_code_taken_on_create", extra={"sync_code": sync_code})
            continue
        break

    logger.info("sync_setup_created", extra={"sync_code": sync_code, "todos": len(document.todos)})
    return SetupResult(
        sync_code=sync_code,
        auth_token=derive_auth_token(sync_code, salt),
        created_at=document.created_at,
    )


def login(*, sync_code: Any, pin: Any, store: Optional[AccountStore] = None) -> LoginResult:
    """Verify ``pin`` for ``sync_code`` and hand back a token plus the stored snapshot.

    Read-only: nothing is written, so ``lastSyncedAt`` is whatever the last push set.
    """
    if not sync_code or not pin or not isinstance(sync_code, str) or not isinstance(pin, str):
        raise SyncValidationError('Sync code and PIN are required')
    store = store or get_account_store()
    code = normalize_sync_code(sync_code)
    try:
        document = _load_document(store, code)
    except SyncCodeNotFound:
        burn_pin_check(pin)
        logger.info("sync_login_unknown_code", extra={"sync_code": code})
        raise
    if not verify_pin(pin, document.salt, document.pin_hash):
        logger.warning("sync_login_rejected", extra={"sync_code": code})
        raise InvalidCredentials('Invalid PIN')
    return LoginResult(
        sync_code=code,
        auth_token=derive_auth_token(code, document.salt),
        snapshot=document.snapshot(),
        last_synced_at=document.last_synced_at,
    )


def push(*, sync_code: Any, auth_token: Any, changes: Mapping[str, Any], store: Optional[AccountStore] = None) -> int:
    """Overwrite the fields present in ``changes``; return the new ``lastSyncedAt``.

    Last write wins for the whole document. The document is written exactly
    once, so a failed push leaves the stored version untouched.
    """
    store = store or get_account_store()
    validate_snapshot_fields(changes)
    document = _authenticate(store, sync_code, auth_token)
    updated = document.with_changes(changes, now_ms())
    store.write(updated.sync_code, updated.to_json())
    logger.info("sync_push_accepted", extra={"sync_code": updated.sync_code, "fields": sorted(changes)})
    return updated.last_synced_at


def pull(*, sync_code: Any, auth_token: Any, store: Optional[AccountStore] = None) -> Dict[str, Any]:
    store = store or get_account_store()
    document = _authenticate(store, sync_code, auth_token)
    return document.public_data()


def account_summary(*, sync_code: str, store: Optional[AccountStore] = None) -> Dict[str, Any]:
    """Operator view of an account: identifiers, timestamps and counts, never secrets."""
    store = store or get_account_store()
    document = _load_document(store, normalize_sync_code(sync_code))
    return {
        'sync_code': document.sync_code,
        'created_at': document.created_at,
        'last_synced_at': document.last_synced_at,
        'todos': len(document.todos),
        'recurring_tasks': len(document.recurring_tasks),
        'pause_logs': len(document.pause_logs),
        'timer_active': document.timer_state is not None,
        'recurring_added_dates': len(document.recurring_added_dates),
    }
