"""Device-side sync agent.

The UI tells the agent when synchronized state changed; the agent decides when
to push, retries failed pushes with exponential backoff, and writes snapshots
coming back from Setup, Login or a refresh into the UI's state.
"""
from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Protocol, Set

from .state import KeyValueStore, LocalSyncState, load_local_sync_state, save_local_sync_state
from .transport import SyncRequestError

logger = logging.getLogger(__name__)

SNAPSHOT_FIELDS = ('todos', 'recurringTasks', 'pauseLogs', 'timerState', 'recurringAddedDates')

_PIN_RE = re.compile(r'[0-9]{4}')


class SyncTransport(Protocol):
    def setup(self, pin: str, existing_data: Optional[Mapping[str, Any]] = None) -> Awaitable[Dict[str, Any]]: ...
    def login(self, sync_code: str, pin: str) -> Awaitable[Dict[str, Any]]: ...
    def push(self, sync_code: str, auth_token: str, snapshot: Mapping[str, Any]) -> Awaitable[Dict[str, Any]]: ...
    def pull(self, sync_code: str, auth_token: str) -> Awaitable[Dict[str, Any]]: ...


@dataclass(frozen=True)
class SyncStatus:
    syncing: bool
    error: Optional[str]
    last_synced_at: Optional[int]


def full_snapshot(data: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Every synchronized field, with empty defaults for the ones ``data`` lacks."""
    data = data or {}
    snapshot: Dict[str, Any] = {}
    for name in SNAPSHOT_FIELDS:
        value = data.get(name)
        if name == 'timerState':
            snapshot[name] = value
        else:
            snapshot[name] = list(value or [])
    return snapshot


class SyncAgent:
    def __init__(
        self,
        transport: SyncTransport,
        store: KeyValueStore,
        *,
        get_snapshot: Callable[[], Mapping[str, Any]],
        apply_snapshot: Callable[[Dict[str, Any]], None],
        debounce: float = 1.0,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        on_status: Optional[Callable[[SyncStatus], None]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.transport = transport
        self.store = store
        self.get_snapshot = get_snapshot
        self.apply_snapshot = apply_snapshot
        self.debounce = debounce
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.on_status = on_status
        self._sleep = sleep
        self._state: Optional[LocalSyncState] = load_local_sync_state(store)
        self._timer: Optional[asyncio.TimerHandle] = None
        self._push_tasks: Set[asyncio.Task] = set()
        self._in_flight = 0
        self.error: Optional[str] = None

    # -- state -------------------------------------------------------------

    @property
    def state(self) -> Optional[LocalSyncState]:
        return self._state

    @property
    def enabled(self) -> bool:
        return self._state is not None

    @property
    def syncing(self) -> bool:
        return self._in_flight > 0

    @property
    def status(self) -> SyncStatus:
        return SyncStatus(
            syncing=self.syncing,
            error=self.error,
            last_synced_at=self._state.last_synced_at if self._state else None,
        )

    def _emit(self) -> None:
        if self.on_status is not None:
            self.on_status(self.status)

    def _remember(self, state: Optional[LocalSyncState]) -> None:
        self._state = state
        save_local_sync_state(self.store, state)

    # -- scheduling --------------------------------------------------------

    def notify_changed(self) -> None:
        """Schedule a push ``debounce`` seconds from now, replacing any pending one.

        Must be called from inside the running event loop. Does nothing while
        sync is disabled.
        """
        if not self.enabled:
            return
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce, self._start_push)

    def _start_push(self) -> None:
        self._timer = None
        task = asyncio.get_running_loop().create_task(self.push_now())
        self._push_tasks.add(task)
        task.add_done_callback(self._push_tasks.discard)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def flush(self) -> None:
        """Fire a pending debounced push right away and wait for every push in flight."""
        if self._timer is not None:
            self._cancel_timer()
            self._start_push()
        while self._push_tasks:
            await asyncio.gather(*list(self._push_tasks))

    # -- push --------------------------------------------------------------

    def _backoff(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    async def push_now(self) -> bool:
        """Push the current snapshot, retrying transient failures.

        Returns True on success. After ``max_retries`` failed retries, or on a
        failure that retrying cannot fix, ``error`` is set and False returned.
        """
        state = self._state
        if state is None:
            return False
        self._in_flight += 1
        self._emit()
        attempt = 0
        try:
            while True:
                try:
                    response = await self.transport.push(state.sync_code, state.auth_token, self.get_snapshot())
                except SyncRequestError as exc:
                    if self._state is not state:
                        # Disconnected or re-linked meanwhile; this push no longer matters.
                        return False
                    if not exc.retryable or attempt >= self.max_retries:
                        logger.warning(
                            "sync_push_failed",
                            extra={"status": exc.status, "error": exc.message, "attempts": attempt + 1},
                        )
                        self.error = exc.message
                        return False
                    delay = self._backoff(attempt)
                    attempt += 1
                    logger.info("sync_push_retry", extra={"attempt": attempt, "delay": delay, "status": exc.status})
                    await self._sleep(delay)
                    continue
                if self._state is state:
                    last_synced_at = response.get('lastSyncedAt')
                    if isinstance(last_synced_at, int):
                        self._remember(LocalSyncState(state.sync_code, state.auth_token, last_synced_at))
                    self.error = None
                return True
        finally:
            self._in_flight -= 1
            self._emit()

    # -- linking -----------------------------------------------------------

    async def setup(self, pin: str, data: Optional[Mapping[str, Any]] = None) -> LocalSyncState:
        """Create a sync account from this device's data and start syncing.

        Raises ValueError for a malformed PIN and SyncRequestError when the
        server refuses.
        """
        if not isinstance(pin, str) or not _PIN_RE.fullmatch(pin):
            raise ValueError('PIN must be 4 digits')
        snapshot = full_snapshot(self.get_snapshot() if data is None else data)
        response = await self.transport.setup(pin, snapshot)
        last_synced_at = response.get('lastSyncedAt') or int(time.time() * 1000)
        self._cancel_timer()
        self._remember(LocalSyncState(response['syncCode'], response['authToken'], int(last_synced_at)))
        self.error = None
        self.apply_snapshot(snapshot)
        logger.info("sync_setup_linked", extra={"sync_code": response['syncCode']})
        self._emit()
        return self._state

    async def login(self, sync_code: str, pin: str) -> LocalSyncState:
        """Link this device to an existing account; the remote snapshot replaces local data."""
        if not (sync_code or '').strip():
            raise ValueError('Enter your sync code')
        if not isinstance(pin, str) or not _PIN_RE.fullmatch(pin):
            raise ValueError('PIN must be 4 digits')
        response = await self.transport.login(sync_code.strip(), pin)
        data = response.get('data') or {}
        self._cancel_timer()
        self._remember(LocalSyncState(response['syncCode'], response['authToken'], int(data.get('lastSyncedAt') or 0)))
        self.error = None
        self.apply_snapshot(full_snapshot(data))
        logger.info("sync_login_linked", extra={"sync_code": response['syncCode']})
        self._emit()
        return self._state

    async def refresh(self) -> Dict[str, Any]:
        """Pull the remote snapshot and apply it locally."""
        state = self._state
        if state is None:
            raise RuntimeError('sync_not_enabled')
        data = await self.transport.pull(state.sync_code, state.auth_token)
        snapshot = full_snapshot(data)
        if self._state is state:
            self._remember(LocalSyncState(state.sync_code, state.auth_token, int(data.get('lastSyncedAt') or state.last_synced_at)))
            self.apply_snapshot(snapshot)
            self._emit()
        return snapshot

    def disconnect(self) -> None:
        """Forget the credentials; the device goes back to offline-only."""
        self._cancel_timer()
        self._remember(None)
        self.error = None
        self._emit()
