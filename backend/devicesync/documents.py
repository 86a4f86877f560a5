from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional

from django.utils import timezone

# Wire/storage names of the synchronized fields, in document order.
SNAPSHOT_FIELDS = ('todos', 'recurringTasks', 'pauseLogs', 'timerState', 'recurringAddedDates')
LIST_FIELDS = ('todos', 'recurringTasks', 'pauseLogs', 'recurringAddedDates')


class DocumentFormatError(ValueError):
    pass


def now_ms() -> int:
    return int(timezone.now().timestamp() * 1000)


def _normalize_todo(item: Mapping[str, Any], now: int) -> Dict[str, Any]:
    todo = dict(item)
    todo['id'] = item.get('id') or str(uuid.uuid4())
    todo['text'] = item.get('text') or ''
    todo['completed'] = bool(item.get('completed') or False)
    todo['createdAt'] = item.get('createdAt') or now
    todo['dateKey'] = item.get('dateKey') or ''
    todo['updatedAt'] = item.get('updatedAt') or now
    return todo


def _normalize_recurring(item: Mapping[str, Any], now: int) -> Dict[str, Any]:
    task = dict(item)
    task['id'] = item.get('id') or str(uuid.uuid4())
    task['text'] = item.get('text') or ''
    task['weekdays'] = list(item.get('weekdays') or [])
    task['createdAt'] = item.get('createdAt') or now
    task['updatedAt'] = item.get('updatedAt') or now
    return task


def _normalize_timer(timer: Optional[Mapping[str, Any]], now: int) -> Optional[Dict[str, Any]]:
    if not timer:
        return None
    state = dict(timer)
    state['startTime'] = timer.get('startTime')
    state['pausedAt'] = timer.get('pausedAt')
    state['totalPausedTime'] = timer.get('totalPausedTime') or 0
    state['isPaused'] = bool(timer.get('isPaused') or False)
    state['dateKey'] = timer.get('dateKey')
    state['updatedAt'] = timer.get('updatedAt') or now
    return state


def normalize_initial_snapshot(data: Optional[Mapping[str, Any]], now: int) -> Dict[str, Any]:
    """Shape a device's local data into the first stored snapshot.

    Missing ids and timestamps are filled in; keys the client sent beyond the
    known ones are kept as-is.
    """
    data = data or {}
    return {
        'todos': [_normalize_todo(t, now) for t in (data.get('todos') or [])],
        'recurringTasks': [_normalize_recurring(t, now) for t in (data.get('recurringTasks') or [])],
        'pauseLogs': list(data.get('pauseLogs') or []),
        'timerState': _normalize_timer(data.get('timerState'), now),
        'recurringAddedDates': list(data.get('recurringAddedDates') or []),
    }


@dataclass
class AccountDocument:
    sync_code: str
    pin_hash: str
    salt: str
    created_at: int
    last_synced_at: int
    todos: List[Dict[str, Any]] = field(default_factory=list)
    recurring_tasks: List[Dict[str, Any]] = field(default_factory=list)
    pause_logs: List[Dict[str, Any]] = field(default_factory=list)
    timer_state: Optional[Dict[str, Any]] = None
    recurring_added_dates: List[str] = field(default_factory=list)

    @classmethod
    def create(cls, *, sync_code: str, pin_hash: str, salt: str, snapshot: Mapping[str, Any], now: int) -> 'AccountDocument':
        return cls(
            sync_code=sync_code,
            pin_hash=pin_hash,
            salt=salt,
            created_at=now,
            last_synced_at=now,
            todos=snapshot['todos'],
            recurring_tasks=snapshot['recurringTasks'],
            pause_logs=snapshot['pauseLogs'],
            timer_state=snapshot['timerState'],
            recurring_added_dates=snapshot['recurringAddedDates'],
        )

    def snapshot(self) -> Dict[str, Any]:
        return {
            'todos': self.todos,
            'recurringTasks': self.recurring_tasks,
            'pauseLogs': self.pause_logs,
            'timerState': self.timer_state,
            'recurringAddedDates': self.recurring_added_dates,
        }

    def public_data(self) -> Dict[str, Any]:
        """Snapshot plus ``lastSyncedAt``; the only view of a document that leaves the service."""
        data = self.snapshot()
        data['lastSyncedAt'] = self.last_synced_at
        return data

    def with_changes(self, changes: Mapping[str, Any], now: int) -> 'AccountDocument':
        """Copy with every field present in ``changes`` replaced, the rest kept.

        ``lastSyncedAt`` always moves forward, even if the clock has not.
        """
        updates: Dict[str, Any] = {}
        if changes.get('todos') is not None:
            updates['todos'] = list(changes['todos'])
        if changes.get('recurringTasks') is not None:
            updates['recurring_tasks'] = list(changes['recurringTasks'])
        if changes.get('pauseLogs') is not None:
            updates['pause_logs'] = list(changes['pauseLogs'])
        if 'timerState' in changes:
            updates['timer_state'] = changes['timerState']
        if changes.get('recurringAddedDates') is not None:
            updates['recurring_added_dates'] = list(changes['recurringAddedDates'])
        updates['last_synced_at'] = max(now, self.last_synced_at + 1)
        return replace(self, **updates)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'syncCode': self.sync_code,
            'pinHash': self.pin_hash,
            'salt': self.salt,
            'createdAt': self.created_at,
            'lastSyncedAt': self.last_synced_at,
        }
        data.update(self.snapshot())
        return data

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(',', ':')).encode('utf-8')

    @classmethod
    def from_json(cls, raw: bytes) -> 'AccountDocument':
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise DocumentFormatError('document_not_json') from exc
        if not isinstance(data, dict):
            raise DocumentFormatError('document_not_object')
        try:
            return cls(
                sync_code=data['syncCode'],
                pin_hash=data['pinHash'],
                salt=data['salt'],
                created_at=int(data['createdAt']),
                last_synced_at=int(data.get('lastSyncedAt') or data['createdAt']),
                todos=list(data.get('todos') or []),
                recurring_tasks=list(data.get('recurringTasks') or []),
                pause_logs=list(data.get('pauseLogs') or []),
                timer_state=data.get('timerState'),
                recurring_added_dates=list(data.get('recurringAddedDates') or []),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise DocumentFormatError('document_missing_fields') from exc
