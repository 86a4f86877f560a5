from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

import requests
from asgiref.sync import sync_to_async

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10


class SyncRequestError(Exception):
    """A sync call that did not come back with a 2xx.

    ``status`` is None when the server was never reached.
    """

    def __init__(self, status: Optional[int], message: str):
        super().__init__(message)
        self.status = status
        self.message = message

    @property
    def retryable(self) -> bool:
        # Bad input, bad credentials and unknown codes fail the same way on every retry.
        if self.status is None:
            return True
        return self.status >= 500 or self.status in (408, 429)


class HttpSyncTransport:
    """Blocking ``requests`` calls to the sync API, exposed as coroutines."""

    def __init__(self, base_url: str, *, session: Optional[requests.Session] = None, timeout: float = DEFAULT_TIMEOUT):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self._session = session or requests.Session()

    def _request(self, method: str, path: str, *, json: Any = None, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(method, url, json=json, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("sync_request_unreachable", extra={"url": url, "error": str(exc)})
            raise SyncRequestError(None, str(exc) or 'Network error') from exc
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        if not response.ok:
            message = data.get('error') or f"Sync failed ({response.status_code})"
            raise SyncRequestError(response.status_code, message)
        return data

    async def _call(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        return await sync_to_async(self._request, thread_sensitive=False)(method, path, **kwargs)

    @staticmethod
    def _auth_headers(sync_code: str, auth_token: str) -> Dict[str, str]:
        return {'x-sync-code': sync_code, 'x-auth-token': auth_token}

    async def setup(self, pin: str, existing_data: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {'pin': pin}
        if existing_data is not None:
            body['existingData'] = dict(existing_data)
        return await self._call('POST', '/api/sync/setup', json=body)

    async def login(self, sync_code: str, pin: str) -> Dict[str, Any]:
        return await self._call('POST', '/api/sync/login', json={'syncCode': sync_code, 'pin': pin})

    async def push(self, sync_code: str, auth_token: str, snapshot: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._call('POST', '/api/sync', json=dict(snapshot), headers=self._auth_headers(sync_code, auth_token))

    async def pull(self, sync_code: str, auth_token: str) -> Dict[str, Any]:
        return await self._call('GET', '/api/sync', headers=self._auth_headers(sync_code, auth_token))
