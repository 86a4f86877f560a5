from __future__ import annotations

import logging
from typing import Optional

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView, exception_handler

from .codes import SyncCodeAllocationError
from .serializers import LoginSerializer, SetupSerializer, SnapshotSerializer, first_error
from .service import (
    InvalidCredentials,
    SyncCodeNotFound,
    SyncValidationError,
    login,
    pull,
    push,
    setup_account,
)
from .store import StoreError

logger = logging.getLogger(__name__)


def sync_exception_handler(exc, context):
    """DRF exception handler that answers with ``{"error": "..."}`` bodies."""
    response = exception_handler(exc, context)
    if response is None:
        return None
    data = response.data
    if isinstance(data, dict) and 'detail' in data:
        message = str(data['detail'])
    else:
        message = first_error(data) or 'Request failed'
    response.data = {'error': message}
    return response


def _error(message: str, status_code: int) -> Response:
    return Response({'error': message}, status=status_code)


def _get_header(request, name: str) -> Optional[str]:
    value = request.headers.get(name)
    if isinstance(value, str):
        value = value.strip()
    return value or None


def _auth_error_response(exc: Exception) -> Response:
    status_map = {
        SyncValidationError: status.HTTP_400_BAD_REQUEST,
        InvalidCredentials: status.HTTP_401_UNAUTHORIZED,
        SyncCodeNotFound: status.HTTP_404_NOT_FOUND,
    }
    return _error(str(exc), status_map.get(type(exc), status.HTTP_400_BAD_REQUEST))


class SetupView(APIView):
    def post(self, request):
        serializer = SetupSerializer(data=request.data)
        if not serializer.is_valid():
            return _error(first_error(serializer.errors), status.HTTP_400_BAD_REQUEST)
        try:
            result = setup_account(
                pin=serializer.validated_data['pin'],
                existing_data=serializer.validated_data.get('existingData'),
            )
        except SyncValidationError as exc:
            return _error(str(exc), status.HTTP_400_BAD_REQUEST)
        except SyncCodeAllocationError as exc:
            return _error(str(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
        except StoreError:
            logger.exception("sync_setup_store_failed")
            return _error('Failed to create sync account', status.HTTP_500_INTERNAL_SERVER_ERROR)
        return Response({
            'success': True,
            'syncCode': result.sync_code,
            'authToken': result.auth_token,
            'lastSyncedAt': result.created_at,
        })


class LoginView(APIView):
    def post(self, request):
        serializer = LoginSerializer(data=request.data)
        if not serializer.is_valid():
            return _error(first_error(serializer.errors), status.HTTP_400_BAD_REQUEST)
        try:
            result = login(
                sync_code=serializer.validated_data['syncCode'],
                pin=serializer.validated_data['pin'],
            )
        except (SyncValidationError, InvalidCredentials, SyncCodeNotFound) as exc:
            return _auth_error_response(exc)
        except StoreError:
            logger.exception("sync_login_store_failed")
            return _error('Failed to login', status.HTTP_500_INTERNAL_SERVER_ERROR)
        data = dict(result.snapshot)
        data['lastSyncedAt'] = result.last_synced_at
        return Response({
            'success': True,
            'syncCode': result.sync_code,
            'authToken': result.auth_token,
            'data': data,
        })


class SyncView(APIView):
    """Pull (GET) and push (POST) for an already linked device.

    Both authenticate with the ``X-Sync-Code`` and ``X-Auth-Token`` headers.
    """

    def get(self, request):
        try:
            data = pull(
                sync_code=_get_header(request, 'X-Sync-Code'),
                auth_token=_get_header(request, 'X-Auth-Token'),
            )
        except (SyncValidationError, InvalidCredentials, SyncCodeNotFound) as exc:
            return _auth_error_response(exc)
        except StoreError:
            logger.exception("sync_pull_store_failed")
            return _error('Failed to fetch sync data', status.HTTP_500_INTERNAL_SERVER_ERROR)
        return Response(data)

    def post(self, request):
        sync_code = _get_header(request, 'X-Sync-Code')
        auth_token = _get_header(request, 'X-Auth-Token')
        if not sync_code:
            return _error('Sync code required', status.HTTP_400_BAD_REQUEST)
        if not auth_token:
            return _error('Authentication required', status.HTTP_401_UNAUTHORIZED)
        serializer = SnapshotSerializer(data=request.data)
        if not serializer.is_valid():
            return _error(first_error(serializer.errors), status.HTTP_400_BAD_REQUEST)
        try:
            last_synced_at = push(
                sync_code=sync_code,
                auth_token=auth_token,
                changes=dict(serializer.validated_data),
            )
        except (SyncValidationError, InvalidCredentials, SyncCodeNotFound) as exc:
            return _auth_error_response(exc)
        except StoreError:
            logger.exception("sync_push_store_failed")
            return _error('Failed to save sync data', status.HTTP_500_INTERNAL_SERVER_ERROR)
        return Response({'success': True, 'lastSyncedAt': last_synced_at})
