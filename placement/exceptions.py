"""
Domain errors raised by the placement services and the DRF handler that
renders them.

Services never build HTTP responses; they raise one of the errors below
and the API layer maps ``status_code``/``code`` onto the unified
``{"ok": false, "error": {...}}`` envelope.
"""
from __future__ import annotations

from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler


class PlacementError(Exception):
    code = 'placement_error'
    status_code = 400

    def __init__(self, message: str = '', **detail):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.detail = detail


class NotFound(PlacementError):
    code = 'not_found'
    status_code = 404


class InvalidTransition(PlacementError):
    code = 'invalid_transition'
    status_code = 409


class DuplicateApplication(PlacementError):
    code = 'duplicate_application'
    status_code = 409


class CapacityExceeded(PlacementError):
    code = 'capacity_exceeded'
    status_code = 409


class NotCancellable(PlacementError):
    code = 'not_cancellable'
    status_code = 409


class Unauthorized(PlacementError):
    code = 'unauthorized'
    status_code = 403


class ValidationFailed(PlacementError):
    code = 'validation_error'
    status_code = 400


class PersistenceError(PlacementError):
    code = 'persistence_error'
    status_code = 503


def api_exception_handler(exc, context):
    if isinstance(exc, PlacementError):
        error = {'code': exc.code, 'message': exc.message}
        if exc.detail:
            error['detail'] = exc.detail
        return Response({'ok': False, 'error': error}, status=exc.status_code)
    resp = drf_exception_handler(exc, context)
    if resp is None:
        return Response({'ok': False, 'error': {'code': 'server_error', 'message': str(exc)}}, status=500)
    # normalize response
    if isinstance(resp.data, dict):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = str(resp.data)
    return Response({'ok': False, 'error': {'code': 'api_error', 'message': detail}}, status=resp.status_code)
