"""Response envelope shared by every endpoint of the service."""

from typing import Any

from fastapi import HTTPException, status
from fastapi.responses import JSONResponse

STATUS_ERROR_CODES = {
    status.HTTP_400_BAD_REQUEST: 'VALIDATION_ERROR',
    status.HTTP_401_UNAUTHORIZED: 'AUTHENTICATION_REQUIRED',
    status.HTTP_403_FORBIDDEN: 'INSUFFICIENT_ROLE',
    status.HTTP_404_NOT_FOUND: 'NOT_FOUND',
    status.HTTP_405_METHOD_NOT_ALLOWED: 'METHOD_NOT_ALLOWED',
    status.HTTP_409_CONFLICT: 'CONFLICT',
    status.HTTP_503_SERVICE_UNAVAILABLE: 'SERVICE_UNAVAILABLE',
}


class ApiError(HTTPException):
    """HTTPException carrying a machine-readable error code."""

    def __init__(self, status_code: int, code: str, message: str, details: Any = None):
        super().__init__(status_code=status_code, detail=message)
        self.code = code
        self.details = details


def error_code_for_status(status_code: int) -> str:
    return STATUS_ERROR_CODES.get(status_code, 'INTERNAL_SERVER_ERROR')


def error_payload(code: str, message: str, details: Any = None) -> dict:
    payload = {
        'success': False,
        'error': {'code': code, 'message': message},
    }
    if details is not None:
        payload['error']['details'] = details
    return payload


def send_error(status_code: int, code: str, message: str, details: Any = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error_payload(code, message, details))


def success_payload(data: Any = None, message: str | None = None) -> dict:
    payload: dict[str, Any] = {'success': True}
    if data is not None:
        payload['data'] = data
    if message is not None:
        payload['message'] = message
    return payload
