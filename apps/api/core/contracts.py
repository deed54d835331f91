from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    AUTH_MISSING = "AUTH_MISSING"
    AUTH_INVALID = "AUTH_INVALID"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    FORBIDDEN = "FORBIDDEN"
    CONFLICT = "CONFLICT"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


def success(data: Any) -> dict[str, Any]:
    return {"data": data}


def error_body(code: ErrorCode, message: str, request_id: str) -> dict[str, Any]:
    return {
        "error": {
            "code": str(code),
            "message": message,
            "request_id": request_id,
        }
    }
