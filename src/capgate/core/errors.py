from __future__ import annotations

from enum import Enum
from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse


class ErrorKind(str, Enum):
    CONFIG_NOT_FOUND = "ConfigNotFound"
    NO_CONFIG_AVAILABLE = "NoConfigAvailable"
    DECRYPTION_ERROR = "DecryptionError"
    UPSTREAM_UNREACHABLE = "UpstreamUnreachable"
    UPSTREAM_HTTP_ERROR = "UpstreamHTTPError"
    MALFORMED_UPSTREAM_RESPONSE = "MalformedUpstreamResponse"
    EMPTY_STREAM = "EmptyStream"
    TIMEOUT = "Timeout"
    CANCELLED = "Cancelled"


# Kinds a caller may reasonably retry. The gateway itself never retries.
RETRYABLE_KINDS = frozenset({ErrorKind.UPSTREAM_UNREACHABLE, ErrorKind.TIMEOUT})

_HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.CONFIG_NOT_FOUND: 404,
    ErrorKind.NO_CONFIG_AVAILABLE: 503,
    ErrorKind.DECRYPTION_ERROR: 500,
    ErrorKind.UPSTREAM_UNREACHABLE: 502,
    ErrorKind.UPSTREAM_HTTP_ERROR: 502,
    ErrorKind.MALFORMED_UPSTREAM_RESPONSE: 502,
    ErrorKind.EMPTY_STREAM: 502,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.CANCELLED: 499,
}


class GatewayError(Exception):
    """Structured gateway failure: a kind from the closed taxonomy plus a sanitized message."""

    kind: ErrorKind = ErrorKind.UPSTREAM_UNREACHABLE

    def __init__(self, message: str, *, kind: ErrorKind | None = None, status: int | None = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind
        self.message = message
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self.kind]

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.status is not None:
            payload["status"] = self.status
        return payload

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class ConfigNotFoundError(GatewayError):
    kind = ErrorKind.CONFIG_NOT_FOUND


class NoConfigAvailableError(GatewayError):
    kind = ErrorKind.NO_CONFIG_AVAILABLE


class DecryptionError(GatewayError):
    kind = ErrorKind.DECRYPTION_ERROR


def bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=400, detail=detail)


def not_found(detail: str = "Not found") -> HTTPException:
    return HTTPException(status_code=404, detail=detail)


def service_unavailable(detail: str = "Service unavailable") -> HTTPException:
    return HTTPException(status_code=503, detail=detail)


async def gateway_error_handler(_request: Request, exc: GatewayError) -> JSONResponse:
    return JSONResponse(status_code=exc.http_status, content=exc.to_payload())
