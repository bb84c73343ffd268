# services/share-service/fileshare/exceptions.py
"""Error taxonomy shared by services and routers.

Every error is an ``HTTPException`` so FastAPI renders it without extra
plumbing; ``kind`` is the stable, machine-checkable part of the response.
"""
from typing import Optional
from fastapi import HTTPException


class ServiceError(HTTPException):
    status_code: int = 500
    kind: str = "internal"
    default_message: str = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None, headers: Optional[dict] = None):
        super().__init__(
            status_code=self.status_code,
            detail=message or self.default_message,
            headers=headers,
        )

    @property
    def message(self) -> str:
        return self.detail


class BadRequest(ServiceError):
    status_code = 400
    kind = "invalid_request"
    default_message = "Bad request"


class Unauthorized(ServiceError):
    status_code = 401
    kind = "unauthorized"
    default_message = "Authentication required"


class Forbidden(ServiceError):
    status_code = 403
    kind = "forbidden"
    default_message = "Forbidden"


class FeatureDisabled(Forbidden):
    kind = "feature_disabled"
    default_message = "This feature is disabled by the administrator"


class NotFound(ServiceError):
    status_code = 404
    kind = "not_found"
    default_message = "Not found"


class Conflict(ServiceError):
    status_code = 409
    kind = "conflict"
    default_message = "Resource already exists"


class Gone(ServiceError):
    status_code = 410
    kind = "gone"
    default_message = "This link has expired"


class PayloadTooLarge(ServiceError):
    status_code = 413
    kind = "payload_too_large"
    default_message = "Payload too large"


class QuotaExceeded(PayloadTooLarge):
    kind = "quota_exceeded"
    default_message = "Storage quota exceeded"


class UnsupportedMediaType(ServiceError):
    status_code = 415
    kind = "unsupported_media_type"
    default_message = "Unsupported media type"


class UpstreamError(ServiceError):
    status_code = 502
    kind = "upstream_error"
    default_message = "Upstream service unavailable"


class InternalError(ServiceError):
    pass
