# libs/errors.py
from __future__ import annotations

from typing import Any, List, Optional


class ServiceError(Exception):
    """Base class cho mọi lỗi nghiệp vụ trả về cho caller."""
    code: str = "service_error"

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationError(ServiceError):
    """Input sai định dạng / thiếu field; bị từ chối trước mọi side effect."""
    code = "validation_error"


class ConflictError(ServiceError):
    code = "conflict"

    def __init__(self, message: str, conflicts: List[Any]):
        super().__init__(message)
        self.conflicts = conflicts


class NotFoundError(ServiceError):
    code = "not_found"


class ProviderError(ServiceError):
    """Gateway bên ngoài không truy cập được hoặc trả về response sai."""
    code = "provider_error"

    def __init__(self, message: str, *, status: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status = status
        self.body = body
