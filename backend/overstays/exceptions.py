"""Error types raised by the overstay services and the result they return."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class OverstayError(Exception):
    """Base class; ``http_status`` is what the API layer answers with."""

    http_status = 400
    kind = "error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class OverstayValidationError(OverstayError):
    kind = "validation"


class OverstayPermissionError(OverstayError):
    http_status = 403
    kind = "permission"


class ResourceMissingError(OverstayError):
    http_status = 404
    kind = "missing"


class StateConflictError(OverstayError):
    """The record's current status does not allow the requested action."""

    http_status = 409
    kind = "conflict"

    def __init__(self, message: str = "", *, current_status: str = ""):
        super().__init__(message)
        self.current_status = current_status


@dataclass(frozen=True)
class ServiceResult:
    success: bool
    error: str = ""
    error_kind: str = ""
    http_status: int = 200
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **data: Any) -> "ServiceResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, *, kind: str = "error", http_status: int = 400, **data: Any):
        return cls(success=False, error=error, error_kind=kind, http_status=http_status, data=data)

    @classmethod
    def from_exception(cls, exc: OverstayError) -> "ServiceResult":
        return cls.fail(exc.message or str(exc), kind=exc.kind, http_status=exc.http_status)

    def as_payload(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, **self.data}
        payload = {"success": False, "error": self.error}
        payload.update(self.data)
        return payload
