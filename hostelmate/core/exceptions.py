"""
Error taxonomy for the leave workflow.

Services raise these; routers turn them into HTTP responses through
``HostelMateError.to_http()``.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

from hostelmate.models.enums import VerificationFailure


class HostelMateError(Exception):
    """Base class for every error the leave core reports to a caller."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_detail(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details}

    def to_http(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.to_detail())


class LeaveValidationError(HostelMateError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "validation_error"

    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        fields = ", ".join(sorted(errors))
        super().__init__(f"Invalid leave application fields: {fields}", {"errors": errors})


class StateConflictError(HostelMateError):
    status_code = status.HTTP_409_CONFLICT
    code = "state_conflict"


class AuthorizationError(HostelMateError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class NotFoundError(HostelMateError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class IssuanceError(HostelMateError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "issuance_failed"


class VerificationError(HostelMateError):
    """A scanned credential was refused. ``reason`` tells gate staff why."""

    code = "verification_failed"

    def __init__(self, reason: VerificationFailure, details: Optional[Dict[str, Any]] = None):
        self.reason = reason
        if reason == VerificationFailure.APPLICATION_NOT_FOUND:
            self.status_code = status.HTTP_404_NOT_FOUND
        super().__init__(reason.value, {"reason": reason.name.lower(), **(details or {})})


class AlreadyUsedError(VerificationError):
    status_code = status.HTTP_409_CONFLICT
    code = "already_used"

    def __init__(self, used_at: Optional[datetime]):
        self.used_at = used_at
        super().__init__(
            VerificationFailure.ALREADY_USED,
            {"used_at": used_at.isoformat() if used_at else None},
        )
