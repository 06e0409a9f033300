"""
Domain errors raised by the service layer.

Routes never catch these; the handlers registered in ``main`` translate
them into JSON responses of the form ``{"detail": ..., "code": ...}``.
"""

from typing import Any, Dict, Optional


class TrackerError(Exception):
    """Base exception for checkout tracker errors"""

    status_code = 500

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(TrackerError):
    """Empty required field, unknown or unavailable participant id, duplicate id"""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class InvalidStateError(TrackerError):
    """Transition attempted from a status that does not permit it"""

    status_code = 409

    def __init__(self, message: str, current_status: Optional[str] = None):
        details = {"status": current_status} if current_status else None
        super().__init__(message, code="INVALID_STATE", details=details)


class NotFoundError(TrackerError):
    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            f"{entity} not found",
            code="NOT_FOUND",
            details={"entity": entity, "id": str(entity_id)},
        )


class PermissionDeniedError(TrackerError):
    status_code = 403

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message, code="NOT_AUTHORIZED")


class StoreError(TrackerError):
    """The underlying persistence call failed (network, permission, quota)"""

    status_code = 503

    def __init__(self, action: str, cause: Optional[BaseException] = None):
        self.action = action
        self.cause = cause
        super().__init__(f"Failed to {action}", code="STORE_ERROR")
